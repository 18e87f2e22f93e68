"""ASCII rendering of graph neighborhoods and paths using phart.

Query results are converted to NetworkX DiGraphs keyed by display label
and rendered with phart, followed by a plain listing of relationships.
"""

import logging

import networkx as nx
from phart import ASCIIRenderer, NodeStyle

from trellis.core.constants import LARGE_GRAPH_THRESHOLD
from trellis.core.types import Edge, GraphPath, Node, NodeType, QueryResult

logger = logging.getLogger(__name__)


def _format_node_label(node: Node, highlight: bool = False) -> str:
    """Projects render as [label], everything else as (label).

    Highlighted nodes get a ">>" prefix.
    """
    if node.type == NodeType.PROJECT:
        base = f"[{node.label}]"
    else:
        base = f"({node.label})"
    if highlight:
        return f">> {base}"
    return base


def _display_labels(nodes: tuple[Node, ...], highlight_ids: set[str]) -> dict[str, str]:
    """Map node id to a unique display label, falling back to the id on collision."""
    labels: dict[str, str] = {}
    used: set[str] = set()
    for node in nodes:
        label = _format_node_label(node, highlight=node.id in highlight_ids)
        if label in used:
            label = _format_node_label(
                Node(id=node.id, type=node.type, label=node.id), highlight=node.id in highlight_ids
            )
        used.add(label)
        labels[node.id] = label
    return labels


def graph_to_networkx(
    result: QueryResult,
    highlight_ids: set[str] | None = None,
) -> nx.DiGraph:
    """Convert a query result to a NetworkX DiGraph for phart.

    Formatted labels are used as node keys so phart prints them directly.
    Edges whose endpoints are not in the result are drawn with the raw id.

    Args:
        result: Nodes and edges to draw.
        highlight_ids: Node ids to mark with ">>".

    Returns:
        DiGraph with ``original_id`` and ``type`` node attributes and a
        ``label`` edge attribute.
    """
    graph_nx = nx.DiGraph()
    id_to_label = _display_labels(result.nodes, highlight_ids or set())

    for node in result.nodes:
        graph_nx.add_node(id_to_label[node.id], original_id=node.id, type=node.type.value)

    for edge in result.edges:
        graph_nx.add_edge(
            id_to_label.get(edge.source, edge.source),
            id_to_label.get(edge.target, edge.target),
            label=_edge_type_name(edge),
        )
    return graph_nx


def _edge_type_name(edge: Edge) -> str:
    return str(getattr(edge.type, "value", edge.type))


def _format_relationships(result: QueryResult) -> str:
    """List each relationship once as ``source --type--> target``."""
    if not result.edges:
        return ""

    id_to_label = _display_labels(result.nodes, set())
    seen: set[tuple[str, str, str]] = set()
    lines = ["Relationships:"]
    for edge in result.edges:
        source = id_to_label.get(edge.source, edge.source)
        target = id_to_label.get(edge.target, edge.target)
        key = (source, _edge_type_name(edge), target)
        if key not in seen:
            seen.add(key)
            lines.append(f"  {source} --{key[1]}--> {target}")
    return "\n".join(lines)


def render_ascii(result: QueryResult, highlight_ids: set[str] | None = None) -> str:
    """Render a query result as ASCII art.

    Args:
        result: Nodes and edges to draw.
        highlight_ids: Node ids to mark, such as the focal node.

    Returns:
        The rendering, a friendly message for an empty result, or a warning
        line if phart fails.
    """
    if not result.nodes:
        return "No nodes to display. Run `trellis build` to populate the graph."

    try:
        parts: list[str] = []
        if len(result.nodes) > LARGE_GRAPH_THRESHOLD:
            parts.append(
                f"⚠ Large graph detected ({len(result.nodes)} nodes). "
                "Use --depth to narrow the view."
            )
            parts.append("")

        nx_graph = graph_to_networkx(result, highlight_ids=highlight_ids)
        renderer = ASCIIRenderer(nx_graph, node_style=NodeStyle.MINIMAL)
        parts.append(renderer.render().strip())

        relationships = _format_relationships(result)
        if relationships:
            parts.append("")
            parts.append(relationships)

        return "\n".join(parts)

    except Exception as e:
        logger.warning("Visualization failed: %s", e)
        return "⚠ Could not render graph visualization."


def render_path(path: GraphPath) -> str:
    """One-line rendering of a path, e.g. ``[p1] --uses--> (typescript)``."""
    if not path.nodes:
        return ""
    parts = [_format_node_label(path.nodes[0])]
    for edge, node in zip(path.edges, path.nodes[1:], strict=True):
        parts.append(f"--{_edge_type_name(edge)}-->")
        parts.append(_format_node_label(node))
    return " ".join(parts)
