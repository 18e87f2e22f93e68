"""Fuzzy node lookup for the command line.

Users name nodes by label ("react") or id ("tech:react"). An exact,
case-insensitive match on either wins; otherwise RapidFuzz ranks labels
and ids and the best unambiguous candidate above the threshold is used.
"""

from dataclasses import dataclass, field

from rapidfuzz import fuzz, process

from trellis.core.constants import NODE_MATCH_THRESHOLD
from trellis.core.graph import KnowledgeGraph
from trellis.core.types import Node

MAX_SUGGESTIONS = 5

# Candidates within this many points of the best score make a match ambiguous
AMBIGUITY_MARGIN = 10


@dataclass
class MatchResult:
    """Result of a fuzzy node match.

    Attributes:
        match: The matched node, or None if no single node matched.
        is_exact: True if the match was exact (not fuzzy).
        score: Fuzzy score (0-100), or 100 for an exact match.
        suggestions: Display names to offer when there is no match.
        candidates: Nodes tied for the best match.
    """

    match: Node | None = None
    is_exact: bool = False
    score: float = 0.0
    suggestions: list[str] = field(default_factory=list)
    candidates: list[Node] = field(default_factory=list)


def fuzzy_find_node(
    graph: KnowledgeGraph,
    query: str,
    threshold: int = NODE_MATCH_THRESHOLD,
) -> MatchResult:
    """Find a node by id or label.

    Args:
        graph: The graph to search.
        query: Node id or label, possibly misspelled.
        threshold: Minimum WRatio score (0-100) for a fuzzy match.

    Returns:
        MatchResult with the match, or suggestions when none was found.
    """
    nodes = graph.get_all_nodes()
    if not nodes:
        return MatchResult()

    exact = graph.get_node(query)
    if exact is not None:
        return MatchResult(match=exact, is_exact=True, score=100.0, candidates=[exact])

    query_lower = query.lower()
    for node in nodes:
        if node.label.lower() == query_lower or node.id.lower() == query_lower:
            return MatchResult(match=node, is_exact=True, score=100.0, candidates=[node])

    # Map every label and id back to its node; ids win on collision
    choices: dict[str, Node] = {}
    for node in nodes:
        choices.setdefault(node.label, node)
    for node in nodes:
        choices[node.id] = node

    matches = process.extract(
        query,
        choices.keys(),
        scorer=fuzz.WRatio,
        score_cutoff=threshold,
        limit=MAX_SUGGESTIONS,
    )
    if not matches:
        nearest = process.extract(query, choices.keys(), scorer=fuzz.WRatio, limit=MAX_SUGGESTIONS)
        return MatchResult(suggestions=[m[0] for m in nearest])

    top_score = matches[0][1]
    candidates: list[Node] = []
    for name, score, _ in matches:
        node = choices[name]
        if score >= top_score - AMBIGUITY_MARGIN and node not in candidates:
            candidates.append(node)

    if len(candidates) > 1:
        return MatchResult(
            score=top_score,
            suggestions=[n.id for n in candidates],
            candidates=candidates,
        )

    return MatchResult(match=candidates[0], score=top_score, candidates=candidates)


def format_node_suggestions(suggestions: list[str], max_show: int = MAX_SUGGESTIONS) -> str:
    """Format suggestions for an error message."""
    if not suggestions:
        return "The graph has no nodes."

    shown = suggestions[:max_show]
    formatted = "\n".join(f"  - {s}" for s in shown)
    if len(suggestions) > max_show:
        formatted += f"\n  ... and {len(suggestions) - max_show} more"
    return f"Did you mean one of these?\n{formatted}"
