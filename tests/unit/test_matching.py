"""Unit tests for fuzzy node matching.

Tests fuzzy_find_node() lookup by id and label, with suggestions.
"""

from trellis.core.graph import KnowledgeGraph
from trellis.core.matching import fuzzy_find_node, format_node_suggestions
from trellis.core.types import Node, NodeType


def _graph(*labels: str) -> KnowledgeGraph:
    graph = KnowledgeGraph()
    for label in labels:
        graph.add_node(Node(id=f"tech:{label}", type=NodeType.TECHNOLOGY, label=label))
    return graph


class TestFuzzyFindNode:
    """Tests for fuzzy_find_node() function."""

    def test_exact_id_match(self) -> None:
        result = fuzzy_find_node(_graph("typescript", "javascript"), "tech:typescript")

        assert result.match is not None
        assert result.match.id == "tech:typescript"
        assert result.is_exact, "Should be exact match"
        assert result.score == 100.0

    def test_label_match_is_case_insensitive(self) -> None:
        """fuzzy_find_node() matches labels regardless of case."""
        result = fuzzy_find_node(_graph("TypeScript"), "typescript")

        assert result.match is not None
        assert result.match.id == "tech:TypeScript"
        assert result.is_exact

    def test_typo_matches_fuzzily(self) -> None:
        result = fuzzy_find_node(_graph("typescript", "docs"), "typscript")

        assert result.match is not None, f"Expected a match, got {result}"
        assert result.match.id == "tech:typescript"
        assert not result.is_exact
        assert result.score >= 50

    def test_ambiguous_query_returns_candidates(self) -> None:
        """Several equally good matches produce no single match."""
        result = fuzzy_find_node(_graph("react-dom", "react-native"), "react")

        assert result.match is None
        assert {n.id for n in result.candidates} == {"tech:react-dom", "tech:react-native"}
        assert set(result.suggestions) == {"tech:react-dom", "tech:react-native"}

    def test_no_match_below_threshold(self) -> None:
        result = fuzzy_find_node(_graph("typescript"), "zzzz", threshold=95)

        assert result.match is None
        assert result.candidates == []

    def test_empty_graph(self) -> None:
        result = fuzzy_find_node(KnowledgeGraph(), "anything")

        assert result.match is None
        assert result.suggestions == []


class TestFormatNodeSuggestions:
    """Tests for format_node_suggestions()."""

    def test_lists_suggestions(self) -> None:
        text = format_node_suggestions(["tech:react", "tech:vue"])

        assert text.startswith("Did you mean one of these?")
        assert "  - tech:react" in text

    def test_truncates_long_lists(self) -> None:
        text = format_node_suggestions([f"n{i}" for i in range(8)], max_show=3)

        assert "... and 5 more" in text

    def test_no_suggestions(self) -> None:
        assert format_node_suggestions([]) == "The graph has no nodes."
