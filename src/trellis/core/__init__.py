"""Core graph, persistence, temporal and health components."""
