"""Trellis: a local knowledge graph and temporal pattern miner."""

__version__ = "0.1.0"
