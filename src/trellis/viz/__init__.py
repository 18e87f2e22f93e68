"""Visualization module for Trellis.

Provides ASCII rendering of graph neighborhoods and paths.
"""

from trellis.viz.ascii import graph_to_networkx, render_ascii, render_path

__all__ = ["render_ascii", "render_path", "graph_to_networkx"]
