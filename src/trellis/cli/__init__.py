"""Command-line interface for Trellis."""
