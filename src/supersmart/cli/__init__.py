"""
CLI commands for supersmart.

One subcommand per pipeline stage, from name resolution to the grafted
final tree.
"""

__all__ = ["backbone", "clade", "consense", "main", "taxonomy"]
