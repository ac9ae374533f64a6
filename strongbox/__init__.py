"""Strongbox — secrets vault with approval-gated access and version history."""

__version__ = "0.1.0"
