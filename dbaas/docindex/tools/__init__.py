"""
CLI tools for document index administration.

This module provides command-line tools for:
- validate: Check and normalize an index definition
- show-db / show-collection: Inspect catalog records in an index store

Invariants:
    - Tools work offline (no running service required)
    - Tools never write to the store
"""

from .index_cli import IndexCLI

__all__ = ["IndexCLI"]
