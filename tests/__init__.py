"""
Document Index Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (catalog, backfill, SQLite store, service)
"""
