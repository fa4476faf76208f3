"""
Document Index - Secondary indexes over documents in named collections.

This package implements the index subsystem of a document database:
- Validation and normalization of single-field and composite definitions
- Order-preserving binary key encoding (memcmp order == value order)
- Index lifecycle: CREATING -> READY, with NEEDS_REPAIR on failure
- Resumable, cancellable backfill of existing documents
- Live maintenance from the document write path
- Range lookups over READY indexes

Architecture:
    ┌─────────────┐     ┌──────────────────┐     ┌────────────────────┐
    │   Client    │────▶│   IndexCatalog   │────▶│ IndexDefinition-   │
    │ (CLI / API) │     │                  │     │ Validator          │
    └─────────────┘     └────────┬─────────┘     └────────────────────┘
                                 │
             ┌───────────────────┼────────────────────┐
             │                   │                    │
             ▼                   ▼                    ▼
    ┌─────────────────┐  ┌───────────────┐   ┌─────────────────┐
    │ IndexState-     │  │  Backfiller   │   │ on_document_    │
    │ Machine         │  │ (asyncio)     │   │ write (sync)    │
    └─────────────────┘  └───────┬───────┘   └────────┬────────┘
                                 │                    │
                                 ▼                    ▼
                         ┌─────────────────────────────────┐
                         │        IndexKeyEncoder          │
                         └────────────────┬────────────────┘
                                          ▼
                         ┌─────────────────────────────────┐
                         │  IndexStore (SQLite / memory)   │
                         └─────────────────────────────────┘

Invariants:
    - The document store is the source of truth; indexes are rebuildable
    - Only READY indexes serve lookups
    - A failed index update never fails the document write
    - State changes only through the transition table

How to change safely:
    - Never change the key encoding of an existing type tag; add new tags
    - Record field numbers are fixed; add fields, never renumber
"""

from ._version import __version__

__all__ = ["__version__"]
