"""
Index lifecycle state machine.

    CREATING ──backfill done──▶ READY
       │                          │
       │ backfill failed/aborted  │ live write failed
       ▼                          ▼
    NEEDS_REPAIR ◀────────────────┘
       │
       └──explicit re-creation (entries purged)──▶ CREATING

Every transition goes through IndexStateMachine.transition(), which consults
TRANSITIONS and rejects anything else (e.g. READY -> CREATING without first
passing through NEEDS_REPAIR).

Invariants:
    - CREATING and READY indexes receive every live write
    - NEEDS_REPAIR indexes receive no writes and serve no queries
    - Only READY indexes serve queries
"""

from __future__ import annotations

import logging

from ..errors import IllegalStateTransition
from ..schema.types import Index, IndexState

logger = logging.getLogger(__name__)

TRANSITIONS: dict[IndexState, frozenset[IndexState]] = {
    IndexState.CREATING: frozenset({IndexState.READY, IndexState.NEEDS_REPAIR}),
    IndexState.READY: frozenset({IndexState.NEEDS_REPAIR}),
    IndexState.NEEDS_REPAIR: frozenset({IndexState.CREATING}),
}

# States in which live document writes are applied to the index.
WRITABLE_STATES = frozenset({IndexState.CREATING, IndexState.READY})

# States in which the index may be used to answer lookups.
QUERYABLE_STATES = frozenset({IndexState.READY})


def can_transition(from_state: IndexState, to_state: IndexState) -> bool:
    return to_state in TRANSITIONS.get(from_state, frozenset())


class IndexStateMachine:
    """Applies lifecycle transitions to Index records.

    Index records are immutable; transition() returns the updated record
    and the caller stores it back into its collection.

    Example:
        >>> machine = IndexStateMachine()
        >>> ready = machine.transition(index, IndexState.READY, "backfill complete")
    """

    def transition(self, index: Index, to_state: IndexState, reason: str = "") -> Index:
        """Move an index to a new state.

        Raises:
            IllegalStateTransition: If the table does not allow the move
        """
        if not can_transition(index.state, to_state):
            raise IllegalStateTransition(index.ref, index.state.name, to_state.name)

        log = logger.warning if to_state == IndexState.NEEDS_REPAIR else logger.info
        log(
            f"Index {index.ref}: {index.state.name} -> {to_state.name}",
            extra={
                "index": index.ref,
                "from_state": index.state.name,
                "to_state": to_state.name,
                "reason": reason,
            },
        )
        return index.with_state(to_state)

    @staticmethod
    def accepts_writes(index: Index) -> bool:
        return index.state in WRITABLE_STATES

    @staticmethod
    def is_queryable(index: Index) -> bool:
        return index.state in QUERYABLE_STATES
