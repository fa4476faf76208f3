"""
Index lifecycle: state machine and backfill.

Invariants:
    - State changes only through IndexStateMachine.transition()
    - Backfill is resumable from its cursor and cancellable
    - Cancellation leaves the index NEEDS_REPAIR
"""

from .backfill import Backfiller, BackfillJob, BackfillResult
from .state_machine import (
    QUERYABLE_STATES,
    TRANSITIONS,
    WRITABLE_STATES,
    IndexStateMachine,
    can_transition,
)

__all__ = [
    "IndexStateMachine",
    "TRANSITIONS",
    "WRITABLE_STATES",
    "QUERYABLE_STATES",
    "can_transition",
    "Backfiller",
    "BackfillJob",
    "BackfillResult",
]
