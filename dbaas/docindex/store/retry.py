"""
Bounded retry with exponential backoff for key application.

Transient StorageErrors are retried up to `max_retries` times; after that,
or on a non-transient error, the StorageError propagates and the caller
downgrades the affected index.
"""

from __future__ import annotations

import logging
import time
from typing import Iterable

from ..config import BackfillConfig
from ..errors import StorageError
from .base import IndexEntry, IndexStore

logger = logging.getLogger(__name__)


def retry_delay(config: BackfillConfig, attempt: int) -> float:
    """Delay in seconds before retry number `attempt` (1-based)."""
    return (config.retry_delay_ms / 1000.0) * (config.backoff_multiplier ** (attempt - 1))


def apply_with_retry(
    store: IndexStore,
    storage_id: str,
    remove: Iterable[bytes],
    add: Iterable[IndexEntry],
    config: BackfillConfig,
) -> None:
    """Apply keys synchronously, retrying transient storage faults.

    Raises:
        StorageError: When retries are exhausted or the fault is permanent
    """
    remove = list(remove)
    add = list(add)
    attempt = 0
    while True:
        try:
            store.apply(storage_id, remove=remove, add=add)
            return
        except StorageError as e:
            attempt += 1
            if not e.transient or attempt > config.max_retries:
                raise
            delay = retry_delay(config, attempt)
            logger.warning(
                f"Transient storage error, retrying in {delay:.3f}s: {e}",
                extra={"storage_id": storage_id, "attempt": attempt},
            )
            time.sleep(delay)
