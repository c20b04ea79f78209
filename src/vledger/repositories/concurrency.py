from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from vledger.domain.errors import ConcurrencyConflictError

log = logging.getLogger(__name__)

T = TypeVar("T")


def run_with_retry(func: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.05) -> T:
    """
    Execute a transactional operation, retrying optimistic-concurrency conflicts.

    Anything other than ConcurrencyConflictError propagates on the first failure.
    """
    attempts = max(1, int(attempts))
    for attempt in range(attempts):
        try:
            return func()
        except ConcurrencyConflictError as exc:
            if attempt >= attempts - 1:
                log.warning("transaction_conflict_exhausted attempts=%s error=%s", attempts, exc)
                raise
            log.info("transaction_conflict_retry attempt=%s error=%s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
    raise ConcurrencyConflictError("Transaction could not be applied.")
