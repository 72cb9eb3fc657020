"""
Conflict retry for settlement operations.

SettlementStateConflict is the one retryable error in the system: the
operation lost a race for a settlement record, and re-running it against
freshly loaded state is always safe because every settlement call reloads
and revalidates.  Every other error propagates on first occurrence.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from split_kernel.exceptions import SettlementStateConflict
from split_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


def retry_on_conflict(
    operation: Callable[[], T],
    *,
    max_retries: int = 3,
    backoff_seconds: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run ``operation``, re-running it on SettlementStateConflict.

    Contract:
        At most ``max_retries`` extra attempts.  The operation must load
        its own state on every call.  Backoff grows linearly with the
        attempt number.

    Raises:
        SettlementStateConflict: When every attempt conflicted.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except SettlementStateConflict as exc:
            if attempt >= max_retries:
                logger.warning(
                    "settlement_conflict_exhausted",
                    extra={"attempts": attempt + 1, "conflict_participant": exc.participant_id},
                )
                raise
            attempt += 1
            logger.info(
                "settlement_conflict_retry",
                extra={
                    "attempt": attempt,
                    "max_retries": max_retries,
                    "conflict_participant": exc.participant_id,
                },
            )
            if backoff_seconds > 0:
                sleep(backoff_seconds * attempt)
