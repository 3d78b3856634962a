"""
ConflictRetryPolicy -- bounded retry of optimistic-lock conflicts.

Responsibility:
    Runs a read-modify-write attempt and, when the flush loses a version
    race (``StaleDataError``), rolls back and runs the attempt again against
    a fresh read.  Callers cannot resolve a version conflict themselves, so
    the engine retries before surfacing anything.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Used by PaymentLedgerService and ArchiveService for every mutation of
    a Payment row.

Invariants enforced:
    MAX_RETRIES -- Safety limit prevents infinite retry loops; the
    configured value is clamped to it.

Failure modes:
    - ConcurrencyConflictError: still conflicting after ``max_retries``
      retries (retryable by the caller).
    - Any other exception from the attempt propagates unchanged on the
      first occurrence; it is never retried.

Audit relevance:
    Each retry is logged as ``mutation_conflict_retry`` with the entity and
    attempt number; exhaustion is logged as ``mutation_conflict_exhausted``.
"""

from __future__ import annotations

import time
from typing import Callable, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from payment_kernel.db.engine import begin_write
from payment_kernel.exceptions import ConcurrencyConflictError
from payment_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


class ConflictRetryPolicy:
    """
    Retry loop for optimistic-lock conflicts.

    Contract:
        ``attempt`` must re-read everything it depends on each time it is
        called; the policy rolls the session back between attempts.  Each
        retry starts in a new write transaction.

    Guarantees:
        - At most ``max_retries + 1`` attempts.
        - Only ``StaleDataError`` triggers a retry.

    Non-goals:
        - Does NOT retry storage outages (those surface immediately as
          StorageUnavailableError so the caller can back off).
    """

    # INVARIANT: Safety limit -- prevents infinite retry loops
    MAX_RETRIES = 10

    def __init__(
        self,
        max_retries: int = 3,
        backoff_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_retries = max(0, min(max_retries, self.MAX_RETRIES))
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def run(
        self,
        session: Session,
        attempt: Callable[[], T],
        *,
        entity_type: str,
        entity_id: str,
    ) -> T:
        attempts = 0
        while True:
            attempts += 1
            try:
                return attempt()
            except StaleDataError as exc:
                session.rollback()
                if attempts > self.max_retries:
                    logger.error(
                        "mutation_conflict_exhausted",
                        extra={
                            "entity_type": entity_type,
                            "entity_id": entity_id,
                            "attempts": attempts,
                        },
                    )
                    raise ConcurrencyConflictError(
                        entity_type, entity_id, attempts
                    ) from exc
                logger.warning(
                    "mutation_conflict_retry",
                    extra={
                        "entity_type": entity_type,
                        "entity_id": entity_id,
                        "attempt": attempts,
                        "max_retries": self.max_retries,
                    },
                )
                if self.backoff_seconds > 0:
                    self._sleep(self.backoff_seconds * attempts)
                begin_write(session)
