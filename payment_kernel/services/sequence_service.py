"""
SequenceService -- unique payment numbers from a shared counter row.

Responsibility:
    Issues the externally visible payment number (``PAY-00000123``).  The
    counter lives in the ``sequence_counters`` table and is advanced with a
    single atomic ``UPDATE ... SET current_value = current_value + 1
    RETURNING current_value``, so concurrent callers in any number of
    processes can never read the same value.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by PaymentLedgerService.create() exactly once per payment.

Invariants enforced:
    - Uniqueness: every allocated value is distinct across processes.
    - Never a process-local counter and never aggregate-max-plus-one.

Failure modes:
    - IntegrityError: concurrent creation of the counter row (handled via
      savepoint rollback and retry of the increment).
    - Storage failure during allocation: PaymentNumberAllocator degrades to
      a timestamp-derived number and logs ``payment_number_degraded``.

Audit relevance:
    Degraded allocations are logged at WARNING with the fallback value so
    out-of-sequence numbers can be traced.
"""

import secrets

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.logging_config import get_logger
from payment_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Atomic increment-and-read over a named counter row.

    Contract:
        ``next_value`` returns a value strictly greater than any value
        previously committed for the same name.

    Guarantees:
        - The increment is one SQL statement; no row is read and then
          written back.
        - Runs inside a savepoint, so a failure does not poison the
          caller's transaction.

    Non-goals:
        - Does NOT commit -- the caller's transaction owns the increment.
          A rolled-back transaction returns its value.
    """

    PAYMENT_NUMBER = "payment_number"

    def __init__(self, session: Session):
        self._session = session

    def _increment(self, sequence_name: str) -> int | None:
        return self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .returning(SequenceCounter.current_value)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Postconditions:
            - Returns an integer > 0, unique for ``sequence_name``.
        """
        with self._session.begin_nested():
            value = self._increment(sequence_name)
            if value is not None:
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": value},
                )
                return value

        # First use of this sequence: create the row, racing other creators.
        try:
            with self._session.begin_nested():
                self._session.add(SequenceCounter(name=sequence_name, current_value=1))
                self._session.flush()
            logger.debug(
                "sequence_allocated",
                extra={"sequence_name": sequence_name, "value": 1},
            )
            return 1
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"sequence_name": sequence_name},
            )

        with self._session.begin_nested():
            value = self._increment(sequence_name)
        if value is None:
            raise RuntimeError(f"Sequence counter {sequence_name!r} vanished")
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        counter = self._session.query(SequenceCounter).filter_by(
            name=sequence_name
        ).one_or_none()
        return counter.current_value if counter else None


class PaymentNumberAllocator:
    """
    Formats sequence values as payment numbers, with a degraded fallback.

    Contract:
        ``allocate()`` always returns a string.  Under normal operation it is
        ``<prefix><zero-padded counter>``.  If the counter cannot be advanced
        (storage error), it returns ``<prefix>T<epoch millis><random hex>``,
        which keeps uniqueness with high probability but not monotonicity.

    Guarantees:
        - The fallback is logged at WARNING as ``payment_number_degraded``.
        - A fallback number can never collide with a normal one: normal
          numbers are all digits after the prefix, fallbacks contain "T".
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        prefix: str = "PAY-",
        width: int = 8,
    ):
        self._sequences = SequenceService(session)
        self._clock = clock or SystemClock()
        self._prefix = prefix
        self._width = width

    def format(self, value: int) -> str:
        return f"{self._prefix}{value:0{self._width}d}"

    def fallback(self) -> str:
        millis = int(self._clock.now_utc().timestamp() * 1000)
        return f"{self._prefix}T{millis:013d}{secrets.token_hex(2).upper()}"

    def allocate(self) -> str:
        try:
            value = self._sequences.next_value(SequenceService.PAYMENT_NUMBER)
        except SQLAlchemyError as exc:
            number = self.fallback()
            logger.warning(
                "payment_number_degraded",
                extra={
                    "fallback_number": number,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return number
        return self.format(value)
