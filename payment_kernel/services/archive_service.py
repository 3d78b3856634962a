"""
ArchiveService -- archive, restore and reinstate deleted payments.

Responsibility:
    Deleting a payment copies every business field into an append-only
    PaymentArchive row and soft-deletes the live row in the same
    transaction.  Restoring flags the archive; reinstating is the explicit,
    audited follow-up that brings the live payment back.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Archive and soft-delete commit together or not at all.
    - Archive business fields are never modified (db/invariants.py); only
      the restore flags change, and ``restore`` is idempotent.
    - Reinstating never produces two live payments with the same number.

Failure modes:
    - PaymentNotFoundError: unknown or already-archived payment.
    - ArchiveNotFoundError: unknown archive id.
    - ValidationError: reinstate would collide with a live payment number.
    - StorageUnavailableError / ConcurrencyConflictError: retryable.

Audit relevance:
    ``payment_archived``, ``archive_restored`` and ``payment_reinstated``
    are logged with archive id, payment id and actor.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from payment_config.schema import LedgerConfig
from payment_kernel.domain.clock import Clock
from payment_kernel.exceptions import PaymentNotFoundError, ValidationError
from payment_kernel.logging_config import LogContext, get_logger
from payment_kernel.models.payment import BUSINESS_COLUMNS, DELETED, Payment
from payment_kernel.models.payment_archive import PaymentArchive
from payment_kernel.selectors.archive_selector import ArchiveSelector
from payment_kernel.selectors.payment_selector import PaymentSelector
from payment_kernel.services.base import BaseService
from payment_kernel.services.retry_service import ConflictRetryPolicy

logger = get_logger("services.archive")


class ArchiveService(BaseService[PaymentArchive]):
    """
    Archive store operations.

    Contract:
        Mutating methods commit before returning, or roll back and raise.

    Non-goals:
        - Does NOT physically delete payment rows.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or LedgerConfig()
        self._payments = PaymentSelector(session)
        self._archives = ArchiveSelector(session)
        self._retry = ConflictRetryPolicy(
            max_retries=self.config.ledger.max_conflict_retries,
            backoff_seconds=self.config.ledger.retry_backoff_seconds,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def archive(
        self,
        payment_id: UUID | str,
        reason: str | None = None,
        *,
        actor_id: UUID,
    ) -> PaymentArchive:
        """
        Copy the payment into the archive and soft-delete the live row.

        Raises:
            PaymentNotFoundError: unknown or already archived payment.
        """

        def attempt() -> PaymentArchive:
            payment = self._payments.resolve(payment_id, fresh=True)
            if payment is None:
                raise PaymentNotFoundError(str(payment_id))
            now = self.clock.now_utc()
            record = PaymentArchive(
                **{column: getattr(payment, column) for column in BUSINESS_COLUMNS},
                original_payment_id=payment.id,
                deleted_status=DELETED,
                original_created_at=payment.created_at,
                original_created_by_id=payment.created_by_id,
                archived_at=now,
                archived_reason=reason,
                archived_by_id=actor_id,
                is_restored=False,
            )
            payment.deleted_status = DELETED
            payment.updated_at = now
            payment.updated_by_id = actor_id
            self.session.add(record)
            self.session.flush()
            return record

        with LogContext.bind(actor_id=actor_id):
            with self._commit_or_rollback("archive_payment"):
                record = self._retry.run(
                    self.session,
                    attempt,
                    entity_type="Payment",
                    entity_id=str(payment_id),
                )
            logger.info(
                "payment_archived",
                extra={
                    "archive_id": str(record.id),
                    "payment_id": str(record.original_payment_id),
                    "payment_number": record.payment_number,
                    "reason": reason,
                },
            )
        return record

    def restore(self, archive_id: UUID | str, *, actor_id: UUID) -> PaymentArchive:
        """
        Flag an archive record as restored.  Does not recreate the payment.

        Raises:
            ArchiveNotFoundError: unknown archive id.
        """
        with LogContext.bind(actor_id=actor_id, archive_id=archive_id):
            with self._commit_or_rollback("restore_archive"):
                record = self._archives.load(archive_id)
                already = record.is_restored
                record.restore(actor_id, self.clock.now_utc())
                self.session.flush()
            logger.info(
                "archive_restored",
                extra={"archive_id": str(record.id), "already_restored": already},
            )
        return record

    def reinstate(self, archive_id: UUID | str, *, actor_id: UUID) -> Payment:
        """
        Bring an archived payment back to the live set and flag the archive.

        If the original row still exists it is un-deleted (its amounts are
        the ones current at archive time, since archived payments accept no
        mutations).  Otherwise the payment is rebuilt from the archive under
        its original id and payment number.

        Raises:
            ArchiveNotFoundError: unknown archive id.
            ValidationError: another live payment holds the payment number.
        """

        def attempt() -> Payment:
            record = self._archives.load(archive_id)
            now = self.clock.now_utc()
            original = None
            if record.original_payment_id is not None:
                original = self.session.execute(
                    select(Payment)
                    .where(Payment.id == record.original_payment_id)
                    .execution_options(populate_existing=True)
                ).scalar_one_or_none()

            if original is not None:
                if original.is_deleted:
                    original.deleted_status = None
                    original.updated_at = now
                    original.updated_by_id = actor_id
                payment = original
            else:
                clash = self.session.execute(
                    select(Payment.id).where(
                        Payment.payment_number == record.payment_number
                    )
                ).first()
                if clash is not None:
                    raise ValidationError(
                        f"Payment number {record.payment_number} is already in use",
                        field="payment_number",
                    )
                payment = Payment(
                    **{column: getattr(record, column) for column in BUSINESS_COLUMNS},
                    created_at=record.original_created_at or now,
                    updated_at=now,
                    created_by_id=record.original_created_by_id or actor_id,
                    updated_by_id=actor_id,
                )
                if record.original_payment_id is not None:
                    payment.id = record.original_payment_id
                self.session.add(payment)

            record.restore(actor_id, now)
            self.session.flush()
            return payment

        with LogContext.bind(actor_id=actor_id, archive_id=archive_id):
            with self._commit_or_rollback("reinstate_payment"):
                payment = self._retry.run(
                    self.session,
                    attempt,
                    entity_type="PaymentArchive",
                    entity_id=str(archive_id),
                )
            logger.info(
                "payment_reinstated",
                extra={
                    "archive_id": str(archive_id),
                    "payment_id": str(payment.id),
                    "payment_number": payment.payment_number,
                },
            )
        return payment

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, archive_id: UUID | str) -> PaymentArchive:
        return self._archives.get(archive_id)

    def find_by_client(self, client_id: int) -> list[PaymentArchive]:
        return self._archives.find_by_client(client_id)

    def find_by_clinic(self, clinic_name: str) -> list[PaymentArchive]:
        return self._archives.find_by_clinic(clinic_name)

    def find_unrestored(self, clinic_name: str | None = None) -> list[PaymentArchive]:
        return self._archives.find_unrestored(clinic_name)
