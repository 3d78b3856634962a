"""
PaymentLedgerService -- transactional mutations of Payment records.

Responsibility:
    The only write path for payments.  Validates caller input, allocates the
    payment number at creation, and runs every read-modify-write
    (add-amount, refund, dispute, write-off, detail edits) as a single
    atomic unit that is retried on optimistic-lock conflicts.

Architecture position:
    Kernel > Services -- imperative shell.  Pure calculation is delegated to
    ``payment_kernel.domain.amounts``; this class only loads rows, applies
    the returned snapshot, and owns the transaction.

Invariants enforced:
    - Totals and status are recomputed from the buckets on every mutation;
      there is no generic field setter for amounts or status.
    - Per-record serialization: each mutation flushes an UPDATE keyed on the
      row's ``version``; a lost race raises StaleDataError, and
      ConflictRetryPolicy re-runs the whole read-modify-write on a fresh read.
    - A mutation either fully applies and commits, or rolls back completely.
    - Refunded, WriteOff and Failed payments accept no further amounts.

Failure modes:
    - ValidationError family: bad input (never retried).
    - BusinessRuleError family: refund rules, closed payment, invalid
      administrative transition (never retried).
    - PaymentNotFoundError: unknown or archived payment.
    - StorageUnavailableError / ConcurrencyConflictError: retryable.

Audit relevance:
    Every successful mutation logs an event (``payment_created``,
    ``payment_amount_added``, ``refund_processed``, ``payment_disputed``,
    ``payment_written_off``, ``payment_details_updated``) with before/after
    totals and status, and stamps updated_at / updated_by_id.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payment_config.schema import LedgerConfig
from payment_kernel.domain.amounts import (
    ADJUSTMENT_BUCKETS,
    ADMIN_SOURCE_STATUSES,
    TERMINAL_STATUSES,
    Bucket,
    PaymentAmounts,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    RefundType,
    apply_amount,
    apply_refund,
    apply_write_off,
    bucket_for_type,
    derive_status,
    parse_enum,
)
from payment_kernel.domain.clock import Clock
from payment_kernel.domain.money import ZERO, to_money
from payment_kernel.exceptions import (
    InvalidAmountError,
    InvalidStatusTransitionError,
    MissingFieldError,
    PaymentClosedError,
    PaymentNotFoundError,
    UnsupportedBucketError,
    ValidationError,
)
from payment_kernel.logging_config import LogContext, get_logger
from payment_kernel.models.payment import Payment
from payment_kernel.selectors.payment_selector import PaymentSelector
from payment_kernel.services.base import BaseService
from payment_kernel.services.retry_service import ConflictRetryPolicy
from payment_kernel.services.sequence_service import PaymentNumberAllocator

logger = get_logger("services.payment_ledger")

REQUIRED_CREATE_FIELDS = (
    "client_id",
    "clinic_name",
    "payment_method",
    "payment_type",
    "amounts",
)

# Non-financial fields editable through update_details().
EDITABLE_FIELDS = frozenset(
    {
        "notes",
        "referring_no",
        "order_number",
        "order_id",
        "client_name",
        "payment_method",
        "payment_date",
        "user_login_name",
        "advanced_billing_id",
    }
)

_FIELD_LIMITS = {"referring_no": 30, "user_login_name": 25}


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class PaymentLedgerService(BaseService[Payment]):
    """
    Ledger mutation operations.

    Contract:
        Every public method commits before returning, or rolls back and
        raises.  Payment arguments accept an internal id, a legacy payment
        id, or a payment number.

    Guarantees:
        - Validation runs before any storage access.
        - Status is derived from amounts except for the administrative moves
          to WriteOff and Failed.

    Non-goals:
        - Does NOT check that the clinic or client exists.
        - Does NOT authorize the actor.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or LedgerConfig()
        self._payments = PaymentSelector(
            session, max_page_size=self.config.reporting.max_page_size
        )
        self._numbers = PaymentNumberAllocator(
            session,
            self.clock,
            prefix=self.config.numbering.prefix,
            width=self.config.numbering.width,
        )
        self._retry = ConflictRetryPolicy(
            max_retries=self.config.ledger.max_conflict_retries,
            backoff_seconds=self.config.ledger.retry_backoff_seconds,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, payment_id: UUID | str) -> Payment:
        """Live payment by internal id."""
        payment = self._payments.get(payment_id)
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        return payment

    def resolve(self, identifier: UUID | str) -> Payment:
        """Live payment by internal id, legacy payment id, or payment number."""
        payment = self._payments.resolve(identifier)
        if payment is None:
            raise PaymentNotFoundError(str(identifier))
        return payment

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        *,
        client_id: int | None,
        clinic_name: str | None,
        payment_method: PaymentMethod | str | None,
        payment_type: PaymentType | str | None,
        amounts: Mapping[str | Bucket, Any] | None,
        actor_id: UUID,
        payment_date: datetime | None = None,
        client_name: str | None = None,
        legacy_payment_id: str | None = None,
        order_number: str | None = None,
        order_id: str | None = None,
        advanced_billing_id: int | None = None,
        notes: str | None = None,
        referring_no: str | None = None,
        user_login_name: str | None = None,
    ) -> Payment:
        """
        Record a new payment.

        Preconditions:
            - ``amounts`` carries a positive ``totalPaymentAmount``; any
              other bucket given is non-negative.  Adjustment buckets
              (refund, salesRefund, writeoff, badDebt) are left at zero.

        Postconditions:
            - A payment number has been allocated exactly once.
            - Status is derived from the amounts (Pending when nothing is
              collected yet).

        Raises:
            MissingFieldError, InvalidAmountError, UnsupportedBucketError,
            ValidationError.
        """
        supplied = {
            "client_id": client_id,
            "clinic_name": clinic_name,
            "payment_method": payment_method,
            "payment_type": payment_type,
            "amounts": amounts,
        }
        missing = [name for name in REQUIRED_CREATE_FIELDS if _is_missing(supplied[name])]
        if amounts is not None and not any(
            str(getattr(k, "value", k)) == Bucket.TOTAL_PAYMENT_AMOUNT.value for k in amounts
        ):
            missing.append(Bucket.TOTAL_PAYMENT_AMOUNT.value)
        if missing:
            raise MissingFieldError(missing)

        try:
            client_key = int(client_id)
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                f"client_id must be an integer (got {client_id!r})", field="client_id"
            ) from exc
        method = parse_enum(PaymentMethod, payment_method, "payment_method")
        ptype = parse_enum(PaymentType, payment_type, "payment_type")
        snapshot = PaymentAmounts.from_mapping(amounts)
        # Refunds and write-offs only arise from later operations.
        for bucket in ADJUSTMENT_BUCKETS:
            if snapshot.get(bucket) != ZERO:
                raise UnsupportedBucketError(bucket.value)
        if snapshot.total_payment_amount <= ZERO:
            raise InvalidAmountError(
                Bucket.TOTAL_PAYMENT_AMOUNT.value,
                snapshot.total_payment_amount,
                "must be positive",
            )
        details = self._clean_details(
            {"referring_no": referring_no, "user_login_name": user_login_name}
        )
        now = self.clock.now_utc()

        with LogContext.bind(actor_id=actor_id, clinic=clinic_name):
            try:
                with self._commit_or_rollback("create_payment"):
                    payment = Payment(
                        payment_number=self._numbers.allocate(),
                        legacy_payment_id=legacy_payment_id,
                        order_number=order_number,
                        order_id=order_id,
                        advanced_billing_id=advanced_billing_id,
                        client_id=client_key,
                        client_name=client_name,
                        clinic_name=clinic_name,
                        payment_date=payment_date or now,
                        payment_method=method.value,
                        payment_type=ptype.value,
                        status=derive_status(snapshot).value,
                        notes=notes,
                        created_at=now,
                        updated_at=now,
                        created_by_id=actor_id,
                        **details,
                    )
                    payment.write_amounts(snapshot)
                    self.session.add(payment)
                    self.session.flush()
            except IntegrityError as exc:
                raise ValidationError(
                    "Payment identifier already in use "
                    f"(legacy_payment_id={legacy_payment_id!r})",
                    field="legacy_payment_id",
                ) from exc

            logger.info(
                "payment_created",
                extra={
                    "payment_id": str(payment.id),
                    "payment_number": payment.payment_number,
                    "client_id": payment.client_id,
                    "payment_type": payment.payment_type,
                    "total_payment_amount": str(payment.total_payment_amount),
                    "status": payment.status,
                },
            )
        return payment

    # ------------------------------------------------------------------
    # Read-modify-write core
    # ------------------------------------------------------------------

    def _mutate(
        self,
        identifier: UUID | str,
        actor_id: UUID,
        operation: str,
        mutator: Callable[[Payment], None],
    ) -> Payment:
        """
        Load ``identifier`` fresh, apply ``mutator``, flush, and commit.

        The load-apply-flush sequence is re-run from scratch on a version
        conflict, so ``mutator`` always sees the latest committed state.
        """

        def attempt() -> Payment:
            payment = self._payments.resolve(identifier, fresh=True)
            if payment is None:
                raise PaymentNotFoundError(str(identifier))
            mutator(payment)
            payment.updated_at = self.clock.now_utc()
            payment.updated_by_id = actor_id
            self.session.flush()
            return payment

        with LogContext.bind(actor_id=actor_id):
            with self._commit_or_rollback(operation):
                return self._retry.run(
                    self.session,
                    attempt,
                    entity_type="Payment",
                    entity_id=str(identifier),
                )

    @staticmethod
    def _ensure_open(payment: Payment) -> None:
        if payment.current_status in TERMINAL_STATUSES:
            raise PaymentClosedError(str(payment.id), payment.status)

    # ------------------------------------------------------------------
    # Money movements
    # ------------------------------------------------------------------

    def add_amount(
        self,
        payment_id: UUID | str,
        payment_type: PaymentType | Bucket | str,
        amount: Decimal | str | int | float,
        actor_id: UUID,
    ) -> Payment:
        """
        Post ``amount`` to the bucket selected by ``payment_type``.

        Raises:
            UnsupportedBucketError, InvalidAmountError, PaymentNotFoundError,
            PaymentClosedError.
        """
        bucket = bucket_for_type(payment_type)
        value = to_money(amount, "amount")
        before: dict[str, str] = {}

        def mutator(payment: Payment) -> None:
            self._ensure_open(payment)
            current = payment.amounts
            before.update(status=payment.status, total_paid=str(current.total_paid))
            updated = apply_amount(current, bucket, value)
            payment.write_amounts(updated)
            payment.status = derive_status(updated).value

        payment = self._mutate(payment_id, actor_id, "add_amount", mutator)
        logger.info(
            "payment_amount_added",
            extra={
                "payment_id": str(payment.id),
                "bucket": bucket.value,
                "amount": str(value),
                "status_before": before.get("status"),
                "status_after": payment.status,
                "total_paid_before": before.get("total_paid"),
                "total_paid_after": str(payment.total_paid),
                "total_owed": str(payment.total_owed),
            },
        )
        return payment

    def process_refund(
        self,
        payment_id: UUID | str,
        amount: Decimal | str | int | float,
        refund_type: RefundType | str = RefundType.SALES_REFUND,
        *,
        actor_id: UUID,
    ) -> Payment:
        """
        Return collected money on a Completed payment.

        Postconditions:
            - totalPaid drops by ``amount``; the amount is recorded in
              ``salesRefund`` or ``refund``.
            - Status is Refunded when nothing remains collected.

        Raises:
            InvalidAmountError, RefundNotAllowedError,
            RefundExceedsCollectedError, PaymentNotFoundError.
        """
        value = to_money(amount, "amount")
        if value <= ZERO:
            raise InvalidAmountError("amount", amount, "refund must be positive")
        kind = parse_enum(RefundType, refund_type, "refund_type")
        before: dict[str, str] = {}

        def mutator(payment: Payment) -> None:
            current = payment.amounts
            before.update(status=payment.status, total_paid=str(current.total_paid))
            updated = apply_refund(
                current,
                payment.current_status,
                value,
                kind,
                payment_type=payment.payment_type,
                payment_id=str(payment.id),
            )
            payment.write_amounts(updated)
            payment.status = derive_status(updated).value

        payment = self._mutate(payment_id, actor_id, "process_refund", mutator)
        logger.info(
            "refund_processed",
            extra={
                "payment_id": str(payment.id),
                "refund_type": kind.value,
                "amount": str(value),
                "status_before": before.get("status"),
                "status_after": payment.status,
                "total_paid_before": before.get("total_paid"),
                "total_paid_after": str(payment.total_paid),
            },
        )
        return payment

    # ------------------------------------------------------------------
    # Administrative moves
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_admin_move(payment: Payment, target: PaymentStatus) -> None:
        if payment.current_status not in ADMIN_SOURCE_STATUSES:
            raise InvalidStatusTransitionError(
                str(payment.id), payment.status, target.value
            )

    def dispute(
        self,
        payment_id: UUID | str,
        reason: str,
        resolution_notes: str = "",
        *,
        actor_id: UUID,
    ) -> Payment:
        """Mark a payment Failed and append the dispute to its notes."""
        if _is_missing(reason):
            raise MissingFieldError(["reason"])

        def mutator(payment: Payment) -> None:
            self._ensure_admin_move(payment, PaymentStatus.FAILED)
            payment.status = PaymentStatus.FAILED.value
            payment.notes = (
                f"{payment.notes or ''} | DISPUTED: {reason} "
                f"| Resolution: {resolution_notes}"
            )

        payment = self._mutate(payment_id, actor_id, "dispute_payment", mutator)
        logger.info(
            "payment_disputed",
            extra={"payment_id": str(payment.id), "reason": reason},
        )
        return payment

    def write_off(
        self,
        payment_id: UUID | str,
        *,
        actor_id: UUID,
        amount: Decimal | str | int | float | None = None,
        bad_debt: bool = False,
    ) -> Payment:
        """
        Close a payment without full collection.

        ``amount`` (default: the current totalOwed) is recorded in
        ``writeoff``, or ``badDebt`` when ``bad_debt`` is set.  Collected
        totals are untouched.
        """
        value = None if amount is None else to_money(amount, "amount")
        written: dict[str, str] = {}

        def mutator(payment: Payment) -> None:
            self._ensure_admin_move(payment, PaymentStatus.WRITE_OFF)
            current = payment.amounts
            updated = apply_write_off(current, value, bad_debt=bad_debt)
            written["amount"] = str(value if value is not None else current.total_owed)
            payment.write_amounts(updated)
            payment.status = PaymentStatus.WRITE_OFF.value

        payment = self._mutate(payment_id, actor_id, "write_off_payment", mutator)
        logger.info(
            "payment_written_off",
            extra={
                "payment_id": str(payment.id),
                "amount": written.get("amount"),
                "bad_debt": bad_debt,
            },
        )
        return payment

    # ------------------------------------------------------------------
    # Non-financial edits
    # ------------------------------------------------------------------

    def _clean_details(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for name, value in fields.items():
            limit = _FIELD_LIMITS.get(name)
            if limit is not None and value is not None and len(str(value)) > limit:
                raise ValidationError(
                    f"{name} must be at most {limit} characters", field=name
                )
            cleaned[name] = value
        return cleaned

    def update_details(
        self, payment_id: UUID | str, actor_id: UUID, **fields: Any
    ) -> Payment:
        """
        Edit non-financial fields (notes, referring number, order link, ...).

        Raises:
            ValidationError: any amount, status or unknown field.
        """
        forbidden = sorted(set(fields) - EDITABLE_FIELDS)
        if forbidden:
            raise ValidationError(
                f"Fields not editable through update_details: {forbidden}",
                field=forbidden[0],
            )
        changes = self._clean_details(fields)
        if "payment_method" in changes:
            changes["payment_method"] = parse_enum(
                PaymentMethod, changes["payment_method"], "payment_method"
            ).value
        if "payment_date" in changes and not isinstance(changes["payment_date"], datetime):
            raise ValidationError("payment_date must be a datetime", field="payment_date")

        def mutator(payment: Payment) -> None:
            for name, value in changes.items():
                setattr(payment, name, value)

        payment = self._mutate(payment_id, actor_id, "update_payment_details", mutator)
        logger.info(
            "payment_details_updated",
            extra={"payment_id": str(payment.id), "fields": sorted(changes)},
        )
        return payment
