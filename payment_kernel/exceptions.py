"""
Typed Exception Hierarchy for the Payment Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A failed refund must never look like a successful one, and callers must be
able to tell "fix your input" apart from "try again later" without parsing
message strings.  Every error therefore has:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (payment_id, amounts, ...)

Example:
    try:
        ledger.process_refund(payment_id, Decimal("150.00"))
    except RefundExceedsCollectedError as e:
        api_response(code=e.code, requested=e.requested, collected=e.collected)
    except StorageError as e:
        if e.retryable:
            schedule_retry()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PaymentLedgerError (base)
    |
    +-- ValidationError                 caller-fixable, never retried
    |   +-- InvalidAmountError
    |   +-- MissingFieldError
    |   +-- UnsupportedBucketError
    |
    +-- BusinessRuleError               distinct from validation
    |   +-- RefundNotAllowedError
    |   +-- RefundExceedsCollectedError
    |   +-- PaymentClosedError
    |   +-- InvalidStatusTransitionError
    |
    +-- NotFoundError
    |   +-- PaymentNotFoundError
    |   +-- ArchiveNotFoundError
    |
    +-- StorageError                    retryable
    |   +-- StorageUnavailableError
    |   +-- ConcurrencyConflictError
    |
    +-- InvariantError                  programming / tampering errors
        +-- LedgerInvariantViolationError
        +-- ArchiveImmutableError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|------------------------------------------
Validation   | INVALID_AMOUNT              | Negative/non-finite amount, bad total
             | MISSING_FIELD               | Required create() field absent
             | UNSUPPORTED_BUCKET          | Unknown or non-postable bucket
-------------|-----------------------------|------------------------------------------
Business     | REFUND_NOT_ALLOWED          | Refund on a non-completed payment
             | REFUND_EXCEEDS_COLLECTED    | Refund > totalPaid
             | PAYMENT_CLOSED              | Mutation of a Refunded/WriteOff/Failed payment
             | INVALID_STATUS_TRANSITION   | Administrative move not permitted
-------------|-----------------------------|------------------------------------------
Not found    | PAYMENT_NOT_FOUND           | Unknown or soft-deleted payment
             | ARCHIVE_NOT_FOUND           | Unknown archive record
-------------|-----------------------------|------------------------------------------
Storage      | STORAGE_UNAVAILABLE         | Connectivity, timeout, lock wait
             | CONCURRENCY_CONFLICT        | Write conflict after bounded retries
-------------|-----------------------------|------------------------------------------
Invariant    | LEDGER_INVARIANT_VIOLATION  | Totals do not match buckets at flush
             | ARCHIVE_IMMUTABLE           | Archive field modified or deleted

===============================================================================
"""


class PaymentLedgerError(Exception):
    """
    Base exception for all payment kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification and a ``retryable`` flag for transport layers.
    """

    code: str = "PAYMENT_LEDGER_ERROR"
    retryable: bool = False


# Validation errors


class ValidationError(PaymentLedgerError):
    """Malformed or out-of-range input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidAmountError(ValidationError):
    """Amount is negative, non-finite, or otherwise unusable."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: object, reason: str):
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid amount for {field}: {value} ({reason})", field=field)


class MissingFieldError(ValidationError):
    """Required fields were not supplied."""

    code: str = "MISSING_FIELD"

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(
            f"Missing required fields: {', '.join(self.missing)}",
            field=self.missing[0] if self.missing else None,
        )


class UnsupportedBucketError(ValidationError):
    """Bucket identifier is unknown or cannot be posted to."""

    code: str = "UNSUPPORTED_BUCKET"

    def __init__(self, bucket: str):
        self.bucket = str(bucket)
        super().__init__(f"Unsupported payment bucket: {bucket}", field="bucket")


# Business-rule violations


class BusinessRuleError(PaymentLedgerError):
    """Input is well-formed but the payment's state forbids the operation."""

    code: str = "BUSINESS_RULE_VIOLATION"


class RefundNotAllowedError(BusinessRuleError):
    """Refunds require a Completed payment with collected funds."""

    code: str = "REFUND_NOT_ALLOWED"

    def __init__(self, payment_id: str, status: str, total_paid: str):
        self.payment_id = payment_id
        self.status = status
        self.total_paid = total_paid
        super().__init__(
            f"Payment {payment_id} cannot be refunded "
            f"(status={status}, total_paid={total_paid})"
        )


class RefundExceedsCollectedError(BusinessRuleError):
    """Requested refund is larger than what was actually collected."""

    code: str = "REFUND_EXCEEDS_COLLECTED"

    def __init__(self, payment_id: str, requested: str, collected: str):
        self.payment_id = payment_id
        self.requested = requested
        self.collected = collected
        super().__init__(
            f"Refund amount {requested} exceeds collected amount {collected} "
            f"on payment {payment_id}"
        )


class PaymentClosedError(BusinessRuleError):
    """Payment is in a terminal status and no longer accepts amounts."""

    code: str = "PAYMENT_CLOSED"

    def __init__(self, payment_id: str, status: str):
        self.payment_id = payment_id
        self.status = status
        super().__init__(f"Payment {payment_id} is closed (status={status})")


class InvalidStatusTransitionError(BusinessRuleError):
    """Administrative status change not permitted from the current status."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, payment_id: str, from_status: str, to_status: str):
        self.payment_id = payment_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Payment {payment_id} cannot move from {from_status} to {to_status}"
        )


# Not-found errors


class NotFoundError(PaymentLedgerError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class PaymentNotFoundError(NotFoundError):
    """Payment with given identifier was not found."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = str(payment_id)
        super().__init__(f"Payment not found: {payment_id}")


class ArchiveNotFoundError(NotFoundError):
    """Archive record with given ID was not found."""

    code: str = "ARCHIVE_NOT_FOUND"

    def __init__(self, archive_id: str):
        self.archive_id = str(archive_id)
        super().__init__(f"Archive record not found: {archive_id}")


# Storage errors


class StorageError(PaymentLedgerError):
    """Base exception for storage failures. Safe to retry."""

    code: str = "STORAGE_ERROR"
    retryable: bool = True


class StorageUnavailableError(StorageError):
    """Storage could not be reached or timed out."""

    code: str = "STORAGE_UNAVAILABLE"

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        message = f"Storage unavailable during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ConcurrencyConflictError(StorageError):
    """Record kept changing underneath us after bounded retries."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, attempts: int):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id} "
            f"persisted after {attempts} attempts"
        )


# Invariant errors


class InvariantError(PaymentLedgerError):
    """Base exception for violated storage invariants."""

    code: str = "INVARIANT_ERROR"


class LedgerInvariantViolationError(InvariantError):
    """A payment row about to be written breaks the bucket-sum rules."""

    code: str = "LEDGER_INVARIANT_VIOLATION"

    def __init__(self, payment_id: str, reason: str):
        self.payment_id = str(payment_id)
        self.reason = reason
        super().__init__(f"Ledger invariant violated on payment {payment_id}: {reason}")


class ArchiveImmutableError(InvariantError):
    """Archive records are append-only apart from the restore flags."""

    code: str = "ARCHIVE_IMMUTABLE"

    def __init__(self, archive_id: str, reason: str):
        self.archive_id = str(archive_id)
        self.reason = reason
        super().__init__(f"Archive record {archive_id} is immutable: {reason}")
