"""
Amounts -- Bucketed payment breakdown, totals and status derivation.

Responsibility:
    The pure calculation core of the ledger.  A payment's money lives in a
    fixed set of named buckets (self-pay, direct authorization, three COB
    tiers, three insurer cheques, adjustments).  This module owns:

    - ``PaymentAmounts``: the immutable bucket snapshot.
    - ``recompute_totals``: totalPaid / totalOwed from the buckets.
    - ``derive_status``: lifecycle status from the amounts.
    - ``apply_amount`` / ``apply_refund`` / ``apply_write_off``: the only
      ways to move money, each returning a new snapshot.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Services copy the
    returned snapshot onto the ORM row; nothing here knows about storage.

Invariants enforced:
    - totalPaid is exactly the sum of PAID_BUCKETS after every operation.
    - totalOwed == max(0, totalPaymentAmount - totalPaid).
    - No bucket, totalPaid or totalOwed is ever negative.
    - A refund never exceeds totalPaid at the time of the call.
    - Every PaymentType has an explicit bucket decision (checked at import).

Failure modes:
    - InvalidAmountError: negative amount, non-positive refund, bad total.
    - UnsupportedBucketError: unknown or non-postable bucket / type,
      attempt to set a derived total directly.
    - RefundNotAllowedError / RefundExceedsCollectedError: refund rules.

Audit relevance:
    Because status and totals are recomputed from buckets on every mutation,
    a stored payment can always be re-verified from its own bucket values
    (see db/invariants.py).
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from payment_kernel.domain.money import ZERO, round_money, to_money
from payment_kernel.exceptions import (
    InvalidAmountError,
    RefundExceedsCollectedError,
    RefundNotAllowedError,
    UnsupportedBucketError,
    ValidationError,
)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class PaymentStatus(str, Enum):
    """Lifecycle status of a payment.

    Contract: Pending -> Partial -> Completed -> Refunded through amounts;
    Pending/Partial/Completed -> WriteOff/Failed through administrative action.
    """

    PENDING = "Pending"
    PARTIAL = "Partial"
    COMPLETED = "Completed"
    REFUNDED = "Refunded"
    FAILED = "Failed"
    WRITE_OFF = "WriteOff"


TERMINAL_STATUSES = frozenset(
    {PaymentStatus.REFUNDED, PaymentStatus.WRITE_OFF, PaymentStatus.FAILED}
)
ADMIN_SOURCE_STATUSES = frozenset(
    {PaymentStatus.PENDING, PaymentStatus.PARTIAL, PaymentStatus.COMPLETED}
)


class PaymentMethod(str, Enum):
    CASH = "Cash"
    CREDIT_CARD = "Credit Card"
    DEBIT = "Debit"
    CHEQUE = "Cheque"
    INSURANCE = "Insurance"
    BANK_TRANSFER = "Bank Transfer"
    OTHER = "Other"


class PaymentType(str, Enum):
    """Funding source being posted; selects the bucket for add-amount."""

    POP = "POP"
    POPFP = "POPFP"
    DPA = "DPA"
    DPAFP = "DPAFP"
    COB_1 = "COB_1"
    COB_2 = "COB_2"
    COB_3 = "COB_3"
    INSURANCE_1ST = "INSURANCE_1ST"
    INSURANCE_2ND = "INSURANCE_2ND"
    INSURANCE_3RD = "INSURANCE_3RD"
    SALES_REFUND = "SALES_REFUND"
    WRITEOFF = "WRITEOFF"
    NO_INSUR_FP = "NO_INSUR_FP"


class RefundType(str, Enum):
    SALES_REFUND = "SALES_REFUND"
    REFUND = "REFUND"


class Bucket(str, Enum):
    """Named monetary field.  Values are the external (camelCase) keys."""

    TOTAL_PAYMENT_AMOUNT = "totalPaymentAmount"
    POP = "pop"
    POP_FINAL = "popFinal"
    DIRECT_AUTH = "directAuth"
    DIRECT_AUTH_FINAL = "directAuthFinal"
    COB1 = "cob1"
    COB2 = "cob2"
    COB3 = "cob3"
    INSURANCE_1ST = "insurance1st"
    INSURANCE_2ND = "insurance2nd"
    INSURANCE_3RD = "insurance3rd"
    NO_INSURANCE_FINAL = "noInsuranceFinal"
    REFUND = "refund"
    SALES_REFUND = "salesRefund"
    WRITEOFF = "writeoff"
    BAD_DEBT = "badDebt"

    @property
    def attr(self) -> str:
        """Snake-case attribute name on PaymentAmounts and the Payment row."""
        return _BUCKET_ATTRS[self]


_BUCKET_ATTRS: dict[Bucket, str] = {
    Bucket.TOTAL_PAYMENT_AMOUNT: "total_payment_amount",
    Bucket.POP: "pop",
    Bucket.POP_FINAL: "pop_final",
    Bucket.DIRECT_AUTH: "direct_auth",
    Bucket.DIRECT_AUTH_FINAL: "direct_auth_final",
    Bucket.COB1: "cob1",
    Bucket.COB2: "cob2",
    Bucket.COB3: "cob3",
    Bucket.INSURANCE_1ST: "insurance_1st",
    Bucket.INSURANCE_2ND: "insurance_2nd",
    Bucket.INSURANCE_3RD: "insurance_3rd",
    Bucket.NO_INSURANCE_FINAL: "no_insurance_final",
    Bucket.REFUND: "refund",
    Bucket.SALES_REFUND: "sales_refund",
    Bucket.WRITEOFF: "writeoff",
    Bucket.BAD_DEBT: "bad_debt",
}

# Order matters: refunds draw down in this order after the payment's own bucket.
PAID_BUCKETS: tuple[Bucket, ...] = (
    Bucket.POP,
    Bucket.POP_FINAL,
    Bucket.DIRECT_AUTH,
    Bucket.DIRECT_AUTH_FINAL,
    Bucket.NO_INSURANCE_FINAL,
    Bucket.COB1,
    Bucket.COB2,
    Bucket.COB3,
    Bucket.INSURANCE_1ST,
    Bucket.INSURANCE_2ND,
    Bucket.INSURANCE_3RD,
)

ADJUSTMENT_BUCKETS: tuple[Bucket, ...] = (
    Bucket.REFUND,
    Bucket.SALES_REFUND,
    Bucket.WRITEOFF,
    Bucket.BAD_DEBT,
)

DERIVED_FIELDS = frozenset({"totalPaid", "totalOwed"})

# None means "never postable through add-amount".
_TYPE_TO_BUCKET: dict[PaymentType, Bucket | None] = {
    PaymentType.POP: Bucket.POP,
    PaymentType.POPFP: Bucket.POP_FINAL,
    PaymentType.DPA: Bucket.DIRECT_AUTH,
    PaymentType.DPAFP: Bucket.DIRECT_AUTH_FINAL,
    PaymentType.COB_1: Bucket.COB1,
    PaymentType.COB_2: Bucket.COB2,
    PaymentType.COB_3: Bucket.COB3,
    PaymentType.INSURANCE_1ST: Bucket.INSURANCE_1ST,
    PaymentType.INSURANCE_2ND: Bucket.INSURANCE_2ND,
    PaymentType.INSURANCE_3RD: Bucket.INSURANCE_3RD,
    PaymentType.NO_INSUR_FP: Bucket.NO_INSURANCE_FINAL,
    PaymentType.SALES_REFUND: None,
    PaymentType.WRITEOFF: None,
}


def _check_tables() -> None:
    undecided = [t.value for t in PaymentType if t not in _TYPE_TO_BUCKET]
    if undecided:
        raise RuntimeError(f"PaymentType without bucket decision: {undecided}")
    classified = {Bucket.TOTAL_PAYMENT_AMOUNT, *PAID_BUCKETS, *ADJUSTMENT_BUCKETS}
    unclassified = [b.value for b in Bucket if b not in classified]
    if unclassified:
        raise RuntimeError(f"Bucket without group: {unclassified}")
    unmapped = [b.value for b in Bucket if b not in _BUCKET_ATTRS]
    if unmapped:
        raise RuntimeError(f"Bucket without attribute: {unmapped}")


_check_tables()


def parse_enum(enum_cls: type[Enum], value: Any, field: str) -> Any:
    """Coerce ``value`` to ``enum_cls`` or raise ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(str(m.value) for m in enum_cls)
        raise ValidationError(
            f"Invalid {field}: {value!r} (expected one of: {allowed})", field=field
        ) from exc


def bucket_for_type(payment_type: PaymentType | str) -> Bucket:
    """
    Resolve the bucket an add-amount call posts to.

    Accepts a PaymentType (``"COB_1"``) or a paid bucket key (``"cob1"``).

    Raises:
        UnsupportedBucketError: unknown identifier, or a type such as
            SALES_REFUND / WRITEOFF that is not postable.
    """
    key = payment_type.value if isinstance(payment_type, Enum) else str(payment_type)
    if key in PaymentType._value2member_map_:
        bucket = _TYPE_TO_BUCKET[PaymentType(key)]
        if bucket is None:
            raise UnsupportedBucketError(key)
        return bucket
    if key in Bucket._value2member_map_ and Bucket(key) in PAID_BUCKETS:
        return Bucket(key)
    raise UnsupportedBucketError(key)


# ---------------------------------------------------------------------------
# PaymentAmounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PaymentAmounts:
    """
    Immutable snapshot of a payment's buckets and derived totals.

    Contract:
        Construct through ``from_mapping`` (caller input) or ``from_row``
        (stored payment).  Mutate only through ``apply_*`` functions, which
        always return a recomputed snapshot.

    Guarantees:
        - All values are two-place Decimals.
        - ``total_paid`` and ``total_owed`` are consistent with the buckets
          whenever the snapshot came out of ``recompute_totals``.
    """

    total_payment_amount: Decimal = ZERO
    pop: Decimal = ZERO
    pop_final: Decimal = ZERO
    direct_auth: Decimal = ZERO
    direct_auth_final: Decimal = ZERO
    cob1: Decimal = ZERO
    cob2: Decimal = ZERO
    cob3: Decimal = ZERO
    insurance_1st: Decimal = ZERO
    insurance_2nd: Decimal = ZERO
    insurance_3rd: Decimal = ZERO
    no_insurance_final: Decimal = ZERO
    refund: Decimal = ZERO
    sales_refund: Decimal = ZERO
    writeoff: Decimal = ZERO
    bad_debt: Decimal = ZERO
    total_paid: Decimal = ZERO
    total_owed: Decimal = ZERO

    @classmethod
    def from_mapping(cls, values: Mapping[str | Bucket, Any]) -> PaymentAmounts:
        """
        Build a snapshot from caller input keyed by bucket name.

        Raises:
            UnsupportedBucketError: unknown key, or a derived total.
            InvalidAmountError: negative or unparseable value.
        """
        parsed: dict[str, Decimal] = {}
        for key, raw in values.items():
            name = key.value if isinstance(key, Bucket) else str(key)
            if name in DERIVED_FIELDS or name not in Bucket._value2member_map_:
                raise UnsupportedBucketError(name)
            parsed[Bucket(name).attr] = to_money(raw, name)
        return recompute_totals(cls(**parsed))

    @classmethod
    def from_row(cls, row: Any) -> PaymentAmounts:
        """Snapshot the amount columns of a stored payment."""
        return cls(
            **{
                f.name: round_money(Decimal(getattr(row, f.name) or 0))
                for f in fields(cls)
            }
        )

    def get(self, bucket: Bucket) -> Decimal:
        return getattr(self, bucket.attr)

    def paid_sum(self) -> Decimal:
        return round_money(sum((self.get(b) for b in PAID_BUCKETS), ZERO))

    def refunded_sum(self) -> Decimal:
        return self.refund + self.sales_refund

    def as_dict(self) -> dict[str, Decimal]:
        """Externally keyed view including derived totals."""
        result = {bucket.value: self.get(bucket) for bucket in Bucket}
        result["totalPaid"] = self.total_paid
        result["totalOwed"] = self.total_owed
        return result


def recompute_totals(amounts: PaymentAmounts) -> PaymentAmounts:
    """Rewrite total_paid / total_owed from the bucket values."""
    total_paid = amounts.paid_sum()
    total_owed = max(ZERO, round_money(amounts.total_payment_amount - total_paid))
    return replace(amounts, total_paid=total_paid, total_owed=total_owed)


def derive_status(amounts: PaymentAmounts) -> PaymentStatus:
    """
    Status implied by the amounts alone.

    Nothing collected is Pending, unless money was collected and then fully
    refunded, which is Refunded.  Collected at or above the invoice total is
    Completed; anything in between is Partial.
    """
    if amounts.total_paid <= ZERO:
        if amounts.refunded_sum() > ZERO:
            return PaymentStatus.REFUNDED
        return PaymentStatus.PENDING
    if amounts.total_paid >= amounts.total_payment_amount:
        return PaymentStatus.COMPLETED
    return PaymentStatus.PARTIAL


def can_refund(amounts: PaymentAmounts, status: PaymentStatus) -> bool:
    return status == PaymentStatus.COMPLETED and amounts.total_paid > ZERO


def apply_amount(
    amounts: PaymentAmounts,
    payment_type: PaymentType | Bucket | str,
    amount: Decimal | str | int | float,
) -> PaymentAmounts:
    """
    Add ``amount`` to the bucket selected by ``payment_type``.

    Monotonic: collected funds only ever increase.

    Raises:
        UnsupportedBucketError: unknown or non-postable type.
        InvalidAmountError: negative or unparseable amount.
    """
    bucket = bucket_for_type(payment_type)
    value = to_money(amount, "amount")
    updated = replace(amounts, **{bucket.attr: amounts.get(bucket) + value})
    return recompute_totals(updated)


def _draw_down_order(own_bucket: Bucket | None) -> list[Bucket]:
    if own_bucket is None:
        return list(PAID_BUCKETS)
    return [own_bucket] + [b for b in PAID_BUCKETS if b != own_bucket]


def apply_refund(
    amounts: PaymentAmounts,
    status: PaymentStatus,
    amount: Decimal | str | int | float,
    refund_type: RefundType | str = RefundType.SALES_REFUND,
    *,
    payment_type: PaymentType | str | None = None,
    payment_id: str = "",
) -> PaymentAmounts:
    """
    Return ``amount`` of collected money.

    The refunded amount is removed from the paid buckets (the payment's own
    bucket first, then PAID_BUCKETS order) so totalPaid stays the exact sum
    of paid buckets, and is recorded in ``salesRefund`` or ``refund``.

    Raises:
        InvalidAmountError: amount <= 0.
        RefundNotAllowedError: payment is not Completed or has nothing paid.
        RefundExceedsCollectedError: amount > totalPaid.
    """
    value = to_money(amount, "amount")
    if value <= ZERO:
        raise InvalidAmountError("amount", amount, "refund must be positive")
    kind = parse_enum(RefundType, refund_type, "refund_type")

    if not can_refund(amounts, status):
        raise RefundNotAllowedError(
            payment_id, PaymentStatus(status).value, str(amounts.total_paid)
        )
    if value > amounts.total_paid:
        raise RefundExceedsCollectedError(
            payment_id, str(value), str(amounts.total_paid)
        )

    own_bucket = None
    if payment_type is not None:
        try:
            own_bucket = bucket_for_type(payment_type)
        except UnsupportedBucketError:
            own_bucket = None

    changes: dict[str, Decimal] = {}
    remaining = value
    for bucket in _draw_down_order(own_bucket):
        if remaining <= ZERO:
            break
        available = amounts.get(bucket)
        taken = min(available, remaining)
        if taken > ZERO:
            changes[bucket.attr] = available - taken
            remaining -= taken

    target = Bucket.SALES_REFUND if kind == RefundType.SALES_REFUND else Bucket.REFUND
    changes[target.attr] = amounts.get(target) + value
    return recompute_totals(replace(amounts, **changes))


def apply_write_off(
    amounts: PaymentAmounts,
    amount: Decimal | str | int | float | None = None,
    *,
    bad_debt: bool = False,
) -> PaymentAmounts:
    """
    Record an administratively forgiven amount.

    ``amount`` defaults to the current totalOwed.  Write-offs and bad debt
    are adjustment buckets and never change totalPaid.
    """
    value = amounts.total_owed if amount is None else to_money(amount, "amount")
    target = Bucket.BAD_DEBT if bad_debt else Bucket.WRITEOFF
    updated = replace(amounts, **{target.attr: amounts.get(target) + value})
    return recompute_totals(updated)
