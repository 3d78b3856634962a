"""Pure domain core: amounts, statuses, rounding and time."""

from payment_kernel.domain.amounts import (
    ADJUSTMENT_BUCKETS,
    PAID_BUCKETS,
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
    can_refund,
    derive_status,
    recompute_totals,
)
from payment_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from payment_kernel.domain.money import ZERO, round_money, to_money

__all__ = [
    "ADJUSTMENT_BUCKETS",
    "PAID_BUCKETS",
    "Bucket",
    "Clock",
    "DeterministicClock",
    "PaymentAmounts",
    "PaymentMethod",
    "PaymentStatus",
    "PaymentType",
    "RefundType",
    "SystemClock",
    "ZERO",
    "apply_amount",
    "apply_refund",
    "apply_write_off",
    "bucket_for_type",
    "can_refund",
    "derive_status",
    "recompute_totals",
    "round_money",
    "to_money",
]
