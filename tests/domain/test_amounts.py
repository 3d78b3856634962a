"""
Tests for the pure amount calculations.

Covers:
- Bucket-sum totals and owed balance
- Status derivation
- Add-amount bucket routing
- Refund rules and draw-down
- Write-offs
"""

from decimal import Decimal

import pytest

from payment_kernel.domain.amounts import (
    ADMIN_SOURCE_STATUSES,
    PAID_BUCKETS,
    TERMINAL_STATUSES,
    Bucket,
    PaymentAmounts,
    PaymentStatus,
    PaymentType,
    RefundType,
    apply_amount,
    apply_refund,
    apply_write_off,
    bucket_for_type,
    can_refund,
    derive_status,
    parse_enum,
    recompute_totals,
)
from payment_kernel.exceptions import (
    InvalidAmountError,
    RefundExceedsCollectedError,
    RefundNotAllowedError,
    UnsupportedBucketError,
    ValidationError,
)


def amounts(**values) -> PaymentAmounts:
    return PaymentAmounts.from_mapping(values)


class TestRecomputeTotals:
    """totalPaid / totalOwed come from the buckets only."""

    def test_sum_of_paid_buckets(self):
        snap = amounts(totalPaymentAmount="300", pop="10", cob1="20", insurance3rd="30.55")
        assert snap.total_paid == Decimal("60.55")
        assert snap.total_owed == Decimal("239.45")

    def test_adjustments_do_not_count_as_paid(self):
        snap = amounts(totalPaymentAmount="100", pop="50", writeoff="20", badDebt="5")
        assert snap.total_paid == Decimal("50.00")

    def test_owed_never_negative(self):
        snap = amounts(totalPaymentAmount="100", pop="150")
        assert snap.total_paid == Decimal("150.00")
        assert snap.total_owed == Decimal("0.00")

    def test_no_insurance_final_counts_as_paid(self):
        snap = amounts(totalPaymentAmount="100", noInsuranceFinal="100")
        assert snap.total_paid == Decimal("100.00")
        assert Bucket.NO_INSURANCE_FINAL in PAID_BUCKETS

    def test_stale_totals_are_rewritten(self):
        stale = PaymentAmounts(
            total_payment_amount=Decimal("100.00"),
            pop=Decimal("40.00"),
            total_paid=Decimal("99.00"),
            total_owed=Decimal("1.00"),
        )
        fixed = recompute_totals(stale)
        assert fixed.total_paid == Decimal("40.00")
        assert fixed.total_owed == Decimal("60.00")


class TestFromMapping:
    """Caller input parsing."""

    def test_derived_totals_rejected(self):
        with pytest.raises(UnsupportedBucketError):
            amounts(totalPaymentAmount="100", totalPaid="100")

    def test_unknown_key_rejected(self):
        with pytest.raises(UnsupportedBucketError) as exc_info:
            amounts(totalPaymentAmount="100", cob4="1")
        assert exc_info.value.bucket == "cob4"

    def test_negative_bucket_rejected(self):
        with pytest.raises(InvalidAmountError):
            amounts(totalPaymentAmount="100", pop="-1")

    def test_bucket_enum_keys(self):
        snap = PaymentAmounts.from_mapping(
            {Bucket.TOTAL_PAYMENT_AMOUNT: "80", Bucket.DIRECT_AUTH: "80"}
        )
        assert snap.direct_auth == Decimal("80.00")
        assert snap.total_owed == Decimal("0.00")

    def test_as_dict_uses_external_keys(self):
        view = amounts(totalPaymentAmount="100", popFinal="25").as_dict()
        assert view["popFinal"] == Decimal("25.00")
        assert view["totalPaid"] == Decimal("25.00")
        assert view["totalOwed"] == Decimal("75.00")
        assert "pop_final" not in view


class TestDeriveStatus:
    """Status from amounts."""

    def test_pending_when_nothing_paid(self):
        assert derive_status(amounts(totalPaymentAmount="100")) == PaymentStatus.PENDING

    def test_partial(self):
        assert (
            derive_status(amounts(totalPaymentAmount="100", pop="0.01"))
            == PaymentStatus.PARTIAL
        )

    def test_completed_at_exact_total(self):
        assert (
            derive_status(amounts(totalPaymentAmount="100", pop="60", cob1="40"))
            == PaymentStatus.COMPLETED
        )

    def test_completed_when_overpaid(self):
        assert (
            derive_status(amounts(totalPaymentAmount="100", pop="120"))
            == PaymentStatus.COMPLETED
        )

    def test_refunded_when_collected_money_returned(self):
        assert (
            derive_status(amounts(totalPaymentAmount="100", salesRefund="100"))
            == PaymentStatus.REFUNDED
        )

    def test_status_sets(self):
        assert PaymentStatus.COMPLETED not in TERMINAL_STATUSES
        assert TERMINAL_STATUSES.isdisjoint(ADMIN_SOURCE_STATUSES)


class TestBucketForType:
    """Add-amount routing table."""

    @pytest.mark.parametrize(
        "payment_type,bucket",
        [
            ("POP", Bucket.POP),
            ("POPFP", Bucket.POP_FINAL),
            ("DPA", Bucket.DIRECT_AUTH),
            ("DPAFP", Bucket.DIRECT_AUTH_FINAL),
            ("COB_1", Bucket.COB1),
            ("COB_2", Bucket.COB2),
            ("COB_3", Bucket.COB3),
            ("INSURANCE_1ST", Bucket.INSURANCE_1ST),
            ("INSURANCE_2ND", Bucket.INSURANCE_2ND),
            ("INSURANCE_3RD", Bucket.INSURANCE_3RD),
            ("NO_INSUR_FP", Bucket.NO_INSURANCE_FINAL),
        ],
    )
    def test_payment_types(self, payment_type, bucket):
        assert bucket_for_type(payment_type) == bucket
        assert bucket_for_type(PaymentType(payment_type)) == bucket

    def test_paid_bucket_key_accepted(self):
        assert bucket_for_type("cob2") == Bucket.COB2

    @pytest.mark.parametrize(
        "value", ["SALES_REFUND", "WRITEOFF", "refund", "writeoff", "totalPaid", "COB_4"]
    )
    def test_not_postable(self, value):
        with pytest.raises(UnsupportedBucketError):
            bucket_for_type(value)


class TestApplyAmount:
    """Money in."""

    def test_partial_then_completed(self):
        snap = amounts(totalPaymentAmount="100", pop="40")
        snap = apply_amount(snap, "COB_1", "60")
        assert snap.cob1 == Decimal("60.00")
        assert snap.total_paid == Decimal("100.00")
        assert snap.total_owed == Decimal("0.00")
        assert derive_status(snap) == PaymentStatus.COMPLETED

    def test_original_snapshot_unchanged(self):
        snap = amounts(totalPaymentAmount="100")
        apply_amount(snap, "POP", "10")
        assert snap.pop == Decimal("0.00")

    def test_zero_amount_is_noop(self):
        snap = amounts(totalPaymentAmount="100", pop="10")
        assert apply_amount(snap, "POP", "0") == snap

    def test_negative_rejected(self):
        with pytest.raises(InvalidAmountError):
            apply_amount(amounts(totalPaymentAmount="100"), "POP", "-5")


class TestApplyRefund:
    """Money out."""

    def completed(self, **buckets) -> PaymentAmounts:
        return amounts(totalPaymentAmount="100", **buckets)

    def test_full_refund(self):
        snap = apply_refund(self.completed(pop="100"), PaymentStatus.COMPLETED, "100")
        assert snap.total_paid == Decimal("0.00")
        assert snap.sales_refund == Decimal("100.00")
        assert snap.total_owed == Decimal("100.00")
        assert derive_status(snap) == PaymentStatus.REFUNDED

    def test_partial_refund(self):
        snap = apply_refund(self.completed(pop="100"), PaymentStatus.COMPLETED, "30")
        assert snap.total_paid == Decimal("70.00")
        assert snap.pop == Decimal("70.00")
        assert derive_status(snap) == PaymentStatus.PARTIAL

    def test_refund_type_selects_bucket(self):
        snap = apply_refund(
            self.completed(pop="100"), PaymentStatus.COMPLETED, "10", RefundType.REFUND
        )
        assert snap.refund == Decimal("10.00")
        assert snap.sales_refund == Decimal("0.00")

    def test_own_bucket_drawn_first(self):
        snap = apply_refund(
            self.completed(pop="50", cob1="50"),
            PaymentStatus.COMPLETED,
            "20",
            payment_type="COB_1",
        )
        assert snap.cob1 == Decimal("30.00")
        assert snap.pop == Decimal("50.00")

    def test_draw_down_spills_in_paid_order(self):
        snap = apply_refund(
            self.completed(pop="30", directAuth="30", insurance1st="40"),
            PaymentStatus.COMPLETED,
            "50",
        )
        assert snap.pop == Decimal("0.00")
        assert snap.direct_auth == Decimal("10.00")
        assert snap.insurance_1st == Decimal("40.00")
        assert snap.total_paid == Decimal("50.00")

    def test_exceeds_collected(self):
        with pytest.raises(RefundExceedsCollectedError) as exc_info:
            apply_refund(
                self.completed(pop="100"), PaymentStatus.COMPLETED, "150", payment_id="p1"
            )
        assert exc_info.value.requested == "150.00"
        assert exc_info.value.collected == "100.00"

    @pytest.mark.parametrize("status", [PaymentStatus.PENDING, PaymentStatus.PARTIAL])
    def test_not_completed(self, status):
        with pytest.raises(RefundNotAllowedError):
            apply_refund(self.completed(pop="40"), status, "10")

    def test_nothing_collected(self):
        with pytest.raises(RefundNotAllowedError):
            apply_refund(self.completed(), PaymentStatus.COMPLETED, "10")

    @pytest.mark.parametrize("value", ["0", "-1"])
    def test_non_positive_amount(self, value):
        with pytest.raises(InvalidAmountError):
            apply_refund(self.completed(pop="100"), PaymentStatus.COMPLETED, value)

    def test_amount_checked_before_status(self):
        with pytest.raises(InvalidAmountError):
            apply_refund(self.completed(), PaymentStatus.PENDING, "0")

    def test_can_refund(self):
        assert can_refund(self.completed(pop="100"), PaymentStatus.COMPLETED)
        assert not can_refund(self.completed(pop="100"), PaymentStatus.PARTIAL)


class TestApplyWriteOff:
    """Administrative adjustments."""

    def test_defaults_to_owed(self):
        snap = apply_write_off(amounts(totalPaymentAmount="100", pop="70"))
        assert snap.writeoff == Decimal("30.00")
        assert snap.total_paid == Decimal("70.00")

    def test_bad_debt(self):
        snap = apply_write_off(amounts(totalPaymentAmount="100"), "25", bad_debt=True)
        assert snap.bad_debt == Decimal("25.00")
        assert snap.writeoff == Decimal("0.00")


class TestParseEnum:
    def test_valid(self):
        assert parse_enum(PaymentStatus, "WriteOff", "status") == PaymentStatus.WRITE_OFF

    def test_invalid(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_enum(PaymentStatus, "Closed", "status")
        assert exc_info.value.field == "status"
