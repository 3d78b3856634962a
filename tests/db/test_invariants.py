"""
Tests for the ORM-level ledger invariant listeners.

Rows written outside the services (scripts, migrations) are still
checked at flush time.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from payment_kernel.db.invariants import register_ledger_listeners, unregister_ledger_listeners
from payment_kernel.exceptions import LedgerInvariantViolationError
from payment_kernel.models.payment import Payment


def _raw_payment(**overrides) -> Payment:
    values = dict(
        payment_number=f"RAW-{uuid4().hex[:8]}",
        client_id=1,
        clinic_name="North",
        payment_date=datetime(2024, 6, 1, tzinfo=timezone.utc),
        payment_method="Cash",
        payment_type="POP",
        status="Partial",
        total_payment_amount=Decimal("100.00"),
        pop=Decimal("40.00"),
        total_paid=Decimal("40.00"),
        total_owed=Decimal("60.00"),
        created_by_id=uuid4(),
    )
    values.update(overrides)
    return Payment(**values)


class TestPaymentListeners:

    def test_consistent_row_accepted(self, session):
        session.add(_raw_payment())
        session.flush()

    def test_total_paid_mismatch_blocked(self, session, captured_logs):
        session.add(_raw_payment(total_paid=Decimal("50.00")))
        with pytest.raises(LedgerInvariantViolationError) as exc_info:
            session.flush()
        assert "total_paid" in exc_info.value.reason
        assert any(r["message"] == "ledger_invariant_violation_blocked" for r in captured_logs())

    def test_total_owed_mismatch_blocked(self, session):
        session.add(_raw_payment(total_owed=Decimal("0.00")))
        with pytest.raises(LedgerInvariantViolationError):
            session.flush()

    def test_negative_bucket_blocked(self, session):
        session.add(
            _raw_payment(
                pop=Decimal("-10.00"), total_paid=Decimal("-10.00"), total_owed=Decimal("110.00")
            )
        )
        with pytest.raises(LedgerInvariantViolationError) as exc_info:
            session.flush()
        assert "negative" in exc_info.value.reason

    def test_update_checked(self, create_payment, session):
        payment = create_payment("100", pop="40")
        payment.pop = Decimal("90.00")
        with pytest.raises(LedgerInvariantViolationError):
            session.flush()
        session.rollback()


class TestDatabaseBackstop:

    def test_check_constraint_without_listeners(self, session):
        unregister_ledger_listeners()
        try:
            session.add(
                _raw_payment(
                    pop=Decimal("-10.00"), total_paid=Decimal("-10.00"), total_owed=Decimal("110.00")
                )
            )
            with pytest.raises(IntegrityError):
                session.flush()
            session.rollback()
        finally:
            register_ledger_listeners()

    def test_register_is_idempotent(self):
        register_ledger_listeners()
        register_ledger_listeners()
        unregister_ledger_listeners()
        register_ledger_listeners()
