"""
Tests for SequenceService and PaymentNumberAllocator.

Covers:
- Counter row creation and atomic increment
- Payment number formatting
- Degraded timestamp fallback when the counter cannot be advanced
"""

import re

import pytest
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import OperationalError

from payment_kernel.services.sequence_service import PaymentNumberAllocator, SequenceService


class TestSequenceService:
    """Counter semantics."""

    def test_counter_table_exists(self, session):
        inspector = sa_inspect(session.bind)
        assert "sequence_counters" in inspector.get_table_names()
        columns = {c["name"] for c in inspector.get_columns("sequence_counters")}
        assert {"name", "current_value"} <= columns

    def test_first_value_is_one(self, session):
        service = SequenceService(session)
        assert service.current_value("invoice") is None
        assert service.next_value("invoice") == 1
        assert service.current_value("invoice") == 1

    def test_values_strictly_increase(self, session):
        service = SequenceService(session)
        values = [service.next_value(SequenceService.PAYMENT_NUMBER) for _ in range(5)]
        assert values == [1, 2, 3, 4, 5]

    def test_sequences_are_independent(self, session):
        service = SequenceService(session)
        service.next_value("a")
        service.next_value("a")
        assert service.next_value("b") == 1

    def test_rolled_back_value_is_reissued(self, session):
        """The caller's transaction owns the increment."""
        service = SequenceService(session)
        service.next_value("a")
        session.commit()
        service.next_value("a")
        session.rollback()
        assert service.next_value("a") == 2

    def test_no_max_plus_one(self):
        """Allocation is an UPDATE ... RETURNING, never an aggregate over payments."""
        import inspect

        source = inspect.getsource(SequenceService.next_value) + inspect.getsource(
            SequenceService._increment
        )
        assert "func.max" not in source
        assert "current_value + 1" in source


class TestPaymentNumberAllocator:
    """Formatting and degraded mode."""

    def test_format(self, session):
        allocator = PaymentNumberAllocator(session)
        assert allocator.format(123) == "PAY-00000123"

    def test_custom_prefix_and_width(self, session):
        allocator = PaymentNumberAllocator(session, prefix="RCPT-", width=5)
        assert allocator.allocate() == "RCPT-00001"

    def test_allocate_sequential(self, session):
        allocator = PaymentNumberAllocator(session)
        assert [allocator.allocate() for _ in range(2)] == ["PAY-00000001", "PAY-00000002"]

    def test_degraded_fallback(self, session, deterministic_clock, monkeypatch, captured_logs):
        def _unavailable(self, name):
            raise OperationalError("UPDATE sequence_counters", {}, Exception("database is locked"))

        monkeypatch.setattr(SequenceService, "next_value", _unavailable)
        allocator = PaymentNumberAllocator(session, deterministic_clock)

        number = allocator.allocate()

        millis = int(deterministic_clock.now_utc().timestamp() * 1000)
        assert re.fullmatch(rf"PAY-T{millis:013d}[0-9A-F]{{4}}", number)
        record = next(r for r in captured_logs() if r["message"] == "payment_number_degraded")
        assert record["level"] == "WARNING"
        assert record["fallback_number"] == number
        assert record["error_type"] == "OperationalError"

    def test_fallback_never_looks_like_sequence_number(self, session):
        allocator = PaymentNumberAllocator(session)
        assert not allocator.fallback()[len("PAY-"):].isdigit()

    def test_non_storage_errors_propagate(self, session, monkeypatch):
        def _bug(self, name):
            raise RuntimeError("boom")

        monkeypatch.setattr(SequenceService, "next_value", _bug)
        with pytest.raises(RuntimeError):
            PaymentNumberAllocator(session).allocate()
