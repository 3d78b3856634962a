"""
Tests for ArchiveService.

Covers:
- Archiving copies every business field and soft-deletes the payment
- Archived payments are invisible to the ledger
- Restore is idempotent and does not resurrect the payment
- Reinstate brings the payment back
- Archive queries by client and clinic
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from payment_kernel.exceptions import (
    ArchiveImmutableError,
    ArchiveNotFoundError,
    PaymentNotFoundError,
)
from payment_kernel.models.payment import BUSINESS_COLUMNS, DELETED, Payment
from payment_kernel.models.payment_archive import PaymentArchive


class TestArchive:

    def test_copies_business_fields(self, create_payment, archive_service, test_actor_id, deterministic_clock):
        payment = create_payment("250.00", pop="100", client_id=7, legacy_payment_id="LEG-7")

        record = archive_service.archive(payment.id, "duplicate entry", actor_id=test_actor_id)

        for column in BUSINESS_COLUMNS:
            assert getattr(record, column) == getattr(payment, column), column
        assert record.original_payment_id == payment.id
        assert record.archived_reason == "duplicate entry"
        assert record.archived_by_id == test_actor_id
        assert record.archived_at == deterministic_clock.now_utc()
        assert record.original_created_by_id == test_actor_id
        assert record.deleted_status == DELETED
        assert record.is_restored is False

    def test_soft_deletes_payment(self, create_payment, archive_service, ledger, test_actor_id, session):
        payment = create_payment()
        archive_service.archive(payment.id, actor_id=test_actor_id)

        row = session.execute(select(Payment).where(Payment.id == payment.id)).scalar_one()
        assert row.is_deleted
        with pytest.raises(PaymentNotFoundError):
            ledger.get(payment.id)
        with pytest.raises(PaymentNotFoundError):
            ledger.add_amount(payment.id, "POP", "1", test_actor_id)

    def test_archive_twice_not_found(self, create_payment, archive_service, test_actor_id):
        payment = create_payment()
        archive_service.archive(payment.id, actor_id=test_actor_id)
        with pytest.raises(PaymentNotFoundError):
            archive_service.archive(payment.id, actor_id=test_actor_id)

    def test_archive_by_payment_number(self, create_payment, archive_service, test_actor_id):
        payment = create_payment()
        record = archive_service.archive(payment.payment_number, actor_id=test_actor_id)
        assert record.original_payment_id == payment.id

    def test_archive_logged(self, create_payment, archive_service, test_actor_id, captured_logs):
        payment = create_payment()
        record = archive_service.archive(payment.id, "typo", actor_id=test_actor_id)
        log = next(r for r in captured_logs() if r["message"] == "payment_archived")
        assert log["archive_id"] == str(record.id)
        assert log["reason"] == "typo"


class TestRestore:

    def test_restore_flags_record(self, create_payment, archive_service, ledger, test_actor_id, deterministic_clock):
        payment = create_payment()
        record = archive_service.archive(payment.id, actor_id=test_actor_id)
        restorer = uuid4()
        deterministic_clock.advance(days=2)

        restored = archive_service.restore(record.id, actor_id=restorer)

        assert restored.is_restored is True
        assert restored.restored_by_id == restorer
        assert restored.restored_at == deterministic_clock.now_utc()
        with pytest.raises(PaymentNotFoundError):
            ledger.get(payment.id)

    def test_restore_is_idempotent(self, create_payment, archive_service, test_actor_id, deterministic_clock):
        record = archive_service.archive(create_payment().id, actor_id=test_actor_id)
        first = archive_service.restore(record.id, actor_id=test_actor_id)
        stamp = first.restored_at
        deterministic_clock.advance(days=1)

        second = archive_service.restore(record.id, actor_id=uuid4())

        assert second.restored_at == stamp
        assert second.restored_by_id == test_actor_id

    @pytest.mark.parametrize("archive_id", [uuid4(), "not-a-uuid"])
    def test_unknown_archive(self, archive_service, test_actor_id, archive_id):
        with pytest.raises(ArchiveNotFoundError):
            archive_service.restore(archive_id, actor_id=test_actor_id)


class TestReinstate:

    def test_undeletes_original(self, create_payment, archive_service, ledger, test_actor_id):
        payment = create_payment("100", pop="40")
        record = archive_service.archive(payment.id, actor_id=test_actor_id)

        live = archive_service.reinstate(record.id, actor_id=test_actor_id)

        assert live.id == payment.id
        assert not live.is_deleted
        assert ledger.get(payment.id).total_paid == Decimal("40.00")
        assert archive_service.get(record.id).is_restored

    def test_rebuilds_missing_original(self, create_payment, archive_service, ledger, test_actor_id, session):
        payment = create_payment("100", pop="40", client_name="Rae")
        record = archive_service.archive(payment.id, actor_id=test_actor_id)
        session.delete(session.get(Payment, payment.id))
        session.commit()
        session.expunge_all()

        live = archive_service.reinstate(record.id, actor_id=test_actor_id)

        assert live.id == payment.id
        assert live.payment_number == payment.payment_number
        assert live.client_name == "Rae"
        assert live.pop == Decimal("40.00")
        assert ledger.get(payment.id).total_owed == Decimal("60.00")

    def test_reinstated_payment_accepts_mutations(self, create_payment, archive_service, ledger, test_actor_id):
        payment = create_payment("100")
        record = archive_service.archive(payment.id, actor_id=test_actor_id)
        archive_service.reinstate(record.id, actor_id=test_actor_id)
        updated = ledger.add_amount(payment.id, "POP", "100", test_actor_id)
        assert updated.status == "Completed"


class TestArchiveImmutability:

    def test_business_fields_cannot_change(self, create_payment, archive_service, test_actor_id, session):
        record = archive_service.archive(create_payment().id, actor_id=test_actor_id)
        record.notes = "rewritten"
        with pytest.raises(ArchiveImmutableError):
            session.flush()
        session.rollback()

    def test_cannot_delete_archive(self, create_payment, archive_service, test_actor_id, session):
        record = archive_service.archive(create_payment().id, actor_id=test_actor_id)
        session.delete(record)
        with pytest.raises(ArchiveImmutableError):
            session.flush()
        session.rollback()


class TestArchiveQueries:

    def test_find_by_client_and_clinic(self, create_payment, archive_service, test_actor_id):
        a = create_payment(client_id=1, clinic_name="North")
        b = create_payment(client_id=2, clinic_name="North")
        c = create_payment(client_id=1, clinic_name="South")
        for payment in (a, b, c):
            archive_service.archive(payment.id, actor_id=test_actor_id)

        assert {r.original_payment_id for r in archive_service.find_by_client(1)} == {a.id, c.id}
        assert {r.original_payment_id for r in archive_service.find_by_clinic("North")} == {a.id, b.id}

    def test_find_unrestored(self, create_payment, archive_service, test_actor_id):
        first = archive_service.archive(create_payment(clinic_name="North").id, actor_id=test_actor_id)
        second = archive_service.archive(create_payment(clinic_name="North").id, actor_id=test_actor_id)
        archive_service.restore(first.id, actor_id=test_actor_id)

        assert [r.id for r in archive_service.find_unrestored("North")] == [second.id]
        assert archive_service.find_unrestored("South") == []
