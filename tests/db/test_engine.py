"""Tests for payment_kernel.db.engine: session handling and storage-error translation."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from payment_config.schema import StorageConfig
from payment_kernel.db.engine import (
    begin_write,
    get_engine,
    get_session,
    init_engine_from_config,
    is_storage_unavailable,
    reset_engine,
    session_scope,
    translate_storage_errors,
)
from payment_kernel.exceptions import StorageUnavailableError
from payment_kernel.models.sequence import SequenceCounter


def _operational(message: str = "could not connect to server") -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception(message))


class TestEngineLifecycle:

    def test_uninitialized_engine(self):
        reset_engine()
        with pytest.raises(RuntimeError):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session()

    def test_sqlite_datetimes_come_back_aware(self, session, create_payment):
        when = datetime(2024, 3, 1, 9, 30, tzinfo=timezone(timedelta(hours=-5)))
        payment = create_payment(payment_date=when)
        session.expire_all()
        assert payment.payment_date == when
        assert payment.payment_date.tzinfo is not None
        assert payment.payment_date.utcoffset() == timedelta(0)


class TestSessionScope:

    def test_commits_on_success(self, db_engine):
        with session_scope() as session:
            session.add(SequenceCounter(name="scope_ok", current_value=7))

        with session_scope() as session:
            value = session.scalar(
                select(SequenceCounter.current_value).where(SequenceCounter.name == "scope_ok")
            )
        assert value == 7

    def test_rolls_back_on_error(self, db_engine, captured_logs):
        with pytest.raises(ValueError):
            with session_scope() as session:
                session.add(SequenceCounter(name="scope_fail", current_value=1))
                session.flush()
                raise ValueError("abort")

        with session_scope() as session:
            assert session.scalar(
                select(SequenceCounter).where(SequenceCounter.name == "scope_fail")
            ) is None
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())


class TestWriteTransactions:

    def test_read_transaction_does_not_block_writer(self, session_factory):
        reader = session_factory()
        writer = session_factory()
        try:
            reader.scalar(select(SequenceCounter).where(SequenceCounter.name == "rw"))
            assert reader.in_transaction()

            begin_write(writer)
            writer.add(SequenceCounter(name="rw", current_value=3))
            writer.commit()
        finally:
            writer.close()
            reader.close()

        with session_scope() as session:
            assert session.scalar(
                select(SequenceCounter.current_value).where(SequenceCounter.name == "rw")
            ) == 3

    def test_begin_write_ends_clean_read_transaction(self, session_factory):
        session = session_factory()
        try:
            session.scalar(select(SequenceCounter))
            read_connection = session.connection()
            begin_write(session)
            connection = session.connection()
            assert connection is not read_connection
            assert connection.get_execution_options()["sqlite_begin"] == "IMMEDIATE"
        finally:
            session.close()

    def test_begin_write_keeps_pending_changes(self, session_factory):
        session = session_factory()
        try:
            session.add(SequenceCounter(name="pending", current_value=1))
            session.flush()
            begin_write(session)
            session.rollback()
            assert session.scalar(
                select(SequenceCounter).where(SequenceCounter.name == "pending")
            ) is None
        finally:
            session.close()


class TestStorageErrorTranslation:

    @pytest.mark.parametrize(
        "exc",
        [
            _operational(),
            PoolTimeoutError("QueuePool limit reached"),
        ],
    )
    def test_unavailable(self, exc):
        assert is_storage_unavailable(exc)

    @pytest.mark.parametrize(
        "exc",
        [
            IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")),
            ValueError("bad"),
        ],
    )
    def test_not_unavailable(self, exc):
        assert not is_storage_unavailable(exc)

    def test_translated_with_operation(self, captured_logs):
        with pytest.raises(StorageUnavailableError) as exc_info:
            with translate_storage_errors("add_amount"):
                raise _operational("server closed the connection")

        error = exc_info.value
        assert error.operation == "add_amount"
        assert "server closed the connection" in error.detail
        assert error.retryable is True
        assert isinstance(error.__cause__, OperationalError)
        record = next(r for r in captured_logs() if r["message"] == "storage_unavailable")
        assert record["operation"] == "add_amount"

    def test_other_errors_pass_through(self):
        with pytest.raises(IntegrityError):
            with translate_storage_errors("create_payment"):
                raise IntegrityError("INSERT", {}, Exception(str(uuid4())))


def test_engine_from_storage_config(tmp_path, captured_logs):
    try:
        engine = init_engine_from_config(
            StorageConfig(
                database_url=f"sqlite:///{tmp_path / 'configured.db'}",
                statement_timeout_seconds=2.5,
            )
        )
        assert engine.dialect.name == "sqlite"
        assert get_engine() is engine
        record = next(r for r in captured_logs() if r["message"] == "engine_initialized")
        assert record["statement_timeout_seconds"] == 2.5
    finally:
        reset_engine()
