"""
Module: payment_kernel.db.base
Responsibility: Declarative bases and portable column types shared by every
    ledger table (payments, archives, sequence counters).
Architecture position: Kernel > DB.  Lowest layer of the kernel; imports
    nothing from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Every row is keyed by a uuid4, stored as its 36-character text form so
      SQLite and PostgreSQL schemas match.
    - Money columns are Numeric(14, 2): amounts are held to the cent and
      are never floats.
    - Datetimes are stored in UTC and always read back timezone-aware,
      SQLite included (its driver drops the offset).
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UUIDString(TypeDecorator):
    """uuid.UUID in Python, VARCHAR(36) in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(str(value))


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime on every backend.

    Naive values on the way in are taken to be UTC.  SQLite receives a naive
    UTC value because it cannot store an offset.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = _utc(value)
        return value.replace(tzinfo=None) if dialect.name == "sqlite" else value

    def process_result_value(self, value, dialect):
        return None if value is None else _utc(value)


class Base(DeclarativeBase):
    """Declarative base: uuid primary key and the ledger's type map."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(14, 2),
        datetime: UTCDateTime(),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Base for rows that record who created and last changed them.

    Contract:
        Services stamp created_at / updated_at from their injected Clock;
        the server default only covers rows inserted outside a service.
        created_by_id is required, updated_by_id stays NULL until the first
        change.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now())
    created_by_id: Mapped[UUID]
    updated_by_id: Mapped[UUID | None]
