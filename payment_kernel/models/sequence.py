"""
Module: payment_kernel.models.sequence
Responsibility: Named counter rows backing payment-number allocation.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per sequence name (unique).  The row is only ever advanced by
      a single atomic UPDATE ... RETURNING in SequenceService.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import Base


class SequenceCounter(Base):
    """Sequence counter table: one row per named sequence."""

    __tablename__ = "sequence_counters"

    # Sequence name (e.g., "payment_number")
    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
