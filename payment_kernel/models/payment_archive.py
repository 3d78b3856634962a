"""
Module: payment_kernel.models.payment_archive
Responsibility: Append-only copy of a Payment taken at deletion time.
Architecture position: Kernel > Models.  May import from db/ and models/payment.

Invariants enforced:
    - Business fields never change after insert; only is_restored,
      restored_at and restored_by_id may be written, and rows are never
      deleted (db/invariants.py).
    - original_payment_id is a best-effort back-reference, not a foreign key,
      so the archive survives a hard delete of the original.

Audit relevance:
    The archive is the financial history of removed payments.  Restoring
    flips a flag; recreating the live payment is a separate, audited call
    (ArchiveService.reinstate).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import Base, UUIDString
from payment_kernel.models.payment import PaymentFieldsMixin

RESTORE_FIELDS = frozenset({"is_restored", "restored_at", "restored_by_id"})


class PaymentArchive(PaymentFieldsMixin, Base):
    """
    Archived payment.

    Guarantees:
        - Carries every business field of the payment at archive time, plus
          the original creation stamp.
        - ``restore`` is the only mutation and is idempotent.
    """

    __tablename__ = "payment_archives"

    __table_args__ = (
        Index("idx_archive_client", "client_id"),
        Index("idx_archive_clinic", "clinic_name"),
        Index("idx_archive_restored", "is_restored"),
        Index("idx_archive_payment_number", "payment_number"),
    )

    original_payment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )
    deleted_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    original_created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    original_created_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    archived_at: Mapped[datetime] = mapped_column(nullable=False)
    archived_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    archived_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    is_restored: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    restored_at: Mapped[datetime | None] = mapped_column(nullable=True)
    restored_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<PaymentArchive {self.payment_number} restored={self.is_restored}>"

    def restore(self, actor_id: UUID, restored_at: datetime) -> None:
        """Flag as restored.  A second call keeps the first stamp."""
        if self.is_restored:
            return
        self.is_restored = True
        self.restored_at = restored_at
        self.restored_by_id = actor_id

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "originalPaymentId": (
                str(self.original_payment_id) if self.original_payment_id else None
            ),
            "paymentNumber": self.payment_number,
            "paymentId": self.legacy_payment_id,
            "clientId": self.client_id,
            "clientName": self.client_name,
            "clinicName": self.clinic_name,
            "paymentMethod": self.payment_method,
            "paymentType": self.payment_type,
            "status": self.status,
            "amounts": {k: str(v) for k, v in self.amounts.as_dict().items()},
            "notes": self.notes,
            "archivedAt": self.archived_at.isoformat() if self.archived_at else None,
            "archivedReason": self.archived_reason,
            "archivedBy": str(self.archived_by_id),
            "isRestored": self.is_restored,
            "restoredAt": self.restored_at.isoformat() if self.restored_at else None,
            "restoredBy": str(self.restored_by_id) if self.restored_by_id else None,
        }
