"""
Module: payment_kernel.models.payment
Responsibility: ORM persistence for the Payment aggregate -- identity,
    subject references, classification, the bucketed amounts, derived
    totals, lifecycle status and audit fields.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - payment_number is unique (uq_payment_number); legacy_payment_id is
      unique when present.
    - Every amount column is non-negative (CHECK constraints) and
      total_paid / total_owed match the buckets (db/invariants.py).
    - ``version`` is the optimistic-lock revision: every UPDATE is keyed on
      (id, version), so two writers that read the same revision cannot both
      commit.

Failure modes:
    - StaleDataError on flush when another transaction bumped ``version``
      (retried by ConflictRetryPolicy).
    - LedgerInvariantViolationError from the flush listeners.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payment_kernel.db.base import TrackedBase
from payment_kernel.domain.amounts import PaymentAmounts, PaymentStatus
from payment_kernel.domain.money import ZERO

DELETED = "deleted"

AMOUNT_COLUMNS: tuple[str, ...] = (
    "total_payment_amount",
    "pop",
    "pop_final",
    "direct_auth",
    "direct_auth_final",
    "cob1",
    "cob2",
    "cob3",
    "insurance_1st",
    "insurance_2nd",
    "insurance_3rd",
    "no_insurance_final",
    "refund",
    "sales_refund",
    "writeoff",
    "bad_debt",
    "total_paid",
    "total_owed",
)

# Business fields copied verbatim into an archive record.
BUSINESS_COLUMNS: tuple[str, ...] = (
    "payment_number",
    "legacy_payment_id",
    "order_number",
    "order_id",
    "advanced_billing_id",
    "client_id",
    "client_name",
    "clinic_name",
    "payment_date",
    "payment_method",
    "payment_type",
    "status",
    *AMOUNT_COLUMNS,
    "notes",
    "referring_no",
    "user_login_name",
)


class PaymentFieldsMixin:
    """Columns shared by the live Payment row and its archive copy."""

    payment_number: Mapped[str] = mapped_column(String(32), nullable=False)
    legacy_payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    order_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    advanced_billing_id: Mapped[int | None] = mapped_column(nullable=True)

    client_id: Mapped[int] = mapped_column(nullable=False)
    client_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    clinic_name: Mapped[str] = mapped_column(String(255), nullable=False)

    payment_date: Mapped[datetime] = mapped_column(nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.PENDING.value, nullable=False
    )

    # Buckets: Numeric(14, 2) via Base.type_annotation_map
    total_payment_amount: Mapped[Decimal] = mapped_column(default=ZERO)
    pop: Mapped[Decimal] = mapped_column(default=ZERO)
    pop_final: Mapped[Decimal] = mapped_column(default=ZERO)
    direct_auth: Mapped[Decimal] = mapped_column(default=ZERO)
    direct_auth_final: Mapped[Decimal] = mapped_column(default=ZERO)
    cob1: Mapped[Decimal] = mapped_column(default=ZERO)
    cob2: Mapped[Decimal] = mapped_column(default=ZERO)
    cob3: Mapped[Decimal] = mapped_column(default=ZERO)
    insurance_1st: Mapped[Decimal] = mapped_column(default=ZERO)
    insurance_2nd: Mapped[Decimal] = mapped_column(default=ZERO)
    insurance_3rd: Mapped[Decimal] = mapped_column(default=ZERO)
    no_insurance_final: Mapped[Decimal] = mapped_column(default=ZERO)
    refund: Mapped[Decimal] = mapped_column(default=ZERO)
    sales_refund: Mapped[Decimal] = mapped_column(default=ZERO)
    writeoff: Mapped[Decimal] = mapped_column(default=ZERO)
    bad_debt: Mapped[Decimal] = mapped_column(default=ZERO)
    total_paid: Mapped[Decimal] = mapped_column(default=ZERO)
    total_owed: Mapped[Decimal] = mapped_column(default=ZERO)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    referring_no: Mapped[str | None] = mapped_column(String(30), nullable=True)
    user_login_name: Mapped[str | None] = mapped_column(String(25), nullable=True)

    @property
    def amounts(self) -> PaymentAmounts:
        return PaymentAmounts.from_row(self)

    @property
    def current_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)


class Payment(PaymentFieldsMixin, TrackedBase):
    """
    A clinic payment record.

    Contract:
        Amount columns are written only through ``write_amounts`` with a
        snapshot produced by the domain functions; there is no per-bucket
        setter in the service API.

    Guarantees:
        - ``amounts`` always reflects the stored columns.
        - ``is_deleted`` is True once the row has been archived.

    Non-goals:
        - Does not validate clinic or client existence; those aggregates
          live outside the ledger.
    """

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("payment_number", name="uq_payment_number"),
        UniqueConstraint("legacy_payment_id", name="uq_payment_legacy_id"),
        Index("idx_payment_clinic_date", "clinic_name", "payment_date"),
        Index("idx_payment_client", "client_id"),
        Index("idx_payment_status", "status"),
        Index("idx_payment_order_number", "order_number"),
        *(
            CheckConstraint(f"{col} >= 0", name=f"ck_payment_{col}_nonneg")
            for col in AMOUNT_COLUMNS
        ),
    )

    deleted_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Payment {self.payment_number}: {self.status}>"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_status == DELETED

    def write_amounts(self, amounts: PaymentAmounts) -> None:
        """Copy a recomputed snapshot onto the amount columns."""
        for column in AMOUNT_COLUMNS:
            value: Decimal = getattr(amounts, column)
            if getattr(self, column) != value:
                setattr(self, column, value)

    def to_dict(self) -> dict:
        """Structured view used at the API boundary."""
        return {
            "id": str(self.id),
            "paymentNumber": self.payment_number,
            "paymentId": self.legacy_payment_id,
            "orderNumber": self.order_number,
            "orderId": self.order_id,
            "advancedBillingId": self.advanced_billing_id,
            "clientId": self.client_id,
            "clientName": self.client_name,
            "clinicName": self.clinic_name,
            "paymentDate": self.payment_date.isoformat() if self.payment_date else None,
            "paymentMethod": self.payment_method,
            "paymentType": self.payment_type,
            "status": self.status,
            "amounts": {k: str(v) for k, v in self.amounts.as_dict().items()},
            "notes": self.notes,
            "referringNo": self.referring_no,
            "userLoginName": self.user_login_name,
            "deletedStatus": self.deleted_status,
            "version": self.version,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "createdBy": str(self.created_by_id) if self.created_by_id else None,
            "updatedBy": str(self.updated_by_id) if self.updated_by_id else None,
        }
