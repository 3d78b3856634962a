"""ORM models for the payment kernel."""

from payment_kernel.models.payment import (
    AMOUNT_COLUMNS,
    BUSINESS_COLUMNS,
    DELETED,
    Payment,
)
from payment_kernel.models.payment_archive import RESTORE_FIELDS, PaymentArchive
from payment_kernel.models.sequence import SequenceCounter

__all__ = [
    "AMOUNT_COLUMNS",
    "BUSINESS_COLUMNS",
    "DELETED",
    "Payment",
    "PaymentArchive",
    "RESTORE_FIELDS",
    "SequenceCounter",
]
