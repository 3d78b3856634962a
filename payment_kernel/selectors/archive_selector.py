"""
Module: payment_kernel.selectors.archive_selector
Responsibility: Read-only lookup of PaymentArchive records by id, client,
    clinic and restore state.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Listings are newest archive first.

Failure modes:
    - ArchiveNotFoundError for an unknown or malformed archive id.
    - StorageUnavailableError on read failure.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from payment_kernel.exceptions import ArchiveNotFoundError
from payment_kernel.models.payment_archive import PaymentArchive
from payment_kernel.selectors.base import BaseSelector


class ArchiveSelector(BaseSelector[PaymentArchive]):
    """Queries over the archive store."""

    def load(self, archive_id: UUID | str) -> PaymentArchive:
        """
        Fetch one archive record, refreshed from the database.

        Runs inside the caller's storage-error handling; ArchiveService
        uses it within its write transactions.
        """
        try:
            key = archive_id if isinstance(archive_id, UUID) else UUID(str(archive_id))
        except ValueError as exc:
            raise ArchiveNotFoundError(str(archive_id)) from exc
        record = self.session.get(PaymentArchive, key, populate_existing=True)
        if record is None:
            raise ArchiveNotFoundError(str(archive_id))
        return record

    def get(self, archive_id: UUID | str) -> PaymentArchive:
        with self._reading("get_archive"):
            return self.load(archive_id)

    def _find(self, operation: str, *criteria) -> list[PaymentArchive]:
        with self._reading(operation):
            return list(
                self.session.execute(
                    select(PaymentArchive)
                    .where(*criteria)
                    .order_by(PaymentArchive.archived_at.desc())
                ).scalars()
            )

    def find_by_client(self, client_id: int) -> list[PaymentArchive]:
        return self._find("find_archives_by_client", PaymentArchive.client_id == client_id)

    def find_by_clinic(self, clinic_name: str) -> list[PaymentArchive]:
        return self._find(
            "find_archives_by_clinic", PaymentArchive.clinic_name == clinic_name
        )

    def find_unrestored(self, clinic_name: str | None = None) -> list[PaymentArchive]:
        criteria = [PaymentArchive.is_restored.is_(False)]
        if clinic_name:
            criteria.append(PaymentArchive.clinic_name == clinic_name)
        return self._find("find_unrestored_archives", *criteria)
