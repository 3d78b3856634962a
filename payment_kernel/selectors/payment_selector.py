"""
Module: payment_kernel.selectors.payment_selector
Responsibility: Read-only lookup and listing of live payments: identifier
    resolution, filtered paginated listing, and the find_by_* shortcuts.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Soft-deleted (archived) payments are invisible to every query here.
    - Identifier resolution order is internal id, then legacy payment id,
      then payment number.

Failure modes:
    - ValidationError on page < 1 or limit < 1.
    - StorageUnavailableError on read failure.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from payment_kernel.domain.amounts import (
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    parse_enum,
)
from payment_kernel.domain.money import ZERO
from payment_kernel.exceptions import ValidationError
from payment_kernel.models.payment import DELETED, Payment
from payment_kernel.selectors.base import BaseSelector


def live_payments_clause():
    """WHERE clause excluding archived payments."""
    return or_(Payment.deleted_status.is_(None), Payment.deleted_status != DELETED)


@dataclass
class PaymentFilters:
    """Listing filters; every field is optional and they combine with AND."""

    status: PaymentStatus | str | None = None
    payment_method: PaymentMethod | str | None = None
    payment_type: PaymentType | str | None = None
    clinic_name: str | None = None
    client_id: int | None = None
    order_number: str | None = None
    order_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    outstanding_only: bool = False


@dataclass
class Pagination:
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total_items: int) -> Pagination:
        total_pages = math.ceil(total_items / limit) if total_items else 0
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_items=total_items,
            items_per_page=limit,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


@dataclass
class PaymentPage:
    items: list[Payment]
    pagination: Pagination


def check_page(page: int, limit: int, max_page_size: int) -> int:
    """Validate page/limit and clamp limit to ``max_page_size``."""
    if page < 1:
        raise ValidationError(f"page must be >= 1 (got {page})", field="page")
    if limit < 1:
        raise ValidationError(f"limit must be >= 1 (got {limit})", field="limit")
    return min(limit, max_page_size)


class PaymentSelector(BaseSelector[Payment]):
    """
    Selector for individual payments and payment lists.

    Guarantees:
        - Lists are ordered newest payment_date first, then payment_number.
        - ``fresh=True`` reloads attribute state from the database even when
          the row is already in the session identity map.
    """

    def __init__(self, session: Session, max_page_size: int = 500):
        super().__init__(session)
        self.max_page_size = max_page_size

    def _first_live(self, *criteria, fresh: bool = False) -> Payment | None:
        stmt = select(Payment).where(live_payments_clause(), *criteria)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        return self.session.execute(stmt).scalars().first()

    def get(self, payment_id: UUID | str, *, fresh: bool = False) -> Payment | None:
        """Live payment by internal id, or None."""
        try:
            key = payment_id if isinstance(payment_id, UUID) else UUID(str(payment_id))
        except ValueError:
            return None
        with self._reading("get_payment"):
            return self._first_live(Payment.id == key, fresh=fresh)

    def resolve(self, identifier: UUID | str, *, fresh: bool = False) -> Payment | None:
        """
        Live payment by internal id, legacy payment id, or payment number,
        tried in that order.
        """
        payment = self.get(identifier, fresh=fresh)
        if payment is not None:
            return payment
        text = str(identifier)
        with self._reading("resolve_payment"):
            payment = self._first_live(Payment.legacy_payment_id == text, fresh=fresh)
            if payment is None:
                payment = self._first_live(Payment.payment_number == text, fresh=fresh)
        return payment

    def _filter_criteria(self, filters: PaymentFilters) -> list:
        criteria = [live_payments_clause()]
        if filters.status is not None:
            criteria.append(
                Payment.status == parse_enum(PaymentStatus, filters.status, "status").value
            )
        if filters.payment_method is not None:
            method = parse_enum(PaymentMethod, filters.payment_method, "payment_method")
            criteria.append(Payment.payment_method == method.value)
        if filters.payment_type is not None:
            ptype = parse_enum(PaymentType, filters.payment_type, "payment_type")
            criteria.append(Payment.payment_type == ptype.value)
        if filters.clinic_name:
            criteria.append(Payment.clinic_name == filters.clinic_name)
        if filters.client_id is not None:
            criteria.append(Payment.client_id == filters.client_id)
        if filters.order_number:
            criteria.append(Payment.order_number == filters.order_number)
        if filters.order_id:
            criteria.append(Payment.order_id == filters.order_id)
        if filters.start_date is not None:
            criteria.append(Payment.payment_date >= filters.start_date)
        if filters.end_date is not None:
            criteria.append(Payment.payment_date <= filters.end_date)
        if filters.outstanding_only:
            criteria.append(Payment.total_owed > ZERO)
        return criteria

    def list_payments(
        self,
        filters: PaymentFilters | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> PaymentPage:
        """Filtered, paginated listing with pagination metadata."""
        limit = check_page(page, limit, self.max_page_size)
        criteria = self._filter_criteria(filters or PaymentFilters())

        with self._reading("list_payments"):
            total = self.session.execute(
                select(func.count()).select_from(Payment).where(*criteria)
            ).scalar_one()
            items = list(
                self.session.execute(
                    select(Payment)
                    .where(*criteria)
                    .order_by(Payment.payment_date.desc(), Payment.payment_number.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                ).scalars()
            )
        return PaymentPage(items=items, pagination=Pagination.build(page, limit, total))

    def _find(self, operation: str, *criteria) -> list[Payment]:
        with self._reading(operation):
            return list(
                self.session.execute(
                    select(Payment)
                    .where(live_payments_clause(), *criteria)
                    .order_by(Payment.payment_date.desc(), Payment.payment_number.desc())
                ).scalars()
            )

    def find_by_clinic(self, clinic_name: str) -> list[Payment]:
        return self._find("find_by_clinic", Payment.clinic_name == clinic_name)

    def find_by_client(self, client_id: int) -> list[Payment]:
        return self._find("find_by_client", Payment.client_id == client_id)

    def find_by_order_number(self, order_number: str) -> list[Payment]:
        return self._find("find_by_order_number", Payment.order_number == order_number)

    def find_by_status(
        self, status: PaymentStatus | str, clinic_name: str | None = None
    ) -> list[Payment]:
        criteria = [Payment.status == parse_enum(PaymentStatus, status, "status").value]
        if clinic_name:
            criteria.append(Payment.clinic_name == clinic_name)
        return self._find("find_by_status", *criteria)

    def find_by_payment_type(
        self, payment_type: PaymentType | str, clinic_name: str | None = None
    ) -> list[Payment]:
        ptype = parse_enum(PaymentType, payment_type, "payment_type")
        criteria = [Payment.payment_type == ptype.value]
        if clinic_name:
            criteria.append(Payment.clinic_name == clinic_name)
        return self._find("find_by_payment_type", *criteria)
