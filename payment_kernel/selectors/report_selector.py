"""
Module: payment_kernel.selectors.report_selector
Responsibility: Read-only aggregation across payments: outstanding balances,
    revenue, status and method/type breakdowns, payment-type summaries,
    aging, per-client account summaries and payment history.
Architecture position: Kernel > Selectors.  May import from models/,
    selectors/, domain/ and payment_engines (pure).

Invariants enforced:
    - Soft-deleted payments are excluded from every aggregate.
    - Reports never add, flush or lock rows; they run in whatever isolation
      the session's transaction provides.
    - Aging buckets partition each client's outstanding total exactly
      (delegated to payment_engines.aging).

Failure modes:
    - StorageUnavailableError on read failure.  Nothing is mutated, so the
      caller may retry.
    - ValidationError on bad pagination or sort arguments.

Audit relevance:
    Aging is anchored on payment date, not on an invoice due date.  See
    payment_engines.aging.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from payment_config.schema import ReportingConfig
from payment_engines.aging import AgingCalculator, AgingReport, buckets_from_boundaries
from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.domain.money import ZERO, round_money
from payment_kernel.exceptions import ValidationError
from payment_kernel.models.payment import Payment
from payment_kernel.selectors.base import BaseSelector
from payment_kernel.selectors.payment_selector import (
    Pagination,
    PaymentPage,
    check_page,
    live_payments_clause,
)

SORT_CLIENT_NAME = "clientName"
SORT_AMOUNT_DUE = "amountDue"


def _money(value: Any) -> Decimal:
    """Normalise a SQL aggregate to a cent-rounded Decimal."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return round_money(value)


def _average(total: Decimal, count: int) -> Decimal:
    return round_money(total / count) if count else ZERO


@dataclass
class StatusStat:
    status: str
    count: int
    total_amount: Decimal
    total_paid: Decimal
    total_owed: Decimal


@dataclass
class MethodTypeStat:
    payment_method: str
    payment_type: str
    count: int
    total_paid: Decimal


@dataclass
class PaymentTypeTotal:
    payment_type: str
    total_amount: Decimal
    payment_count: int
    average_payment: Decimal


@dataclass
class DailyTotal:
    day: date
    total_amount: Decimal
    payment_count: int


@dataclass
class PaymentTypeSummary:
    by_type: list[PaymentTypeTotal]
    daily: list[DailyTotal]


@dataclass
class AccountSummaryRow:
    client_id: int
    client_name: str | None
    total_invoiced: Decimal
    total_paid: Decimal
    amount_due: Decimal
    payment_count: int
    last_payment_date: datetime | None


@dataclass
class AccountSummaryPage:
    items: list[AccountSummaryRow]
    pagination: Pagination


@dataclass
class ClientHistoryStats:
    total_paid: Decimal = ZERO
    total_owed: Decimal = ZERO
    payment_count: int = 0


@dataclass
class ClientPaymentHistory:
    payments: list[Payment]
    stats: ClientHistoryStats
    pagination: Pagination


@dataclass
class PaymentStats:
    status_stats: list[StatusStat] = field(default_factory=list)
    method_stats: list[MethodTypeStat] = field(default_factory=list)
    total_revenue: Decimal = ZERO
    outstanding_count: int = 0


class ReportSelector(BaseSelector[Payment]):
    """
    Reporting engine over live payments.

    Contract:
        Every method is a pure read; results are DTOs (or ORM rows for the
        paginated payment lists).

    Non-goals:
        - Does NOT check that the clinic exists.  An unknown clinic simply
          has no payments.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: ReportingConfig | None = None,
    ):
        super().__init__(session)
        self.clock = clock or SystemClock()
        self.config = config or ReportingConfig()
        self._aging = AgingCalculator(buckets_from_boundaries(self.config.aging_boundaries))

    def _scope(self, clinic_name: str | None = None) -> list:
        criteria = [live_payments_clause()]
        if clinic_name:
            criteria.append(Payment.clinic_name == clinic_name)
        return criteria

    # ------------------------------------------------------------------
    # Balances and revenue
    # ------------------------------------------------------------------

    def outstanding_balance(self, clinic_name: str | None = None) -> Decimal:
        """Sum of totalOwed over payments that still owe something."""
        with self._reading("outstanding_balance"):
            value = self.session.execute(
                select(func.sum(Payment.total_owed)).where(
                    *self._scope(clinic_name), Payment.total_owed > ZERO
                )
            ).scalar()
        return _money(value)

    def outstanding_payments(
        self,
        clinic_name: str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> PaymentPage:
        """Payments with totalOwed > 0, oldest payment date first."""
        limit = check_page(
            page, limit or self.config.default_page_size, self.config.max_page_size
        )
        criteria = [*self._scope(clinic_name), Payment.total_owed > ZERO]
        with self._reading("outstanding_payments"):
            total = self.session.execute(
                select(func.count()).select_from(Payment).where(*criteria)
            ).scalar_one()
            items = list(
                self.session.execute(
                    select(Payment)
                    .where(*criteria)
                    .order_by(Payment.payment_date.asc(), Payment.payment_number.asc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                ).scalars()
            )
        return PaymentPage(items=items, pagination=Pagination.build(page, limit, total))

    def total_revenue(
        self,
        clinic_name: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Decimal:
        """Sum of totalPaid, optionally within [start, end] by payment date."""
        criteria = self._scope(clinic_name)
        if start is not None:
            criteria.append(Payment.payment_date >= start)
        if end is not None:
            criteria.append(Payment.payment_date <= end)
        with self._reading("total_revenue"):
            value = self.session.execute(
                select(func.sum(Payment.total_paid)).where(*criteria)
            ).scalar()
        return _money(value)

    # ------------------------------------------------------------------
    # Breakdowns
    # ------------------------------------------------------------------

    def status_stats(self, clinic_name: str | None = None) -> list[StatusStat]:
        with self._reading("status_stats"):
            rows = self.session.execute(
                select(
                    Payment.status,
                    func.count(),
                    func.sum(Payment.total_payment_amount),
                    func.sum(Payment.total_paid),
                    func.sum(Payment.total_owed),
                )
                .where(*self._scope(clinic_name))
                .group_by(Payment.status)
                .order_by(Payment.status)
            ).all()
        return [
            StatusStat(
                status=status,
                count=count,
                total_amount=_money(amount),
                total_paid=_money(paid),
                total_owed=_money(owed),
            )
            for status, count, amount, paid, owed in rows
        ]

    def method_type_breakdown(self, clinic_name: str | None = None) -> list[MethodTypeStat]:
        """Count and totalPaid grouped by (payment method, payment type)."""
        with self._reading("method_type_breakdown"):
            rows = self.session.execute(
                select(
                    Payment.payment_method,
                    Payment.payment_type,
                    func.count(),
                    func.sum(Payment.total_paid),
                )
                .where(*self._scope(clinic_name))
                .group_by(Payment.payment_method, Payment.payment_type)
                .order_by(Payment.payment_method, Payment.payment_type)
            ).all()
        return [
            MethodTypeStat(
                payment_method=method,
                payment_type=ptype,
                count=count,
                total_paid=_money(paid),
            )
            for method, ptype, count, paid in rows
        ]

    def payment_type_summary(
        self,
        clinic_name: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> PaymentTypeSummary:
        """
        Per payment type: total paid, count and average, largest total first.
        Plus per-day totals in date order.
        """
        criteria = self._scope(clinic_name)
        if start is not None:
            criteria.append(Payment.payment_date >= start)
        if end is not None:
            criteria.append(Payment.payment_date <= end)

        with self._reading("payment_type_summary"):
            rows = self.session.execute(
                select(Payment.payment_type, Payment.payment_date, Payment.total_paid).where(
                    *criteria
                )
            ).all()

        # Grouped here rather than in SQL: day truncation differs per dialect.
        type_totals: dict[str, list] = defaultdict(lambda: [ZERO, 0])
        day_totals: dict[date, list] = defaultdict(lambda: [ZERO, 0])
        for ptype, paid_on, paid in rows:
            amount = _money(paid)
            type_totals[ptype][0] += amount
            type_totals[ptype][1] += 1
            day_totals[paid_on.date()][0] += amount
            day_totals[paid_on.date()][1] += 1

        by_type = [
            PaymentTypeTotal(
                payment_type=ptype,
                total_amount=total,
                payment_count=count,
                average_payment=_average(total, count),
            )
            for ptype, (total, count) in type_totals.items()
        ]
        by_type.sort(key=lambda t: (-t.total_amount, t.payment_type))
        daily = [
            DailyTotal(day=day, total_amount=total, payment_count=count)
            for day, (total, count) in sorted(day_totals.items())
        ]
        return PaymentTypeSummary(by_type=by_type, daily=daily)

    # ------------------------------------------------------------------
    # Aging
    # ------------------------------------------------------------------

    def aging_report(
        self,
        clinic_name: str | None = None,
        as_of: date | datetime | None = None,
    ) -> AgingReport:
        """
        Age every outstanding payment by its payment date.

        ``as_of`` defaults to today per the injected clock.
        """
        as_of = as_of or self.clock.today()
        with self._reading("aging_report"):
            rows = self.session.execute(
                select(
                    Payment.id,
                    Payment.payment_number,
                    Payment.client_id,
                    Payment.client_name,
                    Payment.payment_date,
                    Payment.total_owed,
                )
                .where(*self._scope(clinic_name), Payment.total_owed > ZERO)
                .order_by(Payment.client_id, Payment.payment_date)
            ).all()

        items = [
            self._aging.age_item(
                payment_id=row.id,
                payment_number=row.payment_number,
                client_id=row.client_id,
                client_name=row.client_name,
                payment_date=row.payment_date,
                amount=_money(row.total_owed),
                as_of_date=as_of,
            )
            for row in rows
        ]
        return self._aging.generate_report(items, as_of)

    # ------------------------------------------------------------------
    # Per-client views
    # ------------------------------------------------------------------

    def account_summary(
        self,
        clinic_name: str,
        page: int = 1,
        limit: int | None = None,
        sort_by: str = SORT_CLIENT_NAME,
    ) -> AccountSummaryPage:
        """
        Per-client invoiced/paid/owed totals, payment count and last payment
        date.  ``sort_by`` is ``"clientName"`` (ascending) or ``"amountDue"``
        (descending).
        """
        if sort_by not in (SORT_CLIENT_NAME, SORT_AMOUNT_DUE):
            raise ValidationError(
                f"sort_by must be '{SORT_CLIENT_NAME}' or '{SORT_AMOUNT_DUE}' (got {sort_by!r})",
                field="sort_by",
            )
        limit = check_page(
            page, limit or self.config.default_page_size, self.config.max_page_size
        )

        client_name = func.max(Payment.client_name).label("client_name")
        amount_due = func.sum(Payment.total_owed).label("amount_due")
        grouped = (
            select(
                Payment.client_id,
                client_name,
                func.sum(Payment.total_payment_amount).label("total_invoiced"),
                func.sum(Payment.total_paid).label("total_paid"),
                amount_due,
                func.count().label("payment_count"),
                func.max(Payment.payment_date).label("last_payment_date"),
            )
            .where(*self._scope(clinic_name))
            .group_by(Payment.client_id)
        )
        if sort_by == SORT_AMOUNT_DUE:
            grouped = grouped.order_by(amount_due.desc(), Payment.client_id)
        else:
            grouped = grouped.order_by(client_name.asc(), Payment.client_id)

        with self._reading("account_summary"):
            total = self.session.execute(
                select(func.count(func.distinct(Payment.client_id))).where(
                    *self._scope(clinic_name)
                )
            ).scalar_one()
            rows = self.session.execute(
                grouped.offset((page - 1) * limit).limit(limit)
            ).all()

        items = [
            AccountSummaryRow(
                client_id=row.client_id,
                client_name=row.client_name,
                total_invoiced=_money(row.total_invoiced),
                total_paid=_money(row.total_paid),
                amount_due=_money(row.amount_due),
                payment_count=row.payment_count,
                last_payment_date=row.last_payment_date,
            )
            for row in rows
        ]
        return AccountSummaryPage(items=items, pagination=Pagination.build(page, limit, total))

    def client_payment_history(
        self,
        client_id: int,
        page: int = 1,
        limit: int | None = None,
    ) -> ClientPaymentHistory:
        """A client's payments, newest first, with lifetime totals."""
        limit = check_page(
            page, limit or self.config.history_page_size, self.config.max_page_size
        )
        criteria = [live_payments_clause(), Payment.client_id == client_id]
        with self._reading("client_payment_history"):
            paid, owed, count = self.session.execute(
                select(
                    func.sum(Payment.total_paid),
                    func.sum(Payment.total_owed),
                    func.count(),
                ).where(*criteria)
            ).one()
            payments = list(
                self.session.execute(
                    select(Payment)
                    .where(*criteria)
                    .order_by(Payment.payment_date.desc(), Payment.payment_number.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                ).scalars()
            )
        return ClientPaymentHistory(
            payments=payments,
            stats=ClientHistoryStats(
                total_paid=_money(paid), total_owed=_money(owed), payment_count=count
            ),
            pagination=Pagination.build(page, limit, count),
        )

    def payment_stats(self, clinic_name: str) -> PaymentStats:
        """Status stats, method/type stats, revenue and outstanding count."""
        with self._reading("outstanding_count"):
            outstanding = self.session.execute(
                select(func.count())
                .select_from(Payment)
                .where(*self._scope(clinic_name), Payment.total_owed > ZERO)
            ).scalar_one()
        return PaymentStats(
            status_stats=self.status_stats(clinic_name),
            method_stats=self.method_type_breakdown(clinic_name),
            total_revenue=self.total_revenue(clinic_name),
            outstanding_count=outstanding,
        )
