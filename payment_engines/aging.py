"""
Module: payment_engines.aging
Responsibility:
    Classify outstanding payment balances into aging buckets (current,
    30-59, 60-89, 90+ days) and roll them up per client.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import payment_kernel/domain and payment_kernel/logging_config.

Invariants enforced:
    - Purity: no clock access, no I/O.  ``as_of_date`` is always a parameter.
    - Decimal-only arithmetic for all monetary amounts.
    - Partition: every item lands in exactly one bucket, so per client the
      bucket totals sum exactly to the client's outstanding total.

Failure modes:
    - ValueError when bucket boundaries are not strictly increasing.

Audit relevance:
    Ages are measured from the payment date, not from an invoice due date.
    A payment recorded late therefore looks younger than the receivable it
    settles; report consumers should treat the buckets as "time since the
    payment was recorded".

Usage:
    from payment_engines.aging import AgingCalculator
    from datetime import date

    calculator = AgingCalculator()
    calculator.calculate_age(date(2024, 1, 15), date(2024, 2, 15))  # 31
    calculator.classify(31).name  # "30-59"
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from payment_kernel.domain.money import ZERO
from payment_kernel.logging_config import get_logger

logger = get_logger("engines.aging")


@dataclass(frozen=True)
class AgeBucket:
    """
    A contiguous range of ages in days.

    Guarantees:
        - min_days >= 0.
        - max_days >= min_days (when bounded).
    """

    name: str
    min_days: int
    max_days: int | None  # None = unbounded (e.g., 90+)

    def __post_init__(self) -> None:
        if self.min_days < 0:
            raise ValueError("min_days cannot be negative")
        if self.max_days is not None and self.max_days < self.min_days:
            raise ValueError("max_days cannot be less than min_days")

    def contains(self, age_days: int) -> bool:
        if age_days < self.min_days:
            return False
        if self.max_days is None:
            return True
        return age_days <= self.max_days


def buckets_from_boundaries(boundaries: Sequence[int] = (30, 60, 90)) -> tuple[AgeBucket, ...]:
    """
    Build the bucket set from the lower bounds of the overdue buckets.

    ``(30, 60, 90)`` gives current (0-29), 30-59, 60-89 and 90+.
    """
    bounds = list(boundaries)
    if not bounds or bounds[0] <= 0 or any(b >= a for b, a in zip(bounds, bounds[1:])):
        raise ValueError(f"Aging boundaries must be strictly increasing: {bounds}")
    buckets = [AgeBucket("current", 0, bounds[0] - 1)]
    for low, high in zip(bounds, bounds[1:]):
        buckets.append(AgeBucket(f"{low}-{high - 1}", low, high - 1))
    buckets.append(AgeBucket(f"{bounds[-1]}+", bounds[-1], None))
    return tuple(buckets)


STANDARD_BUCKETS: tuple[AgeBucket, ...] = buckets_from_boundaries((30, 60, 90))


@dataclass(frozen=True)
class AgedItem:
    """An outstanding payment with its age classification."""

    payment_id: str | UUID
    payment_number: str
    client_id: int
    client_name: str | None
    payment_date: date
    amount: Decimal
    age_days: int
    bucket: AgeBucket


@dataclass(frozen=True)
class ClientAging:
    """Per-client aging row; ``buckets`` covers every bucket in the report."""

    client_id: int
    client_name: str | None
    buckets: dict[str, Decimal]
    total_outstanding: Decimal
    payment_count: int


@dataclass(frozen=True)
class AgingReport:
    """
    Complete aging report.

    Guarantees:
        - ``total_amount()`` equals the sum of all item amounts.
        - ``total_by_bucket()`` covers every bucket in ``self.buckets``.
        - For every client row, the bucket values sum to
          ``total_outstanding``.
    """

    as_of_date: date
    buckets: tuple[AgeBucket, ...]
    items: tuple[AgedItem, ...]

    @property
    def item_count(self) -> int:
        return len(self.items)

    def total_amount(self) -> Decimal:
        return sum((item.amount for item in self.items), ZERO)

    def total_by_bucket(self) -> dict[str, Decimal]:
        result = {bucket.name: ZERO for bucket in self.buckets}
        for item in self.items:
            result[item.bucket.name] += item.amount
        return result

    def by_client(self) -> list[ClientAging]:
        """Client rows, largest outstanding total first."""
        rows: dict[int, dict] = {}
        for item in self.items:
            row = rows.setdefault(
                item.client_id,
                {
                    "client_name": item.client_name,
                    "buckets": {bucket.name: ZERO for bucket in self.buckets},
                    "count": 0,
                },
            )
            row["buckets"][item.bucket.name] += item.amount
            row["count"] += 1
            if row["client_name"] is None:
                row["client_name"] = item.client_name

        clients = [
            ClientAging(
                client_id=client_id,
                client_name=row["client_name"],
                buckets=row["buckets"],
                total_outstanding=sum(row["buckets"].values(), ZERO),
                payment_count=row["count"],
            )
            for client_id, row in rows.items()
        ]
        clients.sort(key=lambda c: (-c.total_outstanding, c.client_id))
        return clients

    def items_in_bucket(self, bucket_name: str) -> tuple[AgedItem, ...]:
        return tuple(i for i in self.items if i.bucket.name == bucket_name)


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


class AgingCalculator:
    """
    Calculate aging for outstanding payments.

    Contract:
        Pure functions -- no I/O, no database access.

    Guarantees:
        - ``classify`` maps every age to exactly one bucket; future-dated
          payments (negative age) are current.
    """

    def __init__(self, buckets: Sequence[AgeBucket] | None = None):
        self.buckets: tuple[AgeBucket, ...] = tuple(buckets or STANDARD_BUCKETS)

    def calculate_age(self, payment_date: date | datetime, as_of_date: date | datetime) -> int:
        """Age in whole days; negative for future-dated payments."""
        return (_as_date(as_of_date) - _as_date(payment_date)).days

    def classify(self, age_days: int) -> AgeBucket:
        """
        Classify age into a bucket.

        Raises:
            ValueError: If age doesn't fit any bucket.
        """
        if age_days < 0:
            return self.buckets[0]
        for bucket in self.buckets:
            if bucket.contains(age_days):
                return bucket
        logger.warning(
            "age_classification_no_bucket",
            extra={"age_days": age_days, "bucket_count": len(self.buckets)},
        )
        raise ValueError(f"Age {age_days} does not fit any bucket")

    def age_item(
        self,
        *,
        payment_id: str | UUID,
        payment_number: str,
        client_id: int,
        client_name: str | None,
        payment_date: date | datetime,
        amount: Decimal,
        as_of_date: date | datetime,
    ) -> AgedItem:
        age_days = self.calculate_age(payment_date, as_of_date)
        return AgedItem(
            payment_id=payment_id,
            payment_number=payment_number,
            client_id=client_id,
            client_name=client_name,
            payment_date=_as_date(payment_date),
            amount=amount,
            age_days=age_days,
            bucket=self.classify(age_days),
        )

    def generate_report(
        self,
        items: Sequence[AgedItem],
        as_of_date: date | datetime,
    ) -> AgingReport:
        report = AgingReport(
            as_of_date=_as_date(as_of_date),
            buckets=self.buckets,
            items=tuple(items),
        )
        logger.info(
            "aging_report_generated",
            extra={
                "as_of_date": report.as_of_date.isoformat(),
                "item_count": len(items),
                "bucket_count": len(self.buckets),
            },
        )
        return report
