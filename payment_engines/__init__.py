"""Pure calculation engines for the payment ledger."""

from payment_engines.aging import (
    STANDARD_BUCKETS,
    AgeBucket,
    AgedItem,
    AgingCalculator,
    AgingReport,
    ClientAging,
    buckets_from_boundaries,
)

__all__ = [
    "STANDARD_BUCKETS",
    "AgeBucket",
    "AgedItem",
    "AgingCalculator",
    "AgingReport",
    "ClientAging",
    "buckets_from_boundaries",
]
