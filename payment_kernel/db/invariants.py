"""
ORM-Level Ledger Invariant Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The service layer recomputes totals after every mutation, but a payment row
can also be written by scripts, migrations or a future service that forgets
to.  These listeners are the last check before SQL reaches the database:

    session.flush()
         |
         v
    [before_insert / before_update on Payment]
         --> _check_payment_amounts() --> LedgerInvariantViolationError
         |
    [before_update / before_delete on PaymentArchive]
         --> _check_archive_*() ------> ArchiveImmutableError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
RULES
===============================================================================

Entity          | Rule
----------------|---------------------------------------------------------------
Payment         | No amount column negative.
                | total_paid == sum of paid buckets (cents).
                | total_owed == max(0, total_payment_amount - total_paid).
PaymentArchive  | Only is_restored / restored_at / restored_by_id may change.
                | is_restored never goes back to False.
                | Rows are never deleted.

Bulk ``UPDATE`` statements bypass mapper events; the CHECK constraints on
the payments table still reject negative amounts in that case.
"""

from sqlalchemy import event, inspect

from payment_kernel.domain.amounts import PaymentAmounts, recompute_totals
from payment_kernel.domain.money import ZERO
from payment_kernel.exceptions import (
    ArchiveImmutableError,
    LedgerInvariantViolationError,
)
from payment_kernel.logging_config import get_logger

logger = get_logger("db.invariants")


def _payment_violation(target) -> str | None:
    from payment_kernel.models.payment import AMOUNT_COLUMNS

    for column in AMOUNT_COLUMNS:
        value = getattr(target, column)
        if value is not None and value < ZERO:
            return f"{column} is negative ({value})"

    stored = PaymentAmounts.from_row(target)
    expected = recompute_totals(stored)
    if stored.total_paid != expected.total_paid:
        return (
            f"total_paid {stored.total_paid} != sum of paid buckets "
            f"{expected.total_paid}"
        )
    if stored.total_owed != expected.total_owed:
        return f"total_owed {stored.total_owed} != expected {expected.total_owed}"
    return None


def _check_payment_amounts(mapper, connection, target):
    """Reject a Payment flush whose totals disagree with its buckets."""
    reason = _payment_violation(target)
    if reason is None:
        return
    logger.error(
        "ledger_invariant_violation_blocked",
        extra={
            "entity_type": "Payment",
            "entity_id": str(target.id),
            "reason": reason,
        },
    )
    raise LedgerInvariantViolationError(str(target.id), reason)


def _check_archive_immutability(mapper, connection, target):
    """Allow only the restore flags to change on an archive record."""
    from payment_kernel.models.payment_archive import RESTORE_FIELDS

    state = inspect(target)
    changed = [
        attr.key
        for attr in state.mapper.column_attrs
        if attr.key not in RESTORE_FIELDS
        and state.attrs[attr.key].history.has_changes()
    ]
    reason = None
    if changed:
        reason = f"fields {sorted(changed)} cannot change"
    else:
        restored = state.attrs["is_restored"].history
        if restored.deleted and restored.deleted[0] and not target.is_restored:
            reason = "a restored archive cannot be un-restored"

    if reason is None:
        return
    logger.error(
        "archive_immutability_violation_blocked",
        extra={"archive_id": str(target.id), "operation": "UPDATE", "reason": reason},
    )
    raise ArchiveImmutableError(str(target.id), reason)


def _check_archive_delete(mapper, connection, target):
    logger.error(
        "archive_immutability_violation_blocked",
        extra={"archive_id": str(target.id), "operation": "DELETE"},
    )
    raise ArchiveImmutableError(str(target.id), "archive records cannot be deleted")


def _listeners():
    from payment_kernel.models.payment import Payment
    from payment_kernel.models.payment_archive import PaymentArchive

    return (
        (Payment, "before_insert", _check_payment_amounts),
        (Payment, "before_update", _check_payment_amounts),
        (PaymentArchive, "before_update", _check_archive_immutability),
        (PaymentArchive, "before_delete", _check_archive_delete),
    )


def register_ledger_listeners() -> None:
    """
    Register the ledger invariant listeners (idempotent).

    Call once during application initialization, after models are imported.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_ledger_listeners() -> None:
    """
    Remove the ledger invariant listeners.

    WARNING: Only use this in tests that need to write an invalid row to
    verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
