"""
Money -- Decimal parsing and cent rounding for ledger amounts.

Responsibility:
    The one place where raw caller input (str, int, float, Decimal) becomes a
    ledger amount.  Every bucket value, refund and total passes through
    ``to_money`` or ``round_money`` before it touches a Payment.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Decimal-only arithmetic.  Floats are converted through ``str()`` so
      ``0.1`` becomes ``Decimal("0.1")`` rather than its binary expansion.
    - Two decimal places, ROUND_HALF_UP.  ``round_money`` is the only
      sanctioned rounding function for ledger amounts.
    - NaN and infinities are rejected at the boundary.

Failure modes:
    - InvalidAmountError on unparseable or non-finite input, and on negative
      input when ``allow_negative`` is False.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from payment_kernel.exceptions import InvalidAmountError

MONEY_DECIMAL_PLACES = 2
ZERO = Decimal("0.00")
_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half-up (``Decimal("2.675") -> Decimal("2.68")``)."""
    return value.quantize(_QUANTUM, rounding=ROUND_HALF_UP)


def to_money(
    value: Decimal | str | int | float | None,
    field: str = "amount",
    *,
    allow_negative: bool = False,
) -> Decimal:
    """
    Parse and round a caller-supplied amount.

    Preconditions:
        - ``value`` is a number or numeric string.

    Postconditions:
        - Returns a finite Decimal quantized to two places.
        - Result is >= 0 unless ``allow_negative`` is set.

    Raises:
        InvalidAmountError: unparseable, non-finite, or negative input.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmountError(field, value, "not a number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmountError(field, value, "not a number") from exc

    if not amount.is_finite():
        raise InvalidAmountError(field, value, "must be finite")

    amount = round_money(amount)
    if amount < 0 and not allow_negative:
        raise InvalidAmountError(field, value, "must not be negative")
    return amount
