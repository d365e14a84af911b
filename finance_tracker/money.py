"""Money and date helpers.

Amounts are stored as a non-negative ``Decimal`` magnitude plus a type
(INCOME or EXPENSE); the sign is applied only here, in ``signed_delta``.
"""

from __future__ import annotations

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Tuple, Union

from dateutil.relativedelta import relativedelta

from .errors import InvalidInput, InvalidInterval

INCOME = "INCOME"
EXPENSE = "EXPENSE"
TRANSACTION_TYPES = (INCOME, EXPENSE)

DAILY = "DAILY"
WEEKLY = "WEEKLY"
MONTHLY = "MONTHLY"
YEARLY = "YEARLY"
RECURRING_INTERVALS = (DAILY, WEEKLY, MONTHLY, YEARLY)

CENT = Decimal("0.01")
# Numeric(12, 2) holds ten integer digits.
MAX_AMOUNT = Decimal("1e10")

_STEPS = {
    DAILY: relativedelta(days=1),
    WEEKLY: relativedelta(days=7),
    MONTHLY: relativedelta(months=1),
    YEARLY: relativedelta(years=1),
}

MoneyLike = Union[str, int, Decimal]


def to_money(value: MoneyLike, field: str = "amount") -> Decimal:
    """Parse ``value`` into a two-place Decimal.

    Floats are refused so that binary rounding never reaches a balance;
    callers holding a float must go through ``str`` first.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidInput(f"{field} must be a decimal string or integer")
    try:
        amount = Decimal(str(value).strip()) if isinstance(value, str) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInput(f"{field} must be a valid number") from None
    if not amount.is_finite():
        raise InvalidInput(f"{field} must be a finite number")
    if amount < 0:
        raise InvalidInput(f"{field} cannot be negative")
    # quantize overflows on large exponents; only bounded values reach it
    if amount < MAX_AMOUNT:
        amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount >= MAX_AMOUNT:
        raise InvalidInput(f"{field} must be less than {MAX_AMOUNT:,.0f}")
    return amount


def as_money(value) -> Decimal:
    """Normalise a value read back from the database (None means zero)."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def signed_delta(amount: Decimal, txn_type: str) -> Decimal:
    if txn_type == EXPENSE:
        return -amount
    if txn_type == INCOME:
        return amount
    raise InvalidInput(f"Unknown transaction type: {txn_type!r}")


def next_occurrence(when: dt.datetime, interval: str) -> dt.datetime:
    """Return ``when`` moved forward by one recurrence ``interval``.

    Calendar steps clamp to the last valid day (Jan 31 -> Feb 28/29).
    """
    step = _STEPS.get(interval)
    if step is None:
        raise InvalidInterval(f"Invalid recurring interval: {interval!r}")
    return when + step


def is_due(
    last_processed: Optional[dt.datetime],
    next_recurring_date: Optional[dt.datetime],
    now: dt.datetime,
) -> bool:
    if last_processed is None:
        return True
    if next_recurring_date is None:
        return False
    return next_recurring_date <= now


def month_start(moment: dt.datetime) -> dt.datetime:
    return dt.datetime(moment.year, moment.month, 1)


def month_bounds(moment: dt.datetime) -> Tuple[dt.datetime, dt.datetime]:
    """Half-open ``[start, end)`` window of the calendar month of ``moment``."""
    start = month_start(moment)
    return start, start + relativedelta(months=1)


def previous_month(moment: dt.datetime) -> dt.datetime:
    return month_start(moment) - relativedelta(months=1)


def is_new_month(last: dt.datetime, now: dt.datetime) -> bool:
    return (last.year, last.month) != (now.year, now.month)


def format_money(amount: Optional[Decimal]) -> str:
    if amount is None:
        return "0.00"
    return str(Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP))
