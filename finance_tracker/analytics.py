"""Analytics and totals.

Functions that fold transactions into summaries.  Amounts stay ``Decimal``
throughout; a transaction is counted by its type, never by a sign.
"""

from __future__ import annotations

import datetime as dt
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable

from .money import EXPENSE, INCOME, as_money

ZERO = Decimal("0.00")


def month_key(d: dt.date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


@dataclass
class MonthlyStats:
    total_income: Decimal = ZERO
    total_expenses: Decimal = ZERO
    by_category: Dict[str, Decimal] = field(default_factory=dict)
    transaction_count: int = 0

    @property
    def net(self) -> Decimal:
        return self.total_income - self.total_expenses

    def to_dict(self) -> Dict:
        return {
            "total_income": str(self.total_income),
            "total_expenses": str(self.total_expenses),
            "net": str(self.net),
            "by_category": {cat: str(amt) for cat, amt in self.by_category.items()},
            "transaction_count": self.transaction_count,
        }


def fold_monthly_stats(txns: Iterable) -> MonthlyStats:
    """Fold one month of transactions into totals by type and category.

    EXPENSE rows count toward ``total_expenses`` and their category bucket;
    INCOME rows only toward ``total_income``.
    """
    stats = MonthlyStats()
    by_category: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for t in txns:
        amount = as_money(t.amount)
        if t.type == EXPENSE:
            stats.total_expenses += amount
            by_category[t.category] += amount
        else:
            stats.total_income += amount
        stats.transaction_count += 1
    stats.by_category = dict(sorted(by_category.items(), key=lambda kv: kv[1], reverse=True))
    return stats


def summarize_income_expense(txns: Iterable) -> Dict[str, Decimal]:
    txns = list(txns)
    income = sum((as_money(t.amount) for t in txns if t.type == INCOME), ZERO)
    expense = sum((as_money(t.amount) for t in txns if t.type == EXPENSE), ZERO)
    return {"income": income, "expense": expense, "net": income - expense}


def spending_by_category(txns: Iterable) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for t in txns:
        if t.type == EXPENSE:
            totals[t.category or "other-expense"] += as_money(t.amount)
    return dict(sorted(totals.items(), key=lambda kv: kv[1], reverse=True))


def monthly_totals(txns: Iterable) -> Dict[str, Dict[str, Decimal]]:
    months: Dict[str, Dict[str, Decimal]] = defaultdict(lambda: {"income": ZERO, "expense": ZERO, "net": ZERO})
    for t in txns:
        m = month_key(t.date)
        if t.type == INCOME:
            months[m]["income"] += as_money(t.amount)
        else:
            months[m]["expense"] += as_money(t.amount)
        months[m]["net"] = months[m]["income"] - months[m]["expense"]
    return dict(sorted(months.items()))
