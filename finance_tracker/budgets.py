"""Monthly budget tracking and budget alert evaluation."""

from __future__ import annotations

import datetime as dt
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from .db import atomic
from .errors import FinanceError, InvalidInput
from .ledger import get_account
from .models import Account, Budget, Transaction, User, db
from .money import EXPENSE, as_money, is_new_month, month_bounds, to_money
from .reports import format_budget_alert

logger = logging.getLogger(__name__)

DEFAULT_ALERT_THRESHOLD = 80


def month_expense_sum(user_id: int, account_id: int, now: dt.datetime) -> Decimal:
    start, end = month_bounds(now)
    total = db.session.scalar(
        db.select(func.sum(Transaction.amount)).where(
            Transaction.user_id == user_id,
            Transaction.account_id == account_id,
            Transaction.type == EXPENSE,
            Transaction.is_recurring.is_(False),
            Transaction.date >= start,
            Transaction.date < end,
        )
    )
    return as_money(total)


def percentage_used(expenses: Decimal, budget_amount: Decimal) -> Decimal:
    if budget_amount <= 0:
        return Decimal("100.0") if expenses > 0 else Decimal("0.0")
    pct = Decimal(expenses) / Decimal(budget_amount) * 100
    return pct.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def should_send_alert(
    pct: Decimal,
    last_alert_sent: Optional[dt.datetime],
    now: dt.datetime,
    threshold: int = DEFAULT_ALERT_THRESHOLD,
) -> bool:
    """At most one alert per calendar month.

    The first alert needs the threshold crossed; after that a new calendar
    month re-arms the alert on its own.
    """
    if last_alert_sent is None:
        return pct >= threshold
    return is_new_month(last_alert_sent, now)


def default_account(user_id: int) -> Optional[Account]:
    return db.session.scalar(db.select(Account).filter_by(user_id=user_id, is_default=True))


def get_current_budget(user: User, account_id=None, now: Optional[dt.datetime] = None) -> Dict:
    now = now or dt.datetime.now()
    budget = db.session.scalar(db.select(Budget).filter_by(user_id=user.id))
    if account_id is None:
        account = default_account(user.id)
    else:
        account = get_account(user, account_id)
    expenses = month_expense_sum(user.id, account.id, now) if account is not None else Decimal("0.00")
    return {"budget": budget, "current_expenses": expenses}


def update_budget(user: User, amount) -> Budget:
    if amount in (None, ""):
        raise InvalidInput("amount is required")
    value = to_money(amount)
    if value <= 0:
        raise InvalidInput("Budget amount must be greater than zero")
    with atomic() as session:
        budget = session.scalar(db.select(Budget).filter_by(user_id=user.id))
        if budget is None:
            budget = Budget(user_id=user.id, amount=value)
            session.add(budget)
        else:
            budget.amount = value
    logger.info("Budget for user %s set to %s", user.id, value)
    return budget


def _check_budget(budget: Budget, mailer, now: dt.datetime, threshold: int) -> Optional[bool]:
    """Evaluate one budget; None when its user has no default account."""
    account = default_account(budget.user_id)
    if account is None:
        return None
    total_expenses = month_expense_sum(budget.user_id, account.id, now)
    budget_amount = as_money(budget.amount)
    pct = percentage_used(total_expenses, budget_amount)
    if not should_send_alert(pct, budget.last_alert_sent, now, threshold):
        return False

    user = budget.user
    alert = {
        "percentage_used": pct,
        "budget_amount": budget_amount,
        "total_expenses": total_expenses,
        "account_name": account.name,
        "user_name": user.name,
    }
    mailer.send(
        user.email,
        f"Budget Alert for {account.name}",
        format_budget_alert(alert),
    )
    with atomic():
        budget.last_alert_sent = now
    logger.info("Budget alert sent to user %s (%s%% used)", budget.user_id, pct)
    return True


def check_budget_alerts(
    mailer,
    now: Optional[dt.datetime] = None,
    threshold: int = DEFAULT_ALERT_THRESHOLD,
) -> Dict[str, int]:
    """Check every budget; a failure on one budget does not stop the rest."""
    now = now or dt.datetime.now()
    budget_ids = db.session.scalars(db.select(Budget.id).order_by(Budget.id)).all()
    checked = alerted = failed = 0
    for budget_id in budget_ids:
        try:
            budget = db.session.get(Budget, budget_id)
            if budget is None:
                continue
            outcome = _check_budget(budget, mailer, now, threshold)
        except (FinanceError, SQLAlchemyError) as exc:
            db.session.rollback()
            failed += 1
            logger.error("Budget check %s failed: %s", budget_id, exc)
            continue
        if outcome is None:
            continue
        checked += 1
        if outcome:
            alerted += 1

    logger.info("Checked %d budgets, sent %d alerts, %d failed", checked, alerted, failed)
    return {"checked": checked, "alerted": alerted, "failed": failed}
