"""Reporting utilities.

Builds the monthly financial report and renders the plain-text bodies of the
emails the scheduled jobs send.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .ai import ContentGenerator, generate_insight_list
from .analytics import MonthlyStats, fold_monthly_stats
from .errors import ExternalServiceFailure, FinanceError
from .models import Transaction, User, db
from .money import format_money, month_bounds, previous_month

logger = logging.getLogger(__name__)

FALLBACK_INSIGHTS = [
    "Your highest expense category this month might need attention.",
    "Consider setting up a budget for better financial management.",
    "Track your recurring expenses to identify potential savings.",
]


def get_monthly_stats(user_id: int, month: dt.datetime) -> MonthlyStats:
    start, end = month_bounds(month)
    txns = db.session.scalars(
        db.select(Transaction).where(
            Transaction.user_id == user_id,
            Transaction.is_recurring.is_(False),
            Transaction.date >= start,
            Transaction.date < end,
        )
    ).all()
    return fold_monthly_stats(txns)


def insights_prompt(stats: MonthlyStats, month_name: str) -> str:
    categories = ", ".join(f"{cat}: ${format_money(amt)}" for cat, amt in stats.by_category.items())
    return f"""
    Analyze this financial data and provide 3 concise, actionable insights.
    Focus on spending patterns and practical advice.
    Keep it friendly and conversational.

    Financial Data for {month_name}:
    - Total Income: ${format_money(stats.total_income)}
    - Total Expenses: ${format_money(stats.total_expenses)}
    - Net Income: ${format_money(stats.net)}
    - Expense Categories: {categories or "none"}

    Format the response as a JSON array of strings, like this:
    ["insight 1", "insight 2", "insight 3"]
    """


def generate_financial_insights(
    stats: MonthlyStats,
    month_name: str,
    ai: Optional[ContentGenerator],
) -> List[str]:
    if ai is None:
        return list(FALLBACK_INSIGHTS)
    try:
        return generate_insight_list(ai, insights_prompt(stats, month_name))
    except ExternalServiceFailure as exc:
        logger.warning("Falling back to generic insights for %s: %s", month_name, exc)
        return list(FALLBACK_INSIGHTS)


def format_budget_alert(alert: Dict) -> str:
    lines: List[str] = []
    lines.append(f"Hello {alert.get('user_name') or 'there'},")
    lines.append("")
    lines.append(f"You've used {alert['percentage_used']}% of your monthly budget on {alert['account_name']}.")
    lines.append("")
    lines.append(f"Budget Amount:  ${format_money(alert['budget_amount'])}")
    lines.append(f"Spent So Far:   ${format_money(alert['total_expenses'])}")
    lines.append(f"Remaining:      ${format_money(alert['budget_amount'] - alert['total_expenses'])}")
    return "\n".join(lines)


def format_monthly_report(user_name: Optional[str], month_name: str, stats: MonthlyStats, insights: List[str]) -> str:
    lines: List[str] = []
    lines.append(f"Hello {user_name or 'there'},")
    lines.append("")
    lines.append(f"=== Monthly Financial Report: {month_name} ===")
    lines.append(f"Income:   ${format_money(stats.total_income)}")
    lines.append(f"Expenses: ${format_money(stats.total_expenses)}")
    lines.append(f"Net:      ${format_money(stats.net)}")
    lines.append(f"Transactions: {stats.transaction_count}")
    lines.append("")

    if stats.by_category:
        lines.append("-- Expenses by Category --")
        for cat, amt in stats.by_category.items():
            lines.append(f"{cat:15} ${format_money(amt)}")
        lines.append("")

    lines.append("-- Insights --")
    for insight in insights:
        lines.append(f"* {insight}")
    return "\n".join(lines)


def generate_monthly_reports(
    ai: Optional[ContentGenerator],
    mailer,
    now: Optional[dt.datetime] = None,
) -> Dict[str, int]:
    """Email every user a report on the previous month, one user at a time."""
    now = now or dt.datetime.now()
    last_month = previous_month(now)
    month_name = last_month.strftime("%B")
    user_ids = db.session.scalars(db.select(User.id).order_by(User.id)).all()
    processed = failed = 0
    for user_id in user_ids:
        try:
            user = db.session.get(User, user_id)
            if user is None:
                continue
            stats = get_monthly_stats(user.id, last_month)
        except (FinanceError, SQLAlchemyError) as exc:
            db.session.rollback()
            failed += 1
            logger.error("Monthly report for user %s failed: %s", user_id, exc)
            continue
        insights = generate_financial_insights(stats, month_name, ai)
        mailer.send(
            user.email,
            f"Your Monthly Financial Report for {month_name}",
            format_monthly_report(user.name, month_name, stats, insights),
        )
        processed += 1
    logger.info("Generated monthly reports for %d users, %d failed", processed, failed)
    return {"processed": processed, "failed": failed}
