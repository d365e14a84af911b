"""Recurring transaction processing.

A recurring template moves through three states::

    PENDING    never processed (last_processed is NULL)
    SCHEDULED  processed, next_recurring_date still in the future
    DUE        next_recurring_date has been reached

Processing a PENDING or DUE template generates one occurrence, applies its
balance effect and moves the template back to SCHEDULED, all in one commit.
The due check is repeated in the UPDATE that claims the template, so a
redelivered or concurrent event for an already processed template is a no-op.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Dict, List, Optional, Protocol, Sequence

from sqlalchemy import or_, update

from .db import atomic
from .ledger import CREATE, balance_change, increment_balance
from .models import COMPLETED, Transaction, db
from .money import is_due, next_occurrence

logger = logging.getLogger(__name__)

PENDING = "PENDING"
SCHEDULED = "SCHEDULED"
DUE = "DUE"

RECURRING_EVENT = "transaction.recurring.process"


class Dispatcher(Protocol):
    def send(self, events: Sequence[dict]) -> None:
        ...


def recurrence_state(txn, now: dt.datetime) -> Optional[str]:
    if not txn.is_recurring:
        return None
    if txn.last_processed is None:
        return PENDING
    if is_due(txn.last_processed, txn.next_recurring_date, now):
        return DUE
    return SCHEDULED


def advance_due_date(scheduled: Optional[dt.datetime], interval: str, now: dt.datetime) -> dt.datetime:
    """First date on the template's schedule strictly after ``now``.

    Stepping from the scheduled date keeps the template's day-of-month
    anchor; a template with no scheduled date restarts from ``now``.
    """
    if scheduled is None:
        return next_occurrence(now, interval)
    current = scheduled
    while current <= now:
        current = next_occurrence(current, interval)
    return current


def find_due_recurring(now: dt.datetime) -> List[Transaction]:
    stmt = (
        db.select(Transaction)
        .where(
            Transaction.is_recurring.is_(True),
            Transaction.status == COMPLETED,
            or_(Transaction.last_processed.is_(None), Transaction.next_recurring_date <= now),
        )
        .order_by(Transaction.id)
    )
    return list(db.session.scalars(stmt).all())


def trigger_recurring_transactions(dispatcher: Dispatcher, now: Optional[dt.datetime] = None) -> Dict[str, int]:
    now = now or dt.datetime.now()
    candidates = find_due_recurring(now)
    if candidates:
        events = [
            {
                "name": RECURRING_EVENT,
                "data": {"transaction_id": txn.id, "user_id": txn.user_id},
            }
            for txn in candidates
        ]
        dispatcher.send(events)
    logger.info("Triggered %d recurring transactions", len(candidates))
    return {"triggered": len(candidates)}


def process_recurring_transaction(
    transaction_id,
    user_id,
    now: Optional[dt.datetime] = None,
) -> Optional[Transaction]:
    """Generate the next occurrence of a due template.

    Returns the new occurrence, or None when the template is gone, no longer
    recurring or not due.  The template is claimed with a conditional UPDATE
    that repeats the due check, so of two overlapping deliveries only the one
    whose UPDATE matched the row writes an occurrence.
    """
    if not transaction_id or not user_id:
        logger.error("Invalid recurring event data: transaction_id=%r user_id=%r", transaction_id, user_id)
        return None
    now = now or dt.datetime.now()

    template = db.session.scalar(
        db.select(Transaction).filter_by(id=transaction_id, user_id=user_id)
    )
    if template is None or not template.is_recurring:
        logger.info("Recurring transaction %s no longer exists, skipping", transaction_id)
        return None
    if not is_due(template.last_processed, template.next_recurring_date, now):
        logger.info("Recurring transaction %s is not due, skipping", transaction_id)
        return None

    next_date = advance_due_date(template.next_recurring_date, template.recurring_interval, now)
    description = f"{template.description or ''} (Recurring)".strip()
    occurrence = None
    with atomic() as session:
        claimed = session.execute(
            update(Transaction)
            .where(
                Transaction.id == template.id,
                Transaction.user_id == template.user_id,
                Transaction.is_recurring.is_(True),
                or_(Transaction.last_processed.is_(None), Transaction.next_recurring_date <= now),
            )
            .values(last_processed=now, next_recurring_date=next_date)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 1:
            occurrence = Transaction(
                user_id=template.user_id,
                account_id=template.account_id,
                type=template.type,
                amount=template.amount,
                description=description,
                date=now,
                category=template.category,
                is_recurring=False,
                status=COMPLETED,
            )
            session.add(occurrence)
            increment_balance(session, template.account_id, balance_change(CREATE, occurrence))

    if occurrence is None:
        logger.info("Recurring transaction %s was processed by another delivery, skipping", transaction_id)
        return None
    logger.info(
        "Processed recurring transaction %s -> occurrence %s, next due %s",
        transaction_id,
        occurrence.id,
        next_date.isoformat(),
    )
    return occurrence
