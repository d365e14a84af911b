"""Transactions and the account balances they move.

Every write here pairs the transaction row with the balance increment of the
account(s) it touches inside one ``atomic()`` unit.  Balances are incremented
in SQL (``balance = balance + delta``) so concurrent writers on the same
account row are serialised by the database rather than by this process.

A recurring template is not itself a ledger event: only the occurrences the
recurrence processor generates from it move money.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from flask import current_app
from sqlalchemy import update

from .config import DEFAULT_CATEGORIES
from .db import atomic
from .errors import AccountNotFound, InvalidInput, InvalidInterval, TransactionNotFound
from .models import COMPLETED, TRANSACTION_STATUSES, Account, Transaction, User, db
from .money import RECURRING_INTERVALS, TRANSACTION_TYPES, next_occurrence, signed_delta, to_money

logger = logging.getLogger(__name__)

CREATE = "CREATE"
UPDATE = "UPDATE"
DELETE = "DELETE"
OPERATIONS = (CREATE, UPDATE, DELETE)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class TransactionEffect:
    """The balance-relevant fields of a transaction, captured before a write."""

    account_id: Optional[int]
    type: str
    amount: Decimal
    is_recurring: bool = False

    @classmethod
    def of(cls, txn) -> "TransactionEffect":
        return cls(
            account_id=getattr(txn, "account_id", None),
            type=txn.type,
            amount=Decimal(txn.amount),
            is_recurring=bool(getattr(txn, "is_recurring", False)),
        )


def ledger_delta(txn) -> Decimal:
    if getattr(txn, "is_recurring", False):
        return ZERO
    return signed_delta(Decimal(txn.amount), txn.type)


def balance_change(operation: str, transaction, old=None) -> Decimal:
    """Net balance change ``operation`` on ``transaction`` causes.

    For UPDATE, ``old`` must hold the values captured before the write.
    """
    if operation == CREATE:
        return ledger_delta(transaction)
    if operation == DELETE:
        return -ledger_delta(transaction)
    if operation == UPDATE:
        if old is None:
            raise InvalidInput("UPDATE needs the transaction's previous values")
        return ledger_delta(transaction) - ledger_delta(old)
    raise InvalidInput(f"Unknown ledger operation: {operation!r}")


def apply_transaction_effect(balance: Decimal, transaction, operation: str, old=None) -> Decimal:
    return Decimal(balance) + balance_change(operation, transaction, old)


def group_balance_changes(transactions: Iterable) -> Dict[int, Decimal]:
    """Sum the reversal deltas of ``transactions`` per account id."""
    changes: Dict[int, Decimal] = defaultdict(lambda: ZERO)
    for txn in transactions:
        changes[txn.account_id] += balance_change(DELETE, txn)
    return {account_id: delta for account_id, delta in changes.items() if delta != ZERO}


def increment_balance(session, account_id: int, delta: Decimal) -> None:
    if delta == ZERO:
        return
    session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(balance=Account.balance + delta)
        .execution_options(synchronize_session="fetch")
    )


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


def _categories() -> Mapping[str, str]:
    try:
        return current_app.config.get("CATEGORIES") or DEFAULT_CATEGORIES
    except RuntimeError:
        return DEFAULT_CATEGORIES


def parse_id(value, field: str = "id") -> int:
    """Accept an int or a string of digits; fractional numbers are refused."""
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise InvalidInput(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be an integer") from None


def _naive_local(moment: dt.datetime) -> dt.datetime:
    """Stored datetimes are naive local time, like ``datetime.now()``."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone().replace(tzinfo=None)


def parse_datetime(value, field: str = "date") -> dt.datetime:
    if isinstance(value, dt.datetime):
        return _naive_local(value)
    if isinstance(value, dt.date):
        return dt.datetime(value.year, value.month, value.day)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = dt.datetime.fromisoformat(text)
        except ValueError:
            raise InvalidInput(f"{field} must be an ISO date") from None
        return _naive_local(parsed)
    raise InvalidInput(f"{field} is required")


def validate_transaction_data(data: Mapping) -> dict:
    """Check and normalise the writable fields of a transaction."""
    txn_type = str(data.get("type") or "").upper()
    if txn_type not in TRANSACTION_TYPES:
        raise InvalidInput("type must be INCOME or EXPENSE")
    if data.get("amount") in (None, ""):
        raise InvalidInput("amount is required")
    amount = to_money(data["amount"])
    category = str(data.get("category") or "").strip().lower()
    if category not in _categories():
        raise InvalidInput(f"Unknown category: {category!r}")
    is_recurring = bool(data.get("is_recurring"))
    interval = data.get("recurring_interval") or None
    if is_recurring:
        if interval is None:
            raise InvalidInput("recurring_interval is required for recurring transactions")
        interval = str(interval).upper()
        if interval not in RECURRING_INTERVALS:
            raise InvalidInterval(f"Invalid recurring interval: {interval!r}")
    else:
        interval = None
    status = str(data.get("status") or COMPLETED).upper()
    if status not in TRANSACTION_STATUSES:
        raise InvalidInput(f"Unknown status: {status!r}")
    description = data.get("description")
    return {
        "type": txn_type,
        "amount": amount,
        "description": str(description).strip() if description else None,
        "date": parse_datetime(data.get("date")),
        "category": category,
        "receipt_url": data.get("receipt_url") or None,
        "is_recurring": is_recurring,
        "recurring_interval": interval,
        "status": status,
    }


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_account(user: User, account_id) -> Account:
    account = db.session.scalar(
        db.select(Account).filter_by(id=parse_id(account_id, "account_id"), user_id=user.id)
    )
    if account is None:
        raise AccountNotFound("Account not found")
    return account


def get_transaction(user: User, transaction_id) -> Transaction:
    txn = db.session.scalar(
        db.select(Transaction).filter_by(id=parse_id(transaction_id, "transaction_id"), user_id=user.id)
    )
    if txn is None:
        raise TransactionNotFound("Transaction not found")
    return txn


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def create_transaction(user: User, data: Mapping) -> Transaction:
    account = get_account(user, data.get("account_id"))
    fields = validate_transaction_data(data)
    next_date = None
    if fields["is_recurring"]:
        next_date = next_occurrence(fields["date"], fields["recurring_interval"])

    with atomic() as session:
        txn = Transaction(user_id=user.id, account_id=account.id, next_recurring_date=next_date, **fields)
        session.add(txn)
        increment_balance(session, account.id, balance_change(CREATE, txn))

    logger.info("Created %s transaction %s on account %s", txn.type, txn.id, account.id)
    return txn


def update_transaction(user: User, transaction_id, data: Mapping) -> Transaction:
    txn = get_transaction(user, transaction_id)
    old = TransactionEffect.of(txn)
    account = get_account(user, data.get("account_id", txn.account_id))
    fields = validate_transaction_data(data)
    next_date = None
    if fields["is_recurring"]:
        next_date = next_occurrence(fields["date"], fields["recurring_interval"])

    with atomic() as session:
        for key, value in fields.items():
            setattr(txn, key, value)
        txn.account_id = account.id
        txn.next_recurring_date = next_date
        new = TransactionEffect.of(txn)
        if old.account_id == new.account_id:
            increment_balance(session, account.id, balance_change(UPDATE, new, old))
        else:
            increment_balance(session, old.account_id, balance_change(DELETE, old))
            increment_balance(session, new.account_id, balance_change(CREATE, new))

    logger.info("Updated transaction %s", txn.id)
    return txn


def bulk_delete_transactions(user: User, transaction_ids: Sequence) -> List[int]:
    """Delete the given transactions and reverse their balance effects.

    Deltas are summed per account first, then applied with one update per
    account.  Every id must resolve under ``user`` or nothing is deleted.
    """
    ids = sorted({parse_id(i, "transaction_id") for i in transaction_ids})
    if not ids:
        raise InvalidInput("No transactions selected")
    txns = db.session.scalars(
        db.select(Transaction).where(Transaction.id.in_(ids), Transaction.user_id == user.id)
    ).all()
    missing = set(ids) - {t.id for t in txns}
    if missing:
        raise TransactionNotFound(f"Transaction not found: {', '.join(str(i) for i in sorted(missing))}")

    changes = group_balance_changes(txns)
    with atomic() as session:
        for txn in txns:
            session.delete(txn)
        session.flush()
        for account_id, delta in changes.items():
            increment_balance(session, account_id, delta)

    logger.info("Deleted %d transactions across %d accounts", len(ids), len(changes))
    return ids


def delete_transaction(user: User, transaction_id) -> int:
    return bulk_delete_transactions(user, [transaction_id])[0]
