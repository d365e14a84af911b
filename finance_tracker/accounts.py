"""Users and their accounts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from sqlalchemy import func, update

from .db import atomic
from .errors import InvalidInput, Unauthorized
from .ledger import get_account
from .models import ACCOUNT_TYPES, Account, Transaction, User, db
from .money import TRANSACTION_TYPES, to_money

logger = logging.getLogger(__name__)

SORT_FIELDS = ("date", "category", "amount")


@dataclass
class IdentityProfile:
    """What the identity provider knows about the signed-in caller."""

    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def full_name(self) -> Optional[str]:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or None


def check_user(profile: Optional[IdentityProfile]) -> User:
    """Map an identity to its User row, creating it on first sight."""
    if profile is None or not profile.id:
        raise Unauthorized("Unauthorized")
    user = db.session.scalar(db.select(User).filter_by(external_id=profile.id))
    if user is not None:
        return user
    if not profile.email:
        raise InvalidInput("Identity has no email address")
    with atomic() as session:
        user = User(
            external_id=profile.id,
            name=profile.full_name,
            email=profile.email,
            image_url=profile.image_url,
        )
        session.add(user)
    logger.info("Created user %s for identity %s", user.id, profile.id)
    return user


def create_account(user: User, data: Mapping) -> Account:
    name = str(data.get("name") or "").strip()
    if not name:
        raise InvalidInput("Account name is required")
    acc_type = str(data.get("type") or "CURRENT").upper()
    if acc_type not in ACCOUNT_TYPES:
        raise InvalidInput(f"Unknown account type: {acc_type!r}")
    balance = to_money(data.get("balance") if data.get("balance") not in (None, "") else "0", "balance")

    has_accounts = db.session.scalar(
        db.select(func.count(Account.id)).filter_by(user_id=user.id)
    )
    should_be_default = not has_accounts or bool(data.get("is_default"))

    with atomic() as session:
        if should_be_default:
            _clear_default(session, user.id)
        account = Account(
            user_id=user.id,
            name=name,
            type=acc_type,
            balance=balance,
            is_default=should_be_default,
        )
        session.add(account)
    logger.info("Created account %s for user %s", account.id, user.id)
    return account


def _clear_default(session, user_id: int) -> None:
    session.execute(
        update(Account)
        .where(Account.user_id == user_id, Account.is_default.is_(True))
        .values(is_default=False)
        .execution_options(synchronize_session="fetch")
    )


def get_user_accounts(user: User) -> List[Dict]:
    rows = db.session.execute(
        db.select(Account, func.count(Transaction.id))
        .outerjoin(Transaction, Transaction.account_id == Account.id)
        .where(Account.user_id == user.id)
        .group_by(Account.id)
        .order_by(Account.created_at.desc(), Account.id.desc())
    ).all()
    return [account.to_dict(transaction_count=count) for account, count in rows]


def update_default_account(user: User, account_id) -> Account:
    account = get_account(user, account_id)
    with atomic() as session:
        _clear_default(session, user.id)
        account.is_default = True
    return account


def filter_transactions(txns: List[Transaction], filters: Mapping[str, str]) -> List[Transaction]:
    """Apply the transaction-table filters: search, type, recurring and sort."""
    result = list(txns)
    search = (filters.get("search") or "").strip().lower()
    if search:
        result = [t for t in result if search in (t.description or "").lower()]

    recurring = filters.get("recurring") or ""
    if recurring == "recurring":
        result = [t for t in result if t.is_recurring]
    elif recurring == "non-recurring":
        result = [t for t in result if not t.is_recurring]

    txn_type = (filters.get("type") or "").upper()
    if txn_type:
        if txn_type not in TRANSACTION_TYPES:
            raise InvalidInput(f"Unknown transaction type filter: {txn_type!r}")
        result = [t for t in result if t.type == txn_type]

    sort_field = filters.get("sort") or "date"
    if sort_field not in SORT_FIELDS:
        raise InvalidInput(f"Cannot sort by {sort_field!r}")
    direction = (filters.get("direction") or "desc").lower()
    result.sort(key=lambda t: getattr(t, sort_field), reverse=direction != "asc")
    return result


def get_account_with_transactions(user: User, account_id, filters: Optional[Mapping[str, str]] = None) -> Dict:
    account = get_account(user, account_id)
    txns = db.session.scalars(
        db.select(Transaction)
        .filter_by(account_id=account.id, user_id=user.id)
        .order_by(Transaction.date.desc())
    ).all()
    data = account.to_dict(transaction_count=len(txns))
    data["transactions"] = [t.to_dict() for t in filter_transactions(list(txns), filters or {})]
    return data


def get_dashboard_data(user: User) -> List[Transaction]:
    return list(
        db.session.scalars(
            db.select(Transaction).filter_by(user_id=user.id).order_by(Transaction.date.desc(), Transaction.id.desc())
        ).all()
    )

