import datetime as dt
from decimal import Decimal

import pytest

from finance_tracker import ledger
from finance_tracker.accounts import (
    IdentityProfile,
    check_user,
    create_account,
    get_account_with_transactions,
    get_dashboard_data,
    get_user_accounts,
    update_default_account,
)
from finance_tracker.errors import AccountNotFound, InvalidInput, Unauthorized
from finance_tracker.models import Account, User, db

from helpers import txn_data


def default_ids(user):
    return [a.id for a in db.session.scalars(db.select(Account).filter_by(user_id=user.id, is_default=True))]


def test_check_user_creates_once(app):
    profile = IdentityProfile(
        id="idp_123",
        email="lin@example.com",
        first_name="Lin",
        last_name="Wei",
        image_url="https://img.example.com/lin.png",
    )
    user = check_user(profile)
    assert user.name == "Lin Wei"
    assert user.image_url == "https://img.example.com/lin.png"
    assert check_user(profile).id == user.id
    assert db.session.scalar(db.select(db.func.count(User.id))) == 1


def test_check_user_requires_identity(app):
    with pytest.raises(Unauthorized):
        check_user(None)
    with pytest.raises(InvalidInput):
        check_user(IdentityProfile(id="idp_no_mail", email=""))


def test_first_account_is_default(user):
    first = create_account(user, {"name": "Checking", "balance": "10"})
    second = create_account(user, {"name": "Savings", "type": "savings"})
    assert first.is_default is True
    assert second.is_default is False
    assert second.balance == Decimal("0.00")
    assert default_ids(user) == [first.id]


def test_new_default_account_replaces_old(user, account):
    other = create_account(user, {"name": "Joint", "is_default": True})
    assert default_ids(user) == [other.id]
    update_default_account(user, account.id)
    assert default_ids(user) == [account.id]


def test_default_is_per_user(user, other_user, account):
    theirs = create_account(other_user, {"name": "Bob's"})
    assert default_ids(user) == [account.id]
    assert default_ids(other_user) == [theirs.id]
    with pytest.raises(AccountNotFound):
        update_default_account(other_user, account.id)


@pytest.mark.parametrize(
    "data",
    [
        {"name": ""},
        {"name": "Broker", "type": "INVESTMENT"},
        {"name": "Cash", "balance": "twelve"},
    ],
)
def test_create_account_validation(user, data):
    with pytest.raises(InvalidInput):
        create_account(user, data)


def test_get_user_accounts_counts_transactions(user, account):
    empty = create_account(user, {"name": "Empty"})
    ledger.create_transaction(user, txn_data(account.id))
    ledger.create_transaction(user, txn_data(account.id, amount="1.00"))
    listed = {a["id"]: a for a in get_user_accounts(user)}
    assert listed[account.id]["transaction_count"] == 2
    assert listed[account.id]["balance"] == "849.00"
    assert listed[empty.id]["transaction_count"] == 0


def test_account_transaction_filters(user, account):
    ledger.create_transaction(user, txn_data(account.id, description="Weekly groceries", amount="80.00",
                                             date=dt.datetime(2024, 3, 1)))
    ledger.create_transaction(user, txn_data(account.id, description="Salary", type="INCOME", category="salary",
                                             amount="3000.00", date=dt.datetime(2024, 3, 2)))
    ledger.create_transaction(user, txn_data(account.id, description="Rent", category="housing", amount="1200.00",
                                             date=dt.datetime(2024, 3, 3), is_recurring=True,
                                             recurring_interval="MONTHLY"))

    def descriptions(**filters):
        data = get_account_with_transactions(user, account.id, filters)
        return [t["description"] for t in data["transactions"]]

    assert descriptions() == ["Rent", "Salary", "Weekly groceries"]
    assert descriptions(search="GROC") == ["Weekly groceries"]
    assert descriptions(type="income") == ["Salary"]
    assert descriptions(recurring="recurring") == ["Rent"]
    assert descriptions(recurring="non-recurring", sort="amount", direction="asc") == ["Weekly groceries", "Salary"]
    assert descriptions(sort="category", direction="asc") == ["Weekly groceries", "Rent", "Salary"]
    with pytest.raises(InvalidInput):
        descriptions(sort="merchant")


def test_dashboard_data_is_newest_first(user, account):
    ledger.create_transaction(user, txn_data(account.id, description="old", date=dt.datetime(2024, 1, 1)))
    ledger.create_transaction(user, txn_data(account.id, description="new", date=dt.datetime(2024, 2, 1)))
    assert [t.description for t in get_dashboard_data(user)] == ["new", "old"]
