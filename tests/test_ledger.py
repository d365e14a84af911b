import datetime as dt
from decimal import Decimal

import pytest

from finance_tracker import ledger
from finance_tracker.accounts import create_account
from finance_tracker.errors import (
    AccountNotFound,
    InvalidInput,
    InvalidInterval,
    TransactionFailure,
    TransactionNotFound,
)
from finance_tracker.ledger import (
    CREATE,
    DELETE,
    UPDATE,
    TransactionEffect,
    apply_transaction_effect,
    balance_change,
    group_balance_changes,
    parse_datetime,
    parse_id,
)
from finance_tracker.models import Transaction, db

from helpers import balance_of, txn_data


def effect(amount, txn_type, account_id=1, recurring=False):
    return TransactionEffect(account_id, txn_type, Decimal(amount), recurring)


def test_create_then_delete_restores_balance():
    for txn_type in ("INCOME", "EXPENSE"):
        txn = effect("123.45", txn_type)
        balance = Decimal("1000.00")
        after = apply_transaction_effect(balance, txn, CREATE)
        assert apply_transaction_effect(after, txn, DELETE) == balance


def test_edit_example_from_expense_to_income():
    balance = apply_transaction_effect(Decimal("1000.00"), effect("150.00", "EXPENSE"), CREATE)
    assert balance == Decimal("850.00")
    change = balance_change(UPDATE, effect("50.00", "INCOME"), old=effect("150.00", "EXPENSE"))
    assert change == Decimal("200.00")
    assert balance + change == Decimal("1050.00")


def test_update_sequence_is_path_independent():
    states = [
        effect("150.00", "EXPENSE"),
        effect("50.00", "INCOME"),
        effect("75.25", "EXPENSE"),
        effect("0.00", "INCOME"),
        effect("19.99", "EXPENSE"),
    ]
    stepwise = Decimal("0")
    for old, new in zip(states, states[1:]):
        stepwise += balance_change(UPDATE, new, old=old)
    assert stepwise == balance_change(UPDATE, states[-1], old=states[0])


def test_recurring_template_has_no_ledger_effect():
    template = effect("20.00", "EXPENSE", recurring=True)
    assert balance_change(CREATE, template) == Decimal("0")
    assert balance_change(UPDATE, template, old=effect("20.00", "EXPENSE")) == Decimal("20.00")


def test_update_requires_old_values():
    with pytest.raises(InvalidInput):
        balance_change(UPDATE, effect("1.00", "INCOME"))
    with pytest.raises(InvalidInput):
        balance_change("MERGE", effect("1.00", "INCOME"))


def test_group_balance_changes_sums_per_account():
    txns = [
        effect("10.00", "EXPENSE", account_id=1),
        effect("5.00", "INCOME", account_id=1),
        effect("2.50", "EXPENSE", account_id=2),
        effect("4.00", "INCOME", account_id=3),
        effect("4.00", "EXPENSE", account_id=3),
    ]
    assert group_balance_changes(txns) == {1: Decimal("5.00"), 2: Decimal("2.50")}
    assert group_balance_changes(reversed(txns)) == group_balance_changes(txns)


def test_create_transaction_updates_balance(user, account):
    txn = ledger.create_transaction(user, txn_data(account.id))
    assert txn.id is not None
    assert txn.amount == Decimal("150.00")
    assert txn.next_recurring_date is None
    assert balance_of(account.id) == Decimal("850.00")


def test_update_transaction_applies_net_change(user, account):
    txn = ledger.create_transaction(user, txn_data(account.id))
    ledger.update_transaction(user, txn.id, txn_data(account.id, type="INCOME", amount="50.00", category="salary"))
    assert balance_of(account.id) == Decimal("1050.00")
    ledger.update_transaction(user, txn.id, txn_data(account.id, type="INCOME", amount="50.00", category="salary"))
    assert balance_of(account.id) == Decimal("1050.00")


def test_update_transaction_moving_accounts(user, account):
    savings = create_account(user, {"name": "Savings", "type": "SAVINGS", "balance": "200.00"})
    txn = ledger.create_transaction(user, txn_data(account.id))
    ledger.update_transaction(user, txn.id, txn_data(savings.id, amount="40.00"))
    assert balance_of(account.id) == Decimal("1000.00")
    assert balance_of(savings.id) == Decimal("160.00")


def test_recurring_template_creation(user, account):
    txn = ledger.create_transaction(
        user,
        txn_data(account.id, is_recurring=True, recurring_interval="monthly", date=dt.datetime(2024, 1, 31)),
    )
    assert txn.recurring_interval == "MONTHLY"
    assert txn.next_recurring_date == dt.datetime(2024, 2, 29)
    assert txn.last_processed is None
    assert balance_of(account.id) == Decimal("1000.00")


def test_turning_recurring_off_clears_next_date(user, account):
    txn = ledger.create_transaction(user, txn_data(account.id, is_recurring=True, recurring_interval="WEEKLY"))
    txn = ledger.update_transaction(user, txn.id, txn_data(account.id, recurring_interval="WEEKLY"))
    assert txn.is_recurring is False
    assert txn.recurring_interval is None
    assert txn.next_recurring_date is None
    assert balance_of(account.id) == Decimal("850.00")


@pytest.mark.parametrize(
    "overrides, error",
    [
        ({"amount": "-5"}, InvalidInput),
        ({"amount": ""}, InvalidInput),
        ({"type": "TRANSFER"}, InvalidInput),
        ({"category": "yachts"}, InvalidInput),
        ({"date": "yesterday"}, InvalidInput),
        ({"is_recurring": True}, InvalidInput),
        ({"is_recurring": True, "recurring_interval": "HOURLY"}, InvalidInterval),
    ],
)
def test_invalid_input_writes_nothing(user, account, overrides, error):
    with pytest.raises(error):
        ledger.create_transaction(user, txn_data(account.id, **overrides))
    assert balance_of(account.id) == Decimal("1000.00")
    assert db.session.scalar(db.select(db.func.count(Transaction.id))) == 0


def test_ownership_is_enforced(user, other_user, account):
    with pytest.raises(AccountNotFound):
        ledger.create_transaction(other_user, txn_data(account.id))
    txn = ledger.create_transaction(user, txn_data(account.id))
    with pytest.raises(TransactionNotFound):
        ledger.get_transaction(other_user, txn.id)
    with pytest.raises(TransactionNotFound):
        ledger.update_transaction(other_user, txn.id, txn_data(account.id))
    with pytest.raises(TransactionNotFound):
        ledger.delete_transaction(other_user, txn.id)
    assert balance_of(account.id) == Decimal("850.00")


def test_bulk_delete_reverses_effects_per_account(user, account):
    savings = create_account(user, {"name": "Savings", "balance": "500.00"})
    a = ledger.create_transaction(user, txn_data(account.id, amount="100.00"))
    b = ledger.create_transaction(user, txn_data(account.id, type="INCOME", amount="30.00", category="salary"))
    c = ledger.create_transaction(user, txn_data(savings.id, amount="25.00"))
    keep = ledger.create_transaction(user, txn_data(account.id, amount="10.00"))
    assert balance_of(account.id) == Decimal("920.00")

    deleted = ledger.bulk_delete_transactions(user, [c.id, a.id, str(b.id)])

    assert deleted == sorted([a.id, b.id, c.id])
    assert balance_of(account.id) == Decimal("990.00")
    assert balance_of(savings.id) == Decimal("500.00")
    remaining = db.session.scalars(db.select(Transaction.id)).all()
    assert remaining == [keep.id]


def test_bulk_delete_with_unknown_id_deletes_nothing(user, account):
    txn = ledger.create_transaction(user, txn_data(account.id))
    with pytest.raises(TransactionNotFound):
        ledger.bulk_delete_transactions(user, [txn.id, 9999])
    assert balance_of(account.id) == Decimal("850.00")
    with pytest.raises(InvalidInput):
        ledger.bulk_delete_transactions(user, [])


def test_failed_commit_rolls_back_both_writes(user, account, monkeypatch):
    from sqlalchemy.exc import OperationalError

    def broken_increment(session, account_id, delta):
        raise OperationalError("UPDATE accounts", {}, Exception("database is locked"))

    monkeypatch.setattr(ledger, "increment_balance", broken_increment)
    with pytest.raises(TransactionFailure):
        ledger.create_transaction(user, txn_data(account.id))
    assert db.session.scalar(db.select(db.func.count(Transaction.id))) == 0
    assert balance_of(account.id) == Decimal("1000.00")


def test_parse_id_accepts_only_whole_numbers():
    assert parse_id(7) == 7
    assert parse_id(" 12 ") == 12
    for bad in (Decimal("1.9"), Decimal("1"), 1.0, "1.9", True, None, "seven"):
        with pytest.raises(InvalidInput):
            parse_id(bad)


def test_fractional_id_deletes_nothing(user, account):
    txn = ledger.create_transaction(user, txn_data(account.id))
    with pytest.raises(InvalidInput):
        ledger.bulk_delete_transactions(user, [Decimal(txn.id) + Decimal("0.9")])
    assert db.session.get(Transaction, txn.id) is not None


def test_parse_datetime_converts_offsets_to_local_time():
    eastern = dt.timezone(dt.timedelta(hours=-5))
    expected = dt.datetime(2024, 3, 10, 17, 0, tzinfo=dt.timezone.utc).astimezone().replace(tzinfo=None)
    assert parse_datetime("2024-03-10T12:00:00-05:00") == expected
    assert parse_datetime("2024-03-10T17:00:00Z") == expected
    assert parse_datetime(dt.datetime(2024, 3, 10, 12, 0, tzinfo=eastern)) == expected
    assert parse_datetime("2024-03-10T12:00:00") == dt.datetime(2024, 3, 10, 12, 0)
    assert parse_datetime(dt.date(2024, 3, 10)) == dt.datetime(2024, 3, 10)
