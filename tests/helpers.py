import datetime as dt

from finance_tracker.models import Account, db


class FakeMailer:
    def __init__(self):
        self.sent = []

    def send(self, recipient, subject, body):
        self.sent.append({"to": recipient, "subject": subject, "body": body})
        return True


class FakeAI:
    """Returns canned replies in order; an Exception instance is raised instead."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def generate_content(self, parts):
        self.calls.append(list(parts))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def balance_of(account_id):
    db.session.expire_all()
    return db.session.get(Account, account_id).balance


def txn_data(account_id, **overrides):
    data = {
        "account_id": account_id,
        "type": "EXPENSE",
        "amount": "150.00",
        "description": "Groceries run",
        "date": dt.datetime(2024, 3, 10, 12, 0),
        "category": "groceries",
    }
    data.update(overrides)
    return data
