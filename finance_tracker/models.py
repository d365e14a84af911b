"""SQLAlchemy models for the Finance Tracker web application."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

from flask_sqlalchemy import SQLAlchemy

from .money import RECURRING_INTERVALS, format_money


db = SQLAlchemy()

ACCOUNT_TYPES = ("CURRENT", "SAVINGS")

PENDING = "PENDING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"
TRANSACTION_STATUSES = (PENDING, COMPLETED, FAILED)

Money = db.Numeric(12, 2, asdecimal=True)


def _iso(value):
    return value.isoformat() if value is not None else None


def _now() -> dt.datetime:
    return dt.datetime.now()


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(120))
    email = db.Column(db.String(255), unique=True, nullable=False)
    image_url = db.Column(db.String(512))
    created_at = db.Column(db.DateTime, default=_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now, nullable=False)

    accounts = db.relationship("Account", back_populates="user", cascade="all, delete-orphan")
    transactions = db.relationship("Transaction", back_populates="user", cascade="all, delete-orphan")
    budget = db.relationship("Budget", back_populates="user", uselist=False, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "image_url": self.image_url,
        }


class Account(db.Model):
    __tablename__ = "accounts"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    type = db.Column(db.String(16), nullable=False, default="CURRENT")
    balance = db.Column(Money, nullable=False, default=Decimal("0.00"))
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now, nullable=False)

    user = db.relationship("User", back_populates="accounts")
    transactions = db.relationship(
        "Transaction",
        back_populates="account",
        cascade="all, delete-orphan",
        order_by="Transaction.date.desc()",
    )

    def to_dict(self, transaction_count: int | None = None) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "balance": format_money(self.balance),
            "is_default": bool(self.is_default),
            "created_at": _iso(self.created_at),
        }
        if transaction_count is not None:
            data["transaction_count"] = transaction_count
        return data


class Transaction(db.Model):
    __tablename__ = "transactions"
    __table_args__ = (
        db.CheckConstraint("amount >= 0", name="ck_transactions_amount_magnitude"),
        db.Index("ix_transactions_recurring_due", "is_recurring", "status", "next_recurring_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False)
    amount = db.Column(Money, nullable=False)
    description = db.Column(db.String(255))
    date = db.Column(db.DateTime, nullable=False)
    category = db.Column(db.String(64), nullable=False)
    receipt_url = db.Column(db.String(512))
    is_recurring = db.Column(db.Boolean, nullable=False, default=False)
    recurring_interval = db.Column(db.Enum(*RECURRING_INTERVALS, name="recurring_interval"))
    next_recurring_date = db.Column(db.DateTime)
    last_processed = db.Column(db.DateTime)
    status = db.Column(db.String(16), nullable=False, default=COMPLETED)
    created_at = db.Column(db.DateTime, default=_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now, nullable=False)

    user = db.relationship("User", back_populates="transactions")
    account = db.relationship("Account", back_populates="transactions")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "type": self.type,
            "amount": format_money(self.amount),
            "description": self.description,
            "date": _iso(self.date),
            "category": self.category,
            "receipt_url": self.receipt_url,
            "is_recurring": bool(self.is_recurring),
            "recurring_interval": self.recurring_interval,
            "next_recurring_date": _iso(self.next_recurring_date),
            "last_processed": _iso(self.last_processed),
            "status": self.status,
        }


class Budget(db.Model):
    __tablename__ = "budgets"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    amount = db.Column(Money, nullable=False)
    last_alert_sent = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=_now, nullable=False)
    updated_at = db.Column(db.DateTime, default=_now, onupdate=_now, nullable=False)

    user = db.relationship("User", back_populates="budget")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount": format_money(self.amount),
            "last_alert_sent": _iso(self.last_alert_sent),
        }
