"""Persistence helpers on top of the Flask-SQLAlchemy session."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from flask import Flask
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import TransactionFailure
from .models import db

logger = logging.getLogger(__name__)


def init_db(app: Flask) -> None:
    db.init_app(app)
    with app.app_context():
        db.create_all()


@contextmanager
def atomic() -> Iterator[Session]:
    """Run the enclosed writes as one commit-or-rollback unit.

    Any database error rolls the whole unit back and surfaces as
    ``TransactionFailure``; other exceptions roll back and propagate as is.
    """
    session = db.session
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Atomic commit aborted: %s", exc)
        raise TransactionFailure("Database transaction failed") from exc
    except Exception:
        session.rollback()
        raise
