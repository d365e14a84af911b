"""Error types raised by the finance tracker services.

Each error carries the HTTP status the web layer answers with.
"""

from __future__ import annotations


class FinanceError(Exception):
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class Unauthorized(FinanceError):
    status_code = 401


class NotFound(FinanceError):
    status_code = 404


class AccountNotFound(NotFound):
    pass


class TransactionNotFound(NotFound):
    pass


class InvalidInput(FinanceError):
    status_code = 400


class InvalidInterval(InvalidInput):
    pass


class RateLimitExceeded(FinanceError):
    status_code = 429


class ExternalServiceFailure(FinanceError):
    status_code = 502


class TransactionFailure(FinanceError):
    status_code = 500
