"""Flask web interface for the Finance Tracker."""

from __future__ import annotations

import datetime as dt
import json
import logging
from decimal import Decimal
from functools import wraps
from typing import Dict, Mapping, Optional

from flask import Flask, current_app, g, jsonify, request

from . import accounts as acc
from . import budgets, ledger
from .accounts import IdentityProfile
from .ai import ContentGenerator, ai_from_config, scan_receipt
from .analytics import monthly_totals, spending_by_category, summarize_income_expense
from .config import AppConfig, categories_for
from .db import init_db
from .errors import ExternalServiceFailure, FinanceError, InvalidInput, RateLimitExceeded, Unauthorized
from .money import EXPENSE, INCOME, format_money, month_bounds
from .throttle import SlidingWindowThrottle

logger = logging.getLogger(__name__)

MAX_RECEIPT_BYTES = 5 * 1024 * 1024
FILTER_KEYS = ("search", "type", "recurring", "sort", "direction")


def header_identity(req) -> Optional[IdentityProfile]:
    """Identity forwarded by the authenticating proxy in trusted headers."""
    external_id = (req.headers.get("X-User-Id") or "").strip()
    if not external_id:
        return None
    name = (req.headers.get("X-User-Name") or "").strip()
    first, _, last = name.partition(" ")
    return IdentityProfile(
        id=external_id,
        email=(req.headers.get("X-User-Email") or "").strip(),
        first_name=first or None,
        last_name=last or None,
        image_url=req.headers.get("X-User-Image") or None,
    )


def login_required(view):
    @wraps(view)
    def wrapped_view(**kwargs):
        if g.user is None:
            raise Unauthorized("Unauthorized")
        return view(**kwargs)

    return wrapped_view


def _load_logged_in_user() -> None:
    g.user = None
    if not request.path.startswith("/api/"):
        return
    provider = current_app.config["IDENTITY_PROVIDER"]
    profile = provider(request)
    if profile is not None:
        g.user = acc.check_user(profile)


def _json_body() -> Dict:
    raw = request.get_data(cache=True)
    if not raw:
        return {}
    try:
        body = json.loads(raw, parse_float=Decimal)
    except ValueError:
        raise InvalidInput("Request body must be valid JSON") from None
    if not isinstance(body, dict):
        raise InvalidInput("Request body must be a JSON object")
    return body


def _filters(args: Mapping[str, str]) -> Dict[str, str]:
    return {key: args.get(key, "") for key in FILTER_KEYS if args.get(key)}


def _ai_client() -> ContentGenerator:
    client = current_app.extensions.get("ai_client")
    if client is None:
        raise ExternalServiceFailure("AI service is not configured")
    return client


def _check_transaction_rate(user_id: int) -> None:
    throttle: SlidingWindowThrottle = current_app.extensions["transaction_throttle"]
    if not throttle.hit(user_id):
        retry = round(throttle.retry_after(user_id))
        logger.warning("Rate limit exceeded for user %s, retry in %ss", user_id, retry)
        raise RateLimitExceeded("Too many requests, please try again later")


def _budget_payload(user, account_id=None) -> Dict:
    current = budgets.get_current_budget(user, account_id)
    budget = current["budget"]
    expenses = current["current_expenses"]
    return {
        "budget": budget.to_dict() if budget else None,
        "current_expenses": format_money(expenses),
        "percentage_used": str(budgets.percentage_used(expenses, budget.amount)) if budget else None,
    }


def create_app(config_path: Optional[str] = None, test_config: Optional[Mapping] = None) -> Flask:
    app = Flask(__name__)
    cfg = AppConfig.load(config_path)
    app.config.from_mapping(cfg.flask_settings())
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {"pool_pre_ping": True}
    app.config["IDENTITY_PROVIDER"] = header_identity
    if test_config:
        app.config.update(test_config)

    app.extensions["transaction_throttle"] = SlidingWindowThrottle(
        int(app.config["TRANSACTION_RATE_LIMIT"]),
        float(app.config["TRANSACTION_RATE_PERIOD"]),
    )
    app.extensions["ai_client"] = ai_from_config(app.config)
    init_db(app)
    app.before_request(_load_logged_in_user)

    @app.errorhandler(FinanceError)
    def handle_finance_error(exc: FinanceError):
        return jsonify({"error": exc.message}), exc.status_code

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    @app.route("/api/me")
    @login_required
    def me():
        return jsonify(g.user.to_dict())

    @app.route("/api/accounts", methods=["GET", "POST"])
    @login_required
    def accounts_index():
        if request.method == "POST":
            account = acc.create_account(g.user, _json_body())
            return jsonify(account.to_dict()), 201
        return jsonify(acc.get_user_accounts(g.user))

    @app.route("/api/accounts/<int:account_id>")
    @login_required
    def account_detail(account_id: int):
        return jsonify(acc.get_account_with_transactions(g.user, account_id, _filters(request.args)))

    @app.route("/api/accounts/<int:account_id>/default", methods=["POST"])
    @login_required
    def account_default(account_id: int):
        return jsonify(acc.update_default_account(g.user, account_id).to_dict())

    @app.route("/api/transactions", methods=["POST"])
    @login_required
    def transactions_create():
        _check_transaction_rate(g.user.id)
        txn = ledger.create_transaction(g.user, _json_body())
        return jsonify(txn.to_dict()), 201

    @app.route("/api/transactions/<int:transaction_id>", methods=["GET", "PUT", "DELETE"])
    @login_required
    def transaction_detail(transaction_id: int):
        if request.method == "PUT":
            txn = ledger.update_transaction(g.user, transaction_id, _json_body())
            return jsonify(txn.to_dict())
        if request.method == "DELETE":
            ledger.delete_transaction(g.user, transaction_id)
            return jsonify({"deleted": [transaction_id]})
        return jsonify(ledger.get_transaction(g.user, transaction_id).to_dict())

    @app.route("/api/transactions/bulk-delete", methods=["POST"])
    @login_required
    def transactions_bulk_delete():
        ids = _json_body().get("ids")
        if not isinstance(ids, list):
            raise InvalidInput("ids must be a list of transaction ids")
        return jsonify({"deleted": ledger.bulk_delete_transactions(g.user, ids)})

    @app.route("/api/transactions/scan-receipt", methods=["POST"])
    @login_required
    def transactions_scan_receipt():
        file = request.files.get("file")
        if not file or not file.filename:
            raise InvalidInput("Please choose a receipt image to upload")
        image = file.read()
        if len(image) > MAX_RECEIPT_BYTES:
            raise InvalidInput("Receipt image must be 5MB or smaller")
        receipt = scan_receipt(_ai_client(), image, file.mimetype)
        return jsonify(receipt.to_dict() if receipt else {})

    @app.route("/api/categories")
    @login_required
    def categories():
        configured = current_app.config["CATEGORIES"]
        return jsonify({kind: categories_for(configured, kind) for kind in (INCOME, EXPENSE)})

    @app.route("/api/budget", methods=["GET", "PUT"])
    @login_required
    def budget():
        if request.method == "PUT":
            budgets.update_budget(g.user, _json_body().get("amount"))
        return jsonify(_budget_payload(g.user, request.args.get("account_id", type=int)))

    @app.route("/api/dashboard")
    @login_required
    def dashboard():
        txns = acc.get_dashboard_data(g.user)
        start, end = month_bounds(dt.datetime.now())
        this_month = [t for t in txns if start <= t.date < end and not t.is_recurring]
        totals = summarize_income_expense(this_month)
        history = monthly_totals(t for t in txns if not t.is_recurring)
        return jsonify(
            {
                "accounts": acc.get_user_accounts(g.user),
                "transactions": [t.to_dict() for t in txns],
                "budget": _budget_payload(g.user),
                "month": {
                    "totals": {k: format_money(v) for k, v in totals.items()},
                    "category_spend": {k: format_money(v) for k, v in spending_by_category(this_month).items()},
                },
                "history": {
                    month: {k: format_money(v) for k, v in row.items()} for month, row in history.items()
                },
            }
        )

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_app().run(debug=True)
