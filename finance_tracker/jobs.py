"""Scheduled jobs and the local event dispatcher.

An external scheduler (cron, a job runner) invokes ``run_job`` on the
schedules in ``SCHEDULES``.  Recurring transactions fan out into one event
per due template; ``LocalDispatcher`` delivers those events in-process,
throttled per user.
"""

from __future__ import annotations

import datetime as dt
import logging
import time
from typing import Callable, Dict, Optional, Sequence

from .ai import ai_from_config
from .budgets import check_budget_alerts
from .errors import FinanceError
from .mailer import mailer_from_config
from .recurring import RECURRING_EVENT, process_recurring_transaction, trigger_recurring_transactions
from .reports import generate_monthly_reports
from .throttle import SlidingWindowThrottle

logger = logging.getLogger(__name__)

SCHEDULES: Dict[str, str] = {
    "check-budget-alerts": "0 */6 * * *",
    "trigger-recurring-transactions": "0 0 * * *",
    "generate-monthly-reports": "0 0 1 * *",
}

RECURRING_LIMIT_PER_USER = 10
RECURRING_PERIOD_SECONDS = 60


class LocalDispatcher:
    """Deliver recurring-transaction events one by one in this process."""

    def __init__(
        self,
        throttle: Optional[SlidingWindowThrottle] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Optional[dt.datetime] = None,
    ):
        self.throttle = throttle or SlidingWindowThrottle(RECURRING_LIMIT_PER_USER, RECURRING_PERIOD_SECONDS)
        self.sleep = sleep
        self.now = now
        self.processed = 0
        self.failed = 0

    def send(self, events: Sequence[dict]) -> None:
        for event in events:
            if event.get("name") != RECURRING_EVENT:
                logger.warning("Ignoring unknown event %r", event.get("name"))
                continue
            data = event.get("data") or {}
            user_key = data.get("user_id")
            while not self.throttle.hit(user_key):
                self.sleep(self.throttle.retry_after(user_key))
            try:
                occurrence = process_recurring_transaction(
                    data.get("transaction_id"),
                    data.get("user_id"),
                    now=self.now,
                )
            except FinanceError as exc:
                self.failed += 1
                logger.error("Recurring event %s failed: %s", data, exc)
                continue
            if occurrence is not None:
                self.processed += 1


def run_job(name: str, config, now: Optional[dt.datetime] = None, mailer=None, ai=None, dispatcher=None) -> Dict:
    """Run one scheduled job inside an application context."""
    if name not in SCHEDULES:
        raise KeyError(f"Unknown job: {name}")
    mailer = mailer or mailer_from_config(config)
    if name == "check-budget-alerts":
        return check_budget_alerts(mailer, now=now, threshold=int(config.get("BUDGET_ALERT_THRESHOLD", 80)))
    if name == "trigger-recurring-transactions":
        dispatcher = dispatcher or LocalDispatcher(now=now)
        result = trigger_recurring_transactions(dispatcher, now=now)
        if isinstance(dispatcher, LocalDispatcher):
            result.update(processed=dispatcher.processed, failed=dispatcher.failed)
        return result
    return generate_monthly_reports(ai if ai is not None else ai_from_config(config), mailer, now=now)
