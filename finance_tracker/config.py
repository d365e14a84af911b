"""Configuration utilities for the Finance Tracker.

Settings come from the process environment (a ``.env`` file is loaded first
when present) and an optional JSON file that can add transaction categories.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv


# Category ids offered to users and to the receipt scanner.
# Keys: category id. Values: transaction type the category belongs to.
DEFAULT_CATEGORIES: Dict[str, str] = {
    "salary": "INCOME",
    "freelance": "INCOME",
    "investments": "INCOME",
    "business": "INCOME",
    "rental": "INCOME",
    "other-income": "INCOME",
    "housing": "EXPENSE",
    "transportation": "EXPENSE",
    "groceries": "EXPENSE",
    "utilities": "EXPENSE",
    "entertainment": "EXPENSE",
    "food": "EXPENSE",
    "shopping": "EXPENSE",
    "healthcare": "EXPENSE",
    "education": "EXPENSE",
    "personal": "EXPENSE",
    "travel": "EXPENSE",
    "insurance": "EXPENSE",
    "gifts": "EXPENSE",
    "bills": "EXPENSE",
    "other-expense": "EXPENSE",
}

DEFAULT_DATABASE_URL = "sqlite:///finance_tracker.db"
DEFAULT_GEMINI_MODEL = "gemini-1.5-flash"


@dataclass
class AppConfig:
    database_url: str = DEFAULT_DATABASE_URL
    secret_key: str = "dev"
    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    resend_api_key: Optional[str] = None
    email_from: str = "Finance Tracker <onboarding@resend.dev>"
    budget_alert_threshold: int = 80
    transaction_rate_limit: int = 10
    transaction_rate_period: int = 3600
    log_level: str = "INFO"
    categories: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_CATEGORIES))

    @staticmethod
    def load(config_path: Optional[str | Path] = None) -> "AppConfig":
        """Load config from the environment, then JSON if provided.

        JSON format:
        {
          "categories": {"pets": "EXPENSE", "bonus": "INCOME"}
        }
        """

        load_dotenv()
        env = os.environ
        cfg = AppConfig(
            database_url=env.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            secret_key=env.get("SECRET_KEY", "dev"),
            gemini_api_key=env.get("GEMINI_API_KEY") or None,
            gemini_model=env.get("GEMINI_MODEL", DEFAULT_GEMINI_MODEL),
            resend_api_key=env.get("RESEND_API_KEY") or None,
            email_from=env.get("EMAIL_FROM", "Finance Tracker <onboarding@resend.dev>"),
            budget_alert_threshold=int(env.get("BUDGET_ALERT_THRESHOLD", 80)),
            transaction_rate_limit=int(env.get("TRANSACTION_RATE_LIMIT", 10)),
            log_level=env.get("LOG_LEVEL", "INFO"),
        )

        if config_path:
            p = Path(config_path)
            if p.exists():
                with p.open("r", encoding="utf-8") as f:
                    raw = json.load(f)
                if isinstance(raw, dict) and isinstance(raw.get("categories"), dict):
                    for cat, kind in raw["categories"].items():
                        kind = str(kind).upper()
                        if kind in ("INCOME", "EXPENSE"):
                            cfg.categories[str(cat).lower()] = kind
        return cfg

    def flask_settings(self) -> Dict[str, object]:
        return {
            "SECRET_KEY": self.secret_key,
            "SQLALCHEMY_DATABASE_URI": self.database_url,
            "GEMINI_API_KEY": self.gemini_api_key,
            "GEMINI_MODEL": self.gemini_model,
            "RESEND_API_KEY": self.resend_api_key,
            "EMAIL_FROM": self.email_from,
            "BUDGET_ALERT_THRESHOLD": self.budget_alert_threshold,
            "TRANSACTION_RATE_LIMIT": self.transaction_rate_limit,
            "TRANSACTION_RATE_PERIOD": self.transaction_rate_period,
            "LOG_LEVEL": self.log_level,
            "CATEGORIES": dict(self.categories),
        }


def categories_for(categories: Mapping[str, str], txn_type: str) -> List[str]:
    """Category ids that belong to ``txn_type``, in configured order."""
    return [cat for cat, kind in categories.items() if kind == txn_type]
