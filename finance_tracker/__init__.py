"""Personal Finance Tracker package."""

__all__ = [
    "config",
    "errors",
    "money",
    "models",
    "db",
    "ledger",
    "recurring",
    "budgets",
    "analytics",
    "reports",
    "accounts",
    "ai",
    "mailer",
    "throttle",
    "jobs",
    "webapp",
]

__version__ = "0.2.0"
