"""Email delivery collaborators.

Sending is fire-and-forget: a failed send is logged and reported through the
return value, never raised and never retried here.
"""

from __future__ import annotations

import logging
from typing import Protocol

import requests

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    def send(self, recipient: str, subject: str, body: str) -> bool:
        ...


class ResendMailer:
    API_URL = "https://api.resend.com/emails"

    def __init__(self, api_key: str, sender: str, timeout: float = 10.0):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def send(self, recipient: str, subject: str, body: str) -> bool:
        try:
            response = requests.post(
                self.API_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": self.sender, "to": [recipient], "subject": subject, "text": body},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Failed to send email %r to %s: %s", subject, recipient, exc)
            return False
        logger.info("Sent email %r to %s", subject, recipient)
        return True


class LogMailer:
    """Writes emails to the log instead of delivering them."""

    def send(self, recipient: str, subject: str, body: str) -> bool:
        logger.info("Email to %s: %s\n%s", recipient, subject, body)
        return True


def mailer_from_config(config) -> Mailer:
    api_key = config.get("RESEND_API_KEY")
    if not api_key:
        logger.warning("RESEND_API_KEY is not set; emails will only be logged")
        return LogMailer()
    return ResendMailer(api_key, config.get("EMAIL_FROM", "Finance Tracker <onboarding@resend.dev>"))
