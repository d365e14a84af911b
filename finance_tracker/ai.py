"""Generative AI collaborator: receipt scanning and text generation.

``GeminiClient`` talks to the Generative Language REST API.  Anything that
implements ``generate_content(parts) -> str`` can stand in for it; parts are
plain strings (text) or ``{"mime_type": ..., "data": bytes}`` dicts (inline
images).
"""

from __future__ import annotations

import base64
import datetime as dt
import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Protocol, Sequence, Union

import requests

from .errors import ExternalServiceFailure, InvalidInput
from .money import to_money

logger = logging.getLogger(__name__)

Part = Union[str, dict]

_FENCE = re.compile(r"```(?:json)?\n?")

RECEIPT_CATEGORIES = (
    "housing",
    "transportation",
    "groceries",
    "utilities",
    "entertainment",
    "food",
    "shopping",
    "healthcare",
    "education",
    "personal",
    "travel",
    "insurance",
    "gifts",
    "bills",
    "other-expense",
)

RECEIPT_PROMPT = f"""Analyze this receipt image and extract the following information in JSON format:
- Total amount (just the number)
- Date (in ISO format)
- Description or items purchased (brief summary)
- Merchant/store name
- Suggested category (one of: {", ".join(RECEIPT_CATEGORIES)})

Only respond with valid JSON in this exact format:
{{
  "amount": number,
  "date": "ISO date string",
  "description": "string",
  "merchantName": "string",
  "category": "string"
}}

If it's not a receipt, return an empty object"""


class ContentGenerator(Protocol):
    def generate_content(self, parts: Sequence[Part]) -> str:
        ...


class GeminiClient:
    BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

    def __init__(self, api_key: str, model: str = "gemini-1.5-flash", timeout: float = 30.0):
        if not api_key:
            raise ExternalServiceFailure("GEMINI_API_KEY is not configured")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = requests.Session()

    def _encode_part(self, part: Part) -> dict:
        if isinstance(part, str):
            return {"text": part}
        return {
            "inline_data": {
                "mime_type": part["mime_type"],
                "data": base64.b64encode(part["data"]).decode("ascii"),
            }
        }

    def generate_content(self, parts: Sequence[Part]) -> str:
        url = f"{self.BASE_URL}/{self.model}:generateContent"
        payload = {"contents": [{"parts": [self._encode_part(p) for p in parts]}]}
        try:
            response = self.session.post(
                url,
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
            return "".join(p.get("text", "") for p in body["candidates"][0]["content"]["parts"])
        except requests.RequestException as exc:
            logger.error("Gemini request failed: %s", exc)
            raise ExternalServiceFailure("AI service request failed") from exc
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            logger.error("Unexpected Gemini response: %s", exc)
            raise ExternalServiceFailure("AI service returned an unexpected response") from exc


def ai_from_config(config) -> Optional[GeminiClient]:
    """A client for the configured API key, or None when no key is set."""
    api_key = config.get("GEMINI_API_KEY")
    if not api_key:
        return None
    return GeminiClient(api_key, config.get("GEMINI_MODEL") or "gemini-1.5-flash")


def clean_json_text(text: str) -> str:
    return _FENCE.sub("", text or "").strip()


def parse_json_reply(text: str):
    try:
        return json.loads(clean_json_text(text))
    except ValueError as exc:
        raise ExternalServiceFailure("Invalid response format from AI service") from exc


@dataclass
class ReceiptData:
    amount: Decimal
    date: Optional[dt.datetime]
    description: Optional[str]
    merchant_name: Optional[str]
    category: Optional[str]

    def to_dict(self) -> dict:
        return {
            "amount": str(self.amount),
            "date": self.date.isoformat() if self.date else None,
            "description": self.description,
            "merchant_name": self.merchant_name,
            "category": self.category,
        }


def _receipt_date(value) -> Optional[dt.datetime]:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        logger.warning("Receipt date %r is not ISO formatted, ignoring", value)
        return None
    return parsed.replace(tzinfo=None)


def scan_receipt(ai: ContentGenerator, image: bytes, mime_type: str) -> Optional[ReceiptData]:
    """Extract receipt fields from an image.

    Returns None when the model says the image is not a receipt.  Any
    collaborator or format failure raises ``ExternalServiceFailure``.
    """
    if not image:
        raise InvalidInput("Receipt image is empty")
    if not (mime_type or "").startswith("image/"):
        raise InvalidInput("Receipt must be an image")

    text = ai.generate_content([{"mime_type": mime_type, "data": image}, RECEIPT_PROMPT])
    data = parse_json_reply(text)
    if not isinstance(data, dict):
        raise ExternalServiceFailure("Invalid response format from AI service")
    if not data:
        return None
    try:
        amount = to_money(str(data.get("amount")))
    except InvalidInput as exc:
        raise ExternalServiceFailure("AI service returned an invalid amount") from exc

    category = str(data.get("category") or "").strip().lower() or None
    if category and category not in RECEIPT_CATEGORIES:
        category = "other-expense"
    return ReceiptData(
        amount=amount,
        date=_receipt_date(data.get("date")),
        description=data.get("description"),
        merchant_name=data.get("merchantName"),
        category=category,
    )


def generate_insight_list(ai: ContentGenerator, prompt: str) -> List[str]:
    data = parse_json_reply(ai.generate_content([prompt]))
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise ExternalServiceFailure("AI service did not return a list of insights")
    return data
