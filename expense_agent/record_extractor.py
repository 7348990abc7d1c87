"""
LLM-based transaction extraction layer (Gemini).

Turns one notification email into a TransactionRecord:

  • body is cut to the first 2000 chars before the prompt is built
  • the model is asked for a single JSON object with five keys
  • markdown code fences are stripped before parsing
  • subject overrides are re-applied on the parsed result so their
    category/merchant always win over the model's answer

Any failure raises an ExtractionError subclass; there is no retry here.
"""

import json
import logging
import math
import re
from datetime import date, datetime
from typing import Any

from expense_agent import prompting
from expense_agent.config import CategoryTaxonomy
from expense_agent.errors import ParseError
from expense_agent.models import TransactionRecord

log = logging.getLogger(__name__)

# Maximum characters of email body sent to the model
BODY_CHAR_LIMIT = 2000

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_AMOUNT_STRIP_RE = re.compile(r"[,$\s]")
_AMOUNT_RE = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")


def strip_code_fences(raw: str) -> str:
    """Remove ```json / ``` markers anywhere in *raw* and trim."""
    return _FENCE_RE.sub("", raw or "").strip()


def _parse_llm_response(raw: str) -> dict[str, Any]:
    """Parse the model's text into a dict with exactly the expected keys."""
    text = strip_code_fences(raw)
    if not text:
        raise ParseError("Empty model response")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Cannot parse model JSON: {text[:300]}") from exc

    if not isinstance(data, dict):
        raise ParseError(f"Model returned {type(data).__name__}, expected an object")

    keys = set(data)
    expected = set(prompting.EXPECTED_KEYS)
    if keys != expected:
        missing = sorted(expected - keys)
        extra = sorted(keys - expected)
        raise ParseError(f"Model JSON keys mismatch: missing={missing} extra={extra}")
    return data


def _coerce_amount(value) -> float:
    if isinstance(value, bool):
        raise ParseError(f"Amount is not numeric: {value!r}")
    if isinstance(value, (int, float)):
        amount = float(value)
    elif isinstance(value, str) and _AMOUNT_RE.fullmatch(_AMOUNT_STRIP_RE.sub("", value)):
        amount = float(_AMOUNT_STRIP_RE.sub("", value))
    else:
        raise ParseError(f"Amount is not numeric: {value!r}")
    if not math.isfinite(amount):
        raise ParseError(f"Amount is not finite: {value!r}")
    return amount


def _coerce_date(value, fallback: date) -> str:
    """Return an ISO date string, falling back to the message date."""
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        try:
            return date.fromisoformat(raw[:10]).isoformat()
        except ValueError:
            log.debug("Unparseable model date %r, using fallback %s", raw, fallback)
    return fallback.isoformat()


def _pick_merchant(model_merchant: str, derived: str | None) -> str:
    """Body-derived merchant, unless the model named its trailing words.

    The pattern capture can run into uppercase text ahead of the entity
    name; when the model's answer is a word suffix of it, the shorter
    name is kept.
    """
    if not derived:
        return model_merchant
    model_words = model_merchant.upper().split()
    if model_words and derived.upper().split()[-len(model_words):] == model_words:
        return model_merchant
    return derived


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class RecordExtractor:
    """Extracts one TransactionRecord per email via the classification client."""

    def __init__(self, client, taxonomy: CategoryTaxonomy, char_limit=BODY_CHAR_LIMIT):
        self.client = client
        self.taxonomy = taxonomy
        self.char_limit = char_limit

    def extract(self, body: str, subject: str, fallback_date,
                message_id: str = "") -> TransactionRecord:
        fallback = _as_date(fallback_date)
        truncated = (body or "")[:self.char_limit]

        prompt = prompting.build_prompt(
            truncated, subject, fallback.isoformat(), self.taxonomy,
        )
        log.info("Extraction: sending %d body chars for message %s",
                 len(truncated), message_id or "(inline)")

        raw = self.client.generate(prompt)
        log.debug("Model raw response for %s: %s", message_id, raw[:500])

        data = _parse_llm_response(raw)

        merchant = str(data.get("merchant") or "").strip()
        category = str(data.get("category") or "").strip()
        override = self.taxonomy.match_override(subject)
        if override is not None:
            category = override.category
            if override.merchant:
                merchant = override.merchant
            else:
                merchant = _pick_merchant(merchant, override.merchant_from_body(truncated))
            log.debug("Subject override '%s' applied to %s", override.name, message_id)

        return TransactionRecord(
            date=_coerce_date(data.get("date"), fallback),
            merchant=merchant,
            category=category,
            amount=_coerce_amount(data.get("amount")),
            description=str(data.get("description") or "").strip(),
            source_message_id=message_id,
        )
