"""
Thin HTTP client for the Gemini ``generateContent`` endpoint.

One synchronous POST per call, no internal retries: retry policy belongs
to the ingestion pipeline, which leaves failed threads unlabeled so the
next run picks them up again.
"""

import json
import logging

import requests

from expense_agent.errors import ExtractionIncomplete, ParseError, TransportError

log = logging.getLogger(__name__)

API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MODEL = "gemini-2.5-flash-lite"


class GeminiClient:
    """Sends a prompt and returns the first candidate's text."""

    def __init__(self, api_key, model=DEFAULT_MODEL, timeout=60.0, session=None):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def url(self):
        return f"{API_BASE}/{self.model}:generateContent"

    @staticmethod
    def build_payload(prompt):
        return {"contents": [{"parts": [{"text": prompt}]}]}

    def generate(self, prompt: str) -> str:
        """POST *prompt* and return the raw text of the first candidate.

        Raises TransportError, ParseError or ExtractionIncomplete.
        """
        payload = self.build_payload(prompt)
        try:
            resp = self.session.post(
                self.url,
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"Gemini request failed: {exc}") from exc

        if resp.status_code != 200:
            raise TransportError(
                f"API Error ({resp.status_code}): {resp.text[:300]}",
                status_code=resp.status_code,
            )

        try:
            envelope = json.loads(resp.text)
        except (json.JSONDecodeError, TypeError) as exc:
            raise ParseError(f"Gemini envelope is not JSON: {resp.text[:300]}") from exc
        if not isinstance(envelope, dict):
            raise ParseError("Gemini envelope is not a JSON object")

        candidates = envelope.get("candidates")
        if not candidates:
            raise ExtractionIncomplete(
                "Gemini did not return any results (candidates array empty)."
            )

        try:
            text = candidates[0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ParseError(f"Unexpected Gemini candidate shape: {str(candidates[0])[:300]}") from exc
        if not isinstance(text, str):
            raise ParseError("Gemini candidate text is not a string")

        usage = envelope.get("usageMetadata") or {}
        if usage:
            log.debug("Gemini tokens: prompt=%s candidates=%s total=%s",
                      usage.get("promptTokenCount"), usage.get("candidatesTokenCount"),
                      usage.get("totalTokenCount"))
        return text
