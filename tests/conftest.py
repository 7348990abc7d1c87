"""Shared fakes for the expense agent tests."""
from __future__ import annotations

import json
import os
import sys
from datetime import datetime, timezone

import pytest

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from expense_agent.config import load_category_rules
from expense_agent.errors import TransportError
from expense_agent.models import CandidateThread, IngestionCandidate, TransactionRecord
from expense_agent.settings import Settings


def make_message(msg_id, thread_id="t1", subject="Capital One transaction",
                 body="You made a purchase at SHELL for $32.10", when=None):
    return IngestionCandidate(
        id=msg_id,
        thread_id=thread_id,
        subject=subject,
        date=when or datetime(2024, 1, 5, 15, 30, tzinfo=timezone.utc),
        plain_text_body=body,
    )


def make_thread(thread_id, *msg_ids, **kwargs):
    return CandidateThread(
        id=thread_id,
        messages=[make_message(m, thread_id=thread_id, **kwargs) for m in msg_ids],
    )


def model_reply(**overrides):
    data = {
        "date": "2024-01-05",
        "merchant": "SHELL",
        "amount": "32.10",
        "category": "Gas",
        "description": "fuel",
    }
    data.update(overrides)
    return json.dumps(data)


class FakeClient:
    """Classification client returning canned text; records prompts."""

    def __init__(self, replies=None, default=None):
        self.replies = list(replies or [])
        self.default = default if default is not None else model_reply()
        self.prompts: list[str] = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        if self.replies:
            reply = self.replies.pop(0)
        else:
            reply = self.default
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeExtractor:
    """Extractor stub: fails for ids listed in *fail_ids*."""

    def __init__(self, fail_ids=()):
        self.fail_ids = set(fail_ids)
        self.calls: list[str] = []

    def extract(self, body, subject, fallback_date, message_id=""):
        self.calls.append(message_id)
        if message_id in self.fail_ids:
            raise TransportError("API Error (503): unavailable", status_code=503)
        return TransactionRecord(
            date=fallback_date.isoformat(),
            merchant="SHELL",
            category="Gas",
            amount=32.10,
            description="fuel",
            source_message_id=message_id,
        )


class FakeMailbox:
    def __init__(self, threads=None, labels=None):
        self.threads = list(threads or [])
        self.labels = set(labels or [])
        self.created: list[str] = []
        self.labeled: list[tuple[str, str]] = []
        self.queries: list[tuple[str, int]] = []

    def ensure_label(self, name):
        if name not in self.labels:
            self.labels.add(name)
            self.created.append(name)
        return f"Label_{name}"

    def search_threads(self, query, max_results):
        self.queries.append((query, max_results))
        labeled = {tid for tid, _ in self.labeled}
        return [t for t in self.threads if t.id not in labeled][:max_results]

    def add_label(self, thread_id, label_name):
        self.labeled.append((thread_id, label_name))


class FakeStore:
    def __init__(self, ids=()):
        self.rows: list[TransactionRecord] = [
            TransactionRecord("2024-01-01", "OLD", "Gas", 1.0, "", i) for i in ids
        ]
        self.appended: list[TransactionRecord] = []
        self.sorted = 0

    def existing_message_ids(self):
        return [r.source_message_id for r in self.rows]

    def append_record(self, record):
        self.rows.append(record)
        self.appended.append(record)

    def read_records(self):
        return list(self.rows)

    def sort_by_date(self):
        self.sorted += 1
        return len(self.rows) > 0


class FakeNotifier:
    def __init__(self):
        self.sent: list[int] = []

    def send_summary(self, processed_count):
        self.sent.append(processed_count)


class FakeDashboard:
    def __init__(self):
        self.refreshed = 0

    def refresh(self):
        self.refreshed += 1


@pytest.fixture
def taxonomy():
    return load_category_rules()


@pytest.fixture
def settings():
    return Settings(
        gemini_api_key="test-key",
        sheet_id="sheet-123",
        sheet_name="Expenses",
        processed_label="expense-processed",
        extraction_delay_seconds=0.0,
    )
