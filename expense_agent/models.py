"""Core data types shared by the extractor, ledger, pipeline and coordinator."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from enum import Enum

log = logging.getLogger(__name__)

# Persisted column order in the expenses sheet
COLUMN_ORDER = [
    "date", "merchant", "category", "amount", "description", "source_message_id",
]


@dataclass(frozen=True)
class TransactionRecord:
    """One persisted expense row.  Never mutated after extraction."""
    date: str  # ISO YYYY-MM-DD
    merchant: str
    category: str
    amount: float
    description: str
    source_message_id: str

    def to_row(self) -> list:
        return [getattr(self, col) for col in COLUMN_ORDER]

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_row(cls, row: list) -> "TransactionRecord":
        """Rebuild a record from a sheet row (missing trailing cells are blank)."""
        cells = list(row) + [""] * (len(COLUMN_ORDER) - len(row))
        raw_amount = cells[3]
        try:
            amount = float(str(raw_amount).replace("$", "").replace(",", ""))
        except ValueError:
            log.warning("Unparseable amount %r in sheet row for message %s; counted as 0.0",
                        raw_amount, cells[5] or "(no id)")
            amount = 0.0
        return cls(
            date=str(cells[0]),
            merchant=str(cells[1]),
            category=str(cells[2]),
            amount=amount,
            description=str(cells[4]),
            source_message_id=str(cells[5]),
        )


@dataclass(frozen=True)
class IngestionCandidate:
    """A single message considered for extraction."""
    id: str
    thread_id: str
    subject: str
    date: datetime
    plain_text_body: str

    @property
    def fallback_date(self) -> date:
        return self.date.date() if isinstance(self.date, datetime) else self.date


@dataclass
class CandidateThread:
    """A mailbox thread with its messages in source order."""
    id: str
    messages: list[IngestionCandidate] = field(default_factory=list)


class ThreadState(str, Enum):
    PENDING = "pending"
    INGESTING = "ingesting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Allowed state transitions; FAILED and SUCCEEDED are terminal
_TRANSITIONS = {
    ThreadState.PENDING: {ThreadState.INGESTING},
    ThreadState.INGESTING: {ThreadState.SUCCEEDED, ThreadState.FAILED},
    ThreadState.SUCCEEDED: set(),
    ThreadState.FAILED: set(),
}


class ThreadOutcome(str, Enum):
    FULLY_INGESTED = "fully-ingested"
    PARTIALLY_INGESTED_WITH_ERROR = "partially-ingested-with-error"


@dataclass
class ThreadProgress:
    """Per-thread state machine tracked by the ingestion pipeline."""
    thread_id: str
    state: ThreadState = ThreadState.PENDING
    ingested: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed_message_id: str | None = None
    error: str | None = None

    def transition(self, new_state: ThreadState):
        if new_state not in _TRANSITIONS[self.state]:
            raise ValueError(
                f"Thread {self.thread_id}: illegal transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    def fail(self, message_id: str, error: str):
        self.transition(ThreadState.FAILED)
        self.failed_message_id = message_id
        self.error = error

    @property
    def outcome(self) -> ThreadOutcome:
        if self.state == ThreadState.SUCCEEDED:
            return ThreadOutcome.FULLY_INGESTED
        if self.state == ThreadState.FAILED:
            return ThreadOutcome.PARTIALLY_INGESTED_WITH_ERROR
        raise ValueError(f"Thread {self.thread_id} has not finished (state={self.state.value})")


@dataclass
class PipelineResult:
    appended: list[TransactionRecord] = field(default_factory=list)
    threads: dict[str, ThreadProgress] = field(default_factory=dict)
    skipped: int = 0

    @property
    def outcomes(self) -> dict[str, ThreadOutcome]:
        return {tid: progress.outcome for tid, progress in self.threads.items()}

    @property
    def fully_ingested(self) -> list[str]:
        return [tid for tid, outcome in self.outcomes.items()
                if outcome == ThreadOutcome.FULLY_INGESTED]

    @property
    def failed(self) -> list[str]:
        return [tid for tid, outcome in self.outcomes.items()
                if outcome == ThreadOutcome.PARTIALLY_INGESTED_WITH_ERROR]


@dataclass
class RunResult:
    processed_count: int = 0
    labeled_threads: list[str] = field(default_factory=list)
    failed_threads: list[str] = field(default_factory=list)
    skipped_messages: int = 0
    dry_run: bool = False
