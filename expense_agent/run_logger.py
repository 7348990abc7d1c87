"""
Run Logger – creates a "RUN LOG PACK" per run in logs/runs/<run_id>/
Artifacts produced:
  - raw_debug.log        (via Python logging, DEBUG+)
  - run_summary.json
  - extracted_rows.csv
  - thread_outcomes.csv
"""

import csv
import json
import logging
import os
import sys
from datetime import datetime

from expense_agent.models import COLUMN_ORDER


class RunLogger:
    """Manages all per-run logging artifacts."""

    OUTCOME_FIELDS = [
        "thread_id", "outcome", "ingested", "skipped", "failed_message_id", "error",
    ]

    def __init__(self, base_dir: str | None = None, console_level=logging.INFO,
                 install_handlers=True):
        self.run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.started_at = datetime.now().isoformat(timespec="seconds")
        if base_dir is None:
            base_dir = os.path.join(os.path.dirname(__file__), "..", "logs", "runs")
        self.run_dir = os.path.join(base_dir, self.run_id)
        os.makedirs(self.run_dir, exist_ok=True)

        if install_handlers:
            self._setup_file_logging(console_level)

        self._summary: dict = {}
        self._extracted: list[dict] = []
        self._outcomes: list[dict] = []

    # ------------------------------------------------------------------
    # Logging setup
    # ------------------------------------------------------------------
    def _setup_file_logging(self, console_level):
        log_path = os.path.join(self.run_dir, "raw_debug.log")
        root = logging.getLogger()
        root.setLevel(logging.DEBUG)
        for h in root.handlers[:]:
            root.removeHandler(h)
        # File handler: everything (DEBUG+)
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        root.addHandler(fh)
        # Console handler: INFO+ by default
        ch = logging.StreamHandler(sys.stderr)
        ch.setLevel(console_level)
        ch.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
        root.addHandler(ch)

        # Google client libraries are chatty at DEBUG
        for noisy in ("googleapiclient.discovery", "googleapiclient.discovery_cache",
                      "urllib3", "google.auth"):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    # ------------------------------------------------------------------
    # Accumulators
    # ------------------------------------------------------------------
    def record_run(self, result, pipeline_result=None):
        """Capture the coordinator's result and per-thread progress."""
        if pipeline_result is not None:
            self._extracted = [r.to_dict() for r in pipeline_result.appended]
            self._outcomes = [
                {
                    "thread_id": tid,
                    "outcome": progress.outcome.value,
                    "ingested": len(progress.ingested),
                    "skipped": len(progress.skipped),
                    "failed_message_id": progress.failed_message_id or "",
                    "error": progress.error or "",
                }
                for tid, progress in pipeline_result.threads.items()
            ]
        self._summary = {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "finished_at": datetime.now().isoformat(timespec="seconds"),
            "dry_run": result.dry_run,
            "processed_count": result.processed_count,
            "skipped_messages": result.skipped_messages,
            "labeled_threads": list(result.labeled_threads),
            "failed_threads": list(result.failed_threads),
        }

    def set_error(self, error: str):
        self._summary.setdefault("run_id", self.run_id)
        self._summary["error"] = error

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------
    def flush(self):
        self._write_json("run_summary.json", self._summary or {"run_id": self.run_id})
        self._write_csv("extracted_rows.csv", COLUMN_ORDER, self._extracted)
        self._write_csv("thread_outcomes.csv", self.OUTCOME_FIELDS, self._outcomes)
        logging.getLogger(__name__).info("Run log pack written to %s", self.run_dir)
        return self.run_dir

    def _write_csv(self, filename: str, fieldnames: list[str], rows: list[dict]):
        path = os.path.join(self.run_dir, filename)
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
            writer.writeheader()
            for row in rows:
                writer.writerow(row)

    def _write_json(self, filename: str, data):
        path = os.path.join(self.run_dir, filename)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
