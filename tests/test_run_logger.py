"""Tests for the run log pack and the CLI exit codes."""
from __future__ import annotations

import csv
import json
import os

from conftest import FakeExtractor, make_thread
from expense_agent import run
from expense_agent.ledger import Ledger
from expense_agent.models import RunResult
from expense_agent.pipeline import IngestionPipeline
from expense_agent.run_logger import RunLogger


def _read_csv(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


class TestRunLogger:
    def test_flush_writes_pack(self, tmp_path):
        pipeline = IngestionPipeline(FakeExtractor(fail_ids={"b2"}), delay_seconds=0)
        outcome = pipeline.run([make_thread("A", "a1"), make_thread("B", "b1", "b2")], Ledger())
        result = RunResult(processed_count=2, labeled_threads=["A"], failed_threads=["B"],
                           skipped_messages=0, dry_run=False)

        logger = RunLogger(base_dir=str(tmp_path), install_handlers=False)
        logger.record_run(result, outcome)
        run_dir = logger.flush()

        with open(os.path.join(run_dir, "run_summary.json"), encoding="utf-8") as f:
            summary = json.load(f)
        assert summary["processed_count"] == 2
        assert summary["failed_threads"] == ["B"]

        rows = _read_csv(os.path.join(run_dir, "extracted_rows.csv"))
        assert [r["source_message_id"] for r in rows] == ["a1", "b1"]

        outcomes = {r["thread_id"]: r for r in _read_csv(os.path.join(run_dir, "thread_outcomes.csv"))}
        assert outcomes["A"]["outcome"] == "fully-ingested"
        assert outcomes["B"]["failed_message_id"] == "b2"

    def test_error_only_summary(self, tmp_path):
        logger = RunLogger(base_dir=str(tmp_path), install_handlers=False)
        logger.set_error("boom")
        run_dir = logger.flush()
        with open(os.path.join(run_dir, "run_summary.json"), encoding="utf-8") as f:
            assert json.load(f)["error"] == "boom"
        assert _read_csv(os.path.join(run_dir, "extracted_rows.csv")) == []


class TestMain:
    def test_missing_settings_exit_code(self, monkeypatch):
        monkeypatch.setattr(run, "load_env", lambda: {"SHEET_ID": "x"})
        assert run.main([]) == 2

    def test_parse_args_defaults(self):
        args = run.parse_args(["--dry-run", "--max-threads", "3"])
        assert args.dry_run
        assert args.max_threads == 3
        assert args.dashboard_month == "ALL"
