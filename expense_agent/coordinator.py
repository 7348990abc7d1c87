"""
Run coordinator – one end-to-end execution.

  1) ensure the processed label exists
  2) load the ledger from the expenses sheet
  3) query the mailbox for unlabeled candidate threads (bounded batch)
  4) run the ingestion pipeline
  5) append new records in discovery order
  6) label fully-ingested threads
  7) sort the sheet and refresh the dashboard
  8) notify when anything new was ingested

Mailbox, label, sheet and notifier errors are not caught: they end the
run and reach the caller.
"""

import logging
import time

from expense_agent.ledger import Ledger
from expense_agent.mailbox import build_search_query
from expense_agent.models import RunResult
from expense_agent.pipeline import IngestionPipeline

log = logging.getLogger(__name__)


class RunCoordinator:
    def __init__(self, settings, taxonomy, mailbox, store, extractor,
                 notifier=None, dashboard=None, pipeline=None, run_logger=None,
                 max_threads=None, dry_run=False, sleep=time.sleep):
        self.settings = settings
        self.taxonomy = taxonomy
        self.mailbox = mailbox
        self.store = store
        self.notifier = notifier
        self.dashboard = dashboard
        self.pipeline = pipeline or IngestionPipeline(
            extractor, delay_seconds=settings.extraction_delay_seconds, sleep=sleep,
        )
        self.run_logger = run_logger
        self.max_threads = max_threads or settings.max_threads_per_run
        self.dry_run = dry_run

    def execute(self) -> RunResult:
        label = self.settings.processed_label
        result = RunResult(dry_run=self.dry_run)

        self.mailbox.ensure_label(label)
        ledger = Ledger.load(self.store)

        query = build_search_query(self.taxonomy.mailbox, label)
        threads = self.mailbox.search_threads(query, self.max_threads)
        if not threads:
            log.info("No new expense emails found.")
            self._finish(result, None)
            return result

        outcome = self.pipeline.run(threads, ledger)
        result.skipped_messages = outcome.skipped
        result.failed_threads = outcome.failed

        if self.dry_run:
            log.info("Dry run: %d records extracted, nothing written", len(outcome.appended))
            result.processed_count = len(outcome.appended)
            self._finish(result, outcome)
            return result

        for record in outcome.appended:
            self.store.append_record(record)
            result.processed_count += 1

        for thread_id in outcome.fully_ingested:
            self.mailbox.add_label(thread_id, label)
            result.labeled_threads.append(thread_id)
        for thread_id in outcome.failed:
            log.warning("Thread %s not labeled (failed message %s); eligible for retry",
                        thread_id, outcome.threads[thread_id].failed_message_id)

        self.store.sort_by_date()
        if self.dashboard is not None:
            self.dashboard.refresh()

        if result.processed_count > 0 and self.notifier is not None:
            self.notifier.send_summary(result.processed_count)

        self._finish(result, outcome)
        return result

    def _finish(self, result, outcome):
        log.info("Run complete: processed=%d labeled=%d failed=%d skipped=%d",
                 result.processed_count, len(result.labeled_threads),
                 len(result.failed_threads), result.skipped_messages)
        if self.run_logger is not None:
            self.run_logger.record_run(result, outcome)
