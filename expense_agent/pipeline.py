"""
Ingestion pipeline – decides which messages are new, extracts them and
isolates failures per thread.

For each thread (in discovery order):
  1) walk messages in source order
  2) skip ids already in the ledger (no extractor call, no delay)
  3) extract; on success collect the record, add the id to the ledger
     immediately and wait the inter-call delay
  4) on an ExtractionError stop that thread, mark it failed and move on

Nothing here writes to the sheet or labels threads; the coordinator
applies both after the loop.
"""

import logging
import time

from expense_agent.errors import ExtractionError
from expense_agent.models import PipelineResult, ThreadProgress, ThreadState

log = logging.getLogger(__name__)

# Pause after each successful model call (avoids HTTP 429)
DEFAULT_DELAY_SECONDS = 10.0


class IngestionPipeline:
    def __init__(self, extractor, delay_seconds=DEFAULT_DELAY_SECONDS, sleep=time.sleep):
        self.extractor = extractor
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    def run(self, threads, ledger) -> PipelineResult:
        result = PipelineResult()
        for thread in threads:
            progress = ThreadProgress(thread_id=thread.id)
            result.threads[thread.id] = progress
            self._ingest_thread(thread, progress, ledger, result)

        log.info("Pipeline done: appended=%d skipped=%d threads_ok=%d threads_failed=%d",
                 len(result.appended), result.skipped,
                 len(result.fully_ingested), len(result.failed))
        return result

    def _ingest_thread(self, thread, progress, ledger, result):
        progress.transition(ThreadState.INGESTING)

        for msg in thread.messages:
            if ledger.contains(msg.id):
                log.info("Skipping duplicate message: %s", msg.id)
                progress.skipped.append(msg.id)
                result.skipped += 1
                continue

            try:
                record = self.extractor.extract(
                    msg.plain_text_body, msg.subject, msg.fallback_date,
                    message_id=msg.id,
                )
            except ExtractionError as exc:
                log.error("Error processing message %s: %s", msg.id, exc)
                progress.fail(msg.id, str(exc))
                log.warning("Thread %s skipped due to errors. Will retry next run.", thread.id)
                return

            result.appended.append(record)
            ledger.add(msg.id)
            progress.ingested.append(msg.id)
            log.info("Processed: %s - %s", record.merchant, record.amount)

            if self.delay_seconds > 0:
                self._sleep(self.delay_seconds)

        progress.transition(ThreadState.SUCCEEDED)
