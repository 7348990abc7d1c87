"""
Expense agent – main entry point.

Pipeline:
  1) Load env / settings / category rules (fail fast on missing secrets)
  2) Connect Gmail (mailbox + notifier) and Google Sheets (store + dashboard)
  3) Run the coordinator: label setup, ledger, candidates, extraction,
     appends, labels, sort, dashboard, notification
  4) Write RUN LOG PACK to logs/runs/<run_id>/
"""

import argparse
import logging
import sys
import traceback

from expense_agent.config import validate_startup_config
from expense_agent.coordinator import RunCoordinator
from expense_agent.dashboard import DashboardFilter, DashboardWriter
from expense_agent.errors import ConfigurationError
from expense_agent.gemini_client import GeminiClient
from expense_agent.mailbox import GmailMailbox, build_gmail_service
from expense_agent.notifier import GmailNotifier
from expense_agent.record_extractor import RecordExtractor
from expense_agent.run_logger import RunLogger
from expense_agent.settings import Settings
from expense_agent.utils import load_env, resolve_google_creds_path
from expense_agent.writers.google_sheets_writer import SheetsTransactionStore, open_spreadsheet

log = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Ingest bank notification emails into Google Sheets")
    parser.add_argument("--dry-run", action="store_true",
                        help="Extract and log only; no appends, labels or notification")
    parser.add_argument("--max-threads", type=int, default=None,
                        help="Override MAX_THREADS_PER_RUN for this run")
    parser.add_argument("--no-dashboard", action="store_true", help="Skip dashboard refresh")
    parser.add_argument("--no-notify", action="store_true", help="Skip the summary email")
    parser.add_argument("--dashboard-month", default="ALL", help="Dashboard month filter (YYYY-MM)")
    parser.add_argument("--dashboard-category", default="ALL", help="Dashboard category filter")
    parser.add_argument("--log-dir", default=None, help="Base directory for run log packs")
    return parser.parse_args(argv)


def build_coordinator(settings, args, env, run_logger=None):
    taxonomy = validate_startup_config(settings.category_rules_path or None)

    creds_path = resolve_google_creds_path(env)
    if not creds_path:
        raise ConfigurationError(
            "No Google service-account credentials. Set GOOGLE_SERVICE_ACCOUNT_JSON_PATH "
            "or GOOGLE_SERVICE_ACCOUNT_JSON."
        )
    spreadsheet = open_spreadsheet(settings.sheet_id, creds_path)
    store = SheetsTransactionStore.open(spreadsheet, settings.sheet_name)
    if not args.dry_run:
        store.ensure_header()

    gmail = build_gmail_service(settings.gmail_token_path, settings.gmail_client_secrets_path)
    mailbox = GmailMailbox(gmail)

    client = GeminiClient(settings.gemini_api_key, model=settings.gemini_model,
                          timeout=settings.gemini_timeout_seconds)
    extractor = RecordExtractor(client, taxonomy)

    dashboard = None
    if not args.no_dashboard:
        dashboard = DashboardWriter(
            spreadsheet, store, sheet_name=settings.dashboard_sheet_name,
            flt=DashboardFilter(month=args.dashboard_month, category=args.dashboard_category),
        )
    notifier = None if args.no_notify else GmailNotifier(gmail, settings.sheet_id)

    return RunCoordinator(
        settings, taxonomy, mailbox, store, extractor,
        notifier=notifier, dashboard=dashboard, run_logger=run_logger,
        max_threads=args.max_threads, dry_run=args.dry_run,
    )


def main(argv=None):
    args = parse_args(argv)
    env = load_env()

    try:
        settings = Settings.from_env(env)
    except ConfigurationError as exc:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
        log.error("Configuration error: %s", exc)
        return 2

    run_logger = RunLogger(base_dir=args.log_dir,
                           console_level=getattr(logging, settings.log_level, logging.INFO))
    log.info("Starting expense agent run %s (%r)", run_logger.run_id, settings)

    try:
        coordinator = build_coordinator(settings, args, env, run_logger=run_logger)
        result = coordinator.execute()
    except ConfigurationError as exc:
        log.error("Configuration error: %s", exc)
        run_logger.set_error(str(exc))
        run_logger.flush()
        return 2
    except Exception as exc:
        log.error("Run failed: %s\n%s", exc, traceback.format_exc())
        run_logger.set_error(str(exc))
        run_logger.flush()
        return 1

    run_logger.flush()
    print(f"processed={result.processed_count} labeled={len(result.labeled_threads)} "
          f"failed={len(result.failed_threads)} skipped={result.skipped_messages}"
          f"{' (dry run)' if result.dry_run else ''}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
