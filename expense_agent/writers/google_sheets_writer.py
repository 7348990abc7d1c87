"""
Google Sheets persistence for transaction rows (gspread).

The expenses tab is an append-only table:

  A date | B merchant | C category | D amount | E description | F message id

Row 1 is the header.  Appends are one row at a time; on HTTP 429 the
append is retried with exponential backoff + jitter (1 s -> 60 s, up to
8 retries).  Any other API error propagates.
"""

import logging
import random
import time

import gspread
from google.oauth2.service_account import Credentials

from expense_agent.models import COLUMN_ORDER, TransactionRecord

log = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
HEADER = ["Date", "Merchant", "Category", "Amount", "Description", "Message ID"]
MESSAGE_ID_COLUMN = COLUMN_ORDER.index("source_message_id") + 1

# Tunables
MAX_RETRIES = 8
INITIAL_BACKOFF = 1.0        # seconds
MAX_BACKOFF = 60.0
JITTER_MAX = 0.25            # seconds


def open_spreadsheet(sheet_id, creds_path):
    creds = Credentials.from_service_account_file(creds_path, scopes=SCOPES)
    client = gspread.authorize(creds)
    return client.open_by_key(sheet_id)


def _status_code(exc):
    response = getattr(exc, "response", None)
    return getattr(response, "status_code", None)


def _sheet_row(record):
    # Leading apostrophe keeps numeric-looking message ids as text under USER_ENTERED
    row = record.to_row()
    row[MESSAGE_ID_COLUMN - 1] = f"'{record.source_message_id}"
    return row


def _column_letter(n):
    letters = ""
    while n:
        n, rem = divmod(n - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


class SheetsTransactionStore:
    """Append-only transaction table on one worksheet."""

    def __init__(self, worksheet, sleep=time.sleep):
        self.worksheet = worksheet
        self._sleep = sleep

    @classmethod
    def open(cls, spreadsheet, sheet_name):
        return cls(spreadsheet.worksheet(sheet_name))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def existing_message_ids(self):
        """All non-blank message ids from row 2 onward."""
        values = self.worksheet.col_values(MESSAGE_ID_COLUMN)
        return [v for v in values[1:] if str(v).strip()]

    def read_records(self):
        rows = self.worksheet.get_all_values()[1:]
        return [TransactionRecord.from_row(r) for r in rows if any(str(c).strip() for c in r)]

    def last_row(self):
        return len(self.worksheet.col_values(1))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def ensure_header(self):
        first = self.worksheet.row_values(1)
        if not any(str(c).strip() for c in first):
            self.worksheet.update(values=[HEADER], range_name="A1")
            log.info("Wrote header row to '%s'", self.worksheet.title)

    def append_record(self, record: TransactionRecord, retry_count=0):
        try:
            self.worksheet.append_row(_sheet_row(record), value_input_option="USER_ENTERED")
        except gspread.exceptions.APIError as exc:
            if _status_code(exc) == 429 and retry_count < MAX_RETRIES:
                wait = min(INITIAL_BACKOFF * (2 ** retry_count), MAX_BACKOFF)
                wait += random.uniform(0, JITTER_MAX)
                log.warning("Append %s: 429 rate-limit, retrying in %.1fs (attempt %d/%d)",
                            record.source_message_id, wait, retry_count + 1, MAX_RETRIES)
                self._sleep(wait)
                return self.append_record(record, retry_count + 1)
            raise
        log.debug("Appended row for %s (retries=%d)", record.source_message_id, retry_count)

    def sort_by_date(self):
        """Sort data rows (2..N, all columns) ascending by date."""
        last = self.last_row()
        if last <= 1:
            return False
        rng = f"A2:{_column_letter(len(COLUMN_ORDER))}{last}"
        self.worksheet.sort((1, "asc"), range=rng)
        log.info("Sorted %s by date (%d rows)", rng, last - 1)
        return True
