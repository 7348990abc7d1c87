"""Tests for the Sheets transaction store and dashboard aggregation."""
from __future__ import annotations

from unittest.mock import MagicMock

import gspread
import pytest

from expense_agent.dashboard import (
    ALL,
    DashboardFilter,
    DashboardWriter,
    apply_filter,
    category_totals,
    filter_options,
    total_spent,
)
from expense_agent.models import TransactionRecord
from expense_agent.writers.google_sheets_writer import HEADER, SheetsTransactionStore


class FakeWorksheet:
    """In-memory stand-in for a gspread Worksheet."""

    def __init__(self, rows=None, title="Expenses"):
        self.rows = [list(r) for r in (rows or [])]
        self.title = title
        self.sort_calls = []
        self.append_errors = []
        self.sent = []

    def col_values(self, col):
        return [r[col - 1] if len(r) >= col else "" for r in self.rows]

    def row_values(self, row):
        return self.rows[row - 1] if len(self.rows) >= row else []

    def get_all_values(self):
        return [list(r) for r in self.rows]

    def append_row(self, values, value_input_option="RAW"):
        if self.append_errors:
            raise self.append_errors.pop(0)
        self.sent.append(list(values))
        if value_input_option == "USER_ENTERED":
            # Sheets stores a leading-apostrophe entry as plain text
            values = [v[1:] if isinstance(v, str) and v.startswith("'") else v for v in values]
        self.rows.append(list(values))

    def update(self, values=None, range_name=None):
        for i, row in enumerate(values):
            if i < len(self.rows):
                self.rows[i] = list(row)
            else:
                self.rows.append(list(row))

    def sort(self, *specs, range=None):
        self.sort_calls.append((specs, range))


def _api_error(status):
    exc = gspread.exceptions.APIError.__new__(gspread.exceptions.APIError)
    exc.response = MagicMock(status_code=status)
    return exc


def _rec(msg_id, d="2024-01-05", category="Gas", amount=10.0, merchant="SHELL"):
    return TransactionRecord(d, merchant, category, amount, "desc", msg_id)


# =====================================================================
# 1. Store
# =====================================================================

class TestSheetsTransactionStore:
    def test_existing_ids_from_row_two(self):
        ws = FakeWorksheet([HEADER, ["2024-01-01", "A", "Gas", "1", "", "m1"],
                            ["2024-01-02", "B", "Gas", "2", "", ""],
                            ["2024-01-03", "C", "Gas", "3", "", "m3"]])
        assert SheetsTransactionStore(ws).existing_message_ids() == ["m1", "m3"]

    def test_empty_sheet_has_no_ids(self):
        assert SheetsTransactionStore(FakeWorksheet()).existing_message_ids() == []

    def test_append_uses_column_order(self):
        ws = FakeWorksheet([HEADER])
        SheetsTransactionStore(ws).append_record(_rec("m1", amount=32.1))
        assert ws.rows[-1] == ["2024-01-05", "SHELL", "Gas", 32.1, "desc", "m1"]

    def test_numeric_looking_id_written_as_text(self):
        ws = FakeWorksheet([HEADER])
        store = SheetsTransactionStore(ws)
        store.append_record(_rec("18234567890123"))
        store.append_record(_rec("12e34"))
        assert ws.sent[0][-1] == "'18234567890123"
        assert store.existing_message_ids() == ["18234567890123", "12e34"]

    def test_append_retries_on_429(self):
        ws = FakeWorksheet([HEADER])
        ws.append_errors = [_api_error(429), _api_error(429)]
        sleeps = []
        SheetsTransactionStore(ws, sleep=sleeps.append).append_record(_rec("m1"))
        assert len(sleeps) == 2
        assert sleeps[0] < sleeps[1]
        assert ws.rows[-1][-1] == "m1"

    def test_append_other_errors_propagate(self):
        ws = FakeWorksheet([HEADER])
        ws.append_errors = [_api_error(403)]
        with pytest.raises(gspread.exceptions.APIError):
            SheetsTransactionStore(ws, sleep=lambda s: None).append_record(_rec("m1"))

    def test_sort_range_covers_data_rows(self):
        ws = FakeWorksheet([HEADER, ["2024-01-02"], ["2024-01-01"]])
        assert SheetsTransactionStore(ws).sort_by_date() is True
        assert ws.sort_calls == [(((1, "asc"),), "A2:F3")]

    def test_sort_skipped_for_header_only(self):
        ws = FakeWorksheet([HEADER])
        assert SheetsTransactionStore(ws).sort_by_date() is False
        assert ws.sort_calls == []

    def test_ensure_header_on_blank_sheet(self):
        ws = FakeWorksheet()
        SheetsTransactionStore(ws).ensure_header()
        assert ws.rows[0] == HEADER

    def test_read_records_parses_amounts(self):
        ws = FakeWorksheet([HEADER, ["2024-01-01", "A", "Gas", "$1,200.50", "d", "m1"], []])
        records = SheetsTransactionStore(ws).read_records()
        assert len(records) == 1
        assert records[0].amount == 1200.50

    def test_unparseable_amount_warns_with_message_id(self, caplog):
        ws = FakeWorksheet([HEADER, ["2024-01-01", "A", "Gas", "n/a", "d", "m9"]])
        with caplog.at_level("WARNING", logger="expense_agent.models"):
            records = SheetsTransactionStore(ws).read_records()
        assert records[0].amount == 0.0
        assert "m9" in caplog.text


# =====================================================================
# 2. Dashboard aggregation
# =====================================================================

RECORDS = [
    _rec("m1", "2024-01-05", "Gas", 30.0),
    _rec("m2", "2024-01-20", "Dining", 12.5),
    _rec("m3", "2024-02-02", "Gas", 40.0),
    _rec("m4", "not a date", "Pets", 5.0),
]


class TestDashboard:
    def test_filter_options(self):
        opts = filter_options(RECORDS)
        assert opts["categories"] == [ALL, "Dining", "Gas", "Pets"]
        assert opts["months"] == [ALL, "2024-02", "2024-01"]

    def test_all_filter_returns_everything_newest_first(self):
        selected = apply_filter(RECORDS, DashboardFilter())
        # unparseable dates sort as plain text, ahead of ISO dates
        assert [r.source_message_id for r in selected] == ["m4", "m3", "m2", "m1"]

    def test_month_and_category_filter(self):
        selected = apply_filter(RECORDS, DashboardFilter(month="2024-01", category="Gas"))
        assert [r.source_message_id for r in selected] == ["m1"]

    def test_totals(self):
        selected = apply_filter(RECORDS, DashboardFilter(month="2024-01"))
        assert total_spent(selected) == 42.5
        assert category_totals(selected) == [("Dining", 12.5), ("Gas", 30.0)]

    def test_writer_blocks(self):
        store = MagicMock()
        writer = DashboardWriter(MagicMock(), store, flt=DashboardFilter(category="Gas"))
        blocks = writer.build_blocks(RECORDS)
        ranges = [b["range"] for b in blocks]
        assert ranges == ["A1", "A8", "H8"]
        summary, table, totals = (b["values"] for b in blocks)
        assert summary[3][4] == 70.0
        assert len(table) == 3
        assert totals == [["Category", "Amount"], ["Gas", 70.0]]

    def test_refresh_creates_missing_tab(self):
        spreadsheet = MagicMock()
        spreadsheet.worksheet.side_effect = gspread.exceptions.WorksheetNotFound("Dashboard")
        store = MagicMock()
        store.read_records.return_value = RECORDS
        DashboardWriter(spreadsheet, store).refresh()
        spreadsheet.add_worksheet.assert_called_once()
        ws = spreadsheet.add_worksheet.return_value
        ws.batch_update.assert_called_once()
