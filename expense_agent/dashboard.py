"""
Derived summary view over the persisted expenses.

Filtering is declarative (month + category, "ALL" meaning no filter) and
evaluated here in Python; the Dashboard tab only receives plain values.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date

import gspread

log = logging.getLogger(__name__)

ALL = "ALL"
TITLE = "Expense Explorer"
TABLE_HEADER = ["Date", "Merchant", "Category", "Amount", "Description"]
TOTALS_HEADER = ["Category", "Amount"]


@dataclass(frozen=True)
class DashboardFilter:
    month: str = ALL      # "YYYY-MM" or ALL
    category: str = ALL

    def accepts(self, record) -> bool:
        if self.month not in ("", ALL) and _month_key(record.date) != self.month:
            return False
        if self.category not in ("", ALL) and record.category != self.category:
            return False
        return True


def _month_key(raw) -> str | None:
    try:
        d = date.fromisoformat(str(raw).strip()[:10])
    except ValueError:
        return None
    return f"{d.year:04d}-{d.month:02d}"


def filter_options(records) -> dict[str, list[str]]:
    """Selectable values: categories ascending, months newest first, ALL on top."""
    categories = sorted({r.category for r in records if r.category and r.category != ALL})
    months = sorted({m for m in (_month_key(r.date) for r in records) if m}, reverse=True)
    return {"categories": [ALL] + categories, "months": [ALL] + months}


def apply_filter(records, flt: DashboardFilter):
    """Matching records, newest date first."""
    selected = [r for r in records if flt.accepts(r)]
    return sorted(selected, key=lambda r: str(r.date), reverse=True)


def category_totals(records) -> list[tuple[str, float]]:
    totals: dict[str, float] = defaultdict(float)
    for r in records:
        totals[r.category] += r.amount
    return sorted(((cat, round(amount, 2)) for cat, amount in totals.items()),
                  key=lambda item: item[0])


def total_spent(records) -> float:
    return round(sum(r.amount for r in records), 2)


class DashboardWriter:
    """Rewrites the dashboard tab from the expenses store."""

    def __init__(self, spreadsheet, store, sheet_name="Dashboard", flt=None):
        self.spreadsheet = spreadsheet
        self.store = store
        self.sheet_name = sheet_name
        self.filter = flt or DashboardFilter()

    def _worksheet(self):
        try:
            ws = self.spreadsheet.worksheet(self.sheet_name)
            ws.clear()
        except gspread.exceptions.WorksheetNotFound:
            ws = self.spreadsheet.add_worksheet(title=self.sheet_name, rows=1000, cols=12)
        return ws

    def build_blocks(self, records):
        """Return the batch_update payload for *records*."""
        options = filter_options(records)
        selected = apply_filter(records, self.filter)

        summary = [
            [TITLE],
            [],
            ["Filter by Month:", "", "Filter by Category:", "", "TOTAL SPENT:"],
            [self.filter.month, "", self.filter.category, "", total_spent(selected)],
            [],
            ["Months:"] + options["months"],
            ["Categories:"] + options["categories"],
        ]
        table = [TABLE_HEADER] + [
            [r.date, r.merchant, r.category, r.amount, r.description] for r in selected
        ]
        totals = [TOTALS_HEADER] + [list(item) for item in category_totals(selected)]
        return [
            {"range": "A1", "values": summary},
            {"range": "A8", "values": table},
            {"range": "H8", "values": totals},
        ]

    def refresh(self):
        records = self.store.read_records()
        ws = self._worksheet()
        ws.batch_update(self.build_blocks(records), value_input_option="USER_ENTERED")
        log.info("Dashboard '%s' updated: %d records (month=%s category=%s)",
                 self.sheet_name, len(records), self.filter.month, self.filter.category)
