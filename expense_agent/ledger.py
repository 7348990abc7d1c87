"""
Run-local deduplication ledger over already-ingested message ids.

The expenses sheet is the source of truth; the ledger is read from it
once at run start and only grows during the run.  It is never written
back directly.  Rows appended to the sheet by another process mid-run
are not seen.
"""

import logging

log = logging.getLogger(__name__)


class Ledger:
    def __init__(self, ids=None):
        self._ids = set()
        for message_id in ids or ():
            self.add(message_id)

    @classmethod
    def load(cls, store):
        """Seed from *store*.existing_message_ids(); an empty table is fine."""
        ledger = cls(store.existing_message_ids())
        log.info("Ledger loaded: %d existing message ids", len(ledger))
        return ledger

    def contains(self, message_id):
        return str(message_id).strip() in self._ids

    def add(self, message_id):
        key = str(message_id).strip() if message_id is not None else ""
        if key:
            self._ids.add(key)

    def __contains__(self, message_id):
        return self.contains(message_id)

    def __len__(self):
        return len(self._ids)
