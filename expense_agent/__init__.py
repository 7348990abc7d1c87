"""Bank-notification email to Google Sheets expense agent."""

from expense_agent.coordinator import RunCoordinator
from expense_agent.ledger import Ledger
from expense_agent.pipeline import IngestionPipeline
from expense_agent.record_extractor import RecordExtractor

__all__ = [
    "RunCoordinator",
    "Ledger",
    "IngestionPipeline",
    "RecordExtractor",
]
