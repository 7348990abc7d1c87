"""
Error taxonomy for the expense agent.

Message-level failures (anything deriving from ExtractionError) are
contained by the ingestion pipeline at thread granularity.  Everything
else propagates to the caller.
"""


class ExpenseAgentError(Exception):
    """Base class for all expense agent errors."""


class ConfigurationError(ExpenseAgentError):
    """A required secret or config file is missing or malformed."""


class ExtractionError(ExpenseAgentError):
    """Extraction of a single message failed."""


class TransportError(ExtractionError):
    """The classification service answered with a non-200 status or was unreachable."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(ExtractionError):
    """The classification service response could not be decoded into a record."""


class ExtractionIncomplete(ExtractionError):
    """The classification service returned no candidates."""
