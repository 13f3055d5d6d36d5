"""Error taxonomy for the event store and analytics engine.

Per-record validation problems and duplicates never surface as exceptions
from batch ingestion; they are reported as outcome counts. The exceptions
here are for failures the caller has to act on.
"""


class TrustAnalyticsError(Exception):
    """Base class for service errors"""


class EventValidationError(TrustAnalyticsError):
    """A single event failed shape or type validation"""

    def __init__(self, message: str, event_id: str | None = None):
        super().__init__(message)
        self.event_id = event_id


class InvalidQueryError(TrustAnalyticsError):
    """Filter or date-range parameters were rejected before querying"""


class StorageError(TrustAnalyticsError):
    """The underlying store failed; the operation did not complete.

    Retrying the same call is safe: ingestion is idempotent on event_id.
    """

    def __init__(self, operation: str, detail: str):
        super().__init__(f"{operation} failed: {detail}")
        self.operation = operation
        self.detail = detail
