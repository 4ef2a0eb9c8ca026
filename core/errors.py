"""
core/errors.py -- Exception hierarchy for ETracker.

Every error the core raises derives from TrackerError so the API layer can map
the whole family to the ErrorResponse envelope in one place.

  DocumentNotFoundError -- the referenced inventory document does not exist.
  ValidationError       -- malformed identifiers or group names. Raised before
                           any storage access.
  StorageError          -- the inventory store or audit trail failed. Always
                           chained to the underlying SQLAlchemy error.

An unparsable expiration date is deliberately NOT an error: the engine falls
back to the next resolution rule.

Layer rule: core/ is the kernel. This module may not import from api/ or
inventory/.
"""


class TrackerError(Exception):
    """Base class for all ETracker errors."""


class DocumentNotFoundError(TrackerError, LookupError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"Inventory document not found: {document_id}")
        self.document_id = document_id


class ValidationError(TrackerError, ValueError):
    """Rejected input. Carries the offending field name for API error details."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class StorageError(TrackerError):
    pass
