"""Custom exception classes and error kinds for the engine."""

from enum import Enum
from typing import Dict, List, Optional


class ErrorKind(str, Enum):
    """Classification of failures that cross component boundaries."""

    MALFORMED = "malformed"
    TRANSIENT_UPSTREAM = "transient_upstream"
    PERMANENT_UPSTREAM = "permanent_upstream"
    PARSE_ERROR = "parse_error"
    STORE_WRITE = "store_write"
    CANCELLED = "cancelled"


class DealFlowException(Exception):
    """Base exception for all dealflow errors."""

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class NotFoundError(DealFlowException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} with identifier '{identifier}' not found")


class ConfigError(DealFlowException):
    """Raised when the engine configuration cannot be loaded."""


class MalformedOfferError(DealFlowException):
    """Raised when a raw offer cannot be normalized."""

    kind = ErrorKind.MALFORMED

    def __init__(self, reason: str, field: Optional[str] = None):
        self.reason = reason
        self.field = field
        prefix = f"{field}: " if field else ""
        super().__init__(f"Malformed offer ({prefix}{reason})")


class SubmissionRejected(DealFlowException):
    """Raised when a user-submitted deal fails validation."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(f"Submission rejected: {'; '.join(errors)}")


class StoreWriteError(DealFlowException):
    """Raised when the record store refuses a write."""

    kind = ErrorKind.STORE_WRITE

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Store write failed for '{key}': {message}")


class PipelineCancelled(DealFlowException):
    """Raised when a pipeline run is cancelled before it commits."""

    kind = ErrorKind.CANCELLED

    def __init__(self, job: str):
        super().__init__(f"Pipeline run for job '{job}' was cancelled")


class AllSourcesFailedError(DealFlowException):
    """Raised when every source of a pipeline run returned a failure."""

    kind = ErrorKind.TRANSIENT_UPSTREAM

    def __init__(self, job: str, errors: Dict[str, str]):
        self.errors = errors
        detail = "; ".join(f"{name}: {msg}" for name, msg in sorted(errors.items()))
        super().__init__(f"All sources failed for job '{job}': {detail}")
