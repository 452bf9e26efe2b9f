"""
Error taxonomy for benchmark runs.

NetworkError and ApiError are raised before any stream data is consumed,
StreamError once the event stream is open. ParseError never leaves the
stream parser: malformed event lines are skipped.
"""

from enum import Enum
from typing import Optional


class BenchmarkError(Exception):
    """Base class for all routebench errors."""


class NetworkError(BenchmarkError):
    """Connection, DNS or timeout failure. Callers may retry."""


class ApiError(BenchmarkError):
    """Non-success HTTP status returned by the routing API."""

    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class StreamErrorKind(Enum):
    """Why an open stream stopped."""
    TRANSPORT = "transport"
    CANCELLED = "cancelled"


class StreamError(BenchmarkError):
    """Transport failure or explicit cancellation while streaming."""

    def __init__(
        self,
        message: str,
        kind: StreamErrorKind = StreamErrorKind.TRANSPORT,
    ):
        super().__init__(message)
        self.kind = kind

    @property
    def cancelled(self) -> bool:
        return self.kind is StreamErrorKind.CANCELLED

    @classmethod
    def cancellation(cls) -> "StreamError":
        return cls("cancelled", kind=StreamErrorKind.CANCELLED)


class ParseError(BenchmarkError):
    """Malformed JSON inside a recognised event line."""

    def __init__(self, message: str, line: Optional[str] = None):
        super().__init__(message)
        self.line = line


class SuiteNotFoundError(BenchmarkError):
    """Requested suite id is unknown."""

    def __init__(self, suite_id: str):
        super().__init__(f"Suite not found: {suite_id}")
        self.suite_id = suite_id
