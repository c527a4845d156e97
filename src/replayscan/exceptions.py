"""Custom exceptions for the replay sequence search engine.

All exceptions inherit from :class:`ReplayScanError` so callers can catch
the full family with a single ``except ReplayScanError`` clause.
"""


class ReplayScanError(Exception):
    """Base exception for all replay search errors."""


class RequestValidationError(ReplayScanError):
    """Raised when a request is missing required fields or is malformed."""


class MatchNotFoundError(ReplayScanError):
    """Raised when a match id is unknown to the frame log."""


class FrameLogError(ReplayScanError):
    """Raised when a frame-log table or partition cannot be read."""


class QueryJobError(ReplayScanError):
    """Raised when a frame-log query job fails or exceeds its poll budget.

    Attributes:
        reason: Failure reason reported by the query engine.
    """

    def __init__(self, reason: str = "") -> None:
        if reason:
            super().__init__(reason)
        else:
            super().__init__()
        self.reason = reason


class CacheError(ReplayScanError):
    """Raised when the result cache cannot be read or written."""


class TagStoreError(ReplayScanError):
    """Raised when the tag store cannot be read or written."""
