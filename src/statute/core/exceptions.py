from typing import Any, Dict, Optional


class ScrapingError(Exception):
    """Raised when a fetch fails with a non-success response or transport error.

    `retry_after` carries the server's Retry-After value in seconds, if any.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class NotFoundError(ScrapingError):
    """Raised on HTTP 404. Permanent, never retried."""

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class RateLimitError(ScrapingError):
    """Raised when the server answers 429."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, status_code=429, retry_after=retry_after)


class RenderingServiceError(ScrapingError):
    """Raised when the rendering service cannot produce markdown for a unit."""

    def __init__(
        self,
        message: str,
        unit: Optional[str] = None,
        platform: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.unit = unit
        self.platform = platform


class EmbeddingError(Exception):
    """Raised by embedding services. `code` is one of RATE_LIMIT, TOKEN_LIMIT, API_ERROR."""

    RATE_LIMIT = "RATE_LIMIT"
    TOKEN_LIMIT = "TOKEN_LIMIT"
    API_ERROR = "API_ERROR"

    def __init__(self, message: str, code: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


class StorageError(Exception):
    """Raised when the document store cannot complete an operation."""


class NotificationError(Exception):
    """Raised when a freshness notification is rejected."""


class DocumentSkipped(Exception):
    """
    Marks a document as handled even though it produced no output.

    Use this for leaves that should not be retried (too short, no content).
    """

    def __init__(self, message: str, url: str = None):
        super().__init__(message)
        self.url = url
