"""Error categorization and metadata extraction utilities."""

import re
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from statute.core.exceptions import (
    DocumentSkipped,
    EmbeddingError,
    NotFoundError,
    RateLimitError,
    ScrapingError,
    StorageError,
)


class ErrorCategories:
    """Standard error categories across the pipeline."""
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    HTTP_ERROR = "http_error"
    PARSE_ERROR = "parse_error"
    VALIDATION_ERROR = "validation_error"
    STORAGE_ERROR = "storage_error"
    SKIPPED = "skipped"
    UNKNOWN_ERROR = "unknown_error"


class ErrorCategorizer:
    """Categorize and extract metadata from errors in a consistent way."""

    # Typed errors are checked first, in order
    ERROR_TYPES = [
        (NotFoundError, ErrorCategories.NOT_FOUND),
        (RateLimitError, ErrorCategories.RATE_LIMIT),
        (ScrapingError, ErrorCategories.HTTP_ERROR),
        (StorageError, ErrorCategories.STORAGE_ERROR),
        (DocumentSkipped, ErrorCategories.SKIPPED),
    ]

    # Fallback patterns matched against the message and type name
    ERROR_PATTERNS = {
        ErrorCategories.NOT_FOUND: [
            "notfounderror",
            "not found",
            "404",
        ],
        ErrorCategories.RATE_LIMIT: [
            "ratelimit",
            "rate limit",
            "429",
        ],
        ErrorCategories.HTTP_ERROR: [
            "httperror",
            "connectionerror",
            "timeout",
            "requestexception",
            "403",
            "500",
            "502",
            "503",
            "504",
        ],
        ErrorCategories.PARSE_ERROR: [
            "error parsing",
            "parseerror",
            "malformed",
            "attributeerror",
            "unicodedecodeerror",
        ],
        ErrorCategories.VALIDATION_ERROR: [
            "validation error",
            "validationerror",
            "token_limit",
            "exceeds token limit",
        ],
        ErrorCategories.STORAGE_ERROR: [
            "storage",
            "blob",
            "permissionerror",
        ],
    }

    @classmethod
    def categorize_error(cls, error: Exception) -> str:
        """Categorize an error based on its type and message.

        Args:
            error: The exception to categorize

        Returns:
            Error category string
        """
        if isinstance(error, EmbeddingError):
            if error.code == EmbeddingError.TOKEN_LIMIT:
                return ErrorCategories.VALIDATION_ERROR
            if error.code == EmbeddingError.RATE_LIMIT:
                return ErrorCategories.RATE_LIMIT
            return ErrorCategories.HTTP_ERROR

        for error_type, category in cls.ERROR_TYPES:
            if isinstance(error, error_type):
                return category

        error_str = str(error).lower()
        error_type_name = type(error).__name__.lower()

        for category, patterns in cls.ERROR_PATTERNS.items():
            for pattern in patterns:
                if pattern in error_str or pattern in error_type_name:
                    return category

        return ErrorCategories.UNKNOWN_ERROR

    @classmethod
    def extract_error_metadata(
        cls, error: Exception, context: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Extract structured metadata from an error.

        Args:
            error: The exception to analyze
            context: Optional context information

        Returns:
            Dictionary of error metadata
        """
        metadata = {
            "error_type": type(error).__name__,
            "error_message": str(error),
            "error_category": cls.categorize_error(error),
            "timestamp": datetime.now().isoformat(),
        }

        error_msg = str(error)

        url_match = re.search(r"https?://[^\s]+", error_msg)
        if url_match:
            metadata["error_url"] = url_match.group(0).rstrip(".,;)")

        status_code = getattr(error, "status_code", None)
        if status_code is not None:
            metadata["http_status"] = status_code
        else:
            status_match = re.search(r"\b(4\d\d|5\d\d)\b", error_msg)
            if status_match:
                metadata["http_status"] = int(status_match.group(0))

        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            metadata["retry_after"] = retry_after

        if isinstance(error, EmbeddingError):
            metadata["error_code"] = error.code

        if context:
            metadata["context"] = context

        return metadata

    @classmethod
    def is_recoverable_error(cls, error: Exception) -> bool:
        """Determine if processing of the enclosing unit should continue after this error."""
        category = cls.categorize_error(error)

        recoverable_categories = {
            ErrorCategories.NOT_FOUND,
            ErrorCategories.RATE_LIMIT,
            ErrorCategories.HTTP_ERROR,
            ErrorCategories.PARSE_ERROR,
            ErrorCategories.VALIDATION_ERROR,
            ErrorCategories.SKIPPED,
        }

        return category in recoverable_categories

    @classmethod
    def get_error_summary(cls, error: Exception) -> str:
        """Get a concise summary of an error for logging."""
        category = cls.categorize_error(error)
        metadata = cls.extract_error_metadata(error)
        url = metadata.get("error_url", "unknown")

        if category == ErrorCategories.NOT_FOUND:
            return f"Not found: {url}"
        elif category == ErrorCategories.RATE_LIMIT:
            return f"Rate limited: {url}"
        elif category == ErrorCategories.HTTP_ERROR:
            status = metadata.get("http_status", "unknown")
            return f"HTTP {status} error for {url}"
        elif category == ErrorCategories.PARSE_ERROR:
            return f"Parse error for {url}"
        else:
            return f"{category}: {str(error)[:100]}"

    @classmethod
    def handle_error(
        cls,
        logger,
        error: Exception,
        url: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        safe: bool = True,
    ) -> bool:
        """Log an error; re-raise it if it is non-recoverable and `safe` is False.

        Returns:
            True if the error was recoverable, False otherwise
        """
        metadata = cls.extract_error_metadata(error, context)
        if cls.is_recoverable_error(error):
            logger.warning(f"Failed to process {url}: {error}", extra=metadata)
            return True

        logger.error(f"Failed to process - non recoverable: {url}: {error}", extra=metadata)
        if not safe:
            raise error
        return False


def categorize_batch_errors(errors: list[Tuple[str, Exception]]) -> Dict[str, list]:
    """Categorize a batch of errors for reporting.

    Args:
        errors: List of (url, exception) tuples

    Returns:
        Dictionary mapping categories to error details
    """
    categorized: Dict[str, list] = {}

    for url, error in errors:
        category = ErrorCategorizer.categorize_error(error)
        metadata = ErrorCategorizer.extract_error_metadata(error)
        metadata["url"] = url
        categorized.setdefault(category, []).append(metadata)

    return categorized
