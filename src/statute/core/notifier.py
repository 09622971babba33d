"""Best-effort freshness notification after a batch run."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from statute.core.exceptions import NotificationError, ScrapingError
from statute.core.http import FetchClient
from statute.core.models import BatchResult

logger = logging.getLogger(__name__)


class FreshnessNotifier(ABC):
    """Tells a downstream system that a source was refreshed."""

    @abstractmethod
    def notify(self, result: BatchResult) -> None:
        """Send the notification. May raise; callers treat failures as non-fatal."""


class HttpFreshnessNotifier(FreshnessNotifier):
    """Posts a status mutation to `{base_url}/api/mutation`."""

    def __init__(self, base_url: str, path: str, fetch_client: Optional[FetchClient] = None):
        """
        Args:
            base_url: Base URL of the status service
            path: Mutation path, e.g. "sources:updateCountyStatus"
            fetch_client: Client used for the POST (no retries by default)
        """
        self.base_url = base_url.rstrip("/")
        self.path = path
        self.fetch_client = fetch_client or FetchClient(max_retries=0)

    def build_payload(self, result: BatchResult) -> Dict[str, Any]:
        return {
            "path": self.path,
            "args": {
                "status": "complete" if result.success else "error",
                "lastScrapedAt": int(datetime.now(timezone.utc).timestamp() * 1000),
                "unitsProcessed": result.units_processed,
                "unitsSucceeded": result.succeeded,
                "unitsFailed": result.failed,
                "totalVectors": result.total_vectors,
                "totalChunks": result.total_chunks,
                "durationMs": result.duration_ms,
            },
        }

    def notify(self, result: BatchResult) -> None:
        url = f"{self.base_url}/api/mutation"
        try:
            self.fetch_client.post_json(url, self.build_payload(result), operation="Freshness notification")
        except ScrapingError as e:
            raise NotificationError(f"Freshness notification to {url} failed: {e}") from e
        logger.info(f"Sent freshness notification to {url}", extra={"path": self.path})
