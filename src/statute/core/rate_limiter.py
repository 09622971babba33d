"""Per-origin request spacing for polite crawling."""

import logging
import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class OriginRateLimiter:
    """Enforces a minimum delay between consecutive requests to the same origin.

    State is owned by the instance, so two clients never share spacing.
    """

    def __init__(
        self,
        min_delay: float = 0.2,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the rate limiter.

        Args:
            min_delay: Default minimum delay between requests to one origin, in seconds
            clock: Monotonic clock, injectable for tests
            sleep: Sleep function, injectable for tests
        """
        self.min_delay = min_delay
        self._clock = clock
        self._sleep = sleep
        self._last_request: Dict[str, float] = {}
        self._request_counts: Dict[str, int] = {}
        self._total_wait = 0.0

    @staticmethod
    def origin_of(url: str) -> str:
        return urlparse(url).hostname or url

    def wait(self, url: str, min_delay: Optional[float] = None) -> float:
        """Block until the origin of `url` may be requested again.

        Returns:
            The number of seconds slept
        """
        delay = self.min_delay if min_delay is None else min_delay
        origin = self.origin_of(url)

        waited = 0.0
        last = self._last_request.get(origin)
        if last is not None:
            elapsed = self._clock() - last
            if elapsed < delay:
                waited = delay - elapsed
                logger.debug(
                    f"Rate limiting {origin}: waiting {waited:.2f}s",
                    extra={"event_type": "rate_limit_wait", "origin": origin, "wait_seconds": waited},
                )
                self._sleep(waited)
                self._total_wait += waited

        self._last_request[origin] = self._clock()
        self._request_counts[origin] = self._request_counts.get(origin, 0) + 1
        return waited

    def reset(self, url: Optional[str] = None) -> None:
        if url is None:
            self._last_request.clear()
        else:
            self._last_request.pop(self.origin_of(url), None)

    def get_stats(self) -> Dict[str, Any]:
        """Get current rate limiter statistics."""
        return {
            "min_delay": self.min_delay,
            "origins": len(self._last_request),
            "requests_by_origin": dict(self._request_counts),
            "total_wait_seconds": round(self._total_wait, 3),
        }
