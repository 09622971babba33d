import logging
import os
import random
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, Optional

import requests
from diskcache import FanoutCache
from tenacity import (
    RetryCallState,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
)

from statute.core.exceptions import NotFoundError, RateLimitError, ScrapingError
from statute.core.rate_limiter import OriginRateLimiter
from statute.settings import (
    FETCH_BASE_BACKOFF,
    FETCH_CACHE_DIR,
    FETCH_CACHE_ENABLED,
    FETCH_CACHE_TTL,
    FETCH_MAX_BACKOFF,
    FETCH_MAX_RETRIES,
    FETCH_MIN_DELAY,
    FETCH_TIMEOUT,
    USER_AGENT,
)

logger = logging.getLogger(__name__)

DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Parse a Retry-After header value into seconds.

    Supports both delay-seconds and HTTP-date forms. Returns None when the
    header is missing or unparseable.
    """
    if not value:
        return None

    value = value.strip()
    try:
        return max(0.0, float(int(value)))
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    return max(0.0, (retry_at - now).total_seconds())


class FetchClient:
    """Rate-limited HTTP client with exponential backoff and typed errors.

    - Requests to one origin are spaced by at least `min_delay` seconds.
    - 404 raises NotFoundError immediately.
    - 429 raises RateLimitError.
    - Other non-2xx responses and transport failures raise ScrapingError and are retried.
    - A Retry-After header on any retried response replaces the computed backoff.
    """

    def __init__(
        self,
        min_delay: float = FETCH_MIN_DELAY,
        max_retries: int = FETCH_MAX_RETRIES,
        base_delay: float = FETCH_BASE_BACKOFF,
        max_delay: float = FETCH_MAX_BACKOFF,
        timeout: float = FETCH_TIMEOUT,
        user_agent: str = USER_AGENT,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        jitter: Callable[[float, float], float] = random.uniform,
        enable_cache: bool = FETCH_CACHE_ENABLED,
        cache_dir: Optional[str] = None,
        cache_ttl: int = FETCH_CACHE_TTL,
    ):
        """
        Initialize the fetch client.

        Args:
            min_delay: Default minimum delay between requests to the same origin
            max_retries: Retries after the first attempt (3 gives 4 attempts)
            base_delay: Backoff for the first retry, doubled on each further retry
            max_delay: Cap on the computed backoff (before jitter)
            timeout: Per-request timeout in seconds
            user_agent: User-Agent header sent with every request
            session: Optional requests.Session to use
            sleep: Sleep function, injectable for tests
            clock: Monotonic clock, injectable for tests
            jitter: Random source returning a value in [a, b]
            enable_cache: Whether to cache GET bodies on disk
            cache_dir: Directory for cache storage
            cache_ttl: Time to live for cached bodies in seconds
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self.user_agent = user_agent
        self.session = session or requests.Session()
        self.enable_cache = enable_cache
        self.cache_ttl = cache_ttl
        self._sleep = sleep
        self._jitter = jitter

        self.rate_limiter = OriginRateLimiter(min_delay=min_delay, clock=clock, sleep=sleep)

        self._retry_decorator = retry(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._compute_wait,
            retry=retry_if_exception_type(ScrapingError)
            & retry_if_not_exception_type(NotFoundError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )

        if self.enable_cache:
            cache_dir = cache_dir or FETCH_CACHE_DIR
            os.makedirs(cache_dir, exist_ok=True)
            self._cache = FanoutCache(directory=cache_dir, timeout=60, shards=4)
            logger.debug(f"FanoutCache initialized at {cache_dir}")

    def backoff_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (0-indexed), with 0-25% jitter."""
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        return delay + self._jitter(0, delay * 0.25)

    def _compute_wait(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(error, ScrapingError) and error.retry_after is not None:
            logger.info(
                f"Using Retry-After: {error.retry_after}s",
                extra={
                    "event_type": "rate_limit" if isinstance(error, RateLimitError) else "retry_after",
                    "retry_after": error.retry_after,
                    "status_code": error.status_code,
                },
            )
            return float(error.retry_after)
        return self.backoff_for(retry_state.attempt_number - 1)

    def _headers(self, headers: Optional[Dict[str, str]]) -> Dict[str, str]:
        merged = {"User-Agent": self.user_agent, "Accept": DEFAULT_ACCEPT}
        if headers:
            merged.update(headers)
        return merged

    def _send(
        self,
        method: str,
        url: str,
        min_delay: Optional[float],
        timeout: Optional[float],
        **kwargs: Any,
    ) -> requests.Response:
        """Make a single attempt, translating status codes into typed errors."""
        self.rate_limiter.wait(url, min_delay)

        try:
            response = self.session.request(
                method=method, url=url, timeout=timeout or self.timeout, **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise ScrapingError(f"Request failed for {url}: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"Resource not found: {url}")

        retry_after = parse_retry_after(response.headers.get("Retry-After"))

        if response.status_code == 429:
            logger.warning(
                f"Rate limited: {url}",
                extra={
                    "event_type": "rate_limit",
                    "url": url,
                    "retry_after": retry_after,
                    "status_code": 429,
                },
            )
            raise RateLimitError(f"Rate limited: {url}", retry_after)

        if not response.ok:
            raise ScrapingError(
                f"HTTP {response.status_code}: {response.reason} for {url}",
                response.status_code,
                retry_after,
            )

        return response

    def request(
        self,
        method: str,
        url: str,
        operation: Optional[str] = None,
        min_delay: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> requests.Response:
        """
        Make an HTTP request with rate limiting and retries.

        Raises:
            NotFoundError: On 404, after a single attempt
            RateLimitError: On 429 once retries are exhausted
            ScrapingError: On other failures once retries are exhausted
        """
        logger.debug(f"{operation or method}: {url}")
        return self._retry_decorator(self._send)(
            method, url, min_delay, timeout, headers=self._headers(headers), **kwargs
        )

    def fetch(
        self,
        url: str,
        operation: Optional[str] = None,
        min_delay: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """GET a URL and return the response body as text."""
        if self.enable_cache:
            try:
                cached = self._cache.get(url)
                if cached is not None:
                    logger.debug(f"Cache hit for {url}")
                    return cached
            except Exception as e:
                logger.warning(f"Cache read error for {url}: {e}. Continuing without cache.")

        response = self.request(
            "GET", url, operation=operation, min_delay=min_delay, headers=headers, timeout=timeout
        )
        body = response.text

        if self.enable_cache:
            try:
                self._cache.set(url, body, expire=self.cache_ttl)
            except Exception as e:
                logger.warning(f"Cache write error for {url}: {e}. Body returned without caching.")

        return body

    def post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        operation: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """POST a JSON payload and return the decoded JSON response."""
        merged = {"Content-Type": "application/json", "Accept": "application/json"}
        if headers:
            merged.update(headers)
        response = self.request(
            "POST", url, operation=operation, headers=merged, timeout=timeout, json=payload
        )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ScrapingError(f"Invalid JSON response from {url}: {e}", response.status_code)

    def clear_cache(self) -> None:
        if self.enable_cache:
            self._cache.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get rate limiter and cache statistics."""
        stats: Dict[str, Any] = {"rate_limiter": self.rate_limiter.get_stats()}
        if self.enable_cache:
            stats["cache"] = {
                "enabled": True,
                "size": self._cache.volume(),
                "directory": self._cache.directory,
                "ttl": self.cache_ttl,
            }
        else:
            stats["cache"] = {"enabled": False}
        return stats
