"""Adapter for code libraries that only render in a browser.

Pages are rendered to markdown by an external scrape service and split into
sections by the markdown parser. The rendered markdown is cached in the
document store so re-runs within the cache window make no service calls.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterator, Optional

from bs4 import BeautifulSoup

from statute.adapters.base import SourceAdapter
from statute.adapters.markdown import parse_markdown_sections, validate_parsed_sections
from statute.core.exceptions import RenderingServiceError, ScrapingError, StorageError
from statute.core.http import FetchClient
from statute.core.models import Platform, RawDocument, SourceValidation, UnitConfig, utc_now
from statute.core.storage import DocumentStore
from statute.settings import (
    RENDER_CACHE_MAX_AGE_DAYS,
    RENDER_SERVICE_API_KEY,
    RENDER_SERVICE_TIMEOUT_MS,
    RENDER_SERVICE_URL,
)

logger = logging.getLogger(__name__)

DEFAULT_WAIT_MS = {Platform.MUNICODE: 2000, Platform.AMLEGAL: 1000}


def rendered_markdown_key(namespace: str, unit_id: str) -> str:
    return f"{namespace}/{unit_id}/rendered.md"


class RenderedAdapter(SourceAdapter):
    platform = Platform.RENDERED
    rate_limit = 2.0

    def __init__(
        self,
        unit: UnitConfig,
        fetch_client: Optional[FetchClient] = None,
        store: Optional[DocumentStore] = None,
        service_url: str = RENDER_SERVICE_URL,
        api_key: Optional[str] = RENDER_SERVICE_API_KEY,
        max_age_days: int = RENDER_CACHE_MAX_AGE_DAYS,
        force_refresh: bool = False,
        now: Callable[[], datetime] = utc_now,
    ):
        super().__init__(unit, fetch_client)
        self.store = store
        self.service_url = service_url.rstrip("/")
        self.api_key = api_key
        self.max_age = timedelta(days=max_age_days)
        self.force_refresh = force_refresh
        self._now = now

    @property
    def cache_key(self) -> str:
        return rendered_markdown_key(self.unit.source_type.namespace, self.unit.unit_id)

    @property
    def wait_ms(self) -> int:
        if self.unit.render_wait_ms is not None:
            return self.unit.render_wait_ms
        return DEFAULT_WAIT_MS.get(self.unit.host_platform, 1000)

    def validate_structure(self, soup: BeautifulSoup) -> bool:
        # Content is injected client-side; any HTML document is acceptable
        return soup.find() is not None

    def validate_source(self) -> SourceValidation:
        if not self.api_key:
            return SourceValidation(accessible=False, reason="Rendering service API key not configured")
        return super().validate_source()

    def build_request(self) -> Dict[str, object]:
        return {
            "url": self.base_url,
            "formats": ["markdown"],
            "onlyMainContent": True,
            "waitFor": self.wait_ms,
            "timeout": RENDER_SERVICE_TIMEOUT_MS,
        }

    def render(self) -> str:
        """Ask the rendering service for the unit's page as markdown."""
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        platform = (self.unit.host_platform or self.platform).value

        logger.info(f"Rendering {self.unit.name} ({platform}) via {self.service_url}")
        try:
            response = self.fetch_client.post_json(
                f"{self.service_url}/v1/scrape",
                self.build_request(),
                operation="render",
                headers=headers,
                timeout=RENDER_SERVICE_TIMEOUT_MS / 1000 + 30,
            )
        except ScrapingError as e:
            message = str(e).lower()
            status = e.status_code
            if status == 429 or "rate limit" in message:
                status = 429
            elif status in (401, 403) or "unauthorized" in message:
                status = 401
            raise RenderingServiceError(
                f"Rendering failed for {self.unit.name}: {e}", self.unit.name, platform, status
            ) from e

        if response.get("success") is False:
            raise RenderingServiceError(
                f"Rendering failed for {self.unit.name}: {response.get('error', 'unknown error')}",
                self.unit.name,
                platform,
            )

        markdown = (response.get("data") or {}).get("markdown") or ""
        if not markdown.strip():
            raise RenderingServiceError(
                f"Rendering service returned no markdown for {self.unit.name}", self.unit.name, platform
            )
        return markdown

    def _cached_markdown(self) -> Optional[str]:
        if self.store is None or self.force_refresh:
            return None

        stored = self.store.head(self.cache_key)
        if stored is None:
            return None

        stored_at = stored.metadata.get("storedAt")
        try:
            age = self._now() - datetime.fromisoformat(stored_at)
        except (TypeError, ValueError):
            return None
        if age > self.max_age:
            logger.info(f"Cached markdown for {self.unit.name} is {age.days} days old, re-rendering")
            return None

        content = self.store.get(self.cache_key)
        if content is None:
            return None
        logger.info(f"Using cached markdown for {self.unit.name} ({age.days} days old)")
        return content.decode("utf-8")

    def _cache_markdown(self, markdown: str) -> None:
        if self.store is None:
            return
        try:
            self.store.put(
                self.cache_key,
                markdown,
                {
                    "source": self.base_url,
                    "dataType": "rendered-markdown",
                    "unit": self.unit.name,
                    "unitId": self.unit.unit_id,
                    "fetchedAt": self._now().astimezone(timezone.utc).isoformat(),
                },
            )
        except StorageError as e:
            logger.warning(f"Failed to cache markdown for {self.unit.name}: {e}")

    def get_markdown(self) -> str:
        markdown = self._cached_markdown()
        if markdown is None:
            markdown = self.render()
            self._cache_markdown(markdown)
        return markdown

    def fetch_documents(self) -> Iterator[RawDocument]:
        markdown = self.get_markdown()

        sections = parse_markdown_sections(markdown)
        valid, warnings = validate_parsed_sections(sections, self.unit.name)
        for warning in warnings:
            logger.warning(warning)
        logger.info(f"Parsed {len(valid)} of {len(sections)} sections for {self.unit.name}")

        for section in valid:
            yield self.make_document(
                section.chapter,
                section.section,
                section.heading,
                section.text,
                self.base_url,
                subsections=section.subsections,
            )
