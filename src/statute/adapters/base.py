import logging
import re
from abc import ABC, abstractmethod
from collections import Counter
from typing import Callable, Iterable, Iterator, List, NamedTuple, Optional, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from statute.core.error_utils import ErrorCategorizer
from statute.core.exceptions import ScrapingError
from statute.core.http import FetchClient
from statute.core.models import Platform, RawDocument, SkippedDocument, SourceValidation, Subsection, UnitConfig

logger = logging.getLogger(__name__)

STRUCTURE_CHANGED = "HTML structure changed - expected elements not found"

BOILERPLATE_SELECTORS = "script, style, nav, .toc, #toc"

BLOCK_TAGS = ["p", "li", "h2", "h3", "h4", "h5", "h6", "blockquote", "pre", "dd"]


class TocLink(NamedTuple):
    """A table-of-contents entry pointing at a chapter or leaf section."""

    url: str
    title: str
    chapter: str
    section: Optional[str] = None


def numeric_sort_key(value: Optional[str]) -> Tuple[int, float, str]:
    """Order numeric identifiers numerically and everything else after them, lexically."""
    try:
        return (0, float(value), "")
    except (TypeError, ValueError):
        return (1, 0.0, value or "")


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def strip_elements(element: Tag, selectors: str = BOILERPLATE_SELECTORS) -> Tag:
    """Remove navigation and script elements in place."""
    for unwanted in element.select(selectors):
        unwanted.decompose()
    return element


def block_text(element: Tag) -> str:
    """Text of the outermost block-level descendants, one paragraph per block.

    Falls back to the element's flattened text when it has no block children.
    """
    paragraphs = []
    taken = set()
    for block in element.find_all(BLOCK_TAGS):
        if any(id(parent) in taken for parent in block.parents):
            continue
        taken.add(id(block))
        text = block.get_text(" ", strip=True)
        if text:
            paragraphs.append(text)
    if paragraphs:
        return "\n\n".join(paragraphs)
    return normalize_whitespace(element.get_text(" "))


def first_text(soup: BeautifulSoup, selectors: str) -> str:
    """Text of the first element matching any of the selectors, or ""."""
    element = soup.select_one(selectors)
    return element.get_text(" ", strip=True) if element else ""


def select_text(soup: BeautifulSoup, selectors: Iterable[str], min_length: int) -> str:
    """Joined text of the first selector whose matches exceed min_length characters."""
    for selector in selectors:
        text = "\n\n".join(
            element.get_text(" ", strip=True) for element in soup.select(selector)
        ).strip()
        if len(text) > min_length:
            return text
    return ""


class SourceAdapter(ABC):
    """Turns one unit's code of ordinances into a stream of RawDocuments.

    Leaf failures are logged, recorded in `skipped` and do not stop the
    stream. Failing to load the unit's entry page propagates to the caller.
    """

    platform: Platform
    rate_limit: float = 0.5
    user_agent: Optional[str] = None

    def __init__(self, unit: UnitConfig, fetch_client: Optional[FetchClient] = None):
        if not unit.base_url:
            raise ValueError(f"Unit {unit.name} has no base URL")
        self.unit = unit
        self.base_url = unit.base_url
        self.fetch_client = fetch_client or FetchClient()
        self.skipped: List[SkippedDocument] = []
        self._seen_sections: Counter = Counter()

    @abstractmethod
    def fetch_documents(self) -> Iterator[RawDocument]:
        """Yield every leaf section of the unit, in source order."""

    @abstractmethod
    def validate_structure(self, soup: BeautifulSoup) -> bool:
        """Check the entry page still has the elements the parser relies on."""

    def _headers(self) -> Optional[dict]:
        return {"User-Agent": self.user_agent} if self.user_agent else None

    def load_page(self, url: str) -> BeautifulSoup:
        html = self.fetch_client.fetch(
            url,
            operation=f"{self.platform.value} page",
            min_delay=self.rate_limit,
            headers=self._headers(),
        )
        return BeautifulSoup(html, "html.parser")

    def validate_source(self) -> SourceValidation:
        """Fetch the entry page and run the structure check."""
        try:
            soup = self.load_page(self.base_url)
        except ScrapingError as e:
            reason = f"HTTP {e.status_code}" if e.status_code else str(e)
            return SourceValidation(accessible=False, reason=reason)
        except Exception as e:
            return SourceValidation(accessible=False, reason=str(e))

        if not self.validate_structure(soup):
            return SourceValidation(accessible=False, reason=STRUCTURE_CHANGED)
        return SourceValidation(accessible=True)

    def resolve_url(self, href: str) -> str:
        return urljoin(self.base_url, href)

    def extract_links(
        self,
        soup: BeautifulSoup,
        selectors: Iterable[str],
        parse: Callable[[Tag, str, str], Optional[TocLink]],
        skip_words: Iterable[str] = (),
        skip_titles: Iterable[str] = (),
    ) -> List[TocLink]:
        """Collect TOC links from the first selector that yields any.

        `parse` receives the element, its resolved URL and title and returns
        a TocLink or None to drop it. Titles containing any of `skip_words`, or
        equal to one of `skip_titles`, are dropped, as are duplicate URLs.
        """
        skip_words = [word.lower() for word in skip_words]
        skip_titles = {title.lower() for title in skip_titles}

        for selector in selectors:
            links: List[TocLink] = []
            seen = set()
            for element in soup.select(selector):
                href = element.get("href")
                title = element.get_text(" ", strip=True)
                if not href or not title:
                    continue
                if title.lower() in skip_titles or any(word in title.lower() for word in skip_words):
                    continue
                url = self.resolve_url(href)
                if url in seen:
                    continue
                link = parse(element, url, title)
                if link:
                    seen.add(url)
                    links.append(link)
            if links:
                logger.debug(f"Found {len(links)} links for {self.unit.name} with selector {selector}")
                return links

        return []

    def record_skip(self, url: str, error: Exception) -> None:
        """Log a leaf failure and remember it."""
        ErrorCategorizer.handle_error(
            logger, error, url, context={"unit": self.unit.name, "platform": self.platform.value}
        )
        self.skipped.append(
            SkippedDocument(url=url, reason=str(error), category=ErrorCategorizer.categorize_error(error))
        )

    def unique_section(self, chapter: str, section: str) -> str:
        """Suffix repeated section identifiers within a chapter so chunk ids stay distinct."""
        self._seen_sections[(chapter, section)] += 1
        count = self._seen_sections[(chapter, section)]
        return section if count == 1 else f"{section}-{count}"

    def make_document(
        self,
        chapter: str,
        section: str,
        heading: str,
        text: str,
        url: str,
        subsections: Optional[List[Subsection]] = None,
    ) -> RawDocument:
        return RawDocument(
            unit_id=self.unit.unit_id,
            unit_name=self.unit.name,
            chapter=chapter,
            section=self.unique_section(chapter, section),
            heading=heading,
            text=text,
            subsections=subsections or [],
            source_url=url,
        )
