import logging
import re
from typing import Iterator, List, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from statute.adapters.base import (
    SourceAdapter,
    TocLink,
    first_text,
    normalize_whitespace,
    numeric_sort_key,
    select_text,
    strip_elements,
)
from statute.core.exceptions import DocumentSkipped
from statute.core.models import Platform, RawDocument

logger = logging.getLogger(__name__)

LINK_SELECTORS = [
    ".toc-item a",
    "#toc a",
    ".toc a",
    'table a[href*="sec"]',
    'table a[href*="SEC"]',
    'table a[href*="ch"]',
    'table a[href*="CH"]',
    'a[href*="_sec"]',
    'a[href*="_SEC"]',
    'a[href*="article"]',
    'a[href*="coor"]',
]

TEXT_SELECTORS = [".section-text", ".content", ".code-text", "main p", "article p", "table td", "body"]

NAVIGATION_TITLES = ("home", "search", "help", "back")

_CHAPTER = re.compile(r"Chapter\s+(\d+)|Art(?:icle)?\.?\s*([IVXLCDM]+|\d+)\b", re.IGNORECASE)
_SECTION = re.compile(r"Sec(?:tion)?\.?\s*(\d[\d.]*)", re.IGNORECASE)
_LEADING_SECTION = re.compile(r"^(\d[\d.]*)\s")


class ElawsAdapter(SourceAdapter):
    """eLaws (*.elaws.us): server-rendered table of contents linking to one page per section."""

    platform = Platform.ELAWS
    rate_limit = 1.0

    def validate_structure(self, soup: BeautifulSoup) -> bool:
        if soup.select_one('.toc-item, frame, a[href*="coor"], table, .code-section'):
            return True
        title = soup.title.get_text() if soup.title else ""
        if "code of ordinances" in title.lower():
            return True
        return bool(soup.body and len(soup.body.get_text()) > 500)

    def resolve_url(self, href: str) -> str:
        """Relative links resolve against the base path minus its last segment."""
        if href.startswith("http"):
            return href
        parts = urlparse(self.base_url)
        origin = f"{parts.scheme}://{parts.netloc}"
        if href.startswith("/"):
            return f"{origin}{href}"
        base_path = re.sub(r"/[^/]*$", "", parts.path)
        return f"{origin}{base_path}/{href}"

    def _parse_link(self, element: Tag, url: str, title: str) -> Optional[TocLink]:
        chapter_match = _CHAPTER.search(title)
        section_match = _SECTION.search(title) or _LEADING_SECTION.match(title)
        return TocLink(
            url=url,
            title=title,
            chapter=next((g for g in chapter_match.groups() if g), "0") if chapter_match else "0",
            section=section_match.group(1).rstrip(".") if section_match else "0",
        )

    def get_section_links(self, soup: BeautifulSoup) -> List[TocLink]:
        links = self.extract_links(soup, LINK_SELECTORS, self._parse_link, skip_titles=NAVIGATION_TITLES)
        return sorted(links, key=lambda link: (numeric_sort_key(link.chapter), numeric_sort_key(link.section)))

    def fetch_documents(self) -> Iterator[RawDocument]:
        logger.info(f"Fetching {self.unit.name} from {self.base_url}")
        soup = self.load_page(self.base_url)

        links = self.get_section_links(soup)
        logger.info(f"Found {len(links)} section links for {self.unit.name}")

        for link in links:
            try:
                document = self.parse_section(self.load_page(link.url), link)
            except DocumentSkipped as e:
                logger.info(f"Skipping {link.url}: {e}", extra={"unit": self.unit.name, "url": link.url})
                continue
            except Exception as e:
                self.record_skip(link.url, e)
                continue
            yield document

    def parse_section(self, soup: BeautifulSoup, link: TocLink) -> RawDocument:
        """Build a document from a section page.

        Raises:
            DocumentSkipped: When the page has too little text to index
        """
        heading = first_text(soup, "h1") or first_text(soup, "h2") or first_text(soup, ".section-title")
        if not heading and soup.title:
            heading = soup.title.get_text(strip=True)
        heading = heading or link.title

        strip_elements(soup)
        text = select_text(soup, TEXT_SELECTORS, min_length=100)

        if len(text) < 100 and soup.body:
            strip_elements(soup.body, "header, footer")
            text = normalize_whitespace(soup.body.get_text(" "))

        if len(text) < 50:
            raise DocumentSkipped("insufficient content", url=link.url)

        return self.make_document(link.chapter, link.section or "0", heading, text, link.url)
