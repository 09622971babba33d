import logging
import re
from typing import Iterator, List
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from statute.adapters.base import SourceAdapter, TocLink, block_text, first_text, numeric_sort_key, strip_elements
from statute.core.models import Platform, RawDocument

logger = logging.getLogger(__name__)

CHAPTER_SELECTORS = [
    ".toc-link",
    ".toc-item a",
    "[data-toc-item] a",
    ".codes-toc a",
    "nav.toc a",
    'a[href*="nodeId"]',
    'a[href*="CHAPTER"]',
    'a[href*="chapter"]',
]

STRUCTURE_SELECTORS = '#codebankToggle, .toc, [data-testid], .codes-title, a[href*="/codes/"], main, article'

SECTION_SELECTORS = ".chunk-content, .section-content, [data-section], article section, .code-section, .content-area p"
SECTION_HEADING_SELECTORS = "h1, h2, h3, .section-heading, .section-title"
SECTION_TEXT_SELECTORS = "p, .section-text, .section-body"

_CHAPTER_NUMBER = re.compile(r"Chapter\s+(\d+)", re.IGNORECASE)
_LEADING_NUMBER = re.compile(r"^(\d+)\.")
_SECTION_NUMBER = re.compile(r"(?:Section|Sec\.?)\s*(\d[\d.-]*)", re.IGNORECASE)
_LEADING_SECTION = re.compile(r"^(\d[\d.-]*)")


class MunicodeAdapter(SourceAdapter):
    """Municode Library (library.municode.com).

    The entry page lists chapters; each chapter page carries all its sections.
    """

    platform = Platform.MUNICODE
    rate_limit = 1.0

    def validate_structure(self, soup: BeautifulSoup) -> bool:
        return soup.select_one(STRUCTURE_SELECTORS) is not None

    def resolve_url(self, href: str) -> str:
        return urljoin(self.base_url.rstrip("/") + "/", href)

    def _parse_chapter_link(self, element: Tag, url: str, title: str):
        if url.rstrip("/") == self.base_url.rstrip("/"):
            return None
        match = _CHAPTER_NUMBER.search(title) or _LEADING_NUMBER.match(title)
        return TocLink(url=url, title=title, chapter=match.group(1) if match else "0")

    def get_chapter_links(self, soup: BeautifulSoup) -> List[TocLink]:
        links = self.extract_links(
            soup, CHAPTER_SELECTORS, self._parse_chapter_link, skip_words=("search", "help")
        )
        return sorted(links, key=lambda link: numeric_sort_key(link.chapter))

    def fetch_documents(self) -> Iterator[RawDocument]:
        logger.info(f"Fetching {self.unit.name} from {self.base_url}")
        soup = self.load_page(self.base_url)

        chapters = self.get_chapter_links(soup)
        logger.info(f"Found {len(chapters)} chapters for {self.unit.name}")

        for link in chapters:
            logger.debug(f"Processing chapter {link.chapter}: {link.title}")
            try:
                documents = self.parse_chapter(self.load_page(link.url), link)
            except Exception as e:
                self.record_skip(link.url, e)
                continue
            yield from documents

    def parse_chapter(self, soup: BeautifulSoup, link: TocLink) -> List[RawDocument]:
        """Extract every section on a chapter page.

        Falls back to one document for the whole chapter when no section
        containers are found.
        """
        documents = []
        matched = set()

        for element in soup.select(SECTION_SELECTORS):
            # Nested containers (article section > .section-content) count once
            if any(id(parent) in matched for parent in element.parents):
                continue
            matched.add(id(element))

            heading_element = element.select_one(SECTION_HEADING_SELECTORS) or element.find(["strong", "b"])
            heading = heading_element.get_text(" ", strip=True) if heading_element else ""

            paragraphs = element.select(SECTION_TEXT_SELECTORS) or [element]
            text = "\n\n".join(
                p.get_text(" ", strip=True) for p in paragraphs if p.get_text(strip=True)
            )

            if not heading or len(text) <= 50:
                continue

            match = _SECTION_NUMBER.search(heading) or _LEADING_SECTION.match(heading)
            section = match.group(1).rstrip(".-") if match else str(len(documents) + 1)

            documents.append(self.make_document(link.chapter, section, heading, text, link.url))

        if documents:
            return documents

        container = soup.select_one("main, article, .content")
        content = block_text(strip_elements(container)) if container else ""
        if len(content) > 100:
            heading = first_text(soup, "h1, .page-title") or f"Chapter {link.chapter}"
            return [self.make_document(link.chapter, "0", heading, content, link.url)]

        logger.info(f"No section content found on {link.url}")
        return []
