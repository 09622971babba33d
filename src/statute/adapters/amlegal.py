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

NODE_SELECTORS = [
    "[data-node-id]",
    "[data-nodeid]",
    ".toc-node a",
    ".toc-item a",
    ".tree-node a",
    'nav a[href*="node"]',
    'a[href*="nodeId"]',
    'a[href*="NODEID"]',
]

TEXT_SELECTORS = [".section-content", ".code-text", ".node-content", "main .content", "article", ".code-body"]

UTILITY_TITLES = ("search", "help", "home", "print")

_CHAPTER = re.compile(r"Chapter\s+(\d+)", re.IGNORECASE)
_NODE_CHAPTER = re.compile(r"CHAPTER_?(\d+)", re.IGNORECASE)
_LEADING_CHAPTER = re.compile(r"^(\d+)\.")
_SECTION = re.compile(r"Sec(?:tion)?\.?\s*(\d[\d.]*)", re.IGNORECASE)
_NODE_SECTION = re.compile(r"SEC(?:TION)?_?(\d[\d.]*)", re.IGNORECASE)
_DOTTED_SECTION = re.compile(r"^[\d.]+[.-](\d[\d.]*)")


class AmlegalAdapter(SourceAdapter):
    """American Legal Publishing (codelibrary.amlegal.com).

    robots.txt asks for a 5 second crawl delay and blocks generic bot
    user agents.
    """

    platform = Platform.AMLEGAL
    rate_limit = 5.0
    user_agent = "StatuteIngest/1.0 Legal Research"

    def validate_structure(self, soup: BeautifulSoup) -> bool:
        if soup.select_one(".code-section, .toc-node, [data-node-id], .node-content, .code-content, main, article"):
            return True
        title = soup.title.get_text().lower() if soup.title else ""
        return "code" in title or "ordinance" in title

    def resolve_url(self, href: str) -> str:
        if href.startswith("http"):
            return href
        if href.startswith("/"):
            parts = urlparse(self.base_url)
            return f"{parts.scheme}://{parts.netloc}{href}"
        return f"{re.sub(r'/overview$', '', self.base_url)}/{href}"

    def _parse_node(self, element: Tag, url: str, title: str) -> Optional[TocLink]:
        node_id = element.get("data-node-id") or element.get("data-nodeid") or ""
        chapter_match = _CHAPTER.search(title) or _NODE_CHAPTER.search(node_id) or _LEADING_CHAPTER.match(title)
        section_match = _SECTION.search(title) or _NODE_SECTION.search(node_id) or _DOTTED_SECTION.match(title)
        return TocLink(
            url=url,
            title=title,
            chapter=chapter_match.group(1) if chapter_match else "0",
            section=section_match.group(1).rstrip(".") if section_match else "0",
        )

    def get_node_links(self, soup: BeautifulSoup) -> List[TocLink]:
        links = self.extract_links(soup, NODE_SELECTORS, self._parse_node, skip_titles=UTILITY_TITLES)
        return sorted(links, key=lambda link: (numeric_sort_key(link.chapter), numeric_sort_key(link.section)))

    def fetch_documents(self) -> Iterator[RawDocument]:
        logger.info(f"Fetching {self.unit.name} from {self.base_url}")
        soup = self.load_page(self.base_url)

        links = self.get_node_links(soup)
        logger.info(f"Found {len(links)} code nodes for {self.unit.name}")

        for link in links:
            try:
                document = self.parse_node(self.load_page(link.url), link)
            except DocumentSkipped as e:
                logger.info(f"Skipping {link.url}: {e}", extra={"unit": self.unit.name, "url": link.url})
                continue
            except Exception as e:
                self.record_skip(link.url, e)
                continue
            yield document

    def parse_node(self, soup: BeautifulSoup, link: TocLink) -> RawDocument:
        heading = (
            first_text(soup, ".section-heading")
            or first_text(soup, "h1")
            or first_text(soup, "h2")
            or first_text(soup, ".node-title")
            or link.title
        )

        strip_elements(soup, "script, style, nav, .toc, .sidebar")
        text = select_text(soup, TEXT_SELECTORS, min_length=100)

        if len(text) < 100:
            container = soup.select_one("main, article, .content, body")
            text = normalize_whitespace(container.get_text(" ")) if container else ""

        if len(text) < 50:
            raise DocumentSkipped("insufficient content", url=link.url)

        return self.make_document(link.chapter, link.section or "0", heading, text, link.url)
