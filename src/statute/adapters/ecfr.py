"""Electronic Code of Federal Regulations (ecfr.gov).

The versioner API gives a bulk listing of a title's parts and the full XML of
each part, so one request covers every section of a part.
"""

import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional

from bs4 import BeautifulSoup, Tag

from statute.adapters.base import SourceAdapter, normalize_whitespace, numeric_sort_key
from statute.core.citations import generate_ecfr_url
from statute.core.exceptions import DocumentSkipped, ScrapingError
from statute.core.http import FetchClient
from statute.core.models import Platform, RawDocument, SourceValidation, Subsection, UnitConfig

logger = logging.getLogger(__name__)

SECTION_DIV = {"TYPE": "SECTION"}
PARAGRAPH_TAGS = ["P", "FP"]

_TOP_LEVEL_MARKER = re.compile(r"^\(([a-z])\)\s*")
_SECTION_SIGN = re.compile(r"^§+\s*[\d.]+[a-z]?\s*")


def group_subsections(paragraphs: List[str]) -> List[Subsection]:
    """Group paragraphs under top-level (a), (b), ... markers.

    A marker only opens a subsection when it is the next letter in sequence,
    so nested "(i)" or a stray "(c)" stays with the current subsection. Text
    before the first marker would fall outside every subsection, so a section
    that does not open with "(a)" has none.
    """
    opening = _TOP_LEVEL_MARKER.match(paragraphs[0]) if paragraphs else None
    if not opening or opening.group(1) != "a":
        return []

    subsections: List[Subsection] = []
    current: Optional[str] = None
    parts: List[str] = []

    for paragraph in paragraphs:
        match = _TOP_LEVEL_MARKER.match(paragraph)
        expected = chr(ord(current) + 1) if current else "a"
        if match and match.group(1) == expected:
            if current:
                subsections.append(Subsection(id=f"({current})", text="\n\n".join(parts)))
            current = expected
            parts = [paragraph[match.end():]]
        elif current:
            parts.append(paragraph)

    if current:
        subsections.append(Subsection(id=f"({current})", text="\n\n".join(parts)))
    return subsections


def collect_parts(node: Dict[str, Any]) -> List[str]:
    """Identifiers of every non-reserved part in a title structure tree."""
    if node.get("type") == "part":
        return [] if node.get("reserved") else [node["identifier"]]
    parts: List[str] = []
    for child in node.get("children") or []:
        parts.extend(collect_parts(child))
    return parts


class EcfrAdapter(SourceAdapter):
    """One CFR title per unit, fetched part by part from the versioner API."""

    platform = Platform.ECFR
    rate_limit = 1.0

    def __init__(self, unit: UnitConfig, fetch_client: Optional[FetchClient] = None):
        super().__init__(unit, fetch_client)
        self.title = unit.unit_id
        self.as_of: Optional[str] = None

    def _api(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path}"

    def _fetch_json(self, url: str) -> Dict[str, Any]:
        body = self.fetch_client.fetch(url, operation="ecfr listing", min_delay=self.rate_limit)
        return json.loads(body)

    def load_part(self, part: str) -> BeautifulSoup:
        url = self._api(f"full/{self.as_of}/title-{self.title}.xml?part={part}")
        xml = self.fetch_client.fetch(url, operation="ecfr part", min_delay=self.rate_limit)
        return BeautifulSoup(xml, "xml")

    def validate_structure(self, soup: BeautifulSoup) -> bool:
        return soup.find("DIV8", attrs=SECTION_DIV) is not None

    def validate_source(self) -> SourceValidation:
        """Check the title is listed and not reserved, and remember its currency date."""
        try:
            listing = self._fetch_json(self._api("titles.json"))
        except ScrapingError as e:
            reason = f"HTTP {e.status_code}" if e.status_code else str(e)
            return SourceValidation(accessible=False, reason=reason)
        except Exception as e:
            return SourceValidation(accessible=False, reason=str(e))

        for entry in listing.get("titles", []):
            if str(entry.get("number")) != self.title:
                continue
            if entry.get("reserved"):
                return SourceValidation(accessible=False, reason=f"Title {self.title} is reserved")
            self.as_of = entry.get("up_to_date_as_of") or entry.get("latest_issue_date")
            return SourceValidation(accessible=True)

        return SourceValidation(accessible=False, reason=f"Title {self.title} not listed")

    def get_parts(self) -> List[str]:
        structure = self._fetch_json(self._api(f"structure/{self.as_of}/title-{self.title}.json"))
        return sorted(collect_parts(structure), key=numeric_sort_key)

    def fetch_documents(self) -> Iterator[RawDocument]:
        if self.as_of is None:
            validation = self.validate_source()
            if not validation.accessible:
                raise ScrapingError(f"eCFR title {self.title} unavailable: {validation.reason}")

        parts = self.get_parts()
        logger.info(f"Found {len(parts)} parts in title {self.title}", extra={"as_of": self.as_of})

        for part in parts:
            try:
                soup = self.load_part(part)
            except Exception as e:
                self.record_skip(self._api(f"full/{self.as_of}/title-{self.title}.xml?part={part}"), e)
                continue

            for div in soup.find_all("DIV8", attrs=SECTION_DIV):
                try:
                    document = self.parse_section(div, part)
                except DocumentSkipped as e:
                    logger.info(f"Dropped {e.url}: {e}", extra={"unit": self.unit.name, "url": e.url})
                    continue
                yield document

    def parse_section(self, div: Tag, part: str) -> RawDocument:
        """Build a document from one section DIV.

        Raises:
            DocumentSkipped: The section is reserved or has no paragraphs.
        """
        section = div.get("N", "")
        url = generate_ecfr_url(self.title, section)

        head = div.find("HEAD")
        heading = _SECTION_SIGN.sub("", normalize_whitespace(head.get_text(" "))) if head else ""

        paragraphs = [
            normalize_whitespace(p.get_text(" "))
            for p in div.find_all(PARAGRAPH_TAGS)
            if p.get_text(strip=True)
        ]
        if not section or not paragraphs:
            raise DocumentSkipped("section has no text", url=url)

        return self.make_document(
            part,
            section,
            heading or f"Section {section}",
            "\n\n".join(paragraphs),
            url,
            subsections=group_subsections(paragraphs),
        )
