"""Citation strings, chunk ids and hierarchy breadcrumbs for chunks."""

from datetime import datetime
from typing import Optional
from urllib.parse import quote

from statute.core.models import Platform, SourceType, UnitConfig

HIERARCHY_GROUPS = {
    SourceType.COUNTY: "Counties",
    SourceType.MUNICIPAL: "Municipalities",
}

ECFR_READER_URL = "https://www.ecfr.gov/current"


def generate_citation(
    citation_name: str,
    state_abbreviation: str,
    code_name: str,
    section: str,
    year: Optional[int] = None,
) -> str:
    """Bluebook-style ordinance citation.

    >>> generate_citation("Harris County", "Tex.", "Code of Ordinances", "1.02", 2026)
    'Harris County, Tex., Code of Ordinances sect. 1.02 (2026)'
    """
    citation_year = year or datetime.now().year
    return f"{citation_name}, {state_abbreviation}, {code_name} sect. {section} ({citation_year})"


def generate_cfr_citation(title: str, section: str, subsection: Optional[str] = None) -> str:
    """Bluebook CFR citation.

    >>> generate_cfr_citation("21", "117.3", "(a)")
    '21 C.F.R. § 117.3(a)'
    """
    return f"{title} C.F.R. § {section}{subsection or ''}"


def generate_unit_citation(
    unit: UnitConfig, section: str, subsection: Optional[str] = None, year: Optional[int] = None
) -> str:
    """Citation for a section (and optional subsection) of any unit."""
    if unit.source_type == SourceType.FEDERAL:
        return generate_cfr_citation(unit.unit_id, section, subsection)
    citation = generate_citation(unit.display_name, unit.state_abbreviation, unit.code_name, section, year)
    return f"{citation} {subsection}" if subsection else citation


def generate_source_id(source_type: str, slug: str) -> str:
    return f"{source_type}-{slug}"


def generate_chunk_id(source_type: str, slug: str, chapter: str, section: str, chunk_index: int) -> str:
    """Deterministic chunk id, e.g. county-harris-1-1.02-0"""
    return f"{source_type}-{slug}-{chapter}-{section}-{chunk_index}"


def generate_hierarchy(unit: UnitConfig, chapter: str, section: str) -> list[str]:
    if unit.source_type == SourceType.FEDERAL:
        return [unit.code_name, unit.display_name, f"Part {chapter}", f"Section {section}"]

    group = HIERARCHY_GROUPS.get(unit.source_type, unit.source_type.value.title())
    return [
        f"{unit.state_name} {group}",
        unit.display_name,
        f"Chapter {chapter}",
        f"Section {section}",
    ]


def generate_ecfr_url(title: str, section: str) -> str:
    """eCFR reader link, e.g. https://www.ecfr.gov/current/title-21/section-117.3"""
    return f"{ECFR_READER_URL}/title-{title}/section-{quote(section, safe='.')}"


def generate_section_url(unit: UnitConfig, section: Optional[str] = None) -> str:
    """Deep link to a section on the unit's code library."""
    if not unit.base_url:
        raise ValueError(f"{unit.name} has no online source configured")

    if unit.platform == Platform.ECFR:
        if not section:
            return f"{ECFR_READER_URL}/title-{unit.unit_id}"
        return generate_ecfr_url(unit.unit_id, section)

    if not section:
        return unit.base_url

    platform = unit.host_platform or unit.platform
    encoded = quote(section, safe="")
    if platform == Platform.MUNICODE:
        return f"{unit.base_url}?nodeId={encoded}"
    if platform == Platform.AMLEGAL and unit.source_type == SourceType.COUNTY:
        return f"{unit.base_url}/codes/overview?nodeId={encoded}"
    return f"{unit.base_url}#{encoded}"
