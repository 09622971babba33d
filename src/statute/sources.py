"""Static registry of ingestion units (federal CFR titles, Texas counties and cities)."""

from collections import Counter
from typing import Dict, List, Optional

from statute.core.models import Platform, SourceType, UnitConfig

ECFR_API_URL = "https://www.ecfr.gov/api/versioner/v1"


def _cfr_title(number: int, name: str, categories: List[str]) -> UnitConfig:
    return UnitConfig(
        name=f"Title {number}",
        unit_id=str(number),
        slug=str(number),
        source_type=SourceType.FEDERAL,
        platform=Platform.ECFR,
        base_url=ECFR_API_URL,
        categories=categories,
        region="US",
        state_name="United States",
        state_abbreviation="U.S.",
        code_name="Code of Federal Regulations",
        citation_name=f"Title {number} - {name}",
    )


# CFR titles covering retail compliance: food, pharmacy, alcohol, labor, fuel and transport
FEDERAL_UNITS: List[UnitConfig] = [
    _cfr_title(7, "Agriculture", ["food-retail", "food-safety"]),
    _cfr_title(9, "Animals and Animal Products", ["food-safety"]),
    _cfr_title(21, "Food and Drugs", ["food-safety", "pharmacy"]),
    _cfr_title(27, "Alcohol, Tobacco Products and Firearms", ["alcohol"]),
    _cfr_title(29, "Labor", ["employment"]),
    _cfr_title(40, "Protection of Environment", ["fuel", "hazmat"]),
    _cfr_title(49, "Transportation", ["fuel", "transportation"]),
]


def _county(name: str, fips_code: str, platform: Platform, base_url: str, categories: List[str]) -> UnitConfig:
    return UnitConfig(
        name=name,
        unit_id=fips_code,
        source_type=SourceType.COUNTY,
        platform=platform,
        base_url=base_url,
        categories=categories,
        citation_name=f"{name} County",
    )


def _municode_county_url(slug: str) -> str:
    return f"https://library.municode.com/tx/{slug}_county/codes/code_of_ordinances"


COUNTY_UNITS: List[UnitConfig] = [
    _county("Harris", "48201", Platform.MUNICODE, _municode_county_url("harris"),
            ["subdivision", "infrastructure", "flood", "health"]),
    _county("Dallas", "48113", Platform.ELAWS, "http://dallascounty-tx.elaws.us/code/coor",
            ["subdivision", "building", "flood", "health"]),
    _county("Tarrant", "48439", Platform.MUNICODE, _municode_county_url("tarrant"),
            ["subdivision", "building", "drainage", "health"]),
    _county("Bexar", "48029", Platform.MUNICODE, _municode_county_url("bexar"),
            ["subdivision", "building", "flood", "health"]),
    _county("Travis", "48453", Platform.MUNICODE, _municode_county_url("travis"),
            ["subdivision", "building", "flood", "septic", "health"]),
    _county("Collin", "48085", Platform.MUNICODE, _municode_county_url("collin"),
            ["subdivision", "building", "drainage", "health"]),
    _county("Denton", "48121", Platform.MUNICODE, _municode_county_url("denton"),
            ["subdivision", "building", "flood", "health"]),
    _county("Fort Bend", "48157", Platform.MUNICODE, _municode_county_url("fort_bend"),
            ["subdivision", "building", "drainage", "flood", "health"]),
    _county("Williamson", "48491", Platform.MUNICODE, _municode_county_url("williamson"),
            ["subdivision", "building", "flood", "septic", "health"]),
    _county("El Paso", "48141", Platform.MUNICODE, _municode_county_url("el_paso"),
            ["subdivision", "building", "flood", "health"]),
]


def _city(name: str, city_id: str, host_platform: Platform, base_url: Optional[str] = None) -> UnitConfig:
    if base_url is None:
        base_url = f"https://library.municode.com/tx/{city_id}/codes/code_of_ordinances"
    return UnitConfig(
        name=name,
        unit_id=city_id,
        slug=city_id,
        source_type=SourceType.MUNICIPAL,
        platform=Platform.RENDERED,
        host_platform=host_platform,
        base_url=base_url,
        render_wait_ms=2000 if host_platform == Platform.MUNICODE else 1000,
    )


def _amlegal_city_url(code: str) -> str:
    return f"https://codelibrary.amlegal.com/codes/{code}/latest/{code}_tx/0-0-0-1"


# Ordered by population rank within each code library
MUNICIPAL_UNITS: List[UnitConfig] = [
    _city("Houston", "houston", Platform.MUNICODE),
    _city("San Antonio", "san_antonio", Platform.MUNICODE),
    _city("Austin", "austin", Platform.MUNICODE),
    _city("El Paso", "el_paso", Platform.MUNICODE),
    _city("Arlington", "arlington", Platform.MUNICODE),
    _city("Plano", "plano", Platform.MUNICODE),
    _city("Corpus Christi", "corpus_christi", Platform.MUNICODE),
    _city("Lubbock", "lubbock", Platform.MUNICODE),
    _city("Laredo", "laredo", Platform.MUNICODE),
    _city("Irving", "irving", Platform.MUNICODE),
    _city("Garland", "garland", Platform.MUNICODE),
    _city("Frisco", "frisco", Platform.MUNICODE),
    _city("McKinney", "mckinney", Platform.MUNICODE),
    _city("Amarillo", "amarillo", Platform.MUNICODE),
    _city("Grand Prairie", "grand_prairie", Platform.MUNICODE),
    _city("Brownsville", "brownsville", Platform.MUNICODE),
    _city("Pasadena", "pasadena", Platform.MUNICODE),
    _city("Dallas", "dallas", Platform.AMLEGAL, _amlegal_city_url("dallas")),
    _city("Fort Worth", "fort_worth", Platform.AMLEGAL, _amlegal_city_url("ftworth")),
    _city("Killeen", "killeen", Platform.AMLEGAL, _amlegal_city_url("killeen")),
]


def get_registry(source_type: SourceType) -> List[UnitConfig]:
    registries = {
        SourceType.FEDERAL: FEDERAL_UNITS,
        SourceType.COUNTY: COUNTY_UNITS,
        SourceType.MUNICIPAL: MUNICIPAL_UNITS,
    }
    return registries[SourceType(source_type)]


def get_enabled_units(units: List[UnitConfig]) -> List[UnitConfig]:
    return [u for u in units if u.enabled]


def get_skipped_units(units: List[UnitConfig]) -> List[UnitConfig]:
    return [u for u in units if not u.enabled]


def get_unit_by_name(units: List[UnitConfig], name: str) -> Optional[UnitConfig]:
    """Case-insensitive lookup by unit name."""
    name = name.strip().lower()
    return next((u for u in units if u.name.lower() == name), None)


def get_unit_by_id(units: List[UnitConfig], unit_id: str) -> Optional[UnitConfig]:
    return next((u for u in units if u.unit_id == unit_id), None)


def get_units_by_platform(units: List[UnitConfig], platform: Platform) -> List[UnitConfig]:
    platform = Platform(platform)
    return [u for u in units if u.platform == platform or u.host_platform == platform]


def get_coverage_stats(units: List[UnitConfig]) -> Dict[str, object]:
    """Counts of total, enabled and disabled units, and enabled units per platform."""
    enabled = get_enabled_units(units)
    by_platform = Counter(
        (u.host_platform or u.platform).value for u in enabled if (u.host_platform or u.platform)
    )
    return {
        "total": len(units),
        "enabled": len(enabled),
        "disabled": len(units) - len(enabled),
        "by_platform": dict(by_platform),
    }
