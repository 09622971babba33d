"""Source adapters and the factory that picks one per unit."""

import logging
import time
from collections import Counter
from typing import Callable, Dict, List, NamedTuple, Optional, Union

from tqdm import tqdm

from statute.adapters.amlegal import AmlegalAdapter
from statute.adapters.base import SourceAdapter
from statute.adapters.ecfr import EcfrAdapter
from statute.adapters.elaws import ElawsAdapter
from statute.adapters.municode import MunicodeAdapter
from statute.adapters.rendered import RenderedAdapter
from statute.core.http import FetchClient
from statute.core.models import Platform, UnitConfig
from statute.core.storage import DocumentStore

logger = logging.getLogger(__name__)

ADAPTERS = {
    Platform.ECFR: EcfrAdapter,
    Platform.MUNICODE: MunicodeAdapter,
    Platform.ELAWS: ElawsAdapter,
    Platform.AMLEGAL: AmlegalAdapter,
}

NOT_IMPLEMENTED = {Platform.COURT_ORDERS, Platform.CUSTOM}


class UnsupportedSource(NamedTuple):
    """Why no adapter could be built for a unit."""

    unit: Optional[str]
    platform: Optional[str]
    reason: str


def get_adapter_for_unit(
    unit: Optional[UnitConfig],
    fetch_client: Optional[FetchClient] = None,
    store: Optional[DocumentStore] = None,
) -> Union[SourceAdapter, UnsupportedSource]:
    """Build the adapter for a unit, or explain why there is none."""
    if unit is None:
        logger.error("Unit not found")
        return UnsupportedSource(None, None, "Unit not found")

    platform = unit.platform.value if unit.platform else None

    if not unit.enabled:
        reason = unit.skip_reason or "Unit disabled"
        logger.warning(f"Unit disabled: {unit.name} ({reason})")
        return UnsupportedSource(unit.name, platform, reason)

    if not unit.base_url or not unit.platform:
        logger.error(f"Unit missing base URL or platform: {unit.name}")
        return UnsupportedSource(unit.name, platform, "Missing base URL or platform")

    if unit.platform in NOT_IMPLEMENTED:
        logger.warning(f"No adapter implemented for {platform}: {unit.name}")
        return UnsupportedSource(unit.name, platform, f"Platform not implemented: {platform}")

    if unit.platform == Platform.RENDERED:
        return RenderedAdapter(unit, fetch_client, store=store)

    adapter_class = ADAPTERS.get(unit.platform)
    if adapter_class is None:
        logger.error(f"Unknown platform: {platform}")
        return UnsupportedSource(unit.name, platform, f"Unknown platform: {platform}")

    return adapter_class(unit, fetch_client)


def get_adapters_for_enabled_units(
    units: List[UnitConfig],
    fetch_client: Optional[FetchClient] = None,
    store: Optional[DocumentStore] = None,
) -> List[SourceAdapter]:
    adapters = []
    for unit in units:
        if not unit.enabled:
            continue
        adapter = get_adapter_for_unit(unit, fetch_client, store)
        if isinstance(adapter, SourceAdapter):
            adapters.append(adapter)
    return adapters


def validate_all_sources(
    units: List[UnitConfig],
    fetch_client: Optional[FetchClient] = None,
    delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, list]:
    """Check every enabled unit's entry page, pausing between units."""
    valid: List[str] = []
    invalid: List[Dict[str, str]] = []

    adapters = get_adapters_for_enabled_units(units, fetch_client)
    for index, adapter in enumerate(tqdm(adapters, desc="Validating sources", unit="unit")):
        logger.info(f"Validating {adapter.unit.name}...")
        result = adapter.validate_source()

        if result.accessible:
            valid.append(adapter.unit.name)
            logger.info(f"{adapter.unit.name}: OK")
        else:
            reason = result.reason or "Unknown error"
            invalid.append({"unit": adapter.unit.name, "reason": reason})
            logger.warning(f"{adapter.unit.name}: FAILED - {reason}")

        if index < len(adapters) - 1:
            sleep(delay)

    return {"valid": valid, "invalid": invalid}


def get_adapter_stats(units: List[UnitConfig]) -> Dict[str, object]:
    """Adapter counts: total units, enabled units, and enabled units per platform."""
    enabled = [u for u in units if u.enabled]
    return {
        "total": len(units),
        "enabled": len(enabled),
        "by_platform": dict(Counter(u.platform.value for u in enabled if u.platform)),
    }


__all__ = [
    "AmlegalAdapter",
    "EcfrAdapter",
    "ElawsAdapter",
    "MunicodeAdapter",
    "RenderedAdapter",
    "SourceAdapter",
    "UnsupportedSource",
    "get_adapter_for_unit",
    "get_adapters_for_enabled_units",
    "get_adapter_stats",
    "validate_all_sources",
]
