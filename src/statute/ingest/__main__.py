"""CLI entry point for ordinance ingestion.

Usage:
    # Ingest every enabled county, resuming from the last checkpoint
    python -m statute.ingest --source county

    # Two cities only, starting from scratch
    python -m statute.ingest --source municipal --unit Houston --unit Austin --no-resume

    # Check that every source is reachable and still parses
    python -m statute.ingest --source county --validate-only

    # Print the coverage report without ingesting
    python -m statute.ingest --source municipal --coverage

    # Two CFR titles from the eCFR bulk API
    python -m statute.ingest --source federal --unit "Title 21" --unit "Title 27"
"""

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from statute.adapters import validate_all_sources
from statute.core.checkpoint import CheckpointStore
from statute.core.embeddings import OpenAIEmbeddingService
from statute.core.http import FetchClient
from statute.core.models import SourceType
from statute.core.notifier import HttpFreshnessNotifier
from statute.core.storage import create_document_store
from statute.core.utils import set_logging_level
from statute.core.vector_index import QdrantVectorIndex
from statute.ingest.coverage import format_coverage_markdown, generate_coverage_report
from statute.ingest.orchestrator import IngestOrchestrator, PartialFailurePolicy
from statute.settings import FRESHNESS_NOTIFIER_URL, PARTIAL_FAILURE_POLICY
from statute.sources import get_registry, get_unit_by_name

NOTIFIER_PATHS = {
    SourceType.FEDERAL: "sources:updateFederalStatus",
    SourceType.COUNTY: "sources:updateCountyStatus",
    SourceType.MUNICIPAL: "sources:updateMunicipalStatus",
}


def select_units(source_type: SourceType, names):
    """Registry units for the source type, narrowed to `names` when given."""
    units = get_registry(source_type)
    if not names:
        return units

    selected = []
    for name in names:
        unit = get_unit_by_name(units, name)
        if unit is None:
            raise ValueError(f"Unknown {source_type.value} unit: {name}")
        selected.append(unit)
    return selected


def build_orchestrator(source_type: SourceType, units, policy: str) -> IngestOrchestrator:
    store = create_document_store()
    fetch_client = FetchClient()

    vector_index = QdrantVectorIndex()
    vector_index.ensure_collection()

    notifier = None
    if FRESHNESS_NOTIFIER_URL:
        notifier = HttpFreshnessNotifier(FRESHNESS_NOTIFIER_URL, NOTIFIER_PATHS[source_type])

    return IngestOrchestrator(
        units=units,
        source_type=source_type,
        store=store,
        checkpoint_store=CheckpointStore(store, source_type.value, namespace=source_type.namespace),
        embedding_service=OpenAIEmbeddingService(),
        vector_index=vector_index,
        notifier=notifier,
        fetch_client=fetch_client,
        policy=policy,
    )


def main() -> int:
    """Main entry point for the ingest CLI."""
    parser = argparse.ArgumentParser(
        description="Ingestion pipeline for Texas codes of ordinances",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--source",
        choices=[t.value for t in SourceType],
        required=True,
        help="Source registry to ingest",
    )

    parser.add_argument(
        "--unit",
        action="append",
        default=None,
        help="Restrict to the named unit (repeatable)",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of units to process (default: unlimited)",
    )

    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Check every source is reachable and parseable, then exit",
    )

    parser.add_argument(
        "--coverage",
        action="store_true",
        help="Print the coverage report for the registry and exit",
    )

    parser.add_argument(
        "--clear-checkpoint",
        action="store_true",
        help="Delete the stored checkpoint before running",
    )

    parser.add_argument(
        "--clear-cache",
        action="store_true",
        help="Drop cached page bodies before running",
    )

    parser.add_argument(
        "--no-resume",
        action="store_true",
        help="Ignore the stored checkpoint and start from the first unit",
    )

    parser.add_argument(
        "--partial-failure-policy",
        choices=[p.value for p in PartialFailurePolicy],
        default=PARTIAL_FAILURE_POLICY,
        help="Whether skipped documents fail their unit (default: %(default)s)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    set_logging_level(log_level, service_name="ingest")

    logger = logging.getLogger(__name__)
    source_type = SourceType(args.source)
    logger.info(f"Starting ingest: source={source_type.value}, limit={args.limit}")

    try:
        units = select_units(source_type, args.unit)

        if args.coverage:
            print(format_coverage_markdown(generate_coverage_report(units)))
            return 0

        if args.validate_only:
            validation = validate_all_sources(units, FetchClient())
            print(json.dumps(validation, indent=2))
            return 0

        orchestrator = build_orchestrator(source_type, get_registry(source_type), args.partial_failure_policy)

        if args.clear_checkpoint:
            orchestrator.checkpoint_store.clear()
        if args.clear_cache:
            orchestrator.fetch_client.clear_cache()

        # Named units run outside the checkpointed sequence
        unit_names = [u.name for u in units] if args.unit else None
        result = orchestrator.run(resume=not args.no_resume, limit_units=args.limit, unit_names=unit_names)

        if result.failed_units:
            logger.warning(f"Failed units: {result.failed_units}")
        logger.info(f"Ingest complete: {result.model_dump(exclude={'results'})}")
        return 0

    except KeyboardInterrupt:
        logger.info("Ingest interrupted by user")
        return 130

    except Exception as e:
        logger.error(f"Ingest failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
