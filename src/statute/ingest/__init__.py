"""Ingestion pipeline for county and municipal codes of ordinances.

Single entry point:
    python -m statute.ingest --source county --limit 2

Design principles:
    - One unit at a time, in registry order, with a courtesy delay between units
    - A failed unit never stops the batch
    - Checkpoint after every unit; resume after the last one finished
    - Idempotent - deterministic chunk ids and vector ids, safe to re-run
"""

from statute.ingest.coverage import format_coverage_markdown, generate_coverage_report
from statute.ingest.orchestrator import IngestOrchestrator, PartialFailurePolicy

__all__ = [
    "IngestOrchestrator",
    "PartialFailurePolicy",
    "format_coverage_markdown",
    "generate_coverage_report",
]
