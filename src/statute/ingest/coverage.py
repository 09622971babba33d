"""Coverage report: which units are configured, skipped, processed or failed."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from statute.core.models import BatchResult, SourceType, UnitConfig

UNIT_LABELS = {
    SourceType.FEDERAL: ("Title", "Titles"),
    SourceType.COUNTY: ("County", "Counties"),
    SourceType.MUNICIPAL: ("City", "Cities"),
}

REPORT_TITLES = {
    SourceType.FEDERAL: "Federal Regulations Coverage Report",
    SourceType.COUNTY: "Texas County Coverage Report",
    SourceType.MUNICIPAL: "Texas Municipal Coverage Report",
}

STATUS_LABELS = {"processed": "active", "failed": "error", "pending": "pending"}

DEFAULT_SKIP_REASON = "No online source available"


def generate_coverage_report(units: List[UnitConfig], batch_result: Optional[BatchResult] = None) -> Dict[str, Any]:
    """Summarize registry coverage, optionally merged with the results of a run."""
    results = {r.unit: r for r in batch_result.results} if batch_result else {}
    source_type = units[0].source_type if units else SourceType.COUNTY

    enabled = []
    for unit in units:
        if not unit.enabled:
            continue
        result = results.get(unit.name)
        if result is None:
            status = "pending"
        else:
            status = "processed" if result.success else "failed"
        enabled.append(
            {
                "name": unit.name,
                "unit_id": unit.unit_id,
                "platform": (unit.host_platform or unit.platform).value if unit.platform else "unknown",
                "categories": list(unit.categories),
                "status": status,
                "documents": result.documents_stored if result else None,
                "vectors": result.vectors_upserted if result else None,
                "error": result.errors[0] if result and result.errors else None,
            }
        )

    skipped = [
        {"name": u.name, "unit_id": u.unit_id, "reason": u.skip_reason or DEFAULT_SKIP_REASON}
        for u in units
        if not u.enabled
    ]

    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "source_type": source_type.value,
        "summary": {
            "target": len(units),
            "enabled": len(enabled),
            "skipped": len(skipped),
            "processed": sum(1 for u in enabled if u["status"] == "processed"),
            "failed": sum(1 for u in enabled if u["status"] == "failed"),
            "total_documents": sum(r.documents_stored for r in results.values()),
            "total_vectors": batch_result.total_vectors if batch_result else 0,
        },
        "enabled": enabled,
        "skipped": skipped,
    }


def format_coverage_markdown(report: Dict[str, Any]) -> str:
    """Render a coverage report as markdown tables."""
    source_type = SourceType(report["source_type"])
    singular, plural = UNIT_LABELS[source_type]
    summary = report["summary"]

    lines = [
        f"# {REPORT_TITLES[source_type]}",
        "",
        f"Generated: {report['generated_at']}",
        "",
        "## Summary",
        "",
        "| Metric | Count |",
        "|--------|-------|",
        f"| Target {plural} | {summary['target']} |",
        f"| Enabled {plural} | {summary['enabled']} |",
        f"| Skipped {plural} | {summary['skipped']} |",
        f"| Processed {plural} | {summary['processed']} |",
        f"| Failed {plural} | {summary['failed']} |",
        f"| Total Documents | {summary['total_documents']} |",
        f"| Total Vectors | {summary['total_vectors']} |",
        "",
        f"## Enabled {plural}",
        "",
        f"| {singular} | ID | Platform | Status | Documents | Vectors |",
        "|------|----|----------|--------|-----------|---------|",
    ]

    for unit in report["enabled"]:
        documents = "-" if unit["documents"] is None else unit["documents"]
        vectors = "-" if unit["vectors"] is None else unit["vectors"]
        lines.append(
            f"| {unit['name']} | {unit['unit_id']} | {unit['platform']} | "
            f"{STATUS_LABELS[unit['status']]} | {documents} | {vectors} |"
        )

    lines.extend(["", f"## Skipped {plural}", ""])
    if report["skipped"]:
        lines.append(f"| {singular} | ID | Reason |")
        lines.append("|------|----|--------|")
        for unit in report["skipped"]:
            lines.append(f"| {unit['name']} | {unit['unit_id']} | {unit['reason']} |")
    else:
        lines.append(f"None - all target {plural.lower()} enabled.")

    failed = [u for u in report["enabled"] if u["status"] == "failed"]
    if failed:
        lines.extend(["", f"## Failed {plural}", "", f"| {singular} | ID | Error |", "|------|----|-------|"])
        for unit in failed:
            lines.append(f"| {unit['name']} | {unit['unit_id']} | {unit['error'] or 'Unknown error'} |")

    return "\n".join(lines)
