from statute.core.models import BatchResult, Platform, SourceType, UnitConfig, UnitResult
from statute.ingest.coverage import format_coverage_markdown, generate_coverage_report


def make_unit(name: str, unit_id: str, **overrides) -> UnitConfig:
    values = dict(
        name=name,
        unit_id=unit_id,
        source_type=SourceType.COUNTY,
        platform=Platform.MUNICODE,
        base_url=f"https://example.com/{unit_id}",
        categories=["subdivision"],
    )
    values.update(overrides)
    return UnitConfig(**values)


UNITS = [
    make_unit("Harris", "48201"),
    make_unit("Dallas", "48113", platform=Platform.ELAWS),
    make_unit("Travis", "48453"),
    make_unit("Loving", "48301", platform=None, base_url=None, enabled=False),
    make_unit("Kenedy", "48261", enabled=False, skip_reason="Court orders only"),
]

BATCH = BatchResult(
    success=False,
    units_processed=2,
    succeeded=1,
    failed=1,
    total_chunks=40,
    total_vectors=40,
    results=[
        UnitResult(unit="Harris", unit_id="48201", success=True, documents_stored=25, vectors_upserted=40),
        UnitResult(unit="Dallas", unit_id="48113", success=False, errors=["Source validation failed: HTTP 503"]),
    ],
)


class TestCoverageReport:
    def test_summary_without_results(self):
        """Without a run every enabled unit is pending."""
        report = generate_coverage_report(UNITS)

        assert report["source_type"] == "county"
        assert report["summary"] == {
            "target": 5,
            "enabled": 3,
            "skipped": 2,
            "processed": 0,
            "failed": 0,
            "total_documents": 0,
            "total_vectors": 0,
        }
        assert {u["status"] for u in report["enabled"]} == {"pending"}

    def test_merges_batch_results(self):
        """Run results set status, counts and first error per unit."""
        report = generate_coverage_report(UNITS, BATCH)
        by_name = {u["name"]: u for u in report["enabled"]}

        assert by_name["Harris"]["status"] == "processed"
        assert by_name["Harris"]["documents"] == 25
        assert by_name["Dallas"]["status"] == "failed"
        assert by_name["Dallas"]["platform"] == "elaws"
        assert by_name["Dallas"]["error"] == "Source validation failed: HTTP 503"
        assert by_name["Travis"]["status"] == "pending"
        assert report["summary"]["total_documents"] == 25
        assert report["summary"]["total_vectors"] == 40

    def test_skip_reasons(self):
        """Disabled units list their reason, with a default."""
        report = generate_coverage_report(UNITS)

        assert report["skipped"] == [
            {"name": "Loving", "unit_id": "48301", "reason": "No online source available"},
            {"name": "Kenedy", "unit_id": "48261", "reason": "Court orders only"},
        ]


class TestCoverageMarkdown:
    def test_tables(self):
        """The markdown report has summary, enabled, skipped and failed tables."""
        markdown = format_coverage_markdown(generate_coverage_report(UNITS, BATCH))

        assert markdown.startswith("# Texas County Coverage Report")
        assert "| Target Counties | 5 |" in markdown
        assert "| Harris | 48201 | municode | active | 25 | 40 |" in markdown
        assert "| Travis | 48453 | municode | pending | - | - |" in markdown
        assert "| Kenedy | 48261 | Court orders only |" in markdown
        assert "## Failed Counties" in markdown
        assert "| Dallas | 48113 | Source validation failed: HTTP 503 |" in markdown

    def test_municipal_report_without_skips(self):
        """A registry with nothing skipped says so."""
        units = [make_unit("Houston", "houston", source_type=SourceType.MUNICIPAL)]

        markdown = format_coverage_markdown(generate_coverage_report(units))

        assert markdown.startswith("# Texas Municipal Coverage Report")
        assert "None - all target cities enabled." in markdown
        assert "## Failed" not in markdown

    def test_federal_report_labels_titles(self):
        """A federal registry reports titles rather than counties."""
        units = [
            make_unit("Title 21", "21", source_type=SourceType.FEDERAL, platform=Platform.ECFR),
            make_unit("Title 27", "27", source_type=SourceType.FEDERAL, platform=Platform.ECFR),
        ]

        markdown = format_coverage_markdown(generate_coverage_report(units))

        assert markdown.startswith("# Federal Regulations Coverage Report")
        assert "| Target Titles | 2 |" in markdown
        assert "| Title 21 | 21 | ecfr | pending | - | - |" in markdown
