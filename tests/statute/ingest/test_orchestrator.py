import tempfile
from typing import Dict, List, Optional
from unittest.mock import Mock

import pytest

from statute.adapters import UnsupportedSource
from statute.adapters.base import SourceAdapter
from statute.core.checkpoint import CheckpointStore
from statute.core.chunking import chunk_documents
from statute.core.embeddings import EmbeddingService
from statute.core.exceptions import EmbeddingError, NotFoundError, NotificationError, StorageError
from statute.core.models import (
    Checkpoint,
    CheckpointStatus,
    Platform,
    RawDocument,
    SourceType,
    SourceValidation,
    UnitConfig,
    UnitState,
    VectorRecord,
)
from statute.core.storage import DiskDocumentStore, list_sections
from statute.core.vector_index import VectorIndex
from statute.ingest.orchestrator import IngestOrchestrator, PartialFailurePolicy, build_vector_record

SECTION_TEXT = "The commissioners court may adopt rules governing subdivisions in the county."

CHECKPOINT_SUFFIX = "checkpoints/county.json"


def make_units(count: int) -> List[UnitConfig]:
    return [
        UnitConfig(
            name=f"County {i}",
            unit_id=f"48{i:03d}",
            source_type=SourceType.COUNTY,
            platform=Platform.MUNICODE,
            base_url=f"https://library.municode.com/tx/county_{i}/codes/code_of_ordinances",
            categories=["subdivision"],
        )
        for i in range(1, count + 1)
    ]


class FakeAdapter(SourceAdapter):
    """Yields `sections` documents; sections listed in `missing` are recorded as 404 skips.

    With `entry_error`, loading the entry page raises it and the base
    validate_source handles the failure.
    """

    platform = Platform.MUNICODE

    def __init__(
        self,
        unit,
        sections=2,
        missing=(),
        error: Optional[Exception] = None,
        accessible=True,
        entry_error: Optional[Exception] = None,
    ):
        super().__init__(unit, Mock())
        self.sections = sections
        self.missing = set(missing)
        self.error = error
        self.accessible = accessible
        self.entry_error = entry_error
        if entry_error is not None:
            self.fetch_client.fetch.side_effect = entry_error

    def validate_structure(self, soup):
        return True

    def validate_source(self):
        if self.entry_error is not None:
            return super().validate_source()
        if self.accessible:
            return SourceValidation(accessible=True)
        return SourceValidation(accessible=False, reason="HTTP 503")

    def fetch_documents(self):
        for number in range(1, self.sections + 1):
            url = f"{self.base_url}?nodeId={number}"
            if number in self.missing:
                self.record_skip(url, NotFoundError(f"HTTP 404 for {url}"))
                continue
            if self.error is not None and number == 2:
                raise self.error
            yield self.make_document("1", f"1.{number:02d}", f"Section {number}", SECTION_TEXT, url)


class FakeEmbeddings(EmbeddingService):
    def __init__(self, error: Optional[Exception] = None):
        self.calls: List[List[str]] = []
        self.error = error

    def embed(self, texts):
        self.calls.append(texts)
        if self.error:
            raise self.error
        return [[float(i), 0.5] for i in range(len(texts))]


class FakeIndex(VectorIndex):
    def __init__(self):
        self.records: Dict[str, VectorRecord] = {}

    def upsert(self, records):
        for record in records:
            self.records[record.id] = record
        return len(records)


class FlakyStore(DiskDocumentStore):
    """Fails to store one document key."""

    def __init__(self, directory, failing_suffix):
        super().__init__(directory)
        self.failing_suffix = failing_suffix

    def put(self, key, content, metadata=None):
        if key.endswith(self.failing_suffix):
            raise StorageError(f"Failed to store {key}: quota exceeded")
        super().put(key, content, metadata)


class UnreadableCheckpointStore(DiskDocumentStore):
    """Reads of the checkpoint key fail; everything else works."""

    def get(self, key):
        if key.endswith(CHECKPOINT_SUFFIX):
            raise StorageError(f"Failed to read {key}: timed out")
        return super().get(key)


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as directory:
        yield directory


class Harness:
    def __init__(self, directory, units, adapters=None, store=None, embeddings=None, notifier=None, policy="lenient"):
        self.store = store or DiskDocumentStore(directory)
        self.checkpoints = CheckpointStore(self.store, "county", namespace="counties")
        self.embeddings = embeddings or FakeEmbeddings()
        self.index = FakeIndex()
        self.sleeps: List[float] = []
        self.adapters = adapters or {}
        self.requested: List[str] = []
        self.orchestrator = IngestOrchestrator(
            units,
            SourceType.COUNTY,
            self.store,
            self.checkpoints,
            self.embeddings,
            self.index,
            notifier=notifier,
            fetch_client=Mock(),
            adapter_factory=self.make_adapter,
            policy=policy,
            unit_delay=1.0,
            sleep=self.sleeps.append,
        )

    def make_adapter(self, unit, fetch_client, store=None):
        self.requested.append(unit.name)
        factory = self.adapters.get(unit.name)
        return factory(unit) if factory else FakeAdapter(unit)

    def close(self):
        self.store.close()


@pytest.fixture
def harness_factory(temp_dir):
    harnesses = []

    def build(units, **kwargs):
        harness = Harness(temp_dir, units, **kwargs)
        harnesses.append(harness)
        return harness

    yield build
    for harness in harnesses:
        harness.close()


class TestProcessUnit:
    def test_successful_unit(self, harness_factory):
        """Every document is stored, chunked, embedded and indexed."""
        units = make_units(1)
        harness = harness_factory(units)

        result = harness.orchestrator.process_unit(units[0])

        assert result.success
        assert result.state == UnitState.DONE
        assert (result.documents_processed, result.documents_stored, result.documents_skipped) == (2, 2, 0)
        assert result.chunks_created == 2
        assert result.vectors_upserted == 2
        assert list_sections(harness.store, "counties", units[0].unit_id) == ["1.01", "1.02"]
        assert len(harness.embeddings.calls) == 1

    def test_missing_leaf_is_skipped_under_lenient_policy(self, harness_factory):
        """A single 404 among ten sections leaves nine stored and the unit successful."""
        units = make_units(1)
        harness = harness_factory(units, adapters={"County 1": lambda u: FakeAdapter(u, sections=10, missing={4})})

        result = harness.orchestrator.process_unit(units[0])

        assert result.success
        assert result.documents_stored == 9
        assert result.documents_skipped == 1
        assert any("nodeId=4" in error for error in result.errors)
        assert len(harness.index.records) == 9

    def test_strict_policy_fails_unit_with_skips(self, harness_factory):
        """Under the strict policy one skipped leaf fails the whole unit."""
        units = make_units(1)
        harness = harness_factory(
            units,
            adapters={"County 1": lambda u: FakeAdapter(u, sections=10, missing={4})},
            policy=PartialFailurePolicy.STRICT,
        )

        result = harness.orchestrator.process_unit(units[0])

        assert not result.success
        assert result.state == UnitState.UNIT_FAILED
        assert result.documents_stored == 9
        assert "strict policy" in result.errors[-1]

    def test_store_failure_skips_document(self, harness_factory, temp_dir):
        """A store failure skips that document and the rest of the unit carries on."""
        units = make_units(1)
        store = FlakyStore(temp_dir, "1.02.html")
        harness = harness_factory(units, store=store, adapters={"County 1": lambda u: FakeAdapter(u, sections=3)})

        result = harness.orchestrator.process_unit(units[0])

        assert result.success
        assert result.documents_stored == 2
        assert result.documents_skipped == 1
        assert result.chunks_created == 2

    def test_unsupported_source(self, harness_factory):
        """A unit with no adapter fails with the factory's reason."""
        units = make_units(1)
        harness = harness_factory(
            units, adapters={"County 1": lambda u: UnsupportedSource(u.name, "custom", "Platform not implemented: custom")}
        )

        result = harness.orchestrator.process_unit(units[0])

        assert not result.success
        assert result.errors == ["Platform not implemented: custom"]

    def test_failed_validation(self, harness_factory):
        """A source that fails validation is not fetched or embedded."""
        units = make_units(1)
        harness = harness_factory(units, adapters={"County 1": lambda u: FakeAdapter(u, accessible=False)})

        result = harness.orchestrator.process_unit(units[0])

        assert not result.success
        assert result.errors == ["Source validation failed: HTTP 503"]
        assert harness.embeddings.calls == []

    def test_stream_failure_fails_unit(self, harness_factory):
        """An error raised mid-stream fails the unit after what was already stored."""
        units = make_units(1)
        harness = harness_factory(
            units, adapters={"County 1": lambda u: FakeAdapter(u, sections=3, error=RuntimeError("listing changed"))}
        )

        result = harness.orchestrator.process_unit(units[0])

        assert not result.success
        assert result.errors == ["listing changed"]
        assert result.documents_stored == 1

    def test_embedding_failure_keeps_stored_documents(self, harness_factory):
        """An embedding failure fails the unit but keeps its stored documents."""
        units = make_units(1)
        embeddings = FakeEmbeddings(error=EmbeddingError("too long", EmbeddingError.TOKEN_LIMIT))
        harness = harness_factory(units, embeddings=embeddings)

        result = harness.orchestrator.process_unit(units[0])

        assert not result.success
        assert result.state == UnitState.UNIT_FAILED
        assert result.documents_stored == 2
        assert harness.index.records == {}


class TestRun:
    def test_all_units_succeed(self, harness_factory):
        """A clean run sleeps between units and clears the checkpoint."""
        units = make_units(3)
        harness = harness_factory(units)

        batch = harness.orchestrator.run()

        assert batch.success
        assert (batch.units_processed, batch.succeeded, batch.failed) == (3, 3, 0)
        assert batch.total_chunks == 6
        assert batch.total_vectors == 6
        assert harness.sleeps == [1.0, 1.0]
        assert harness.checkpoints.load() is None

    def test_failed_unit_does_not_stop_batch(self, harness_factory):
        """Unit 3 of 5 hits a permanent fetch error; units 4 and 5 still run and the checkpoint records it."""
        units = make_units(5)
        error = NotFoundError("Resource not found: chapter listing")
        harness = harness_factory(units, adapters={"County 3": lambda u: FakeAdapter(u, error=error)})

        batch = harness.orchestrator.run()

        assert not batch.success
        assert [r.success for r in batch.results] == [True, True, False, True, True]
        assert batch.failed_units == [{"unit": "County 3", "error": "Resource not found: chapter listing"}]
        assert harness.requested[-1] == "County 5"

        checkpoint = harness.checkpoints.load()
        assert checkpoint.status == CheckpointStatus.COMPLETED
        assert checkpoint.last_processed_unit == "County 5"
        assert checkpoint.error == "1 units failed"

    def test_resume_after_last_processed_unit(self, harness_factory):
        """An in-progress checkpoint resumes at the next unit."""
        units = make_units(5)
        harness = harness_factory(units)
        harness.checkpoints.save(
            Checkpoint(source_type="county", last_processed_unit="County 2", chunks_processed=4)
        )

        batch = harness.orchestrator.run()

        assert harness.requested == ["County 3", "County 4", "County 5"]
        assert batch.units_processed == 3
        assert harness.checkpoints.load() is None

    def test_no_resume_starts_over(self, harness_factory):
        """resume=False ignores the stored checkpoint."""
        units = make_units(3)
        harness = harness_factory(units)
        harness.checkpoints.save(Checkpoint(source_type="county", last_processed_unit="County 2"))

        harness.orchestrator.run(resume=False)

        assert harness.requested == ["County 1", "County 2", "County 3"]

    def test_completed_checkpoint_is_not_resumed(self, harness_factory):
        """A completed checkpoint starts a fresh run."""
        units = make_units(3)
        harness = harness_factory(units)
        harness.checkpoints.save(
            Checkpoint(source_type="county", last_processed_unit="County 2", status=CheckpointStatus.COMPLETED)
        )

        harness.orchestrator.run()

        assert harness.requested == ["County 1", "County 2", "County 3"]

    def test_unknown_checkpoint_unit_starts_over(self, harness_factory):
        """A checkpoint naming a unit outside the registry is ignored."""
        units = make_units(2)
        harness = harness_factory(units)
        harness.checkpoints.save(Checkpoint(source_type="county", last_processed_unit="Atlantis"))

        harness.orchestrator.run()

        assert harness.requested == ["County 1", "County 2"]

    def test_checkpoint_written_after_each_unit(self, harness_factory):
        """Each unit leaves a checkpoint with the running chunk count."""
        units = make_units(3)
        harness = harness_factory(units)
        saved = []
        original_save = harness.checkpoints.save
        harness.checkpoints.save = lambda checkpoint: (saved.append(checkpoint), original_save(checkpoint))

        harness.orchestrator.run()

        assert [c.last_processed_unit for c in saved] == ["County 1", "County 2", "County 3"]
        assert [c.chunks_processed for c in saved] == [2, 4, 6]
        assert [c.last_processed_section for c in saved] == ["1.02", "1.02", "1.02"]

    def test_failed_checkpoint_is_not_resumed(self, harness_factory):
        """A checkpoint marked failed starts a fresh run."""
        units = make_units(2)
        harness = harness_factory(units)
        harness.checkpoints.save(
            Checkpoint(source_type="county", last_processed_unit="County 1", status=CheckpointStatus.FAILED)
        )

        harness.orchestrator.run()

        assert harness.requested == ["County 1", "County 2"]

    def test_limit_units(self, harness_factory):
        """A limited run keeps its checkpoint so the next run picks up where it stopped."""
        units = make_units(4)
        harness = harness_factory(units)

        batch = harness.orchestrator.run(limit_units=2)

        assert batch.units_processed == 2
        assert harness.requested == ["County 1", "County 2"]

        checkpoint = harness.checkpoints.load()
        assert checkpoint.status == CheckpointStatus.IN_PROGRESS
        assert checkpoint.last_processed_unit == "County 2"
        assert checkpoint.chunks_processed == 4

        harness.requested.clear()
        second = harness.orchestrator.run()

        assert harness.requested == ["County 3", "County 4"]
        assert second.units_processed == 2
        assert harness.checkpoints.load() is None

    def test_limited_run_with_failure_stays_in_progress(self, harness_factory):
        """Failures in a run that stops early do not mark the checkpoint completed."""
        units = make_units(3)
        harness = harness_factory(
            units, adapters={"County 1": lambda u: FakeAdapter(u, error=RuntimeError("listing changed"))}
        )

        batch = harness.orchestrator.run(limit_units=1)

        assert batch.failed == 1
        checkpoint = harness.checkpoints.load()
        assert checkpoint.status == CheckpointStatus.IN_PROGRESS
        assert checkpoint.last_processed_unit == "County 1"

    def test_named_units_leave_checkpoint_alone(self, harness_factory):
        """Running a named subset neither resumes from nor rewrites the checkpoint."""
        units = make_units(4)
        harness = harness_factory(units)
        harness.checkpoints.save(
            Checkpoint(source_type="county", last_processed_unit="County 1", chunks_processed=2)
        )

        batch = harness.orchestrator.run(unit_names=["county 3"])

        assert harness.requested == ["County 3"]
        assert batch.units_processed == 1
        checkpoint = harness.checkpoints.load()
        assert checkpoint.status == CheckpointStatus.IN_PROGRESS
        assert checkpoint.last_processed_unit == "County 1"
        assert checkpoint.chunks_processed == 2

    def test_missing_entry_page_fails_only_that_unit(self, harness_factory):
        """A 404 on unit 3's entry page fails validation; the other units succeed."""
        units = make_units(5)
        missing = NotFoundError("Resource not found: https://library.municode.com/tx/county_3")
        harness = harness_factory(units, adapters={"County 3": lambda u: FakeAdapter(u, entry_error=missing)})

        batch = harness.orchestrator.run()

        assert [r.success for r in batch.results] == [True, True, False, True, True]
        assert batch.results[2].state == UnitState.UNIT_FAILED
        assert batch.results[2].errors == ["Source validation failed: HTTP 404"]
        assert harness.requested[-1] == "County 5"

    def test_checkpoint_save_failure_fails_unit_and_batch_completes(self, harness_factory, temp_dir):
        """A checkpoint store that rejects writes fails each unit but the batch still reports."""
        units = make_units(3)
        notifier = Mock()
        harness = harness_factory(units, store=FlakyStore(temp_dir, CHECKPOINT_SUFFIX), notifier=notifier)

        batch = harness.orchestrator.run()

        assert harness.requested == ["County 1", "County 2", "County 3"]
        assert batch.units_processed == 3
        assert batch.failed == 3
        assert all(r.state == UnitState.UNIT_FAILED for r in batch.results)
        assert batch.results[0].errors[-1].startswith("Checkpoint save failed")
        assert batch.total_vectors == 6
        assert harness.checkpoints.load() is None
        notifier.notify.assert_called_once_with(batch)

    def test_checkpoint_load_failure_starts_over(self, harness_factory, temp_dir):
        """An unreadable checkpoint is treated as absent."""
        units = make_units(2)
        harness = harness_factory(units, store=UnreadableCheckpointStore(temp_dir))

        batch = harness.orchestrator.run()

        assert batch.success
        assert harness.requested == ["County 1", "County 2"]

    def test_disabled_units_are_not_processed(self, harness_factory):
        """Disabled units never reach the adapter factory."""
        units = make_units(2) + [
            UnitConfig(name="Loving", unit_id="48301", source_type=SourceType.COUNTY, enabled=False)
        ]
        harness = harness_factory(units)

        batch = harness.orchestrator.run()

        assert batch.units_processed == 2
        assert "Loving" not in harness.requested

    def test_notifier_failure_does_not_fail_batch(self, harness_factory):
        """A failing freshness notification is logged and swallowed."""
        notifier = Mock()
        notifier.notify.side_effect = NotificationError("status service down")
        harness = harness_factory(make_units(2), notifier=notifier)

        batch = harness.orchestrator.run()

        assert batch.success
        notifier.notify.assert_called_once_with(batch)

    def test_rerun_is_idempotent(self, harness_factory):
        """Running twice upserts the same vector ids."""
        units = make_units(2)
        harness = harness_factory(units)

        harness.orchestrator.run()
        first_ids = set(harness.index.records)
        harness.orchestrator.run()

        assert set(harness.index.records) == first_ids
        assert len(first_ids) == 4


class TestBuildVectorRecord:
    def test_metadata(self):
        """Vector metadata carries ids, jurisdiction, citation and position."""
        unit = make_units(1)[0]
        document = RawDocument(
            unit_id=unit.unit_id,
            unit_name=unit.name,
            chapter="1",
            section="1.01",
            text=SECTION_TEXT,
            source_url="https://example.com/1",
        )
        chunk = chunk_documents([document], unit)[0]

        record = build_vector_record(chunk, [0.1, 0.2], unit)

        assert record.id == "county-county-1-1-1.01-0"
        assert record.metadata["jurisdiction"] == "TX-48001"
        assert record.metadata["sourceId"] == "county-county-1"
        assert record.metadata["category"] == "subdivision"
        assert record.metadata["chunkIndex"] == 0
        assert record.metadata["totalChunks"] == 1
        assert record.metadata["text"] == SECTION_TEXT
