import json
import tempfile
from datetime import datetime, timezone

import pytest

from statute.core.checkpoint import CheckpointStore
from statute.core.models import Checkpoint, CheckpointStatus
from statute.core.storage import DiskDocumentStore


@pytest.fixture
def store():
    with tempfile.TemporaryDirectory() as temp_dir:
        disk_store = DiskDocumentStore(temp_dir)
        yield disk_store
        disk_store.close()


class TestCheckpointStore:
    def test_key_uses_namespace(self, store):
        """Checkpoints live under the source type's namespace."""
        assert CheckpointStore(store, "county", namespace="counties").key == "counties/checkpoints/county.json"
        assert CheckpointStore(store, "municipal").key == "municipal/checkpoints/municipal.json"

    def test_load_without_checkpoint(self, store):
        """Loading before any save returns None."""
        assert CheckpointStore(store, "county").load() is None

    def test_save_then_load(self, store):
        """A saved checkpoint loads back unchanged."""
        checkpoints = CheckpointStore(store, "county", namespace="counties")
        checkpoint = Checkpoint(
            source_type="county",
            last_processed_unit="Harris",
            chunks_processed=42,
            timestamp=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
        )

        checkpoints.save(checkpoint)

        assert checkpoints.load() == checkpoint

    def test_payload_is_camel_case(self, store):
        """The stored JSON uses camelCase keys."""
        checkpoints = CheckpointStore(store, "county")
        checkpoints.save(Checkpoint(source_type="county", last_processed_unit="Harris", chunks_processed=3))

        payload = json.loads(store.get(checkpoints.key))

        assert payload["lastProcessedUnit"] == "Harris"
        assert payload["chunksProcessed"] == 3
        assert payload["status"] == "in_progress"
        assert store.head(checkpoints.key).metadata["checkpointStatus"] == "in_progress"

    def test_save_overwrites(self, store):
        """Only the latest checkpoint is kept."""
        checkpoints = CheckpointStore(store, "county")
        checkpoints.save(Checkpoint(source_type="county", last_processed_unit="Harris"))
        checkpoints.save(
            Checkpoint(
                source_type="county",
                last_processed_unit="Dallas",
                status=CheckpointStatus.COMPLETED,
                error="1 units failed",
            )
        )

        loaded = checkpoints.load()

        assert loaded.last_processed_unit == "Dallas"
        assert loaded.status == CheckpointStatus.COMPLETED
        assert loaded.error == "1 units failed"

    @pytest.mark.parametrize("payload", [b"not json", b'{"version": 1}', b"\xff\xfe"])
    def test_corrupted_checkpoint_is_treated_as_absent(self, store, payload):
        """Undecodable or invalid payloads load as None instead of raising."""
        checkpoints = CheckpointStore(store, "county")
        store.put(checkpoints.key, payload)

        assert checkpoints.load() is None

    def test_clear_is_idempotent(self, store):
        """Clearing twice is not an error."""
        checkpoints = CheckpointStore(store, "county")
        checkpoints.save(Checkpoint(source_type="county", last_processed_unit="Harris"))

        checkpoints.clear()
        checkpoints.clear()

        assert checkpoints.load() is None

    def test_summary(self, store):
        """The summary says whether a checkpoint exists and how far it got."""
        checkpoints = CheckpointStore(store, "county")
        assert checkpoints.get_summary() == {"key": checkpoints.key, "exists": False}

        checkpoints.save(Checkpoint(source_type="county", last_processed_unit="Harris", chunks_processed=7))
        summary = checkpoints.get_summary()

        assert summary["exists"] is True
        assert summary["last_processed_unit"] == "Harris"
        assert summary["chunks_processed"] == 7
