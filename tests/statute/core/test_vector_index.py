from types import SimpleNamespace
from unittest.mock import Mock

from statute.core.models import VectorRecord
from statute.core.vector_index import QdrantVectorIndex, chunk_id_to_uuid, records_to_batches


def make_records(count: int):
    return [
        VectorRecord(id=f"county-harris-1-1.0{i}-0", values=[0.1, 0.2, 0.3], metadata={"chunkIndex": 0})
        for i in range(count)
    ]


class TestQdrantVectorIndex:
    def test_point_ids_are_deterministic(self):
        """The same chunk id always maps to the same point id."""
        assert chunk_id_to_uuid("county-harris-1-1.02-0") == chunk_id_to_uuid("county-harris-1-1.02-0")
        assert chunk_id_to_uuid("county-harris-1-1.02-0") != chunk_id_to_uuid("county-harris-1-1.02-1")

    def test_records_to_batches(self):
        """Records are split into fixed-size batches."""
        batches = list(records_to_batches(make_records(5), 2))
        assert [len(batch) for batch in batches] == [2, 2, 1]

    def test_upsert_in_batches(self):
        """Upserts go out batch by batch and report the total."""
        client = Mock()
        index = QdrantVectorIndex(client=client, collection_name="ordinances", dimensions=3, batch_size=2)

        written = index.upsert(make_records(3))

        assert written == 3
        assert client.upsert.call_count == 2
        first_call = client.upsert.call_args_list[0].kwargs
        assert first_call["collection_name"] == "ordinances"
        assert first_call["wait"] is True
        point = first_call["points"][0]
        assert point.id == chunk_id_to_uuid("county-harris-1-1.00-0")
        assert point.payload == {"chunkIndex": 0}

    def test_upsert_is_idempotent_by_id(self):
        """Re-upserting the same chunk produces the same point id."""
        client = Mock()
        index = QdrantVectorIndex(client=client, collection_name="ordinances", dimensions=3)

        index.upsert(make_records(1))
        index.upsert(make_records(1))

        ids = [call.kwargs["points"][0].id for call in client.upsert.call_args_list]
        assert ids[0] == ids[1]

    def test_ensure_collection_creates_once(self):
        """The collection is created only when missing."""
        client = Mock()
        client.get_collections.return_value = SimpleNamespace(collections=[])
        index = QdrantVectorIndex(client=client, collection_name="ordinances", dimensions=3)

        assert index.ensure_collection() is True
        client.create_collection.assert_called_once()

        client.get_collections.return_value = SimpleNamespace(collections=[SimpleNamespace(name="ordinances")])
        assert index.ensure_collection() is False
        assert client.create_collection.call_count == 1
