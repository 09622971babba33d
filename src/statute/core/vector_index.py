import logging
import uuid
from abc import ABC, abstractmethod
from typing import Iterable, Iterator, List, Optional

from qdrant_client import QdrantClient
from qdrant_client.models import Distance, PointStruct, VectorParams

from statute.core.models import VectorRecord
from statute.core.qdrant_client import get_qdrant_client
from statute.settings import EMBEDDING_DIMENSIONS, VECTOR_COLLECTION

logger = logging.getLogger(__name__)

NAMESPACE_STATUTE = uuid.UUID("6ba7b810-9dad-11d1-80b4-00c04fd430c8")

UPSERT_BATCH_SIZE = 100


def chunk_id_to_uuid(chunk_id: str) -> str:
    """Convert a chunk id to a deterministic UUID string.

    Qdrant point ids must be UUIDs or integers; uuid5 keeps re-runs idempotent.
    """
    return str(uuid.uuid5(NAMESPACE_STATUTE, chunk_id))


def records_to_batches(records: Iterable[VectorRecord], batch_size: int) -> Iterator[List[VectorRecord]]:
    """Yield batches of records."""
    batch: List[VectorRecord] = []
    for record in records:
        batch.append(record)
        if len(batch) >= batch_size:
            yield batch
            batch = []
    if batch:
        yield batch


class VectorIndex(ABC):
    """Stores vectors with metadata, keyed by chunk id."""

    @abstractmethod
    def upsert(self, records: List[VectorRecord]) -> int:
        """Insert or replace records. Returns the number written."""


class QdrantVectorIndex(VectorIndex):
    """Vector index backed by a Qdrant collection."""

    def __init__(
        self,
        client: Optional[QdrantClient] = None,
        collection_name: str = VECTOR_COLLECTION,
        dimensions: int = EMBEDDING_DIMENSIONS,
        batch_size: int = UPSERT_BATCH_SIZE,
    ):
        self._client = client
        self.collection_name = collection_name
        self.dimensions = dimensions
        self.batch_size = batch_size

    @property
    def client(self) -> QdrantClient:
        if self._client is None:
            self._client = get_qdrant_client()
        return self._client

    def ensure_collection(self) -> bool:
        """Create the collection if it does not exist. Returns True if created."""
        collections = self.client.get_collections().collections
        if any(c.name == self.collection_name for c in collections):
            return False

        logger.info(f"Creating collection {self.collection_name}")
        self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=self.dimensions, distance=Distance.COSINE),
        )
        return True

    def upsert(self, records: List[VectorRecord]) -> int:
        written = 0
        for batch in records_to_batches(records, self.batch_size):
            points = [
                PointStruct(
                    id=chunk_id_to_uuid(record.id),
                    vector=record.values,
                    payload=record.metadata,
                )
                for record in batch
            ]
            self.client.upsert(collection_name=self.collection_name, points=points, wait=True)
            written += len(points)
            logger.debug(f"Upserted {len(points)} points to {self.collection_name}")
        return written
