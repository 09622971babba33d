"""Pipeline checkpoint persistence for resumable batch runs."""

import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from statute.core.models import Checkpoint
from statute.core.storage import DocumentStore

logger = logging.getLogger(__name__)


class CheckpointStore:
    """Persists one Checkpoint per source type in a DocumentStore.

    The checkpoint is overwritten after every unit and deleted after a
    batch run with no failed units. A payload that cannot be decoded or
    validated is treated as absent.
    """

    def __init__(self, store: DocumentStore, source_type: str, namespace: Optional[str] = None):
        """
        Initialize the checkpoint store.

        Args:
            store: Document store holding the checkpoint object
            source_type: Source type this checkpoint tracks (e.g. "county")
            namespace: Key namespace (defaults to the source type)
        """
        self.store = store
        self.source_type = source_type
        self.namespace = namespace or source_type

    @property
    def key(self) -> str:
        return f"{self.namespace}/checkpoints/{self.source_type}.json"

    def save(self, checkpoint: Checkpoint) -> None:
        """Overwrite the stored checkpoint."""
        self.store.put(
            self.key,
            checkpoint.to_json(),
            {
                "source": "pipeline",
                "dataType": "checkpoint",
                "sourceType": checkpoint.source_type,
                "fetchedAt": checkpoint.timestamp.isoformat(),
                "checkpointStatus": checkpoint.status.value,
            },
        )
        logger.debug(
            f"Saved checkpoint after {checkpoint.last_processed_unit}",
            extra={
                "checkpoint_key": self.key,
                "checkpoint_status": checkpoint.status.value,
                "chunks_processed": checkpoint.chunks_processed,
            },
        )

    def load(self) -> Optional[Checkpoint]:
        """Load the stored checkpoint, or None if absent or corrupted."""
        content = self.store.get(self.key)
        if content is None:
            return None

        try:
            payload = json.loads(content.decode("utf-8"))
            return Checkpoint.model_validate(payload)
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(
                f"Ignoring corrupted checkpoint at {self.key}: {e}",
                extra={"checkpoint_key": self.key, "error_type": type(e).__name__},
            )
            return None

    def clear(self) -> None:
        """Delete the stored checkpoint. Safe to call when none exists."""
        if self.store.delete(self.key):
            logger.info(f"Cleared checkpoint {self.key}")

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the stored checkpoint state."""
        checkpoint = self.load()
        if checkpoint is None:
            return {"key": self.key, "exists": False}
        return {
            "key": self.key,
            "exists": True,
            "status": checkpoint.status.value,
            "last_processed_unit": checkpoint.last_processed_unit,
            "chunks_processed": checkpoint.chunks_processed,
            "timestamp": checkpoint.timestamp.isoformat(),
            "error": checkpoint.error,
        }
