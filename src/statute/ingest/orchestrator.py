"""Orchestrator for the unit-by-unit ingestion pipeline.

Each unit moves through:
    PENDING -> FETCHING -> STORING -> CHUNKING -> EMBEDDING -> INDEXING -> DONE

Any stage can fail the unit; the batch carries on with the next one. A
checkpoint is written after every unit so an interrupted run resumes after
the last unit it finished.
"""

import logging
import time
from enum import Enum
from typing import Callable, List, Optional, Union

from statute.adapters import UnsupportedSource, get_adapter_for_unit
from statute.adapters.base import SourceAdapter
from statute.core.checkpoint import CheckpointStore
from statute.core.chunking import chunk_documents, get_chunk_stats
from statute.core.embeddings import EmbeddingService
from statute.core.exceptions import StorageError
from statute.core.http import FetchClient
from statute.core.models import (
    BatchResult,
    Checkpoint,
    CheckpointStatus,
    Chunk,
    RawDocument,
    SourceType,
    UnitConfig,
    UnitResult,
    UnitState,
    VectorRecord,
    utc_now,
)
from statute.core.notifier import FreshnessNotifier
from statute.core.pipeline_utils import monitor_documents
from statute.core.storage import DocumentStore, store_document
from statute.core.vector_index import VectorIndex
from statute.settings import PARTIAL_FAILURE_POLICY, UNIT_DELAY_SECONDS

logger = logging.getLogger(__name__)

AdapterFactory = Callable[..., Union[SourceAdapter, UnsupportedSource]]


class PartialFailurePolicy(str, Enum):
    """Whether document-level skips fail the enclosing unit."""

    LENIENT = "lenient"
    STRICT = "strict"


def build_vector_record(chunk: Chunk, values: List[float], unit: UnitConfig) -> VectorRecord:
    metadata = {
        "chunkId": chunk.chunk_id,
        "sourceId": chunk.source_id,
        "sourceType": chunk.source_type.value,
        "jurisdiction": unit.jurisdiction,
        "text": chunk.text,
        "citation": chunk.citation,
        "url": chunk.url,
        "chunkIndex": chunk.chunk_index,
        "totalChunks": chunk.total_chunks,
        "indexedAt": utc_now().isoformat(),
    }
    if chunk.category:
        metadata["category"] = chunk.category
    return VectorRecord(id=chunk.chunk_id, values=values, metadata=metadata)


class IngestOrchestrator:
    """Runs every enabled unit of one source type through the pipeline."""

    def __init__(
        self,
        units: List[UnitConfig],
        source_type: SourceType,
        store: DocumentStore,
        checkpoint_store: CheckpointStore,
        embedding_service: EmbeddingService,
        vector_index: VectorIndex,
        notifier: Optional[FreshnessNotifier] = None,
        fetch_client: Optional[FetchClient] = None,
        adapter_factory: AdapterFactory = get_adapter_for_unit,
        policy: Union[PartialFailurePolicy, str] = PARTIAL_FAILURE_POLICY,
        unit_delay: float = UNIT_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.units = units
        self.source_type = SourceType(source_type)
        self.store = store
        self.checkpoint_store = checkpoint_store
        self.embedding_service = embedding_service
        self.vector_index = vector_index
        self.notifier = notifier
        self.fetch_client = fetch_client or FetchClient()
        self.adapter_factory = adapter_factory
        self.policy = PartialFailurePolicy(policy)
        self.unit_delay = unit_delay
        self._sleep = sleep

    @property
    def namespace(self) -> str:
        return self.source_type.namespace

    def enabled_units(self) -> List[UnitConfig]:
        return [u for u in self.units if u.enabled]

    def _fail(self, result: UnitResult, reason: str) -> UnitResult:
        result.state = UnitState.UNIT_FAILED
        result.success = False
        result.errors.append(reason)
        return result

    def _store_documents(self, adapter: SourceAdapter, result: UnitResult) -> List[RawDocument]:
        documents: List[RawDocument] = []

        for document in monitor_documents(adapter.fetch_documents(), self.source_type.value):
            result.documents_processed += 1
            try:
                store_document(self.store, self.namespace, document)
                result.documents_stored += 1
            except StorageError as e:
                logger.error(
                    f"Failed to store {document.unit_name} sect. {document.section}: {e}",
                    extra={"unit_id": document.unit_id, "section": document.section},
                )
                result.errors.append(f"Store failed for section {document.section}: {e}")
                result.documents_skipped += 1
                continue
            result.last_section = document.section
            documents.append(document)

        return documents

    def process_unit(self, unit: UnitConfig) -> UnitResult:
        """Fetch, store, chunk, embed and index one unit."""
        start = time.monotonic()
        result = UnitResult(unit=unit.name, unit_id=unit.unit_id)
        logger.info(f"Processing {unit.name}", extra={"unit_id": unit.unit_id, "unit_state": result.state.value})

        adapter = self.adapter_factory(unit, self.fetch_client, store=self.store)
        if isinstance(adapter, UnsupportedSource):
            logger.warning(f"Skipping {unit.name}: {adapter.reason}")
            return self._fail(result, adapter.reason)

        validation = adapter.validate_source()
        if not validation.accessible:
            logger.error(f"Source validation failed for {unit.name}: {validation.reason}")
            return self._fail(result, f"Source validation failed: {validation.reason}")

        try:
            result.state = UnitState.FETCHING
            documents = self._store_documents(adapter, result)
            result.state = UnitState.STORING
            result.documents_skipped += len(adapter.skipped)
            logger.info(
                f"Stored {result.documents_stored} documents for {unit.name}",
                extra={
                    "unit_id": unit.unit_id,
                    "documents_stored": result.documents_stored,
                    "documents_skipped": result.documents_skipped,
                },
            )

            result.state = UnitState.CHUNKING
            chunks = chunk_documents(documents, unit)
            result.chunks_created = len(chunks)

            if chunks:
                stats = get_chunk_stats(chunks)
                logger.info(
                    f"Chunked {unit.name}: {len(chunks)} chunks, avg {stats['avg_tokens']} tokens, "
                    f"p95 {stats['p95_tokens']}",
                    extra={"unit_id": unit.unit_id, "oversized": stats["oversized"], "outliers": stats["outliers"]},
                )

                result.state = UnitState.EMBEDDING
                vectors = self.embedding_service.embed([chunk.text for chunk in chunks])

                result.state = UnitState.INDEXING
                records = [build_vector_record(chunk, values, unit) for chunk, values in zip(chunks, vectors)]
                result.vectors_upserted = self.vector_index.upsert(records)
            else:
                logger.info(f"No chunks produced for {unit.name}")

        except Exception as e:
            logger.error(f"Failed to process {unit.name}: {e}", exc_info=True, extra={"unit_id": unit.unit_id})
            self._fail(result, str(e))
            result.duration_ms = int((time.monotonic() - start) * 1000)
            return result

        for skipped in adapter.skipped:
            result.errors.append(f"Skipped {skipped.url}: {skipped.reason}")

        if self.policy == PartialFailurePolicy.STRICT and result.documents_skipped:
            self._fail(result, f"{result.documents_skipped} documents skipped under strict policy")
        else:
            result.state = UnitState.DONE
            result.success = True

        result.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Finished {unit.name}: {result.state.value}",
            extra={
                "unit_id": unit.unit_id,
                "unit_state": result.state.value,
                "chunks_created": result.chunks_created,
                "vectors_upserted": result.vectors_upserted,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    def _resume_point(self, units: List[UnitConfig]) -> tuple:
        """Index of the first unit to process, and chunks already processed."""
        try:
            checkpoint = self.checkpoint_store.load()
        except StorageError as e:
            logger.warning(f"Could not load checkpoint, starting over: {e}")
            return 0, 0

        if checkpoint is None or checkpoint.status != CheckpointStatus.IN_PROGRESS:
            return 0, 0

        names = [u.name for u in units]
        if checkpoint.last_processed_unit not in names:
            logger.warning(f"Checkpoint names unknown unit {checkpoint.last_processed_unit}, starting over")
            return 0, 0

        start = names.index(checkpoint.last_processed_unit) + 1
        logger.info(
            f"Resuming after {checkpoint.last_processed_unit} ({start}/{len(units)} units done)",
            extra={"chunks_processed": checkpoint.chunks_processed},
        )
        return start, checkpoint.chunks_processed

    def _checkpoint(self, result: UnitResult, chunks_processed: int) -> None:
        """Record the unit as the last one processed. A store failure fails the unit."""
        try:
            self.checkpoint_store.save(
                Checkpoint(
                    source_type=self.source_type.value,
                    last_processed_unit=result.unit,
                    last_processed_section=result.last_section,
                    chunks_processed=chunks_processed,
                    status=CheckpointStatus.IN_PROGRESS,
                )
            )
        except StorageError as e:
            logger.error(f"Checkpoint save failed after {result.unit}: {e}", extra={"unit_id": result.unit_id})
            self._fail(result, f"Checkpoint save failed: {e}")

    def _finish_checkpoint(self, results: List[UnitResult], chunks_processed: int) -> None:
        """Clear the checkpoint after a clean run, or mark it completed with the failure count."""
        failed = [r for r in results if not r.success]
        try:
            if failed:
                self.checkpoint_store.save(
                    Checkpoint(
                        source_type=self.source_type.value,
                        last_processed_unit=results[-1].unit,
                        last_processed_section=results[-1].last_section,
                        chunks_processed=chunks_processed,
                        status=CheckpointStatus.COMPLETED,
                        error=f"{len(failed)} units failed",
                    )
                )
            else:
                self.checkpoint_store.clear()
        except StorageError as e:
            logger.error(f"Failed to finalize checkpoint: {e}", extra={"failed_units": len(failed)})

    def run(
        self,
        resume: bool = True,
        limit_units: Optional[int] = None,
        unit_names: Optional[List[str]] = None,
    ) -> BatchResult:
        """Process enabled units in order, checkpointing after each.

        With `unit_names`, only those units run and the checkpoint is neither
        read nor written. Otherwise the checkpoint is cleared or marked
        completed only once the run reaches the last enabled unit; a run cut
        short by `limit_units` leaves its in-progress checkpoint for the next run.
        """
        start = time.monotonic()
        units = self.enabled_units()
        track_progress = unit_names is None

        if track_progress:
            start_index, chunks_processed = self._resume_point(units) if resume else (0, 0)
            pending = units[start_index:]
        else:
            wanted = {name.lower() for name in unit_names}
            start_index, chunks_processed = 0, 0
            pending = [u for u in units if u.name.lower() in wanted]

        if limit_units is not None:
            pending = pending[:limit_units]
        reaches_end = track_progress and start_index + len(pending) == len(units)

        logger.info(f"Starting {self.source_type.value} ingest: {len(pending)} units")

        results: List[UnitResult] = []
        for index, unit in enumerate(pending):
            result = self.process_unit(unit)
            results.append(result)
            chunks_processed += result.chunks_created

            if track_progress:
                self._checkpoint(result, chunks_processed)

            if index < len(pending) - 1:
                self._sleep(self.unit_delay)

        failed = [r for r in results if not r.success]
        batch = BatchResult(
            success=not failed,
            units_processed=len(results),
            succeeded=len(results) - len(failed),
            failed=len(failed),
            total_chunks=sum(r.chunks_created for r in results),
            total_vectors=sum(r.vectors_upserted for r in results),
            duration_ms=int((time.monotonic() - start) * 1000),
            results=results,
        )

        if reaches_end:
            self._finish_checkpoint(results, chunks_processed)
        elif track_progress and results:
            logger.info(f"Stopped after {results[-1].unit}; checkpoint kept for the next run")

        logger.info(
            f"Ingest complete: {batch.succeeded}/{batch.units_processed} units, "
            f"{batch.total_chunks} chunks, {batch.total_vectors} vectors",
            extra={"failed_units": batch.failed_units},
        )

        self._notify(batch)
        return batch

    def _notify(self, batch: BatchResult) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(batch)
        except Exception as e:
            logger.warning(f"Freshness notification failed: {e}")
