"""Pipeline utilities for cross-cutting concerns like monitoring and logging."""

import logging
import time
from functools import wraps
from typing import Any, Callable, Dict, Iterator, Optional

from statute.core.models import RawDocument


class PipelineMonitor:
    """Decorator for document-stream monitoring and structured logging."""

    def __init__(
        self,
        doc_type: str,
        track_progress: bool = True,
        progress_interval: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the pipeline monitor.

        Args:
            doc_type: The type of document being processed (e.g., 'county', 'municipal')
            track_progress: Whether to log progress updates
            progress_interval: Seconds between progress updates
            clock: Time source, injectable for tests
        """
        self.doc_type = doc_type
        self.track_progress = track_progress
        self.progress_interval = progress_interval
        self._clock = clock

    def __call__(self, func: Callable[..., Iterator[RawDocument]]) -> Callable[..., Iterator[RawDocument]]:
        """Wrap the generator function with monitoring capabilities."""

        @wraps(func)
        def wrapper(*args, **kwargs) -> Iterator[RawDocument]:
            logger = logging.getLogger(func.__module__)
            start_time = self._clock()
            doc_count = 0
            last_progress_time = start_time

            logger.info(
                f"Starting {self.doc_type} document stream",
                extra={"doc_type": self.doc_type, "pipeline_status": "started"},
            )

            try:
                for doc in func(*args, **kwargs):
                    doc_count += 1

                    logger.debug(
                        f"Fetched {self.doc_type} document: {doc.unit_name} sect. {doc.section}",
                        extra={
                            "doc_type": self.doc_type,
                            "processing_status": "success",
                            "doc_count": doc_count,
                            **self._extract_doc_metadata(doc),
                        },
                    )

                    if self.track_progress:
                        current_time = self._clock()
                        if current_time - last_progress_time >= self.progress_interval:
                            elapsed = current_time - start_time
                            rate = doc_count / elapsed if elapsed > 0 else 0

                            logger.info(
                                f"Pipeline progress: {doc_count} documents fetched",
                                extra={
                                    "doc_type": self.doc_type,
                                    "pipeline_status": "in_progress",
                                    "doc_count": doc_count,
                                    "elapsed_seconds": elapsed,
                                    "docs_per_second": rate,
                                },
                            )
                            last_progress_time = current_time

                    yield doc

            except Exception as e:
                logger.error(
                    f"Document stream failure in {self.doc_type}: {str(e)}",
                    exc_info=True,
                    extra={
                        "doc_type": self.doc_type,
                        "pipeline_status": "failed",
                        "error_type": type(e).__name__,
                    },
                )
                raise

            finally:
                elapsed = self._clock() - start_time
                rate = doc_count / elapsed if elapsed > 0 else 0

                logger.info(
                    f"Completed {self.doc_type} document stream: {doc_count} documents in {elapsed:.2f}s",
                    extra={
                        "doc_type": self.doc_type,
                        "pipeline_status": "completed",
                        "total_docs": doc_count,
                        "elapsed_seconds": elapsed,
                        "docs_per_second": rate,
                    },
                )

        return wrapper

    def _extract_doc_metadata(self, doc: RawDocument) -> Dict[str, Any]:
        """Extract metadata from a document for logging."""
        metadata: Dict[str, Optional[str]] = {
            "unit_id": doc.unit_id,
            "chapter": doc.chapter,
            "section": doc.section,
            "url": doc.source_url,
        }
        if doc.heading:
            metadata["heading"] = doc.heading[:100]
        return metadata


def monitor_documents(documents: Iterator[RawDocument], doc_type: str) -> Iterator[RawDocument]:
    """Wrap an existing document iterator with PipelineMonitor logging."""

    @PipelineMonitor(doc_type=doc_type)
    def stream() -> Iterator[RawDocument]:
        yield from documents

    return stream()
