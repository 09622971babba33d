"""Structure-aware, token-bounded chunking with paragraph overlap.

A document is emitted whole when it fits the token ceiling. Otherwise it is
split at subsection boundaries when the document carries subsections, and
at paragraph boundaries (blank lines) when it does not. Consecutive
paragraph chunks share trailing paragraphs of the previous chunk, up to
floor(max_tokens * overlap_ratio) tokens.

The ceiling holds for every chunk except one consisting of a single
paragraph that alone exceeds it; such chunks are flagged `oversized`.
"""

import logging
import math
import re
from collections import Counter
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from statute.core.citations import (
    generate_chunk_id,
    generate_hierarchy,
    generate_source_id,
    generate_unit_citation,
)
from statute.core.models import Chunk, RawDocument, UnitConfig
from statute.core.tokens import count_tokens, detect_outliers, token_distribution

logger = logging.getLogger(__name__)

MAX_CHUNK_TOKENS = 1500
OVERLAP_RATIO = 0.15

PARAGRAPH_SEPARATOR = "\n\n"
_PARAGRAPH_SPLIT = re.compile(r"\n\n+")


class ChunkContext(BaseModel):
    """Per-unit values stamped onto every chunk."""

    model_config = ConfigDict(frozen=True)

    unit: UnitConfig
    category: Optional[str] = None
    year: Optional[int] = None

    @classmethod
    def for_unit(cls, unit: UnitConfig, year: Optional[int] = None) -> "ChunkContext":
        return cls(unit=unit, category=unit.primary_category, year=year)


def overlap_budget(max_tokens: int, overlap_ratio: float) -> int:
    """Overlap token budget, validated to be within [0, max_tokens)."""
    if max_tokens <= 0:
        raise ValueError(f"max_tokens must be positive, got {max_tokens}")
    budget = math.floor(max_tokens * overlap_ratio)
    if budget < 0 or budget >= max_tokens:
        raise ValueError(
            f"overlap_ratio {overlap_ratio} gives an overlap of {budget} tokens, "
            f"which must be in [0, {max_tokens})"
        )
    return budget


def get_overlap_text(paragraphs: List[str], target_tokens: int) -> str:
    """Trailing whole paragraphs of a chunk that fit within target_tokens."""
    overlap: List[str] = []
    for paragraph in reversed(paragraphs):
        candidate = [paragraph] + overlap
        if count_tokens(PARAGRAPH_SEPARATOR.join(candidate)) > target_tokens:
            break
        overlap = candidate
    return PARAGRAPH_SEPARATOR.join(overlap)


def split_with_overlap(
    text: str,
    max_tokens: int = MAX_CHUNK_TOKENS,
    overlap_ratio: float = OVERLAP_RATIO,
) -> List[str]:
    """Split text at paragraph boundaries into chunks of at most max_tokens.

    Paragraphs are accumulated greedily. When the next paragraph would push
    the current chunk past the ceiling, the chunk is closed and the next one
    is seeded with the trailing paragraphs returned by get_overlap_text. A
    seed that would itself push the next paragraph past the ceiling is
    dropped. A single paragraph above the ceiling is emitted on its own.
    """
    budget = overlap_budget(max_tokens, overlap_ratio)
    paragraphs = [p for p in _PARAGRAPH_SPLIT.split(text) if p.strip()]

    chunks: List[str] = []
    current: List[str] = []

    for paragraph in paragraphs:
        if current and count_tokens(PARAGRAPH_SEPARATOR.join(current + [paragraph])) > max_tokens:
            chunks.append(PARAGRAPH_SEPARATOR.join(current))

            seed = get_overlap_text(current, budget)
            current = [seed] if seed else []
            if current and count_tokens(PARAGRAPH_SEPARATOR.join(current + [paragraph])) > max_tokens:
                current = []

        current.append(paragraph)

    if current:
        chunks.append(PARAGRAPH_SEPARATOR.join(current))

    return chunks


def _build_chunks(
    document: RawDocument,
    context: ChunkContext,
    pieces: List[tuple],
    max_tokens: int,
) -> List[Chunk]:
    """Turn (text, subsection_id) pieces into indexed Chunk models."""
    unit = context.unit
    source_type = unit.source_type.value
    slug = unit.unit_slug
    hierarchy = generate_hierarchy(unit, document.chapter, document.section)
    total = len(pieces)

    chunks = []
    for index, (text, subsection_id) in enumerate(pieces):
        citation = generate_unit_citation(unit, document.section, subsection_id, context.year)
        oversized = PARAGRAPH_SEPARATOR not in text.strip() and count_tokens(text) > max_tokens
        chunks.append(
            Chunk(
                chunk_id=generate_chunk_id(source_type, slug, document.chapter, document.section, index),
                source_id=generate_source_id(source_type, slug),
                source_type=unit.source_type,
                text=text,
                citation=citation,
                url=document.source_url,
                unit_name=unit.name,
                unit_id=unit.unit_id,
                chapter=document.chapter,
                section=document.section,
                subsection=subsection_id,
                category=context.category,
                hierarchy=hierarchy,
                chunk_index=index,
                total_chunks=total,
                oversized=oversized,
            )
        )
    return chunks


def chunk_document(
    document: RawDocument,
    context: ChunkContext,
    max_tokens: int = MAX_CHUNK_TOKENS,
    overlap_ratio: float = OVERLAP_RATIO,
) -> List[Chunk]:
    """Split one document into 1..N chunks with sequential indices."""
    overlap_budget(max_tokens, overlap_ratio)

    if count_tokens(document.text) <= max_tokens:
        return _build_chunks(document, context, [(document.text, None)], max_tokens)

    pieces: List[tuple] = []
    if document.subsections:
        for subsection in document.subsections:
            if not subsection.text.strip():
                continue
            if count_tokens(subsection.text) <= max_tokens:
                pieces.append((subsection.text, subsection.id))
            else:
                for text in split_with_overlap(subsection.text, max_tokens, overlap_ratio):
                    pieces.append((text, subsection.id))

    if not pieces:
        pieces = [(text, None) for text in split_with_overlap(document.text, max_tokens, overlap_ratio)]

    chunks = _build_chunks(document, context, pieces, max_tokens)
    logger.debug(
        f"Split {document.unit_name} sect. {document.section} into {len(chunks)} chunks",
        extra={
            "unit_id": document.unit_id,
            "section": document.section,
            "chunk_count": len(chunks),
            "oversized": sum(1 for c in chunks if c.oversized),
        },
    )
    return chunks


def chunk_documents(documents: List[RawDocument], unit: UnitConfig, **kwargs: Any) -> List[Chunk]:
    """Chunk every document of a unit, using the unit's primary category."""
    context = ChunkContext.for_unit(unit)
    chunks: List[Chunk] = []
    for document in documents:
        chunks.extend(chunk_document(document, context, **kwargs))
    return chunks


def get_chunk_stats(chunks: List[Chunk]) -> Dict[str, Any]:
    """Token statistics for a list of chunks."""
    if not chunks:
        return {
            "total_chunks": 0,
            "avg_tokens": 0,
            "max_tokens": 0,
            "min_tokens": 0,
            "p95_tokens": 0,
            "outliers": 0,
            "oversized": 0,
            "by_unit": {},
        }

    token_counts = [count_tokens(chunk.text) for chunk in chunks]
    distribution = token_distribution(token_counts)
    return {
        "total_chunks": len(chunks),
        "avg_tokens": distribution.avg,
        "max_tokens": distribution.max,
        "min_tokens": distribution.min,
        "p95_tokens": distribution.p95,
        "outliers": len(detect_outliers(token_counts)),
        "oversized": sum(1 for chunk in chunks if chunk.oversized),
        "by_unit": dict(Counter(chunk.unit_name for chunk in chunks)),
    }
