import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SourceType(str, Enum):
    FEDERAL = "federal"
    COUNTY = "county"
    MUNICIPAL = "municipal"

    @property
    def namespace(self) -> str:
        """Top-level key prefix in the document store."""
        return {SourceType.FEDERAL: "federal", SourceType.COUNTY: "counties", SourceType.MUNICIPAL: "municipal"}[self]


class Platform(str, Enum):
    MUNICODE = "municode"
    ELAWS = "elaws"
    AMLEGAL = "amlegal"
    RENDERED = "rendered"
    ECFR = "ecfr"
    COURT_ORDERS = "court-orders"
    CUSTOM = "custom"


class UnitConfig(BaseModel):
    """A top-level work item: one jurisdiction's code of ordinances."""

    model_config = ConfigDict(frozen=True)

    name: str
    unit_id: str
    source_type: SourceType
    platform: Optional[Platform] = None
    base_url: Optional[str] = None
    enabled: bool = True
    skip_reason: Optional[str] = None
    categories: list[str] = Field(default_factory=list)
    region: str = "TX"
    state_name: str = "Texas"
    state_abbreviation: str = "Tex."
    code_name: str = "Code of Ordinances"
    citation_name: Optional[str] = None
    slug: Optional[str] = None
    render_wait_ms: Optional[int] = None
    # Code library behind a rendered unit (municode, amlegal)
    host_platform: Optional[Platform] = None

    @property
    def unit_slug(self) -> str:
        """Lower-cased, hyphenated name used in chunk ids."""
        if self.slug:
            return self.slug
        return re.sub(r"\s+", "-", self.name.strip().lower())

    @property
    def jurisdiction(self) -> str:
        return f"{self.region}-{self.unit_id}"

    @property
    def display_name(self) -> str:
        return self.citation_name or self.name

    @property
    def primary_category(self) -> Optional[str]:
        return self.categories[0] if self.categories else None


class Subsection(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str


class RawDocument(BaseModel):
    """One fetched leaf section. Immutable once yielded by an adapter."""

    model_config = ConfigDict(frozen=True)

    unit_id: str
    unit_name: str
    chapter: str
    section: str
    heading: str = ""
    text: str
    subsections: list[Subsection] = Field(default_factory=list)
    source_url: str
    fetched_at: datetime = Field(default_factory=utc_now)

    @field_validator("text")
    @classmethod
    def text_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("document text must not be empty")
        return value

    @field_validator("fetched_at", mode="before")
    @classmethod
    def ensure_timezone_aware(cls, value: Any) -> datetime:
        if isinstance(value, str):
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Chunk(BaseModel):
    """A token-bounded passage of one document."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    source_id: str
    source_type: SourceType
    text: str
    citation: str
    url: str
    unit_name: str
    unit_id: str
    chapter: str
    section: str
    subsection: Optional[str] = None
    category: Optional[str] = None
    hierarchy: list[str] = Field(default_factory=list)
    chunk_index: int = Field(ge=0)
    total_chunks: int = Field(ge=1)
    oversized: bool = False

    @model_validator(mode="after")
    def index_within_total(self) -> "Chunk":
        if self.chunk_index >= self.total_chunks:
            raise ValueError(
                f"chunk_index {self.chunk_index} out of range for total_chunks {self.total_chunks}"
            )
        return self


class CheckpointStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class Checkpoint(BaseModel):
    """Persisted progress marker, serialized as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: int = 1
    source_type: str
    last_processed_unit: str
    last_processed_section: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    chunks_processed: int = Field(default=0, ge=0)
    status: CheckpointStatus = CheckpointStatus.IN_PROGRESS
    error: Optional[str] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)


class SourceValidation(BaseModel):
    accessible: bool
    reason: Optional[str] = None


class SkippedDocument(BaseModel):
    url: str
    reason: str
    category: str


class VectorRecord(BaseModel):
    id: str
    values: list[float]
    metadata: dict[str, Any]


class UnitState(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    STORING = "storing"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    INDEXING = "indexing"
    DONE = "done"
    UNIT_FAILED = "unit_failed"


class UnitResult(BaseModel):
    unit: str
    unit_id: str
    success: bool = False
    state: UnitState = UnitState.PENDING
    documents_processed: int = 0
    documents_stored: int = 0
    documents_skipped: int = 0
    chunks_created: int = 0
    vectors_upserted: int = 0
    duration_ms: int = 0
    last_section: Optional[str] = None
    errors: list[str] = Field(default_factory=list)


class BatchResult(BaseModel):
    success: bool
    units_processed: int = 0
    succeeded: int = 0
    failed: int = 0
    total_chunks: int = 0
    total_vectors: int = 0
    duration_ms: int = 0
    results: list[UnitResult] = Field(default_factory=list)

    @property
    def failed_units(self) -> list[dict[str, str]]:
        return [
            {"unit": r.unit, "error": "; ".join(r.errors) or r.state.value}
            for r in self.results
            if not r.success
        ]
