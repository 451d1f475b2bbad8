from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobState(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    VECTORIZING = "VECTORIZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATES


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED})
ACTIVE_STATES = frozenset({JobState.PROCESSING, JobState.VECTORIZING})

ALLOWED_TRANSITIONS: Dict[JobState, frozenset] = {
    JobState.PENDING: frozenset({JobState.PROCESSING, JobState.FAILED, JobState.CANCELLED}),
    JobState.PROCESSING: frozenset(
        {JobState.VECTORIZING, JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED}
    ),
    JobState.VECTORIZING: frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED}),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
    JobState.CANCELLED: frozenset(),
}


def sources_for(target: JobState) -> List[JobState]:
    """States from which `target` may be entered."""
    return [s for s, allowed in ALLOWED_TRANSITIONS.items() if target in allowed]


class InputKind(str, Enum):
    FILE = "FILE"
    REMOTE = "REMOTE"


class ContentType(str, Enum):
    TASK = "TASK"
    FEEDBACK = "FEEDBACK"


class RecordCategory(str, Enum):
    TOP_10 = "TOP_10"
    BOTTOM_10 = "BOTTOM_10"
    STANDARD = "STANDARD"


@dataclass(frozen=True)
class IngestOptions:
    source: str
    content_type: ContentType
    filter_keywords: List[str] = field(default_factory=list)
    generate_embeddings: bool = False
    has_header: bool = True


@dataclass
class IngestJob:
    id: str
    partition_id: str
    input_kind: InputKind
    content_type: ContentType
    state: JobState = JobState.PENDING
    saved_count: int = 0
    skipped_count: int = 0
    skip_reasons: Dict[str, int] = field(default_factory=dict)
    total_count: Optional[int] = None
    error: Optional[str] = None
    source: str = ""
    generate_embeddings: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class ContentRecord:
    id: str
    partition_id: str
    content_type: ContentType
    content: str
    source: str = ""
    category: Optional[RecordCategory] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    embedding: Optional[List[float]] = None
    created_by_id: Optional[str] = None
    created_by_name: Optional[str] = None
    created_by_email: Optional[str] = None
    ingest_job_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)


@dataclass(frozen=True)
class NormalizedRecord:
    content: str
    category: Optional[RecordCategory]


@dataclass
class IngestOutcome:
    saved: int = 0
    skipped: int = 0
    skip_reasons: Dict[str, int] = field(default_factory=dict)
    cancelled: bool = False


@dataclass
class BackfillReport:
    embedded: int = 0
    missing: int = 0
    pages: int = 0
    cancelled: bool = False


@dataclass(frozen=True)
class RecordSummary:
    id: str
    content: str
    category: Optional[RecordCategory] = None
    created_by_id: Optional[str] = None
    created_by_name: Optional[str] = None
    created_by_email: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def of(cls, record: ContentRecord) -> "RecordSummary":
        return cls(
            id=record.id,
            content=record.content,
            category=record.category,
            created_by_id=record.created_by_id,
            created_by_name=record.created_by_name,
            created_by_email=record.created_by_email,
            created_at=record.created_at,
        )


@dataclass(frozen=True)
class SimilarityPair:
    left: RecordSummary
    right: RecordSummary
    similarity_pct: int


@dataclass(frozen=True)
class RedZoneReport:
    pairs: List[SimilarityPair]
    total_records: int
    total_embedded: int
    dimension_mismatches: int = 0

    @property
    def red_zone_count(self) -> int:
        return len(self.pairs)

    @property
    def truncated(self) -> bool:
        """True when the record cap left embedded records out of the scan."""
        return self.total_embedded > self.total_records


@dataclass(frozen=True)
class RankedMatch:
    record: RecordSummary
    similarity_pct: int


@dataclass(frozen=True)
class SimilarityRanking:
    target: RecordSummary
    matches: List[RankedMatch]
    compared: int
    dimension_mismatches: List[str] = field(default_factory=list)
