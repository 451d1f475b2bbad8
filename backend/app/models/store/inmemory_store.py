from __future__ import annotations
from dataclasses import replace
from threading import Lock
from typing import Any, Dict, List, Optional, Sequence
import json

from app.core.entities import ContentRecord, ContentType, IngestJob, JobState, sources_for, utcnow
from app.core.ports.job_store import IJobStore
from app.core.ports.store import IRecordStore


def _json_text(value: Any) -> Optional[str]:
    """Same text Postgres yields for metadata->>'key'."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return json.dumps(value, default=str)


def _copy_record(r: ContentRecord) -> ContentRecord:
    return replace(
        r,
        metadata=dict(r.metadata),
        embedding=list(r.embedding) if r.embedding is not None else None,
    )


def _copy_job(j: IngestJob) -> IngestJob:
    return replace(j, skip_reasons=dict(j.skip_reasons))


class InMemoryRecordStore(IRecordStore):
    """Thread-safe record store for local mode and tests."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._rows: Dict[str, ContentRecord] = {}

    def create_many(self, records: Sequence[ContentRecord]) -> None:
        with self._lock:
            for r in records:
                self._rows[r.id] = _copy_record(r)

    def get(self, record_id: str) -> Optional[ContentRecord]:
        with self._lock:
            r = self._rows.get(record_id)
            return _copy_record(r) if r else None

    def exists_with_natural_id(
        self, partition_id: str, content_type: ContentType, natural_id: str, keys: Sequence[str]
    ) -> bool:
        with self._lock:
            for r in self._rows.values():
                if r.partition_id != partition_id or r.content_type != content_type:
                    continue
                if any(_json_text(r.metadata.get(k)) == natural_id for k in keys):
                    return True
        return False

    def page_missing_embeddings(
        self, partition_id: str, after_id: Optional[str], limit: int
    ) -> List[ContentRecord]:
        with self._lock:
            rows = sorted(
                (
                    r for r in self._rows.values()
                    if r.partition_id == partition_id
                    and not r.has_embedding
                    and (after_id is None or r.id > after_id)
                ),
                key=lambda r: r.id,
            )
            return [_copy_record(r) for r in rows[:limit]]

    def set_embedding(self, record_id: str, embedding: List[float]) -> None:
        with self._lock:
            r = self._rows.get(record_id)
            if r is None:
                raise KeyError(record_id)
            r.embedding = list(embedding)
            r.updated_at = utcnow()

    def list_embedded(
        self,
        partition_id: str,
        content_type: ContentType,
        limit: Optional[int] = None,
        created_by_id: Optional[str] = None,
        match_creator: bool = False,
    ) -> List[ContentRecord]:
        if match_creator and created_by_id is None:
            return []
        with self._lock:
            rows = [
                r for r in self._rows.values()
                if r.partition_id == partition_id
                and r.content_type == content_type
                and r.has_embedding
                and (not match_creator or r.created_by_id == created_by_id)
            ]
            rows.sort(key=lambda r: r.id)
            rows.sort(key=lambda r: r.created_at, reverse=True)
            if limit is not None:
                rows = rows[:limit]
            return [_copy_record(r) for r in rows]

    def count(self, partition_id: str) -> int:
        with self._lock:
            return sum(1 for r in self._rows.values() if r.partition_id == partition_id)

    def count_embedded(self, partition_id: str, content_type: ContentType) -> int:
        with self._lock:
            return sum(
                1 for r in self._rows.values()
                if r.partition_id == partition_id and r.content_type == content_type and r.has_embedding
            )

    def __len__(self) -> int:
        return len(self._rows)


class InMemoryJobStore(IJobStore):
    def __init__(self) -> None:
        self._lock = Lock()
        self._jobs: Dict[str, IngestJob] = {}

    def create(self, job: IngestJob) -> IngestJob:
        with self._lock:
            self._jobs[job.id] = _copy_job(job)
            return _copy_job(job)

    def get(self, job_id: str) -> Optional[IngestJob]:
        with self._lock:
            j = self._jobs.get(job_id)
            return _copy_job(j) if j else None

    def transition(self, job_id: str, state: JobState, error: Optional[str] = None) -> bool:
        with self._lock:
            j = self._jobs.get(job_id)
            if j is None or j.state not in sources_for(state):
                return False
            if state == JobState.PROCESSING:
                if any(
                    o.partition_id == j.partition_id and o.id != j.id and o.state.is_active
                    for o in self._jobs.values()
                ):
                    return False
            j.state = state
            if error is not None:
                j.error = error
            j.updated_at = utcnow()
            return True

    def record_progress(
        self, job_id: str, saved: int, skipped: int, reasons: Dict[str, int]
    ) -> IngestJob:
        with self._lock:
            j = self._jobs[job_id]
            j.saved_count += saved
            j.skipped_count += skipped
            for reason, n in reasons.items():
                j.skip_reasons[reason] = j.skip_reasons.get(reason, 0) + n
            j.updated_at = utcnow()
            return _copy_job(j)

    def set_total(self, job_id: str, total: int) -> None:
        with self._lock:
            j = self._jobs.get(job_id)
            if j is not None:
                j.total_count = total

    def find_active(self, partition_id: str) -> Optional[IngestJob]:
        with self._lock:
            for j in self._jobs.values():
                if j.partition_id == partition_id and j.state.is_active:
                    return _copy_job(j)
        return None

    def oldest_pending(self, partition_id: str) -> Optional[IngestJob]:
        with self._lock:
            pending = [
                j for j in self._jobs.values()
                if j.partition_id == partition_id and j.state == JobState.PENDING
            ]
            if not pending:
                return None
            return _copy_job(min(pending, key=lambda j: j.created_at))

    def list_in_states(self, states: List[JobState]) -> List[IngestJob]:
        wanted = set(states)
        with self._lock:
            return [_copy_job(j) for j in self._jobs.values() if j.state in wanted]

    def list_for_partition(self, partition_id: str, limit: int = 50) -> List[IngestJob]:
        with self._lock:
            jobs = [j for j in self._jobs.values() if j.partition_id == partition_id]
        jobs.reverse()
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [_copy_job(j) for j in jobs[:limit]]
