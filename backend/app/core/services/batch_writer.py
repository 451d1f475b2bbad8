from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.core.entities import ContentRecord, ContentType, IngestJob, NormalizedRecord, utcnow
from app.core.ports.job_store import IJobStore
from app.core.ports.store import IRecordStore

log = logging.getLogger("app.ingest.writer")

CREATED_AT_KEYS = ("created_at", "createdAt", "timestamp", "date_created")
UPDATED_AT_KEYS = ("updated_at", "updatedAt", "date_updated", "modified_at")


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            # epoch millis when it looks like millis
            secs = value / 1000.0 if value > 1e11 else float(value)
            return datetime.fromtimestamp(secs, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _first_timestamp(row: dict, keys: Sequence[str]) -> Optional[datetime]:
    for k in keys:
        v = row.get(k)
        if v:
            return _parse_timestamp(v)
    return None


def _opt_str(row: dict, key: str) -> Optional[str]:
    v = row.get(key)
    return str(v) if v else None


def build_record(
    raw: Any,
    normalized: NormalizedRecord,
    partition_id: str,
    content_type: ContentType,
    source: str,
    job_id: Optional[str],
) -> ContentRecord:
    row = raw if isinstance(raw, dict) else {}
    now = utcnow()
    return ContentRecord(
        id=str(uuid.uuid4()),
        partition_id=partition_id,
        content_type=content_type,
        content=normalized.content,
        source=source,
        category=normalized.category,
        metadata=dict(raw) if isinstance(raw, dict) else {"value": raw},
        embedding=None,
        created_by_id=_opt_str(row, "created_by_id"),
        created_by_name=_opt_str(row, "created_by_name"),
        created_by_email=_opt_str(row, "created_by_email"),
        ingest_job_id=job_id,
        created_at=_first_timestamp(row, CREATED_AT_KEYS) or now,
        updated_at=_first_timestamp(row, UPDATED_AT_KEYS) or now,
    )


class BatchWriter:
    """Persists one chunk, then merges its counters into the owning job."""

    def __init__(self, records: IRecordStore, jobs: IJobStore):
        self.records = records
        self.jobs = jobs

    def write_chunk(
        self,
        job_id: str,
        partition_id: str,
        content_type: ContentType,
        source: str,
        accepted: List[Tuple[Any, NormalizedRecord]],
        skipped: int,
        skip_reasons: Dict[str, int],
    ) -> IngestJob:
        rows = [
            build_record(raw, norm, partition_id, content_type, source, job_id)
            for raw, norm in accepted
        ]
        if rows:
            self.records.create_many(rows)
        job = self.jobs.record_progress(job_id, saved=len(rows), skipped=skipped, reasons=skip_reasons)
        log.debug("Chunk written | job=%s | saved=%d | skipped=%d", job_id, len(rows), skipped)
        return job
