# backend/app/models/store/pg_store.py
from __future__ import annotations
from typing import Any, Dict, List, Optional, Sequence
import json
import logging

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from app.core.entities import (
    ContentRecord,
    ContentType,
    IngestJob,
    InputKind,
    JobState,
    RecordCategory,
    sources_for,
)
from app.core.ports.job_store import IJobStore
from app.core.ports.store import IRecordStore
from app.db.session import DatabasePool

logger = logging.getLogger("app.store.pg")

_RECORD_COLUMNS = """
    id, partition_id, content_type, category, source, content, metadata,
    embedding::text AS embedding, created_by_id, created_by_name, created_by_email,
    ingest_job_id, created_at, updated_at
"""

_JOB_COLUMNS = """
    id, partition_id, input_kind, content_type, state, saved_count, skipped_count,
    skip_reasons, total_count, error, source, generate_embeddings, created_at, updated_at
"""


# -----------------------------
# Helpers
# -----------------------------
def _vector_literal(vec: List[float]) -> str:
    return "[" + ",".join(repr(float(x)) for x in vec) + "]"


def _parse_vector(raw: Any) -> Optional[List[float]]:
    if raw is None:
        return None
    if isinstance(raw, str):
        inner = raw.strip().strip("[]")
        if not inner:
            return []
        return [float(x) for x in inner.split(",")]
    return [float(x) for x in raw]


def _dumps(obj: Any) -> str:
    return json.dumps(obj, default=str)


def _pool():
    if not DatabasePool.pool:
        raise RuntimeError("Database pool not initialized")
    return DatabasePool.pool


def _row_to_record(row: Dict[str, Any]) -> ContentRecord:
    return ContentRecord(
        id=row["id"],
        partition_id=row["partition_id"],
        content_type=ContentType(row["content_type"]),
        category=RecordCategory(row["category"]) if row["category"] else None,
        source=row["source"],
        content=row["content"],
        metadata=row["metadata"] or {},
        embedding=_parse_vector(row["embedding"]),
        created_by_id=row["created_by_id"],
        created_by_name=row["created_by_name"],
        created_by_email=row["created_by_email"],
        ingest_job_id=row["ingest_job_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_job(row: Dict[str, Any]) -> IngestJob:
    return IngestJob(
        id=row["id"],
        partition_id=row["partition_id"],
        input_kind=InputKind(row["input_kind"]),
        content_type=ContentType(row["content_type"]),
        state=JobState(row["state"]),
        saved_count=row["saved_count"],
        skipped_count=row["skipped_count"],
        skip_reasons=dict(row["skip_reasons"] or {}),
        total_count=row["total_count"],
        error=row["error"],
        source=row["source"],
        generate_embeddings=row["generate_embeddings"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


# -----------------------------
# Records
# -----------------------------
class PgRecordStore(IRecordStore):
    """content_records on Postgres + pgvector."""

    def create_many(self, records: Sequence[ContentRecord]) -> None:
        if not records:
            return
        params = [
            (
                r.id, r.partition_id, r.content_type.value,
                r.category.value if r.category else None,
                r.source, r.content, Jsonb(r.metadata, dumps=_dumps),
                _vector_literal(r.embedding) if r.embedding else None,
                r.created_by_id, r.created_by_name, r.created_by_email,
                r.ingest_job_id, r.created_at, r.updated_at,
            )
            for r in records
        ]
        with _pool().connection() as conn:
            with conn.cursor() as cur:
                cur.executemany(
                    """
                    INSERT INTO content_records (
                        id, partition_id, content_type, category, source, content, metadata,
                        embedding, created_by_id, created_by_name, created_by_email,
                        ingest_job_id, created_at, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s::vector, %s, %s, %s, %s, %s, %s);
                    """,
                    params,
                )

    def get(self, record_id: str) -> Optional[ContentRecord]:
        with _pool().connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(f"SELECT {_RECORD_COLUMNS} FROM content_records WHERE id = %s;", (record_id,))
                row = cur.fetchone()
        return _row_to_record(row) if row else None

    def exists_with_natural_id(
        self, partition_id: str, content_type: ContentType, natural_id: str, keys: Sequence[str]
    ) -> bool:
        clauses = " OR ".join(["metadata ->> %s = %s"] * len(keys))
        args: List[Any] = [partition_id, content_type.value]
        for k in keys:
            args.extend([k, natural_id])
        with _pool().connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT 1 FROM content_records
                    WHERE partition_id = %s AND content_type = %s
                      AND ({clauses})
                    LIMIT 1;
                    """,
                    args,
                )
                return cur.fetchone() is not None

    def page_missing_embeddings(
        self, partition_id: str, after_id: Optional[str], limit: int
    ) -> List[ContentRecord]:
        with _pool().connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_RECORD_COLUMNS} FROM content_records
                    WHERE partition_id = %s
                      AND embedding IS NULL
                      AND (%s::text IS NULL OR id > %s::text)
                    ORDER BY id ASC
                    LIMIT %s;
                    """,
                    (partition_id, after_id, after_id, limit),
                )
                return [_row_to_record(r) for r in cur.fetchall()]

    def set_embedding(self, record_id: str, embedding: List[float]) -> None:
        with _pool().connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE content_records SET embedding = %s::vector, updated_at = now() WHERE id = %s;",
                    (_vector_literal(embedding), record_id),
                )

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
        creator_clause = "AND created_by_id = %s" if match_creator else ""
        args: List[Any] = [partition_id, content_type.value]
        if match_creator:
            args.append(created_by_id)
        args.append(limit)
        with _pool().connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_RECORD_COLUMNS} FROM content_records
                    WHERE partition_id = %s AND content_type = %s
                      AND embedding IS NOT NULL
                      {creator_clause}
                    ORDER BY created_at DESC, id ASC
                    LIMIT %s;
                    """,
                    args,
                )
                return [_row_to_record(r) for r in cur.fetchall()]

    def count(self, partition_id: str) -> int:
        with _pool().connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT count(*) FROM content_records WHERE partition_id = %s;", (partition_id,))
                return int(cur.fetchone()[0])

    def count_embedded(self, partition_id: str, content_type: ContentType) -> int:
        with _pool().connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT count(*) FROM content_records
                    WHERE partition_id = %s AND content_type = %s AND embedding IS NOT NULL;
                    """,
                    (partition_id, content_type.value),
                )
                return int(cur.fetchone()[0])


# -----------------------------
# Jobs
# -----------------------------
class PgJobStore(IJobStore):
    def create(self, job: IngestJob) -> IngestJob:
        with _pool().connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO ingest_jobs (
                        id, partition_id, input_kind, content_type, state, saved_count,
                        skipped_count, skip_reasons, total_count, error, source,
                        generate_embeddings, created_at, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s);
                    """,
                    (
                        job.id, job.partition_id, job.input_kind.value, job.content_type.value,
                        job.state.value, job.saved_count, job.skipped_count,
                        Jsonb(job.skip_reasons), job.total_count, job.error, job.source,
                        job.generate_embeddings, job.created_at, job.updated_at,
                    ),
                )
        return job

    def get(self, job_id: str) -> Optional[IngestJob]:
        with _pool().connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(f"SELECT {_JOB_COLUMNS} FROM ingest_jobs WHERE id = %s;", (job_id,))
                row = cur.fetchone()
        return _row_to_job(row) if row else None

    def transition(self, job_id: str, state: JobState, error: Optional[str] = None) -> bool:
        allowed_from = [s.value for s in sources_for(state)]
        try:
            with _pool().connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        UPDATE ingest_jobs
                           SET state = %s, error = COALESCE(%s, error), updated_at = now()
                         WHERE id = %s AND state = ANY(%s)
                        RETURNING id;
                        """,
                        (state.value, error, job_id, allowed_from),
                    )
                    return cur.fetchone() is not None
        except psycopg.errors.UniqueViolation:
            logger.warning("⚠️ Job %s not moved to %s: another job is active in its project", job_id, state.value)
            return False

    def record_progress(
        self, job_id: str, saved: int, skipped: int, reasons: Dict[str, int]
    ) -> IngestJob:
        with _pool().connection() as conn:
            with conn.transaction():
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute("SELECT skip_reasons FROM ingest_jobs WHERE id = %s FOR UPDATE;", (job_id,))
                    row = cur.fetchone()
                    if row is None:
                        raise KeyError(job_id)
                    merged = dict(row["skip_reasons"] or {})
                    for reason, n in reasons.items():
                        merged[reason] = merged.get(reason, 0) + n
                    cur.execute(
                        f"""
                        UPDATE ingest_jobs
                           SET saved_count = saved_count + %s,
                               skipped_count = skipped_count + %s,
                               skip_reasons = %s,
                               updated_at = now()
                         WHERE id = %s
                        RETURNING {_JOB_COLUMNS};
                        """,
                        (saved, skipped, Jsonb(merged), job_id),
                    )
                    return _row_to_job(cur.fetchone())

    def set_total(self, job_id: str, total: int) -> None:
        with _pool().connection() as conn:
            with conn.cursor() as cur:
                cur.execute("UPDATE ingest_jobs SET total_count = %s WHERE id = %s;", (total, job_id))

    def _fetch_jobs(self, query: str, args: Sequence[Any]) -> List[IngestJob]:
        with _pool().connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, args)
                return [_row_to_job(r) for r in cur.fetchall()]

    def find_active(self, partition_id: str) -> Optional[IngestJob]:
        rows = self._fetch_jobs(
            f"SELECT {_JOB_COLUMNS} FROM ingest_jobs WHERE partition_id = %s AND state = ANY(%s) LIMIT 1;",
            (partition_id, [JobState.PROCESSING.value, JobState.VECTORIZING.value]),
        )
        return rows[0] if rows else None

    def oldest_pending(self, partition_id: str) -> Optional[IngestJob]:
        rows = self._fetch_jobs(
            f"""
            SELECT {_JOB_COLUMNS} FROM ingest_jobs
            WHERE partition_id = %s AND state = 'PENDING'
            ORDER BY created_at ASC, id ASC
            LIMIT 1;
            """,
            (partition_id,),
        )
        return rows[0] if rows else None

    def list_in_states(self, states: List[JobState]) -> List[IngestJob]:
        return self._fetch_jobs(
            f"SELECT {_JOB_COLUMNS} FROM ingest_jobs WHERE state = ANY(%s) ORDER BY created_at ASC;",
            ([s.value for s in states],),
        )

    def list_for_partition(self, partition_id: str, limit: int = 50) -> List[IngestJob]:
        return self._fetch_jobs(
            f"""
            SELECT {_JOB_COLUMNS} FROM ingest_jobs
            WHERE partition_id = %s
            ORDER BY created_at DESC
            LIMIT %s;
            """,
            (partition_id, limit),
        )
