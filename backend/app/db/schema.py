# backend/app/db/schema.py
from __future__ import annotations
import logging
import psycopg

logger = logging.getLogger("rag.db")

# The partial unique index is the durable form of "one active job per project".
SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS vector;

CREATE TABLE IF NOT EXISTS ingest_jobs (
    id                  TEXT PRIMARY KEY,
    partition_id        TEXT NOT NULL,
    input_kind          TEXT NOT NULL,
    content_type        TEXT NOT NULL,
    state               TEXT NOT NULL DEFAULT 'PENDING',
    saved_count         INTEGER NOT NULL DEFAULT 0,
    skipped_count       INTEGER NOT NULL DEFAULT 0,
    skip_reasons        JSONB NOT NULL DEFAULT '{}'::jsonb,
    total_count         INTEGER,
    error               TEXT,
    source              TEXT NOT NULL DEFAULT '',
    generate_embeddings BOOLEAN NOT NULL DEFAULT FALSE,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_ingest_jobs_partition_state
    ON ingest_jobs (partition_id, state, created_at);

CREATE UNIQUE INDEX IF NOT EXISTS uq_ingest_jobs_one_active
    ON ingest_jobs (partition_id)
    WHERE state IN ('PROCESSING', 'VECTORIZING');

CREATE TABLE IF NOT EXISTS content_records (
    id               TEXT PRIMARY KEY,
    partition_id     TEXT NOT NULL,
    content_type     TEXT NOT NULL,
    category         TEXT,
    source           TEXT NOT NULL DEFAULT '',
    content          TEXT NOT NULL,
    metadata         JSONB NOT NULL DEFAULT '{}'::jsonb,
    embedding        vector,
    created_by_id    TEXT,
    created_by_name  TEXT,
    created_by_email TEXT,
    ingest_job_id    TEXT,
    created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_content_records_partition_type
    ON content_records (partition_id, content_type, created_at DESC);

CREATE INDEX IF NOT EXISTS idx_content_records_missing_embedding
    ON content_records (partition_id, id)
    WHERE embedding IS NULL;

CREATE INDEX IF NOT EXISTS idx_content_records_metadata
    ON content_records USING GIN (metadata jsonb_path_ops);
"""


def ensure_schema(conn: psycopg.Connection) -> None:
    """Create extension, tables and indexes if missing."""
    with conn.cursor() as cur:
        cur.execute(SCHEMA_SQL)
    conn.commit()
    logger.info("✅ Schema ensured (ingest_jobs, content_records).")
