# backend/app/db/session.py
from __future__ import annotations
from psycopg_pool import ConnectionPool
from app.db.config import settings
from app.db.schema import ensure_schema
import logging

logger = logging.getLogger("rag.db")

class DatabasePool:
    """Global psycopg3 connection pool shared by the Postgres stores."""
    pool: ConnectionPool | None = None

    @classmethod
    def init(cls, create_schema: bool = True):
        if cls.pool:
            logger.info("Database pool already initialized.")
            return

        cls.pool = ConnectionPool(
            conninfo=settings.database_url,
            min_size=1,
            max_size=max(4, settings.ingest_workers * 2),
            num_workers=2,
            timeout=30,
            open=True,
        )
        logger.info("✅ Database connection pool initialized.")

        if create_schema:
            with cls.pool.connection() as conn:
                ensure_schema(conn)

    @classmethod
    def close(cls):
        if cls.pool:
            cls.pool.close()
            cls.pool = None
            logger.info("🧹 Database pool closed.")

def ping_db() -> tuple[bool, str]:
    """Check DB connectivity."""
    try:
        if not DatabasePool.pool:
            return False, "Pool not initialized"
        with DatabasePool.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT count(*) FROM ingest_jobs;")
                jobs = cur.fetchone()[0]
                return True, f"Database connection successful: {settings.db_host}:{settings.db_port}/{settings.db_name} ({jobs} jobs)"
    except Exception as e:
        return False, str(e)
