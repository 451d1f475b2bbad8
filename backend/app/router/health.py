# backend/app/router/health.py
from __future__ import annotations
import logging
from fastapi import APIRouter, HTTPException

from app.db.session import DatabasePool, ping_db

router = APIRouter()
logger = logging.getLogger(__name__)

# Set by main.py once the container is wired
startup_complete = False


@router.get("/health")
def health_check():
    """Basic health check - service is running"""
    return {"status": "ok" if startup_complete else "starting"}


@router.get("/health/ready")
def readiness_check():
    """Readiness check - container wired and recovery done"""
    if not startup_complete:
        raise HTTPException(status_code=503, detail="Service starting up")
    return {"status": "ready"}


@router.get("/db-ping")
def db_ping():
    """Simple DB connectivity test."""
    ok, message = ping_db()
    return {"ok": ok, "message": message}


@router.get("/debug/pool-status")
def pool_status():
    """Show connection pool diagnostics."""
    pool = DatabasePool.pool
    if pool is None:
        return {"initialized": False}
    stats = pool.get_stats()
    return {
        "initialized": True,
        "pool_size": stats.get("pool_size"),
        "pool_available": stats.get("pool_available"),
        "requests_waiting": stats.get("requests_waiting"),
    }
