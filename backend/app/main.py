from __future__ import annotations
import logging
import time
from contextlib import asynccontextmanager
from threading import Lock
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# ============================================================
# 🪵 Logging Setup
# ============================================================
logging.basicConfig(
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(filename)s:%(lineno)d | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    level=logging.INFO,
)
logger = logging.getLogger("app.main")

# ============================================================
# 📦 Core Imports (DB + Dependency Injection)
# ============================================================
from app.db.session import DatabasePool, ping_db
from app.db.config import settings
from app.container import build_container

# ============================================================
# 🌐 Routers
# ============================================================
from app.router import health as health_module
from app.router import ingest_router as ingest_module
from app.router import similarity_router as similarity_module

# ============================================================
# ⚙️ Global State & Application Status
# ============================================================
class AppState:
    def __init__(self):
        self.container = None
        self.startup_time = time.time()
        self.startup_complete = False
        self.recovered_jobs = 0
        self.error = None
        self.lock = Lock()

    def mark_ready(self, recovered: int):
        with self.lock:
            self.recovered_jobs = recovered
            self.startup_complete = True

    def set_error(self, error: str):
        with self.lock:
            self.error = error
            self.startup_complete = True

    def get_status(self):
        with self.lock:
            return {
                "startup_complete": self.startup_complete,
                "store_backend": settings.store_backend,
                "embedding_backend": settings.embedding_backend,
                "payload_cache": settings.payload_cache,
                "recovered_jobs": self.recovered_jobs,
                "error": self.error,
                "uptime_seconds": time.time() - self.startup_time,
            }

app_state = AppState()

# ============================================================
# 🚀 Startup / Shutdown Lifecycle
# ============================================================
@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info("🚀 Initializing ingestion & similarity API...")

    # --- Database connection ---
    if settings.store_backend == "postgres":
        DatabasePool.init(create_schema=True)
        ok, msg = ping_db()
        if ok:
            logger.info(f"✅ Database OK: {msg}")
        else:
            logger.warning(f"⚠️ DB ping failed: {msg}")

    # --- Build container, recover jobs left by a previous process ---
    try:
        app_state.container = build_container(settings)
        ingest_module.orchestrator = app_state.container.orchestrator
        similarity_module.engine = app_state.container.similarity

        recovered = app_state.container.orchestrator.recover_interrupted()
        if recovered:
            logger.warning(f"⚠️ Marked {recovered} interrupted job(s) FAILED")
        app_state.mark_ready(recovered)
        health_module.startup_complete = True
        logger.info("🎯 API is ready and accepting requests")
    except Exception as e:
        logger.error(f"❌ Container init failed: {e}", exc_info=True)
        app_state.set_error(f"Startup failed: {e}")
        raise

    try:
        yield
    finally:
        try:
            health_module.startup_complete = False
            if app_state.container:
                app_state.container.orchestrator.shutdown(wait_for_jobs=False)
            DatabasePool.close()
            logger.info("🧹 Application shutdown complete")
        except Exception as e:
            logger.warning(f"⚠️ Cleanup warning: {e}")

# ============================================================
# 🌍 FastAPI App Definition
# ============================================================
app = FastAPI(
    title="Record Ingestion & Similarity API",
    description="CSV / remote JSON ingestion with background vectorization and red-zone similarity detection",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS Setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(health_module.router)
app.include_router(ingest_module.router)
app.include_router(similarity_module.router)

# ============================================================
# 🆕 Status Endpoint
# ============================================================
@app.get("/status")
def get_app_status():
    status = app_state.get_status()
    if status["error"]:
        system_status = "degraded"
    elif not status["startup_complete"]:
        system_status = "initializing"
    else:
        system_status = "healthy"
    return {"system_status": system_status, "timestamp": time.time(), **status}

# ============================================================
# 🏠 Root Endpoint
# ============================================================
@app.get("/")
def root():
    return {
        "app": "Record Ingestion & Similarity API",
        "version": "1.0.0",
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "readiness": "/health/ready",
            "status": "/status",
            "ingest_file": "/ingest/file",
            "ingest_remote": "/ingest/remote",
            "red_zone": "/similarity/red-zone",
            "rank": "/similarity/rank",
        },
    }

# ============================================================
# 🏁 Entrypoint
# ============================================================
if __name__ == "__main__":
    import uvicorn

    logger.info("Starting ingestion API on port 8080...")
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8080,
        reload=False,
        log_config=None,
    )
