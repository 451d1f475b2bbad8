# backend/app/router/ingest_router.py
from __future__ import annotations

import logging
import traceback
from typing import List, NoReturn, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status

from app.core.entities import ContentType, InputKind
from app.core.errors import (
    EmbeddingProviderError,
    IngestInputError,
    JobNotFoundError,
    PartitionBusyError,
)
from app.db.config import settings
from app.models.ingest_model import (
    BackfillResponse,
    CancelResponse,
    JobStatusResponse,
    JobSubmitted,
    RemoteIngestRequest,
)

logger = logging.getLogger("app.ingest")

router = APIRouter(prefix="/ingest", tags=["ingest"])

# Set by main.py at startup
orchestrator = None


def _require_orchestrator():
    if orchestrator is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Ingest service not ready")
    return orchestrator


def _split_keywords(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [k.strip() for k in raw.split(",") if k.strip()]


def _raise_http(e: Exception) -> NoReturn:
    if isinstance(e, IngestInputError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, JobNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, PartitionBusyError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, EmbeddingProviderError):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    error_type = type(e).__name__
    logger.error(
        f"Unhandled Exception [{error_type}]: {e}\n"
        f"Traceback:\n{''.join(traceback.format_exception(type(e), e, e.__traceback__))}"
    )
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Ingestion failed: {error_type}",
    )


@router.post("/file", response_model=JobSubmitted, status_code=status.HTTP_202_ACCEPTED)
def ingest_file(
    file: UploadFile = File(...),
    project_id: str = Form(...),
    type: ContentType = Form(ContentType.TASK),
    filter_keywords: Optional[str] = Form(None),
    generate_embeddings: bool = Form(True),
    has_header: bool = Form(True),
):
    svc = _require_orchestrator()
    filename = file.filename or ""
    if not filename.lower().endswith(".csv"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only .csv files are accepted")

    limit = settings.ingest_max_upload_bytes
    raw = file.file.read(limit + 1)
    if len(raw) > limit:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds {limit} bytes",
        )
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be UTF-8 encoded")

    try:
        job_id = svc.submit(
            partition_id=project_id,
            source=filename,
            content_type=type,
            input_kind=InputKind.FILE,
            payload=text,
            filter_keywords=_split_keywords(filter_keywords),
            generate_embeddings=generate_embeddings,
            has_header=has_header,
        )
    except Exception as e:
        _raise_http(e)

    logger.info("📥 File accepted | file=%s | project=%s | job=%s", filename, project_id, job_id)
    return JobSubmitted(message="Ingestion started", job_id=job_id)


@router.post("/remote", response_model=JobSubmitted, status_code=status.HTTP_202_ACCEPTED)
def ingest_remote(request: RemoteIngestRequest):
    svc = _require_orchestrator()
    try:
        job_id = svc.submit(
            partition_id=request.project_id,
            source=request.url,
            content_type=request.type,
            input_kind=InputKind.REMOTE,
            payload=request.url,
            filter_keywords=request.filter_keywords,
            generate_embeddings=request.generate_embeddings,
        )
    except Exception as e:
        _raise_http(e)

    logger.info("🌐 Remote source accepted | url=%s | project=%s | job=%s", request.url, request.project_id, job_id)
    return JobSubmitted(message="Ingestion started", job_id=job_id)


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
def job_status(job_id: str):
    svc = _require_orchestrator()
    try:
        return JobStatusResponse.from_job(svc.get_status(job_id))
    except Exception as e:
        _raise_http(e)


@router.post("/jobs/{job_id}/cancel", response_model=CancelResponse)
def cancel_job(job_id: str):
    svc = _require_orchestrator()
    try:
        cancelled = svc.cancel(job_id)
        job = svc.get_status(job_id)
    except Exception as e:
        _raise_http(e)
    return CancelResponse(job_id=job_id, cancelled=cancelled, state=job.state)


@router.get("/projects/{project_id}/jobs", response_model=List[JobStatusResponse])
def list_project_jobs(project_id: str, limit: int = 50):
    svc = _require_orchestrator()
    return [JobStatusResponse.from_job(j) for j in svc.list_jobs(project_id, limit=max(1, min(limit, 500)))]


@router.post("/projects/{project_id}/vectorize", response_model=BackfillResponse)
def vectorize_project(project_id: str):
    """Embed every record in the project that has no vector yet."""
    svc = _require_orchestrator()
    try:
        report = svc.vectorize_partition(project_id)
    except Exception as e:
        _raise_http(e)
    logger.info("🧠 Backfill done | project=%s | embedded=%d | missing=%d", project_id, report.embedded, report.missing)
    return BackfillResponse.from_report(project_id, report)
