# backend/app/models/ingest_model.py
from __future__ import annotations
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from app.core.entities import BackfillReport, ContentType, IngestJob, InputKind, JobState


class RemoteIngestRequest(BaseModel):
    url: str = Field(..., min_length=8, description="http(s) URL returning a JSON array or object")
    project_id: str = Field(..., min_length=1)
    type: ContentType = ContentType.TASK
    filter_keywords: List[str] = Field(default_factory=list)
    generate_embeddings: bool = True


class JobSubmitted(BaseModel):
    message: str
    job_id: str


class JobStatusResponse(BaseModel):
    job_id: str
    project_id: str
    input_kind: InputKind
    type: ContentType
    state: JobState
    saved_count: int
    skipped_count: int
    skip_reasons: Dict[str, int]
    total_count: Optional[int] = None
    error: Optional[str] = None
    source: str = ""
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: IngestJob) -> "JobStatusResponse":
        return cls(
            job_id=job.id,
            project_id=job.partition_id,
            input_kind=job.input_kind,
            type=job.content_type,
            state=job.state,
            saved_count=job.saved_count,
            skipped_count=job.skipped_count,
            skip_reasons=dict(job.skip_reasons),
            total_count=job.total_count,
            error=job.error,
            source=job.source,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class CancelResponse(BaseModel):
    job_id: str
    cancelled: bool
    state: JobState


class BackfillResponse(BaseModel):
    project_id: str
    embedded: int
    missing: int
    pages: int

    @classmethod
    def from_report(cls, project_id: str, report: BackfillReport) -> "BackfillResponse":
        return cls(project_id=project_id, embedded=report.embedded, missing=report.missing, pages=report.pages)
