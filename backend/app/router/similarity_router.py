# backend/app/router/similarity_router.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from app.core.entities import ContentType
from app.core.errors import EmbeddingProviderError, RecordNotFoundError
from app.db.config import settings
from app.models.schemas import RankingResponse, RedZoneResponse

logger = logging.getLogger("app.similarity")

router = APIRouter(prefix="/similarity", tags=["similarity"])

# Set by main.py at startup
engine = None


def _require_engine():
    if engine is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Similarity engine not ready")
    return engine


@router.get("/red-zone", response_model=RedZoneResponse)
def red_zone(
    project_id: str = Query(..., min_length=1),
    threshold: Optional[int] = Query(None, ge=0, le=100),
    type: ContentType = Query(ContentType.TASK),
    limit: Optional[int] = Query(None, ge=1),
):
    """All pairs of records in the project at or above the similarity threshold."""
    svc = _require_engine()
    cutoff = settings.red_zone_threshold if threshold is None else threshold
    report = svc.find_red_zone_pairs(project_id, threshold=cutoff, content_type=type, limit=limit)
    return RedZoneResponse.from_report(report, threshold=cutoff)


@router.get("/rank", response_model=RankingResponse)
def rank(
    project_id: str = Query(..., min_length=1),
    record_id: str = Query(..., min_length=1),
    limit: Optional[int] = Query(None, ge=1),
):
    svc = _require_engine()
    try:
        ranking = svc.rank_similar(project_id, record_id, limit=limit)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except EmbeddingProviderError as e:
        logger.error(f"❌ Embedding provider failed while ranking {record_id}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return RankingResponse.from_ranking(ranking)
