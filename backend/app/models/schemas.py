from __future__ import annotations
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel

from app.core.entities import RecordCategory, RecordSummary, RedZoneReport, SimilarityRanking

class RecordOut(BaseModel):
    id: str
    content: str
    category: Optional[RecordCategory] = None
    created_by_id: Optional[str] = None
    created_by_name: Optional[str] = None
    created_by_email: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_summary(cls, s: RecordSummary) -> "RecordOut":
        return cls(
            id=s.id,
            content=s.content,
            category=s.category,
            created_by_id=s.created_by_id,
            created_by_name=s.created_by_name,
            created_by_email=s.created_by_email,
            created_at=s.created_at,
        )

class RedZonePairOut(BaseModel):
    left: RecordOut
    right: RecordOut
    similarity: int

class RedZoneResponse(BaseModel):
    pairs: List[RedZonePairOut]
    total_records: int
    total_embedded: int
    truncated: bool
    red_zone_count: int
    threshold: int
    dimension_mismatches: int = 0

    @classmethod
    def from_report(cls, report: RedZoneReport, threshold: int) -> "RedZoneResponse":
        return cls(
            pairs=[
                RedZonePairOut(
                    left=RecordOut.from_summary(p.left),
                    right=RecordOut.from_summary(p.right),
                    similarity=p.similarity_pct,
                )
                for p in report.pairs
            ],
            total_records=report.total_records,
            total_embedded=report.total_embedded,
            truncated=report.truncated,
            red_zone_count=report.red_zone_count,
            threshold=threshold,
            dimension_mismatches=report.dimension_mismatches,
        )

class RankedOut(BaseModel):
    record: RecordOut
    similarity: int

class RankingResponse(BaseModel):
    target: RecordOut
    similar: List[RankedOut]
    compared: int
    dimension_mismatches: List[str] = []

    @classmethod
    def from_ranking(cls, ranking: SimilarityRanking) -> "RankingResponse":
        return cls(
            target=RecordOut.from_summary(ranking.target),
            similar=[
                RankedOut(record=RecordOut.from_summary(m.record), similarity=m.similarity_pct)
                for m in ranking.matches
            ],
            compared=ranking.compared,
            dimension_mismatches=list(ranking.dimension_mismatches),
        )
