from __future__ import annotations

import logging
import math
from collections import OrderedDict
from typing import List, Optional, Sequence, Set, Tuple

import numpy as np

from app.core.entities import (
    ContentRecord,
    ContentType,
    RankedMatch,
    RecordSummary,
    RedZoneReport,
    SimilarityPair,
    SimilarityRanking,
)
from app.core.errors import DimensionMismatchError, EmbeddingProviderError, RecordNotFoundError
from app.core.ports.embeddings import IEmbeddingModel
from app.core.ports.store import IRecordStore

logger = logging.getLogger("app.similarity")

DEFAULT_THRESHOLD = 70


# -----------------------------
# Helpers
# -----------------------------
def cosine_similarity(u: Sequence[float], v: Sequence[float]) -> float:
    """dot(u, v) / (|u| * |v|); 0.0 when either vector has zero norm."""
    if len(u) != len(v):
        raise DimensionMismatchError(len(u), len(v))
    a = np.asarray(u, dtype=float)
    b = np.asarray(v, dtype=float)
    na = np.linalg.norm(a)
    nb = np.linalg.norm(b)
    if na == 0 or nb == 0:
        return 0.0
    return float(np.dot(a, b) / (na * nb))


def similarity_pct(score: float) -> int:
    """Cosine score -> integer percentage, half-up rounding, clamped to 0..100."""
    pct = int(math.floor(score * 100.0 + 0.5))
    return max(0, min(100, pct))


def _pct_matrix(records: List[ContentRecord]) -> np.ndarray:
    mat = np.asarray([r.embedding for r in records], dtype=float)
    norms = np.linalg.norm(mat, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    mat = mat / norms
    sims = mat @ mat.T
    return np.clip(np.floor(sims * 100.0 + 0.5), 0, 100)


def _group_by_dimension(records: List[ContentRecord]) -> "OrderedDict[int, List[ContentRecord]]":
    groups: "OrderedDict[int, List[ContentRecord]]" = OrderedDict()
    for r in records:
        groups.setdefault(len(r.embedding), []).append(r)
    return groups


# -----------------------------
# Engine
# -----------------------------
class SimilarityEngine:
    """Read-only similarity queries over stored embeddings."""

    def __init__(
        self,
        records: IRecordStore,
        embedder: Optional[IEmbeddingModel] = None,
        max_records: Optional[int] = 2000,
        drop_zero: bool = True,
    ):
        self.records = records
        self.embedder = embedder
        self.max_records = max_records
        self.drop_zero = drop_zero

    def find_red_zone_pairs(
        self,
        partition_id: str,
        threshold: int = DEFAULT_THRESHOLD,
        content_type: ContentType = ContentType.TASK,
        limit: Optional[int] = None,
    ) -> RedZoneReport:
        """
        Every unordered pair of embedded records whose rounded similarity
        is >= threshold, most similar first. O(n^2) in the number of
        records, so only the most recent `limit` are scanned.
        """
        cap = limit if limit is not None else self.max_records
        records = [
            r for r in self.records.list_embedded(partition_id, content_type, limit=cap)
            if r.has_embedding
        ]

        groups = _group_by_dimension(records)
        sizes = [len(g) for g in groups.values()]
        mismatched = sum(
            sizes[i] * sizes[j] for i in range(len(sizes)) for j in range(i + 1, len(sizes))
        )
        if mismatched:
            logger.warning(
                "⚠️ Red-zone scan skipped %d cross-dimension pairs | partition=%s | dims=%s",
                mismatched, partition_id, list(groups.keys()),
            )

        pairs: List[SimilarityPair] = []
        seen: Set[Tuple[str, str]] = set()
        for group in groups.values():
            if len(group) < 2:
                continue
            # fixed row order so results do not depend on storage order
            group = sorted(group, key=lambda r: r.id)
            pct = _pct_matrix(group)
            rows, cols = np.triu_indices(len(group), k=1)
            hits = pct[rows, cols] >= threshold
            for i, j in zip(rows[hits], cols[hits]):
                a, b = group[int(i)], group[int(j)]
                key = (a.id, b.id) if a.id <= b.id else (b.id, a.id)
                if key in seen or a.id == b.id:
                    continue
                seen.add(key)
                left, right = (a, b) if a.id <= b.id else (b, a)
                pairs.append(SimilarityPair(
                    left=RecordSummary.of(left),
                    right=RecordSummary.of(right),
                    similarity_pct=int(pct[int(i), int(j)]),
                ))

        pairs.sort(key=lambda p: (-p.similarity_pct, p.left.id, p.right.id))
        logger.info(
            "🔍 Red-zone scan | partition=%s | type=%s | records=%d | pairs=%d | threshold=%d",
            partition_id, content_type.value, len(records), len(pairs), threshold,
        )
        return RedZoneReport(
            pairs=pairs,
            total_records=len(records),
            total_embedded=self.records.count_embedded(partition_id, content_type),
            dimension_mismatches=mismatched,
        )

    def _ensure_embedding(self, record: ContentRecord) -> List[float]:
        if record.has_embedding:
            return record.embedding
        if self.embedder is None:
            raise EmbeddingProviderError(f"Record {record.id} has no embedding and no embedder is configured")
        vec = self.embedder.embed(record.content)
        if not vec:
            raise EmbeddingProviderError(f"Could not generate an embedding for record {record.id}")
        vec = [float(x) for x in vec]
        self.records.set_embedding(record.id, vec)
        record.embedding = vec
        logger.info("Generated missing embedding for target record %s (dim=%d)", record.id, len(vec))
        return vec

    def rank_similar(self, partition_id: str, record_id: str, limit: Optional[int] = None) -> SimilarityRanking:
        """
        Rank the target's peers (same partition, type and author) by
        similarity. Peers with a different embedding dimension are listed
        in `dimension_mismatches` instead of being scored.
        """
        target = self.records.get(record_id)
        if target is None or target.partition_id != partition_id:
            raise RecordNotFoundError(f"Record {record_id} not found in project {partition_id}")

        target_vec = self._ensure_embedding(target)
        peers = [
            p for p in self.records.list_embedded(
                partition_id,
                target.content_type,
                created_by_id=target.created_by_id,
                match_creator=True,
            )
            if p.id != target.id and p.has_embedding
        ]

        matches: List[RankedMatch] = []
        mismatches: List[str] = []
        for peer in peers:
            try:
                score = cosine_similarity(target_vec, peer.embedding)
            except DimensionMismatchError:
                mismatches.append(peer.id)
                continue
            pct = similarity_pct(score)
            if pct == 0 and self.drop_zero:
                continue
            matches.append(RankedMatch(record=RecordSummary.of(peer), similarity_pct=pct))

        if mismatches:
            logger.warning(
                "⚠️ %d peers of record %s have a different embedding dimension (%d): %s",
                len(mismatches), record_id, len(target_vec), mismatches[:10],
            )

        matches.sort(key=lambda m: (-m.similarity_pct, m.record.id))
        if limit is not None:
            matches = matches[:limit]

        logger.info(
            "Similarity ranking | record=%s | compared=%d | returned=%d | top=%s",
            record_id, len(peers), len(matches), matches[0].similarity_pct if matches else 0,
        )
        return SimilarityRanking(
            target=RecordSummary.of(target),
            matches=matches,
            compared=len(peers),
            dimension_mismatches=mismatches,
        )
