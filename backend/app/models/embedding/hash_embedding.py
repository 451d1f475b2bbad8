from __future__ import annotations
from typing import List, Optional
import hashlib
import re
import numpy as np
from app.core.ports.embeddings import IEmbeddingModel

_TOKEN = re.compile(r"\w+", re.UNICODE)


class HashEmbedding(IEmbeddingModel):
    """
    Deterministic offline embedding (signed feature hashing).

    Each lower-cased word and word bigram is hashed into one of `dim`
    buckets with a +/-1 sign, then the vector is L2-normalized. Identical
    texts get identical vectors and texts sharing most of their words land
    close together, which is enough to exercise red-zone detection without
    a model server.
    """

    def __init__(self, dim: int = 768):
        if dim <= 0:
            raise ValueError(f"Invalid embedding dim: {dim}")
        self.dim = dim

    def _features(self, text: str) -> List[str]:
        words = _TOKEN.findall(text.lower())
        if not words:
            return [text]
        return words + [f"{a} {b}" for a, b in zip(words, words[1:])]

    def _vector(self, text: str) -> List[float]:
        vec = np.zeros(self.dim, dtype=np.float64)
        for feat in self._features(text):
            digest = hashlib.blake2b(feat.encode("utf-8"), digest_size=8).digest()
            h = int.from_bytes(digest, "little")
            vec[h % self.dim] += 1.0 if (h >> 63) & 1 else -1.0

        norm = np.linalg.norm(vec)
        if norm == 0:
            # every feature cancelled out; fall back to a single bucket
            vec[0] = 1.0
            norm = 1.0
        return (vec / norm).tolist()

    def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            return []
        return self._vector(text.strip())

    def embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        return [self._vector(t.strip()) if t and t.strip() else None for t in texts]
