# backend/app/models/embedding/openai_embedding.py
from __future__ import annotations
from typing import List, Optional
import logging
import httpx

from app.core.errors import EmbeddingProviderError
from app.core.ports.embeddings import IEmbeddingModel

logger = logging.getLogger("app.embedding.openai")


class OpenAICompatEmbedding(IEmbeddingModel):
    """
    Any OpenAI-compatible /embeddings endpoint (OpenAI, OpenRouter, vLLM...).
    Results are re-ordered by their `index` field.
    """

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        timeout: float = 60.0,
        batch_size: int = 100,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.batch_size = batch_size

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _call(self, inputs: List[str]) -> List[Optional[List[float]]]:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                r = client.post(
                    f"{self.base_url}/embeddings",
                    headers=self._headers(),
                    json={"model": self.model, "input": inputs},
                )
                r.raise_for_status()
                data = r.json().get("data") or []
        except (httpx.HTTPError, ValueError) as e:
            raise EmbeddingProviderError(f"Embedding request failed: {e}") from e

        out: List[Optional[List[float]]] = [None] * len(inputs)
        for pos, item in enumerate(data):
            idx = item.get("index", pos)
            vec = item.get("embedding")
            if 0 <= idx < len(out) and vec:
                out[idx] = [float(x) for x in vec]
        return out

    def embed(self, text: str) -> List[float]:
        if not (text or "").strip():
            return []
        return self._call([text])[0] or []

    def embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        out: List[Optional[List[float]]] = [None] * len(texts)
        idxs = [i for i, t in enumerate(texts) if t and t.strip()]
        for start in range(0, len(idxs), self.batch_size):
            sub = idxs[start:start + self.batch_size]
            for slot, vec in zip(sub, self._call([texts[i] for i in sub])):
                out[slot] = vec
        logger.debug("Embedded %d/%d texts with %s", sum(1 for v in out if v), len(texts), self.model)
        return out
