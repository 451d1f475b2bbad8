# backend/app/models/embedding/ollama_embedding.py
from __future__ import annotations
from typing import List, Optional
import os, requests, time, math, logging

from app.core.errors import EmbeddingProviderError
from app.core.ports.embeddings import IEmbeddingModel

logger = logging.getLogger("app.embedding.ollama")


def _resolve_host() -> str:
    """Resolve Ollama host inside/outside Docker with env override."""
    env_host = os.getenv("OLLAMA_HOST")
    if env_host:
        return env_host.rstrip("/")
    if os.path.exists("/.dockerenv"):
        return "http://ollama:11434"
    return "http://127.0.0.1:11434"


def _l2_normalize(vec: List[float]) -> List[float]:
    s = sum(x * x for x in vec)
    if s <= 0.0:
        return vec
    inv = 1.0 / math.sqrt(s)
    return [x * inv for x in vec]


def _valid(vec) -> bool:
    return bool(vec) and all(isinstance(x, (int, float)) for x in vec)


class OllamaEmbedding(IEmbeddingModel):
    """
    Embedding model using Ollama's /api/embed endpoint.
    A sub-batch that still fails after the retries raises
    EmbeddingProviderError; single empty slots are returned as None.
    """

    def __init__(
        self,
        host: str | None = None,
        model: str = "nomic-embed-text:latest",
        timeout: int = 600,
        batch_size: int = 16,
        retries: int = 3,
        backoff: float = 2.0,
        check_models: bool = True,
    ):
        self.host = (host or _resolve_host()).rstrip("/")
        self.model = model.strip()
        if ":" not in self.model:
            self.model += ":latest"
        self.timeout = timeout
        self.batch_size = batch_size
        self.retries = retries
        self.backoff = backoff
        if check_models:
            self._check_models()

    # ----------------------------------------------------------
    # ✅ Model availability check
    # ----------------------------------------------------------
    def _check_models(self):
        try:
            r = requests.get(f"{self.host}/api/tags", timeout=10)
            r.raise_for_status()
            models = [m.get("model") or m.get("name") for m in r.json().get("models", [])]
            if self.model not in models:
                logger.warning(f"⚠️ Embedding model '{self.model}' not registered. Available: {models}")
            else:
                logger.info(f"✅ Embedding model '{self.model}' available.")
        except Exception as e:
            logger.warning(f"⚠️ Could not verify Ollama models at {self.host}: {e}")

    def _post(self, inputs: List[str]) -> List[List[float]]:
        url = f"{self.host}/api/embed"
        payload = {"model": self.model, "input": inputs}
        last_error: Exception | None = None

        for attempt in range(self.retries):
            try:
                r = requests.post(url, json=payload, timeout=self.timeout)
                r.raise_for_status()
                embs = r.json().get("embeddings") or []
                if len(embs) != len(inputs):
                    raise ValueError(f"Embedding batch mismatch: {len(embs)} vs {len(inputs)}")
                return embs
            except Exception as e:
                last_error = e
                logger.warning(f"⚠️ Embed request failed ({len(inputs)} items): {e} (Attempt {attempt + 1}/{self.retries})")
                if attempt + 1 < self.retries:
                    time.sleep(self.backoff * (attempt + 1))
        raise EmbeddingProviderError(f"Ollama embedding failed after {self.retries} attempts: {last_error}")

    # ----------------------------------------------------------
    # 🧩 Public API
    # ----------------------------------------------------------
    def embed(self, text: str) -> List[float]:
        if not (text := (text or "").strip()):
            return []
        emb = self._post([text])[0]
        return _l2_normalize([float(x) for x in emb]) if _valid(emb) else []

    def embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        clean = [(t or "").strip() for t in texts]
        idxs = [i for i, t in enumerate(clean) if t]
        out: List[Optional[List[float]]] = [None] * len(texts)

        for start in range(0, len(idxs), self.batch_size):
            sub_idxs = idxs[start:start + self.batch_size]
            embs = self._post([clean[i] for i in sub_idxs])
            for slot, vec in zip(sub_idxs, embs):
                if _valid(vec):
                    out[slot] = _l2_normalize([float(x) for x in vec])
        return out
