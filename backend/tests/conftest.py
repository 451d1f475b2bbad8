"""
Pytest configuration and shared fixtures for the ingestion backend tests.

Everything runs against the in-memory stores and fake embedders; no
database or network is touched.
"""
import os

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("EMBEDDING_BACKEND", "hash")
os.environ.setdefault("EMBEDDING_DIM", "16")
os.environ.setdefault("PAYLOAD_CACHE", "memory")

import threading
import time
from concurrent.futures import Executor, Future
from typing import Dict, List, Optional

import pytest
from hypothesis import settings

from app.core.entities import ContentRecord, ContentType
from app.core.errors import EmbeddingProviderError
from app.core.ports.embeddings import IEmbeddingModel
from app.core.services.ingest_service import IngestService
from app.core.services.orchestrator import JobOrchestrator
from app.core.services.vectorization import EmbeddingBackfillWorker
from app.models.cache.payload_cache import InMemoryPayloadCache
from app.models.embedding.hash_embedding import HashEmbedding
from app.models.store.inmemory_store import InMemoryJobStore, InMemoryRecordStore

# Configure Hypothesis profiles
settings.register_profile("ci", max_examples=100, deadline=None)
settings.register_profile("dev", max_examples=50, deadline=None)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "dev"))


# =============================================================================
# Test doubles
# =============================================================================

class InlineExecutor(Executor):
    """Runs submitted work in the caller's thread."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)
        return future


class CountingEmbedder(IEmbeddingModel):
    """Hash vectors, but remembers every text it was asked for."""

    def __init__(self, dim: int = 8):
        self.inner = HashEmbedding(dim=dim)
        self.calls: List[List[str]] = []

    def embed(self, text: str) -> List[float]:
        self.calls.append([text])
        return self.inner.embed(text)

    def embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        self.calls.append(list(texts))
        return self.inner.embed_batch(texts)

    @property
    def texts_seen(self) -> List[str]:
        return [t for batch in self.calls for t in batch]


class FailingEmbedder(IEmbeddingModel):
    def embed(self, text: str) -> List[float]:
        raise EmbeddingProviderError("provider down")

    def embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        raise EmbeddingProviderError("provider down")


class BlockingEmbedder(IEmbeddingModel):
    """Blocks in embed_batch until `release` is set, so a job can be held in VECTORIZING."""

    def __init__(self, dim: int = 8):
        self.inner = HashEmbedding(dim=dim)
        self.entered = threading.Event()
        self.release = threading.Event()

    def embed(self, text: str) -> List[float]:
        return self.inner.embed(text)

    def embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        self.entered.set()
        self.release.wait(timeout=10)
        return self.inner.embed_batch(texts)


class SpyJobStore(InMemoryJobStore):
    """Records every progress update and accepted transition for assertions."""

    def __init__(self) -> None:
        super().__init__()
        self.progress_calls: List[Dict] = []
        self.transitions: List[tuple] = []
        # states whose transitions are refused, as when another process holds the slot
        self.refused_states: set = set()

    def transition(self, job_id, state, error=None):
        if state in self.refused_states:
            return False
        ok = super().transition(job_id, state, error=error)
        if ok:
            self.transitions.append((job_id, state))
        return ok

    def record_progress(self, job_id, saved, skipped, reasons):
        self.progress_calls.append({"job_id": job_id, "saved": saved, "skipped": skipped, "reasons": dict(reasons)})
        return super().record_progress(job_id, saved, skipped, reasons)


class StaticSource:
    """Remote source returning canned rows."""

    def __init__(self, rows):
        self.rows = rows
        self.urls: List[str] = []

    def fetch(self, url):
        self.urls.append(url)
        return list(self.rows)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def job_store():
    return SpyJobStore()


@pytest.fixture
def payload_cache():
    return InMemoryPayloadCache()


@pytest.fixture
def embedder():
    return CountingEmbedder()


@pytest.fixture
def make_orchestrator(record_store, job_store, payload_cache):
    """Factory: build an orchestrator over the shared in-memory stores."""
    created = []

    def _make(embedder=None, executor=None, source=None, chunk_size=100, page_size=50, cache=None):
        orch = JobOrchestrator(
            jobs=job_store,
            cache=cache if cache is not None else payload_cache,
            ingest=IngestService(record_store, job_store, chunk_size=chunk_size),
            backfill=EmbeddingBackfillWorker(
                record_store, embedder or CountingEmbedder(), jobs=job_store, page_size=page_size
            ),
            source=source,
            executor=executor or InlineExecutor(),
        )
        created.append(orch)
        return orch

    yield _make
    for orch in created:
        orch.shutdown(wait_for_jobs=False)


def make_record(
    record_id: str,
    embedding: Optional[List[float]] = None,
    partition_id: str = "p1",
    content_type: ContentType = ContentType.TASK,
    content: str = "",
    created_by_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> ContentRecord:
    return ContentRecord(
        id=record_id,
        partition_id=partition_id,
        content_type=content_type,
        content=content or f"content of {record_id}",
        embedding=embedding,
        created_by_id=created_by_id,
        metadata=metadata or {},
    )


def csv_text(header: str, rows: List[str]) -> str:
    return "\n".join([header, *rows]) + "\n"


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class SlowPutCache(InMemoryPayloadCache):
    """Calls `on_put` and then stalls before storing, like a slow spool write."""

    def __init__(self, delay: float = 0.5, on_put=None):
        super().__init__()
        self.delay = delay
        self.on_put = on_put

    def put(self, job_id, entry):
        if self.on_put is not None:
            self.on_put(job_id)
        time.sleep(self.delay)
        super().put(job_id, entry)
