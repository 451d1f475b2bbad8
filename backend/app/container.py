from __future__ import annotations
import logging
from dataclasses import dataclass

from app.core.ports.embeddings import IEmbeddingModel
from app.core.ports.job_store import IJobStore
from app.core.ports.payload_cache import IPayloadCache
from app.core.ports.store import IRecordStore
from app.core.services.ingest_service import IngestService
from app.core.services.orchestrator import JobOrchestrator
from app.core.services.similarity import SimilarityEngine
from app.core.services.vectorization import EmbeddingBackfillWorker
from app.models.cache.payload_cache import FilePayloadCache, InMemoryPayloadCache
from app.models.embedding.hash_embedding import HashEmbedding
from app.models.embedding.ollama_embedding import OllamaEmbedding
from app.models.embedding.openai_embedding import OpenAICompatEmbedding
from app.models.source.http_source import HttpJsonSource
from app.models.store.inmemory_store import InMemoryJobStore, InMemoryRecordStore

logger = logging.getLogger("rag.container")

@dataclass
class AppContainer:
    orchestrator: JobOrchestrator
    similarity: SimilarityEngine
    embedder: IEmbeddingModel
    records: IRecordStore
    jobs: IJobStore
    cache: IPayloadCache


def get_embedder(settings) -> IEmbeddingModel:
    """Get embedder instance based on configuration"""
    backend = settings.embedding_backend
    if backend == "hash":
        logger.info(f"🔌 Using hash embedding: dim={settings.embedding_dim}")
        return HashEmbedding(dim=settings.embedding_dim)
    if backend == "openai":
        logger.info(f"🔌 Using OpenAI-compatible embedding: model={settings.embedding_model}")
        return OpenAICompatEmbedding(
            base_url=settings.embedding_base_url or "https://api.openai.com/v1",
            api_key=settings.embedding_api_key,
            model=settings.embedding_model,
            timeout=float(settings.embedding_timeout),
        )
    if backend == "ollama":
        logger.info(f"🔌 Using Ollama embedding: model={settings.embedding_model}")
        return OllamaEmbedding(
            host=settings.embedding_base_url,
            model=settings.embedding_model,
            timeout=settings.embedding_timeout,
        )
    raise ValueError(f"Unknown EMBEDDING_BACKEND '{backend}'")


def get_stores(settings) -> tuple[IRecordStore, IJobStore]:
    if settings.store_backend == "memory":
        logger.info("📂 Using in-memory record and job stores")
        return InMemoryRecordStore(), InMemoryJobStore()
    if settings.store_backend == "postgres":
        # lazy: memory mode never touches the DB pool
        from app.models.store.pg_store import PgJobStore, PgRecordStore
        logger.info("🔗 Using Postgres (pgvector) record and job stores")
        return PgRecordStore(), PgJobStore()
    raise ValueError(f"Unknown STORE_BACKEND '{settings.store_backend}'")


def get_payload_cache(settings) -> IPayloadCache:
    if settings.payload_cache == "file":
        logger.info(f"📦 Spooling ingest payloads to {settings.payload_spool_dir}")
        return FilePayloadCache(settings.payload_spool_dir)
    return InMemoryPayloadCache()


def build_container(settings, embedder: IEmbeddingModel | None = None) -> AppContainer:
    """Wire stores, embedder and services from settings."""
    embedder = embedder or get_embedder(settings)
    records, jobs = get_stores(settings)
    cache = get_payload_cache(settings)

    ingest = IngestService(records=records, jobs=jobs, chunk_size=settings.ingest_chunk_size)
    backfill = EmbeddingBackfillWorker(
        records=records,
        embedder=embedder,
        jobs=jobs,
        page_size=settings.embedding_page_size,
    )
    orchestrator = JobOrchestrator(
        jobs=jobs,
        cache=cache,
        ingest=ingest,
        backfill=backfill,
        source=HttpJsonSource(timeout=settings.remote_timeout),
        max_workers=settings.ingest_workers,
    )
    similarity = SimilarityEngine(
        records=records,
        embedder=embedder,
        max_records=settings.red_zone_max_records,
        drop_zero=settings.rank_drop_zero,
    )

    logger.info(
        "✅ Container built | store=%s | cache=%s | embedder=%s | chunk=%d | page=%d",
        settings.store_backend, settings.payload_cache, type(embedder).__name__,
        settings.ingest_chunk_size, settings.embedding_page_size,
    )
    return AppContainer(
        orchestrator=orchestrator,
        similarity=similarity,
        embedder=embedder,
        records=records,
        jobs=jobs,
        cache=cache,
    )
