from __future__ import annotations

import logging
import time
from typing import Optional

from app.core.entities import BackfillReport, JobState
from app.core.errors import EmbeddingProviderError
from app.core.ports.embeddings import IEmbeddingModel
from app.core.ports.job_store import IJobStore
from app.core.ports.store import IRecordStore

log = logging.getLogger("app.vectorize")

DEFAULT_PAGE_SIZE = 50


class EmbeddingBackfillWorker:
    """
    Fills in missing embeddings for a whole partition.

    Pages are fetched with an id cursor (id > last seen) rather than an
    offset, so rows inserted or embedded elsewhere meanwhile are neither
    skipped nor fetched twice. Rows the provider returns nothing for are
    left empty and passed by the cursor; a later run picks them up again.
    """

    def __init__(
        self,
        records: IRecordStore,
        embedder: IEmbeddingModel,
        jobs: Optional[IJobStore] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        if page_size <= 0:
            raise ValueError(f"Invalid page_size: {page_size}")
        self.records = records
        self.embedder = embedder
        self.jobs = jobs
        self.page_size = page_size

    def _cancelled(self, job_id: Optional[str]) -> bool:
        if not job_id or self.jobs is None:
            return False
        job = self.jobs.get(job_id)
        return job is not None and job.state == JobState.CANCELLED

    def run(self, partition_id: str, job_id: Optional[str] = None, max_pages: Optional[int] = None) -> BackfillReport:
        report = BackfillReport()
        cursor: Optional[str] = None
        start_time = time.time()

        while max_pages is None or report.pages < max_pages:
            if self._cancelled(job_id):
                log.info("🛑 Vectorization cancelled | job=%s | embedded=%d", job_id, report.embedded)
                report.cancelled = True
                break

            page = self.records.page_missing_embeddings(partition_id, cursor, self.page_size)
            if not page:
                break

            texts = [r.content for r in page]
            try:
                vectors = self.embedder.embed_batch(texts)
            except EmbeddingProviderError:
                raise
            except Exception as e:
                raise EmbeddingProviderError(f"Embedding provider failed: {e}") from e

            if len(vectors) != len(page):
                raise EmbeddingProviderError(
                    f"Embedding batch mismatch: {len(vectors)} vectors for {len(page)} texts"
                )

            for record, vec in zip(page, vectors):
                if not vec:
                    report.missing += 1
                    continue
                self.records.set_embedding(record.id, [float(x) for x in vec])
                report.embedded += 1

            cursor = page[-1].id
            report.pages += 1
            log.debug("Vectorize page %d | partition=%s | size=%d | cursor=%s",
                      report.pages, partition_id, len(page), cursor)

        log.info(
            "🧠 Vectorize summary | partition=%s | job=%s | embedded=%d | missing=%d | pages=%d | took=%.3fs",
            partition_id, job_id, report.embedded, report.missing, report.pages, time.time() - start_time,
        )
        return report
