from __future__ import annotations

import logging
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from threading import Lock
from typing import List, Optional, Sequence, Set

from app.core.entities import (
    ACTIVE_STATES,
    BackfillReport,
    ContentType,
    IngestJob,
    IngestOptions,
    InputKind,
    JobState,
)
from app.core.errors import IngestInputError, JobNotFoundError, PartitionBusyError
from app.core.ports.job_store import IJobStore
from app.core.ports.payload_cache import CachedPayload, IPayloadCache
from app.core.ports.source import IRemoteSource
from app.core.services.ingest_service import IngestService, parse_csv_payload
from app.core.services.vectorization import EmbeddingBackfillWorker

log = logging.getLogger("app.jobs")

PAYLOAD_LOST = "Job payload lost."
INTERRUPTED = "Job interrupted by server restart."


class JobOrchestrator:
    """
    Owns the ingest-job state machine.

    Each partition gets at most one dispatcher task at a time. The task
    pops the oldest PENDING job, drives it to a terminal state and loops
    until the partition has nothing pending, so jobs in one partition run
    strictly in creation order while other partitions proceed in parallel.
    """

    def __init__(
        self,
        jobs: IJobStore,
        cache: IPayloadCache,
        ingest: IngestService,
        backfill: EmbeddingBackfillWorker,
        source: Optional[IRemoteSource] = None,
        max_workers: int = 4,
        executor: Optional[Executor] = None,
    ):
        self.jobs = jobs
        self.cache = cache
        self.ingest = ingest
        self.backfill = backfill
        self.source = source
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ingest")
        self._lock = Lock()
        self._draining: Set[str] = set()
        self._futures: List[Future] = []

    # ----------------------------------------------------------
    # Submission API
    # ----------------------------------------------------------
    def submit(
        self,
        partition_id: str,
        source: str,
        content_type: ContentType,
        input_kind: InputKind,
        payload: str,
        filter_keywords: Optional[Sequence[str]] = None,
        generate_embeddings: bool = False,
        has_header: bool = True,
    ) -> str:
        if not partition_id:
            raise IngestInputError("Project ID is required")
        if not payload or not payload.strip():
            raise IngestInputError("Payload is empty")

        options = IngestOptions(
            source=source,
            content_type=content_type,
            filter_keywords=[k.strip() for k in (filter_keywords or []) if k and k.strip()],
            generate_embeddings=generate_embeddings,
            has_header=has_header,
        )

        total: Optional[int] = None
        if input_kind == InputKind.FILE:
            rows = parse_csv_payload(payload, has_header=has_header)
            self.ingest.preflight(rows, options)
            total = len(rows)
        else:
            url = payload.strip()
            if not url.lower().startswith(("http://", "https://")):
                raise IngestInputError(f"Invalid remote URL: {url}")
            if self.source is None:
                raise IngestInputError("Remote ingestion is not configured")
            payload = url

        job = IngestJob(
            id=str(uuid.uuid4()),
            partition_id=partition_id,
            input_kind=input_kind,
            content_type=content_type,
            total_count=total,
            source=source,
            generate_embeddings=generate_embeddings,
        )
        self.cache.put(job.id, CachedPayload(kind=input_kind, payload=payload, options=options))
        try:
            self.jobs.create(job)
        except Exception:
            self.cache.discard(job.id)
            raise
        log.info("📨 Job %s queued | partition=%s | kind=%s | type=%s | rows=%s",
                 job.id, partition_id, input_kind.value, content_type.value, total)

        self._schedule(partition_id)
        return job.id

    def get_status(self, job_id: str) -> IngestJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    def list_jobs(self, partition_id: str, limit: int = 50) -> List[IngestJob]:
        return self.jobs.list_for_partition(partition_id, limit=limit)

    def cancel(self, job_id: str) -> bool:
        """Cooperative: a running job stops at its next chunk or page boundary."""
        job = self.get_status(job_id)
        if job.state.is_terminal:
            return False
        ok = self.jobs.transition(job_id, JobState.CANCELLED)
        if ok:
            log.info("🛑 Job %s marked CANCELLED (was %s)", job_id, job.state.value)
            if job.state == JobState.PENDING:
                self.cache.discard(job_id)
        return ok

    def vectorize_partition(self, partition_id: str) -> BackfillReport:
        """Backfill embeddings for a partition outside of any ingest job."""
        active = self.jobs.find_active(partition_id)
        if active is not None:
            raise PartitionBusyError(f"Job {active.id} is {active.state.value} in project {partition_id}")
        return self.backfill.run(partition_id)

    def recover_interrupted(self) -> int:
        """
        Fail jobs left active by a previous process and restart the
        dispatchers of partitions that still have pending work.
        """
        failed = 0
        for job in self.jobs.list_in_states(list(ACTIVE_STATES)):
            if self.jobs.transition(job.id, JobState.FAILED, error=INTERRUPTED):
                failed += 1
                log.warning("⚠️ Job %s was %s at startup; marked FAILED", job.id, job.state.value)
            self.cache.discard(job.id)

        partitions = {j.partition_id for j in self.jobs.list_in_states([JobState.PENDING])}
        for partition_id in partitions:
            self._schedule(partition_id)
        return failed

    # ----------------------------------------------------------
    # Dispatch
    # ----------------------------------------------------------
    def _schedule(self, partition_id: str) -> None:
        with self._lock:
            if partition_id in self._draining:
                return
            self._draining.add(partition_id)
        future = self._executor.submit(self._drain, partition_id)
        with self._lock:
            self._futures = [f for f in self._futures if not f.done()]
            self._futures.append(future)

    def _drain(self, partition_id: str) -> None:
        try:
            while True:
                active = self.jobs.find_active(partition_id)
                if active is not None:
                    if self.cache.get(active.id) is None:
                        self.jobs.transition(active.id, JobState.FAILED, error=INTERRUPTED)
                        log.warning("⚠️ Active job %s had no payload; marked FAILED", active.id)
                        continue
                    # another worker owns the slot and will pick up the rest
                    log.info("Partition %s busy with job %s; dispatcher exiting", partition_id, active.id)
                    break

                job = self.jobs.oldest_pending(partition_id)
                if job is None:
                    with self._lock:
                        if self.jobs.oldest_pending(partition_id) is None:
                            self._draining.discard(partition_id)
                            return
                    continue

                self._run(job)
                current = self.jobs.get(job.id)
                if current is not None and current.state == JobState.PENDING:
                    # claim refused while still pending; the slot holder drains the rest
                    log.info("Job %s still PENDING after dispatch; dispatcher exiting", job.id)
                    break
        except Exception as e:
            log.error(f"❌ Dispatcher for partition {partition_id} crashed: {e}", exc_info=True)

        with self._lock:
            self._draining.discard(partition_id)

    def _load_rows(self, job: IngestJob, entry: CachedPayload) -> list:
        if entry.kind == InputKind.FILE:
            return parse_csv_payload(entry.payload, has_header=entry.options.has_header)
        if self.source is None:
            raise RuntimeError("Remote ingestion is not configured")
        rows = self.source.fetch(entry.payload)
        self.jobs.set_total(job.id, len(rows))
        return rows

    def _run(self, job: IngestJob) -> None:
        entry = self.cache.get(job.id)
        if entry is None:
            self.jobs.transition(job.id, JobState.FAILED, error=PAYLOAD_LOST)
            log.error("❌ Job %s failed: payload missing from cache", job.id)
            return

        # an unclaimed job keeps its payload for whichever worker claims it
        if not self.jobs.transition(job.id, JobState.PROCESSING):
            log.info("Job %s left PENDING before dispatch; skipping", job.id)
            return

        try:
            log.info("🚚 Job %s PROCESSING | partition=%s", job.id, job.partition_id)

            rows = self._load_rows(job, entry)
            outcome = self.ingest.ingest(rows, entry.options, job.id, job.partition_id)
            if outcome.cancelled:
                return

            if entry.options.generate_embeddings:
                if not self.jobs.transition(job.id, JobState.VECTORIZING):
                    return
                log.info("🧠 Job %s VECTORIZING | partition=%s", job.id, job.partition_id)
                report = self.backfill.run(job.partition_id, job_id=job.id)
                if report.cancelled:
                    return

            if self.jobs.transition(job.id, JobState.COMPLETED):
                log.info("✅ Job %s COMPLETED | saved=%d | skipped=%d",
                         job.id, outcome.saved, outcome.skipped)

        except Exception as e:
            log.error(f"❌ Job {job.id} failed: {type(e).__name__}: {e}")
            try:
                self.jobs.transition(job.id, JobState.FAILED, error=str(e) or type(e).__name__)
            except Exception as inner:
                log.error(f"❌ Could not record failure for job {job.id}: {inner}")
        finally:
            self.cache.discard(job.id)

    # ----------------------------------------------------------
    # Lifecycle
    # ----------------------------------------------------------
    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every dispatcher has exited (used by tests and shutdown)."""
        with self._lock:
            pending = list(self._futures)
        done, not_done = wait(pending, timeout=timeout)
        with self._lock:
            return not not_done and not self._draining

    def shutdown(self, wait_for_jobs: bool = False) -> None:
        self._executor.shutdown(wait=wait_for_jobs)
