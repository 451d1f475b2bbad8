"""
Unit tests for CSV parsing and chunked ingestion.
"""
import pytest

from app.core.entities import ContentType, IngestJob, IngestOptions, InputKind, JobState, RecordCategory
from app.core.errors import IngestInputError
from app.core.services.dedup import DUPLICATE_REASON
from app.core.services.ingest_service import KEYWORD_REASON, IngestService, parse_csv_payload

from conftest import SpyJobStore, make_record


def _processing_job(jobs, job_id="j1", partition_id="p1"):
    jobs.create(IngestJob(id=job_id, partition_id=partition_id, input_kind=InputKind.FILE, content_type=ContentType.TASK))
    assert jobs.transition(job_id, JobState.PROCESSING)
    return job_id


def _options(**kw):
    kw.setdefault("source", "test.csv")
    kw.setdefault("content_type", ContentType.TASK)
    return IngestOptions(**kw)


def _rows(n, prefix="T"):
    return [{"task_id": f"{prefix}-{i}", "prompt": f"Prompt number {i} with enough text"} for i in range(n)]


# =============================================================================
# CSV parsing
# =============================================================================

def test_parse_csv_with_header():
    rows = parse_csv_payload("task_id,prompt\n1, hello there \n\n2,second\n")
    assert rows == [{"task_id": "1", "prompt": "hello there"}, {"task_id": "2", "prompt": "second"}]


def test_parse_csv_quoted_commas_and_newlines():
    rows = parse_csv_payload('id,prompt\n1,"a, b\nc"\n')
    assert rows == [{"id": "1", "prompt": "a, b\nc"}]


def test_parse_csv_short_and_long_rows():
    rows = parse_csv_payload("a,b,c\n1\n1,2,3,4,5\n")
    assert rows[0] == {"a": "1", "b": None, "c": None}
    assert rows[1]["_extra"] == ["4", "5"]


def test_parse_csv_without_header():
    rows = parse_csv_payload("x,y\nz,w\n", has_header=False)
    assert rows == [{"col_1": "x", "col_2": "y"}, {"col_1": "z", "col_2": "w"}]


def test_parse_csv_header_only():
    assert parse_csv_payload("a,b\n") == []


# =============================================================================
# Preflight
# =============================================================================

def test_preflight_rejects_empty(record_store, job_store):
    svc = IngestService(record_store, job_store)
    with pytest.raises(IngestInputError):
        svc.preflight([], _options())


def test_preflight_rejects_keyword_miss(record_store, job_store):
    svc = IngestService(record_store, job_store)
    with pytest.raises(IngestInputError):
        svc.preflight(_rows(3), _options(filter_keywords=["kubernetes"]))


def test_invalid_chunk_size(record_store, job_store):
    with pytest.raises(ValueError):
        IngestService(record_store, job_store, chunk_size=0)


# =============================================================================
# Ingest
# =============================================================================

def test_ingest_chunks_and_counts(record_store, job_store):
    job_id = _processing_job(job_store)
    svc = IngestService(record_store, job_store, chunk_size=100)

    outcome = svc.ingest(_rows(250), _options(), job_id, "p1")

    assert outcome.saved == 250
    assert outcome.skipped == 0
    assert [c["saved"] for c in job_store.progress_calls] == [100, 100, 50]
    job = job_store.get(job_id)
    assert job.saved_count == 250
    assert job.skip_reasons == {}
    assert record_store.count("p1") == 250


def test_ingest_skips_duplicates_across_runs(record_store, job_store):
    first = _processing_job(job_store, "j1")
    svc = IngestService(record_store, job_store)
    svc.ingest(_rows(5), _options(), first, "p1")
    job_store.transition(first, JobState.COMPLETED)

    second = _processing_job(job_store, "j2")
    outcome = svc.ingest(_rows(7), _options(), second, "p1")

    assert outcome.saved == 2
    assert outcome.skip_reasons == {DUPLICATE_REASON: 5}
    assert record_store.count("p1") == 7


def test_ingest_skips_repeated_id_in_payload(record_store, job_store):
    job_id = _processing_job(job_store)
    rows = _rows(3) + [{"id": "T-1", "prompt": "same natural id as an earlier row"}]
    outcome = IngestService(record_store, job_store).ingest(rows, _options(), job_id, "p1")
    assert outcome.saved == 3
    assert outcome.skip_reasons == {DUPLICATE_REASON: 1}


def test_ingest_keyword_filter(record_store, job_store):
    job_id = _processing_job(job_store)
    rows = [
        {"prompt": "Configure the Helm chart for staging"},
        {"prompt": "Write a poem about the sea"},
    ]
    outcome = IngestService(record_store, job_store).ingest(rows, _options(filter_keywords=["helm"]), job_id, "p1")
    assert outcome.saved == 1
    assert outcome.skip_reasons == {KEYWORD_REASON: 1}
    assert job_store.get(job_id).skipped_count == 1


def test_skip_tally_merged_across_chunks(record_store, job_store):
    record_store.create_many([make_record("x", metadata={"task_id": "T-0"})])
    job_id = _processing_job(job_store)
    rows = _rows(4) + [{"task_id": "T-0", "prompt": "dup in second chunk of rows"}]
    IngestService(record_store, job_store, chunk_size=2).ingest(rows, _options(), job_id, "p1")
    assert job_store.get(job_id).skip_reasons == {DUPLICATE_REASON: 2}


def test_records_carry_category_metadata_and_attribution(record_store, job_store):
    job_id = _processing_job(job_store)
    row = {
        "task_id": "T-1",
        "prompt": "Summarize the quarterly report",
        "rating": "5",
        "created_by_id": "u-7",
        "created_by_name": "Sam",
        "created_at": "2024-03-01T10:00:00Z",
    }
    IngestService(record_store, job_store).ingest([row], _options(), job_id, "p1")
    assert record_store.list_embedded("p1", ContentType.TASK) == []

    [rec] = record_store.page_missing_embeddings("p1", None, 10)
    assert rec.category == RecordCategory.TOP_10
    assert rec.metadata["task_id"] == "T-1"
    assert rec.created_by_id == "u-7"
    assert rec.created_by_name == "Sam"
    assert rec.created_at.year == 2024
    assert rec.ingest_job_id == job_id
    assert rec.source == "test.csv"


def test_cancel_stops_before_next_chunk(record_store):
    class CancelAfterFirstChunk(SpyJobStore):
        def record_progress(self, job_id, saved, skipped, reasons):
            job = super().record_progress(job_id, saved, skipped, reasons)
            self.transition(job_id, JobState.CANCELLED)
            return job

    jobs = CancelAfterFirstChunk()
    job_id = _processing_job(jobs)
    outcome = IngestService(record_store, jobs, chunk_size=10).ingest(_rows(35), _options(), job_id, "p1")

    assert outcome.cancelled
    assert outcome.saved == 10
    assert len(jobs.progress_calls) == 1
    # written chunks are kept
    assert record_store.count("p1") == 10
