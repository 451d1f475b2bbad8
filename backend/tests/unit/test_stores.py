"""
Unit tests for the record and job stores and the payload caches.
"""
from datetime import timedelta

from app.core.entities import ContentType, IngestJob, IngestOptions, InputKind, JobState, utcnow
from app.core.ports.payload_cache import CachedPayload
from app.models.cache.payload_cache import FilePayloadCache, InMemoryPayloadCache
from app.models.store.inmemory_store import InMemoryJobStore
from app.models.store.pg_store import PgRecordStore, _parse_vector, _vector_literal

from conftest import make_record


def _job(job_id, partition_id="p1", age=0):
    ts = utcnow() - timedelta(seconds=age)
    return IngestJob(
        id=job_id, partition_id=partition_id, input_kind=InputKind.FILE,
        content_type=ContentType.TASK, created_at=ts, updated_at=ts,
    )


# =============================================================================
# Job store
# =============================================================================

def test_transition_rules():
    jobs = InMemoryJobStore()
    jobs.create(_job("j1"))
    assert not jobs.transition("j1", JobState.COMPLETED)
    assert jobs.transition("j1", JobState.PROCESSING)
    assert jobs.transition("j1", JobState.CANCELLED)
    # terminal states never move again
    assert not jobs.transition("j1", JobState.COMPLETED)
    assert not jobs.transition("j1", JobState.FAILED)
    assert jobs.get("j1").state == JobState.CANCELLED
    assert not jobs.transition("missing", JobState.PROCESSING)


def test_second_job_cannot_become_active():
    jobs = InMemoryJobStore()
    jobs.create(_job("a"))
    jobs.create(_job("b"))
    jobs.create(_job("c", partition_id="p2"))
    assert jobs.transition("a", JobState.PROCESSING)
    assert not jobs.transition("b", JobState.PROCESSING)
    assert jobs.transition("c", JobState.PROCESSING)
    assert jobs.transition("a", JobState.COMPLETED)
    assert jobs.transition("b", JobState.PROCESSING)


def test_failed_keeps_error_message():
    jobs = InMemoryJobStore()
    jobs.create(_job("j1"))
    jobs.transition("j1", JobState.FAILED, error="boom")
    assert jobs.get("j1").error == "boom"


def test_progress_merges_tally():
    jobs = InMemoryJobStore()
    jobs.create(_job("j1"))
    jobs.record_progress("j1", 10, 2, {"Duplicate ID": 2})
    job = jobs.record_progress("j1", 5, 3, {"Duplicate ID": 1, "Keyword Mismatch": 2})
    assert (job.saved_count, job.skipped_count) == (15, 5)
    assert job.skip_reasons == {"Duplicate ID": 3, "Keyword Mismatch": 2}


def test_oldest_pending_and_listing():
    jobs = InMemoryJobStore()
    jobs.create(_job("new", age=1))
    jobs.create(_job("old", age=100))
    assert jobs.oldest_pending("p1").id == "old"
    assert [j.id for j in jobs.list_for_partition("p1")] == ["new", "old"]
    assert [j.id for j in jobs.list_for_partition("p1", limit=1)] == ["new"]
    assert jobs.oldest_pending("p2") is None


def test_returned_jobs_are_copies():
    jobs = InMemoryJobStore()
    jobs.create(_job("j1"))
    job = jobs.get("j1")
    job.skip_reasons["x"] = 1
    job.state = JobState.COMPLETED
    assert jobs.get("j1").skip_reasons == {}
    assert jobs.get("j1").state == JobState.PENDING


# =============================================================================
# Record store
# =============================================================================

def test_cursor_pages_by_id(record_store):
    record_store.create_many([make_record(r) for r in ["c", "a", "b", "d"]])
    first = record_store.page_missing_embeddings("p1", None, 2)
    assert [r.id for r in first] == ["a", "b"]
    rest = record_store.page_missing_embeddings("p1", first[-1].id, 10)
    assert [r.id for r in rest] == ["c", "d"]


def test_set_embedding_removes_from_missing(record_store):
    record_store.create_many([make_record("a"), make_record("b")])
    record_store.set_embedding("a", [0.1, 0.2])
    assert [r.id for r in record_store.page_missing_embeddings("p1", None, 10)] == ["b"]
    assert [r.id for r in record_store.list_embedded("p1", ContentType.TASK)] == ["a"]


def test_list_embedded_creator_filter(record_store):
    record_store.create_many([
        make_record("a", [1.0], created_by_id="u1"),
        make_record("b", [1.0], created_by_id="u2"),
        make_record("c", [1.0]),
    ])
    ids = lambda rows: sorted(r.id for r in rows)
    assert ids(record_store.list_embedded("p1", ContentType.TASK, created_by_id="u1", match_creator=True)) == ["a"]
    # records without an author are nobody's peers
    assert record_store.list_embedded("p1", ContentType.TASK, created_by_id=None, match_creator=True) == []
    assert ids(record_store.list_embedded("p1", ContentType.TASK)) == ["a", "b", "c"]


def test_pg_unknown_author_matches_nothing_without_query():
    assert PgRecordStore().list_embedded("p1", ContentType.TASK, created_by_id=None, match_creator=True) == []


def test_pg_vector_literal_is_exact():
    vec = [1e-09, 0.123456789012345, -3.5, 0.0]
    literal = _vector_literal(vec)
    assert literal.startswith("[") and literal.endswith("]")
    assert _parse_vector(literal) == vec


# =============================================================================
# Payload caches
# =============================================================================

def _entry():
    return CachedPayload(
        kind=InputKind.FILE,
        payload="task_id,prompt\n1,hello world again\n",
        options=IngestOptions(
            source="a.csv",
            content_type=ContentType.FEEDBACK,
            filter_keywords=["hello"],
            generate_embeddings=True,
            has_header=True,
        ),
    )


def test_memory_cache():
    cache = InMemoryPayloadCache()
    cache.put("j1", _entry())
    assert cache.get("j1") == _entry()
    cache.discard("j1")
    cache.discard("j1")
    assert cache.get("j1") is None


def test_file_cache_survives_new_instance(tmp_path):
    FilePayloadCache(str(tmp_path)).put("job-1", _entry())

    reopened = FilePayloadCache(str(tmp_path))
    assert reopened.get("job-1") == _entry()

    reopened.discard("job-1")
    assert reopened.get("job-1") is None
    assert list(tmp_path.iterdir()) == []


def test_file_cache_unreadable_entry(tmp_path):
    cache = FilePayloadCache(str(tmp_path))
    (tmp_path / "job-2.json").write_text("{not json", encoding="utf-8")
    assert cache.get("job-2") is None
