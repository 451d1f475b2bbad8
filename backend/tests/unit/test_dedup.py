"""
Unit tests for natural-id duplicate detection.
"""
from app.core.entities import ContentType
from app.core.services.dedup import DuplicateDetector, natural_id_of

from conftest import make_record


def test_natural_id_key_order():
    assert natural_id_of({"id": "b", "task_id": "a"}) == "a"
    assert natural_id_of({"uuid": "u-1"}) == "u-1"
    assert natural_id_of({"record_id": 7}) == "7"
    assert natural_id_of({"task_id": "", "id": "x"}) == "x"


def test_no_natural_id():
    assert natural_id_of({"prompt": "hello"}) is None
    assert natural_id_of("bare string") is None


def test_existing_record_under_any_key_is_duplicate(record_store):
    record_store.create_many([make_record("r1", metadata={"uuid": "T-1"})])
    detector = DuplicateDetector(record_store, "p1", ContentType.TASK)
    assert detector.is_duplicate({"task_id": "T-1"})


def test_numeric_metadata_matches_string_id(record_store):
    record_store.create_many([make_record("r1", metadata={"task_id": 42})])
    detector = DuplicateDetector(record_store, "p1", ContentType.TASK)
    assert detector.is_duplicate({"task_id": "42"})


def test_scope_is_partition_and_type(record_store):
    record_store.create_many([make_record("r1", metadata={"task_id": "T-1"})])
    assert not DuplicateDetector(record_store, "p2", ContentType.TASK).is_duplicate({"task_id": "T-1"})
    assert not DuplicateDetector(record_store, "p1", ContentType.FEEDBACK).is_duplicate({"task_id": "T-1"})


def test_rows_without_id_never_duplicates(record_store):
    record_store.create_many([make_record("r1", metadata={"prompt": "same"})])
    detector = DuplicateDetector(record_store, "p1", ContentType.TASK)
    row = {"prompt": "same"}
    detector.mark_accepted(row)
    assert not detector.is_duplicate(row)


def test_repeat_within_run_is_duplicate(record_store):
    detector = DuplicateDetector(record_store, "p1", ContentType.TASK)
    row = {"task_id": "T-9"}
    assert not detector.is_duplicate(row)
    detector.mark_accepted(row)
    assert detector.is_duplicate({"id": "T-9"})
