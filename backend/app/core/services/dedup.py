from __future__ import annotations

import logging
from typing import Any, Optional, Set, Tuple

from app.core.entities import ContentType
from app.core.ports.store import IRecordStore

log = logging.getLogger("app.ingest.dedup")

NATURAL_ID_KEYS: Tuple[str, ...] = ("task_id", "id", "uuid", "record_id")
DUPLICATE_REASON = "Duplicate ID"


def natural_id_of(record: Any, keys: Tuple[str, ...] = NATURAL_ID_KEYS) -> Optional[str]:
    if not isinstance(record, dict):
        return None
    for k in keys:
        v = record.get(k)
        if v:
            return str(v)
    return None


class DuplicateDetector:
    """
    Checks candidates against the durable store for one (partition, type).
    Ids accepted earlier in the same run are remembered, so a payload that
    repeats an id only writes it once.
    """

    def __init__(
        self,
        store: IRecordStore,
        partition_id: str,
        content_type: ContentType,
        keys: Tuple[str, ...] = NATURAL_ID_KEYS,
    ):
        self.store = store
        self.partition_id = partition_id
        self.content_type = content_type
        self.keys = keys
        self._accepted: Set[str] = set()

    def is_duplicate(self, record: Any) -> bool:
        natural_id = natural_id_of(record, self.keys)
        if natural_id is None:
            return False
        if natural_id in self._accepted:
            return True
        if self.store.exists_with_natural_id(self.partition_id, self.content_type, natural_id, self.keys):
            log.debug("Duplicate natural id %s in partition=%s type=%s",
                      natural_id, self.partition_id, self.content_type.value)
            return True
        return False

    def mark_accepted(self, record: Any) -> None:
        natural_id = natural_id_of(record, self.keys)
        if natural_id is not None:
            self._accepted.add(natural_id)
