from __future__ import annotations
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence
from app.core.entities import ContentRecord, ContentType

class IRecordStore(ABC):
    @abstractmethod
    def create_many(self, records: Sequence[ContentRecord]) -> None: ...

    @abstractmethod
    def get(self, record_id: str) -> Optional[ContentRecord]: ...

    @abstractmethod
    def exists_with_natural_id(
        self, partition_id: str, content_type: ContentType, natural_id: str, keys: Sequence[str]
    ) -> bool:
        """True if metadata->>key == natural_id for any key in `keys`."""
        ...

    @abstractmethod
    def page_missing_embeddings(
        self, partition_id: str, after_id: Optional[str], limit: int
    ) -> List[ContentRecord]:
        """Records without an embedding, id > after_id, ordered by id."""
        ...

    @abstractmethod
    def set_embedding(self, record_id: str, embedding: List[float]) -> None: ...

    @abstractmethod
    def list_embedded(
        self,
        partition_id: str,
        content_type: ContentType,
        limit: Optional[int] = None,
        created_by_id: Optional[str] = None,
        match_creator: bool = False,
    ) -> List[ContentRecord]:
        """
        Embedded records, most recent first. With `match_creator` only
        records by `created_by_id` are returned; an unknown author matches
        nothing.
        """
        ...

    @abstractmethod
    def count(self, partition_id: str) -> int: ...

    @abstractmethod
    def count_embedded(self, partition_id: str, content_type: ContentType) -> int: ...
