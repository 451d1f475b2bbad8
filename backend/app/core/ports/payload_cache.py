from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
from app.core.entities import IngestOptions, InputKind

@dataclass(frozen=True)
class CachedPayload:
    kind: InputKind
    payload: str
    options: IngestOptions

class IPayloadCache(ABC):
    @abstractmethod
    def put(self, job_id: str, entry: CachedPayload) -> None: ...
    @abstractmethod
    def get(self, job_id: str) -> Optional[CachedPayload]: ...
    @abstractmethod
    def discard(self, job_id: str) -> None: ...
