from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from app.core.entities import IngestJob, JobState

class IJobStore(ABC):
    @abstractmethod
    def create(self, job: IngestJob) -> IngestJob: ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[IngestJob]: ...

    @abstractmethod
    def transition(self, job_id: str, state: JobState, error: Optional[str] = None) -> bool:
        """Compare-and-set move to `state`; False if the current state does not allow it."""
        ...

    @abstractmethod
    def record_progress(
        self, job_id: str, saved: int, skipped: int, reasons: Dict[str, int]
    ) -> IngestJob:
        """Add the deltas to the job counters and merge the skip tally."""
        ...

    @abstractmethod
    def find_active(self, partition_id: str) -> Optional[IngestJob]: ...

    @abstractmethod
    def oldest_pending(self, partition_id: str) -> Optional[IngestJob]: ...

    @abstractmethod
    def list_in_states(self, states: List[JobState]) -> List[IngestJob]: ...

    @abstractmethod
    def list_for_partition(self, partition_id: str, limit: int = 50) -> List[IngestJob]: ...

    @abstractmethod
    def set_total(self, job_id: str, total: int) -> None: ...
