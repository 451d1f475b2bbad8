from __future__ import annotations


class IngestInputError(ValueError):
    """Submission rejected before a job was created."""


class JobNotFoundError(LookupError):
    pass


class RecordNotFoundError(LookupError):
    pass


class EmbeddingProviderError(RuntimeError):
    """The embedding provider failed for a whole batch."""


class RemoteSourceError(RuntimeError):
    pass


class DimensionMismatchError(ValueError):
    def __init__(self, left: int, right: int):
        super().__init__(f"Embedding dimension mismatch: {left} vs {right}")
        self.left = left
        self.right = right


class PartitionBusyError(RuntimeError):
    """Another job is already active in the partition."""
