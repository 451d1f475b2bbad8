from __future__ import annotations
from abc import ABC, abstractmethod
from typing import List, Optional

class IEmbeddingModel(ABC):
    @abstractmethod
    def embed(self, text: str) -> List[float]:
        ...

    @abstractmethod
    def embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        """Same length as `texts`, positional. A slot may be None/empty
        when the provider produced nothing for that text; a provider
        failure for the whole call raises EmbeddingProviderError."""
        ...
