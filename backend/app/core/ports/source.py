from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, List

class IRemoteSource(ABC):
    @abstractmethod
    def fetch(self, url: str) -> List[Any]:
        """GET `url`; a JSON array is returned as-is, an object as a one-element list."""
        ...
