from __future__ import annotations
from typing import Any, List
import logging
import requests

from app.core.errors import RemoteSourceError
from app.core.ports.source import IRemoteSource

logger = logging.getLogger("app.source.http")


class HttpJsonSource(IRemoteSource):
    """Single GET of a JSON document; an object is treated as one record."""

    def __init__(self, timeout: int = 60):
        self.timeout = timeout

    def fetch(self, url: str) -> List[Any]:
        try:
            r = requests.get(url, timeout=self.timeout, headers={"Accept": "application/json"})
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            raise RemoteSourceError(f"Remote fetch failed for {url}: {e}") from e
        except ValueError as e:
            raise RemoteSourceError(f"Remote source {url} did not return JSON: {e}") from e

        records = data if isinstance(data, list) else [data]
        logger.info("🌐 Fetched %d records from %s", len(records), url)
        return records
