from __future__ import annotations
import json
import logging
import os
import tempfile
from threading import Lock
from typing import Dict, Optional

from app.core.entities import ContentType, IngestOptions, InputKind
from app.core.ports.payload_cache import CachedPayload, IPayloadCache

logger = logging.getLogger("app.payload_cache")


class InMemoryPayloadCache(IPayloadCache):
    """Process-local; payloads do not survive a restart."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._entries: Dict[str, CachedPayload] = {}

    def put(self, job_id: str, entry: CachedPayload) -> None:
        with self._lock:
            self._entries[job_id] = entry

    def get(self, job_id: str) -> Optional[CachedPayload]:
        with self._lock:
            return self._entries.get(job_id)

    def discard(self, job_id: str) -> None:
        with self._lock:
            self._entries.pop(job_id, None)

    def __len__(self) -> int:
        return len(self._entries)


class FilePayloadCache(IPayloadCache):
    """
    Spools each payload to <spool_dir>/<job_id>.json so PENDING jobs
    survive a restart and can be shared by processes mounting the same dir.
    """

    def __init__(self, spool_dir: str):
        self.spool_dir = spool_dir
        os.makedirs(self.spool_dir, exist_ok=True)

    def _path(self, job_id: str) -> str:
        safe = "".join(c for c in job_id if c.isalnum() or c in "-_")
        return os.path.join(self.spool_dir, f"{safe}.json")

    def put(self, job_id: str, entry: CachedPayload) -> None:
        doc = {
            "kind": entry.kind.value,
            "payload": entry.payload,
            "options": {
                "source": entry.options.source,
                "content_type": entry.options.content_type.value,
                "filter_keywords": list(entry.options.filter_keywords),
                "generate_embeddings": entry.options.generate_embeddings,
                "has_header": entry.options.has_header,
            },
        }
        fd, tmp = tempfile.mkstemp(dir=self.spool_dir, suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(doc, f)
        os.replace(tmp, self._path(job_id))

    def get(self, job_id: str) -> Optional[CachedPayload]:
        try:
            with open(self._path(job_id), "r", encoding="utf-8") as f:
                doc = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"⚠️ Unreadable payload for job {job_id}: {e}")
            return None
        opts = doc.get("options", {})
        return CachedPayload(
            kind=InputKind(doc["kind"]),
            payload=doc["payload"],
            options=IngestOptions(
                source=opts.get("source", ""),
                content_type=ContentType(opts.get("content_type", ContentType.TASK.value)),
                filter_keywords=list(opts.get("filter_keywords") or []),
                generate_embeddings=bool(opts.get("generate_embeddings", False)),
                has_header=bool(opts.get("has_header", True)),
            ),
        )

    def discard(self, job_id: str) -> None:
        try:
            os.remove(self._path(job_id))
        except FileNotFoundError:
            pass
