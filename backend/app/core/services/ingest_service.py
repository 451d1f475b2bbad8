from __future__ import annotations

import csv
import io
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from app.core.entities import IngestOptions, IngestOutcome, JobState, NormalizedRecord
from app.core.errors import IngestInputError, JobNotFoundError
from app.core.ports.job_store import IJobStore
from app.core.ports.store import IRecordStore
from app.core.services.batch_writer import BatchWriter
from app.core.services.dedup import DUPLICATE_REASON, DuplicateDetector
from app.core.services.normalizer import (
    DEFAULT_RULES,
    FieldMappingRules,
    matches_keywords,
    normalize_record,
)

log = logging.getLogger("app.ingest")

KEYWORD_REASON = "Keyword Mismatch"
DEFAULT_CHUNK_SIZE = 100


# ================================================================
# Payload parsing
# ================================================================
def parse_csv_payload(text: str, has_header: bool = True) -> List[Dict[str, Any]]:
    """
    Parse CSV text into row dicts. Cells are trimmed, blank rows dropped,
    short rows padded with None and extra cells kept under "_extra".
    Without a header, columns are named col_1..col_n.
    """
    reader = csv.reader(io.StringIO(text))
    rows: List[Dict[str, Any]] = []
    header: Optional[List[str]] = None

    for cells in reader:
        cells = [c.strip() for c in cells]
        if not any(cells):
            continue
        if has_header and header is None:
            header = cells
            continue
        if header is None:
            rows.append({f"col_{i + 1}": v for i, v in enumerate(cells)})
            continue
        row: Dict[str, Any] = {}
        for i, name in enumerate(header):
            row[name] = cells[i] if i < len(cells) else None
        if len(cells) > len(header):
            row["_extra"] = cells[len(header):]
        rows.append(row)
    return rows


def _chunks(seq: List[Any], size: int):
    for start in range(0, len(seq), size):
        yield seq[start:start + size]


def _bump(tally: Dict[str, int], reason: str, n: int = 1) -> None:
    tally[reason] = tally.get(reason, 0) + n


# ================================================================
# Chunked ingestion
# ================================================================
class IngestService:
    """
    Normalize -> keyword filter -> dedup -> write, chunk by chunk.
    The job is re-read before every chunk so a CANCELLED job stops
    moving forward; chunks already written stay written.
    """

    def __init__(
        self,
        records: IRecordStore,
        jobs: IJobStore,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        rules: FieldMappingRules = DEFAULT_RULES,
    ):
        if chunk_size <= 0:
            raise ValueError(f"Invalid chunk_size: {chunk_size}")
        self.records = records
        self.jobs = jobs
        self.chunk_size = chunk_size
        self.rules = rules
        self.writer = BatchWriter(records, jobs)

    def preflight(self, rows: List[Any], options: IngestOptions) -> None:
        """Synchronous input checks done before a job exists."""
        if not rows:
            raise IngestInputError("No records found in payload")
        if options.filter_keywords and not any(
            matches_keywords(normalize_record(r, self.rules).content, options.filter_keywords)
            for r in rows
        ):
            raise IngestInputError("No records matched the filter keywords")

    def ingest(self, rows: List[Any], options: IngestOptions, job_id: str, partition_id: str) -> IngestOutcome:
        start_time = time.time()
        outcome = IngestOutcome()
        detector = DuplicateDetector(self.records, partition_id, options.content_type)

        for chunk in _chunks(rows, self.chunk_size):
            current = self.jobs.get(job_id)
            if current is None:
                raise JobNotFoundError(f"Job {job_id} disappeared during ingestion")
            if current.state == JobState.CANCELLED:
                log.info("🛑 Job %s cancelled; stopping after %d saved", job_id, outcome.saved)
                outcome.cancelled = True
                return outcome

            chunk_reasons: Dict[str, int] = {}
            accepted: List[Tuple[Any, NormalizedRecord]] = []

            for raw in chunk:
                normalized = normalize_record(raw, self.rules)
                if not matches_keywords(normalized.content, options.filter_keywords):
                    _bump(chunk_reasons, KEYWORD_REASON)
                    continue
                if detector.is_duplicate(raw):
                    _bump(chunk_reasons, DUPLICATE_REASON)
                    continue
                detector.mark_accepted(raw)
                accepted.append((raw, normalized))

            skipped = sum(chunk_reasons.values())
            self.writer.write_chunk(
                job_id=job_id,
                partition_id=partition_id,
                content_type=options.content_type,
                source=options.source,
                accepted=accepted,
                skipped=skipped,
                skip_reasons=chunk_reasons,
            )
            outcome.saved += len(accepted)
            outcome.skipped += skipped
            for reason, n in chunk_reasons.items():
                _bump(outcome.skip_reasons, reason, n)

        duration = round(time.time() - start_time, 3)
        log.info(
            "📥 Ingest summary | job=%s | partition=%s | rows=%d | saved=%d | skipped=%d | reasons=%s | took=%.3fs",
            job_id, partition_id, len(rows), outcome.saved, outcome.skipped, outcome.skip_reasons, duration,
        )
        return outcome
