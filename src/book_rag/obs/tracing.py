"""Per-request trace records and latency summary."""

from __future__ import annotations

import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    query: str
    answer: str
    context_ids: list[str]
    status: str
    failed_stage: str | None
    error: str | None
    latency_ms: float


class TraceStore:
    """In-memory trace storage for API-level observability.

    Keeps the most recent `max_records` traces.
    """

    def __init__(self, *, max_records: int = 1000) -> None:
        self._records: OrderedDict[str, TraceRecord] = OrderedDict()
        self._max_records = max_records

    def create_record(
        self,
        *,
        query: str,
        answer: str = "",
        context_ids: list[str] | None = None,
        failed_stage: str | None = None,
        error: str | None = None,
        latency_ms: float,
    ) -> TraceRecord:
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            query=query,
            answer=answer,
            context_ids=list(context_ids or []),
            status="error" if error is not None else "ok",
            failed_stage=failed_stage,
            error=error,
            latency_ms=latency_ms,
        )
        self._records[record.trace_id] = record
        while len(self._records) > self._max_records:
            self._records.popitem(last=False)
        return record

    def get(self, trace_id: str) -> TraceRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        if limit <= 0:
            return []
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate request counts and latency for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "failed_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_requests": total,
            "failed_requests": sum(1 for record in records if record.status == "error"),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
        }


class Timer:
    """Simple context timer used by the index builder and responder."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
