"""Per-request traces and aggregate latency metrics."""

from __future__ import annotations

import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(slots=True)
class RequestTrace:
    model_id: str
    turn_count: int
    trace_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp_utc: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    admitted_turns: int = 0
    prompt_tokens: int = 0
    document_tokens: int = 0
    summarized: bool = False
    source_ids: list[str] = field(default_factory=list)
    chunks_relayed: int = 0
    outcome: str = "pending"
    error: str | None = None
    latency_ms: float = 0.0

    def log_context(self) -> dict[str, object]:
        return {
            "trace_id": self.trace_id,
            "model_id": self.model_id,
            "turn_count": self.turn_count,
        }


class TraceStore:
    """Bounded in-memory trace storage for API-level observability."""

    def __init__(self, *, max_records: int = 1000) -> None:
        self._records: deque[RequestTrace] = deque(maxlen=max_records)

    def add(self, trace: RequestTrace) -> None:
        self._records.append(trace)

    def list_recent(self, limit: int = 20) -> list[RequestTrace]:
        return list(self._records)[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate request outcomes and latency for dashboards."""
        records = list(self._records)
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "completed": 0,
                "failed": 0,
                "disconnected": 0,
                "summarized": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_requests": total,
            "completed": sum(1 for r in records if r.outcome == "completed"),
            "failed": sum(1 for r in records if r.outcome == "failed"),
            "disconnected": sum(1 for r in records if r.outcome == "disconnected"),
            "summarized": sum(1 for r in records if r.summarized),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
        }


class Timer:
    """Monotonic stopwatch started on construction."""

    def __init__(self) -> None:
        self._start = time.perf_counter()
        self.elapsed_ms = 0.0

    def stop(self) -> float:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
        return self.elapsed_ms
