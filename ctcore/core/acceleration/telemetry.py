"""
Per-call telemetry for the acceleration shim.

A bounded ring buffer of {operation, elapsed_ms, used_accelerated, failed}
records, safe to append to from several threads. A failed accelerated
attempt is recorded on the accelerated path, so its cost weighs on the
accelerated average. The reference retry is a separate record. Summaries
report average latency per path and the measured speedup per operation kind.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional

DEFAULT_WINDOW = 1000


@dataclass(frozen=True)
class TelemetryRecord:
    operation: str
    elapsed_ms: float
    used_accelerated: bool
    failed: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass
class OperationStats:
    """Aggregates for one operation kind over the current window."""
    operation: str
    reference_calls: int = 0
    accelerated_calls: int = 0
    reference_total_ms: float = 0.0
    accelerated_total_ms: float = 0.0
    accelerated_failures: int = 0

    @property
    def calls(self) -> int:
        return self.reference_calls + self.accelerated_calls

    @property
    def reference_avg_ms(self) -> Optional[float]:
        if not self.reference_calls:
            return None
        return self.reference_total_ms / self.reference_calls

    @property
    def accelerated_avg_ms(self) -> Optional[float]:
        if not self.accelerated_calls:
            return None
        return self.accelerated_total_ms / self.accelerated_calls

    @property
    def speedup(self) -> Optional[float]:
        """reference avg / accelerated avg, when both paths were measured."""
        ref, acc = self.reference_avg_ms, self.accelerated_avg_ms
        if ref is None or acc is None or acc <= 0:
            return None
        return ref / acc

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "calls": self.calls,
            "reference_calls": self.reference_calls,
            "accelerated_calls": self.accelerated_calls,
            "accelerated_failures": self.accelerated_failures,
            "reference_avg_ms": self.reference_avg_ms,
            "accelerated_avg_ms": self.accelerated_avg_ms,
            "speedup": self.speedup,
        }


class TelemetryBuffer:
    """Thread-safe rolling window of telemetry records."""

    def __init__(self, window: int = DEFAULT_WINDOW):
        if window < 1:
            raise ValueError("window must be >= 1")
        self.window = window
        self._records: Deque[TelemetryRecord] = deque(maxlen=window)
        self._lock = threading.Lock()

    def record(
        self,
        operation: str,
        elapsed_ms: float,
        used_accelerated: bool,
        failed: bool = False,
    ) -> TelemetryRecord:
        entry = TelemetryRecord(operation, elapsed_ms, used_accelerated, failed)
        with self._lock:
            self._records.append(entry)
        return entry

    def records(self) -> List[TelemetryRecord]:
        """Snapshot, oldest first."""
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def summarize(self) -> Dict[str, OperationStats]:
        stats: Dict[str, OperationStats] = {}
        for entry in self.records():
            s = stats.setdefault(entry.operation, OperationStats(entry.operation))
            if entry.used_accelerated:
                s.accelerated_calls += 1
                s.accelerated_total_ms += entry.elapsed_ms
                if entry.failed:
                    s.accelerated_failures += 1
            else:
                s.reference_calls += 1
                s.reference_total_ms += entry.elapsed_ms
        return stats
