# ==============================
# Metrics (In-Memory)
# ==============================
"""
Thread-safe in-memory counters and timers for operation tracking.

Counters are keyed by the names below; the controller increments them from the
loop thread, the CLI reads a snapshot at exit. No exporters.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Dict, List

POLL_TICKS = "poll_ticks"
STALE_RESPONSES = "stale_responses"
PUSH_EVENTS = "push_events"
TRANSPORT_DROPS = "transport_drops"
OPERATIONS_STARTED = "operations_started"
OPERATIONS_COMPLETED = "operations_completed"
OPERATIONS_FAILED = "operations_failed"
ACTIONS_REJECTED_BUSY = "actions_rejected_busy"
PLATFORM_LOADS = "platform_loads"
PLATFORM_LOADS_SKIPPED = "platform_loads_skipped"
PLATFORM_LOAD_FAILURES = "platform_load_failures"

OPERATION_DURATION = "operation_duration"


@dataclass
class Timer:
    name: str
    started: float


class Metrics:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {}
        self._timers_ms: Dict[str, List[int]] = {}

    def inc(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def count(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def start_timer(self, name: str) -> Timer:
        return Timer(name=name, started=time.monotonic())

    def stop_timer(self, timer: Timer) -> int:
        elapsed_ms = int((time.monotonic() - timer.started) * 1000)
        with self._lock:
            self._timers_ms.setdefault(timer.name, []).append(elapsed_ms)
        return elapsed_ms

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            timers = {k: list(v) for k, v in self._timers_ms.items()}
            return {
                "counters": dict(self._counters),
                "timers_ms": timers,
                "timer_summary": {
                    k: {"count": len(v), "max_ms": max(v), "total_ms": sum(v)} for k, v in timers.items() if v
                },
            }
