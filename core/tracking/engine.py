# ==============================
# Reconciliation Engine
# ==============================
"""
Single-operation state machine that merges poll responses and push events.

Phases: IDLE -> STARTING -> TRACKING -> COMPLETING -> IDLE (fail() returns to IDLE
from anywhere).

Merge rules:
- Selected ids keep selection order. Other canonical ids are appended as they
  first arrive; non-canonical ids are dropped.
- Per step, the last arriving status wins (poll and push are equally authoritative),
  except that a terminal status is never replaced by a non-terminal one.
- Poll responses carry the tick they were dispatched with; a response older than
  the last applied tick is discarded.
- If the backend sends a monotonic `seq`, updates with seq <= last applied are
  discarded. Without it, arrival order is all we have.
- The first done=true response moves to COMPLETING; everything after that for the
  same operation is dropped by the phase check.

The engine never touches timers or the network; the controller reacts to the
ApplyOutcome it returns.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from core.contracts.operation_schema import (
    LogEntry,
    OperationKind,
    OperationSnapshot,
    ProgressEvent,
    StatusResponse,
    Step,
    StepStatus,
)
from core.logging.tracing import OperationTracer
from core.tracking.log_normalizer import LogNormalizer
from core.tracking.progress import compute_percent
from core.tracking.registry import StepRegistry, is_terminal, parse_status, unrecognized_status
from core.tracking.state import PHASE_BUSY, PHASE_RUNNING, ApplyOutcome, OperationPhase

READY_TEXT = "Ready."
DONE_SUFFIX = "(done)"


class ReconciliationEngine:
    def __init__(
        self,
        *,
        registry: StepRegistry,
        normalizer: Optional[LogNormalizer] = None,
        tracer: Optional[OperationTracer] = None,
    ) -> None:
        self.registry = registry
        self.normalizer = normalizer or LogNormalizer()
        self.tracer = tracer or OperationTracer(mirror_to_log=False)

        self._phase = OperationPhase.IDLE
        self._generation = 0
        self._operation_id: Optional[str] = None
        self._kind: Optional[OperationKind] = None
        self._order: List[str] = []
        self._statuses: Dict[str, StepStatus] = {}
        self._reported: Dict[str, str] = {}
        self._progress = 0
        self._done = False
        self._logs_url: Optional[str] = None
        self._logs: List[LogEntry] = []
        self._raw_log_lines: Tuple[str, ...] = ()
        self._status_text = READY_TEXT
        self._remote_state: Optional[str] = None
        self._last_tick = 0
        self._last_seq: Optional[int] = None

    # ------------------------------------------------------------------ read-only
    @property
    def phase(self) -> OperationPhase:
        return self._phase

    @property
    def running(self) -> bool:
        return self._phase in PHASE_RUNNING

    @property
    def busy(self) -> bool:
        return self._phase in PHASE_BUSY

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def operation_id(self) -> Optional[str]:
        return self._operation_id

    @property
    def status_text(self) -> str:
        return self._status_text

    @property
    def logs(self) -> List[LogEntry]:
        return list(self._logs)

    def snapshot(self) -> OperationSnapshot:
        return OperationSnapshot(
            operation_id=self._operation_id,
            kind=self._kind,
            steps=self._steps(),
            progress_percent=self._progress,
            completion_flag=self._done,
            logs_locator_url=self._logs_url,
        )

    # ------------------------------------------------------------------ transitions
    def begin(self, kind: OperationKind, selection: Sequence[str], status_text: str) -> OperationSnapshot:
        """IDLE -> STARTING: seed every selected step as RUNNING and clear the previous view."""
        if self._phase is not OperationPhase.IDLE:
            raise RuntimeError(f"Cannot start {kind.value}: engine is {self._phase.value}")

        selected = self.registry.select(selection)
        self._generation += 1
        self._phase = OperationPhase.STARTING
        self._operation_id = None
        self._kind = kind
        self._order = selected or self.registry.canonical_order(None)
        self._statuses = {sid: StepStatus.RUNNING for sid in selected}
        self._reported = {}
        self._done = False
        self._logs_url = None
        self._logs = []
        self._raw_log_lines = ()
        self._remote_state = None
        self._last_tick = 0
        self._last_seq = None
        self._progress = compute_percent(self._steps(), False)
        self._status_text = status_text

        self.tracer.emit(
            "operation_starting",
            payload={"kind": kind.value, "steps": list(selected), "generation": self._generation},
        )
        return self.snapshot()

    def accept_start(self, operation_id: str, status_text: str) -> bool:
        """STARTING -> TRACKING once the remote start call returned an operation id."""
        if self._phase is not OperationPhase.STARTING:
            return False
        self._operation_id = operation_id
        self._phase = OperationPhase.TRACKING
        self._status_text = status_text
        self.tracer.emit("operation_started", operation_id=operation_id, payload={"kind": self._kind_value()})
        return True

    def apply_poll(self, operation_id: str, tick: int, response: StatusResponse) -> ApplyOutcome:
        if not self._is_current(operation_id):
            self._discard("poll_ignored", operation_id, {"tick": tick, "phase": self._phase.value})
            return ApplyOutcome.IGNORED
        if tick <= self._last_tick or self._is_stale_seq(response.seq):
            self._discard("poll_stale", operation_id, {"tick": tick, "last_tick": self._last_tick})
            return ApplyOutcome.STALE

        self._last_tick = tick
        self._accept_seq(response.seq)
        for reported in response.steps:
            self._merge_status(reported.id, reported.status)
        if response.events:
            self._replace_logs(response.events)
        if response.logs:
            self._logs_url = response.logs
        if response.state:
            self._remote_state = response.state.strip().upper()

        if response.done:
            self._phase = OperationPhase.COMPLETING
            self._done = True
            self._progress = compute_percent(self._steps(), True)
            self._status_text = f"{self._remote_state or StepStatus.SUCCESS.value} {DONE_SUFFIX}"
            self.tracer.emit(
                "operation_completed",
                operation_id=operation_id,
                payload={"tick": tick, "state": self._remote_state},
            )
            return ApplyOutcome.COMPLETED

        self._recompute()
        self.tracer.emit(
            "poll_applied",
            operation_id=operation_id,
            payload={"tick": tick, "progress": self._progress},
        )
        return ApplyOutcome.APPLIED

    def apply_push(self, operation_id: str, event: ProgressEvent) -> ApplyOutcome:
        if not self._is_current(operation_id):
            self._discard("push_ignored", operation_id, {"step": event.step, "phase": self._phase.value})
            return ApplyOutcome.IGNORED
        if self._is_stale_seq(event.seq):
            self._discard("push_stale", operation_id, {"step": event.step, "seq": event.seq})
            return ApplyOutcome.STALE

        self._accept_seq(event.seq)
        if event.step:
            self._merge_status(event.step, event.status)
        if event.all_logs:
            self._replace_logs(event.all_logs)
        self._recompute()
        self.tracer.emit(
            "push_applied",
            operation_id=operation_id,
            step_id=event.step,
            payload={"status": event.status, "progress": self._progress},
        )
        return ApplyOutcome.APPLIED

    def finish(self) -> bool:
        """COMPLETING -> IDLE after the settle delay."""
        if self._phase is not OperationPhase.COMPLETING:
            return False
        self._phase = OperationPhase.IDLE
        self.tracer.emit("operation_settled", operation_id=self._operation_id)
        return True

    def fail(self, message: str) -> None:
        """Any phase -> IDLE with an error status. Steps keep their last known status."""
        previous = self._phase
        self._phase = OperationPhase.IDLE
        self._status_text = message
        self.tracer.emit(
            "operation_failed",
            operation_id=self._operation_id,
            payload={"message": message, "phase": previous.value},
        )

    def set_status_text(self, text: str) -> None:
        self._status_text = text

    # ------------------------------------------------------------------ helpers
    def _kind_value(self) -> Optional[str]:
        return self._kind.value if self._kind is not None else None

    def _is_current(self, operation_id: str) -> bool:
        return self._phase is OperationPhase.TRACKING and operation_id == self._operation_id

    def _is_stale_seq(self, seq: Optional[int]) -> bool:
        return seq is not None and self._last_seq is not None and seq <= self._last_seq

    def _accept_seq(self, seq: Optional[int]) -> None:
        if seq is not None:
            self._last_seq = seq

    def _discard(self, kind: str, operation_id: str, payload: Dict[str, object]) -> None:
        self.tracer.emit(kind, operation_id=operation_id, payload=payload)

    def _merge_status(self, step_id: Optional[str], raw_status: Optional[str]) -> bool:
        sid = (step_id or "").strip().lower()
        if sid not in self._order:
            if not self.registry.is_canonical(sid):
                return False
            # canonical but unselected: shown after the selection
            self._order.append(sid)
        incoming = parse_status(raw_status)
        current = self._statuses.get(sid)
        if current is not None and is_terminal(current) and not is_terminal(incoming):
            return False
        self._statuses[sid] = incoming
        reported = unrecognized_status(raw_status)
        if reported is None:
            self._reported.pop(sid, None)
        else:
            self._reported[sid] = reported
            self.tracer.emit(
                "status_unrecognized",
                operation_id=self._operation_id,
                step_id=sid,
                payload={"reported": reported},
            )
        return True

    def _replace_logs(self, lines: Iterable[str]) -> None:
        batch = tuple("" if line is None else str(line) for line in lines)
        if batch == self._raw_log_lines:
            return
        self._raw_log_lines = batch
        self._logs = self.normalizer.normalize(batch)

    def _steps(self) -> List[Step]:
        return [
            Step(id=sid, status=self._statuses[sid], reported=self._reported.get(sid))
            for sid in self._order
            if sid in self._statuses
        ]

    def _recompute(self) -> None:
        steps = self._steps()
        self._progress = compute_percent(steps, False)
        finished = sum(1 for s in steps if is_terminal(s.status))
        label = self._remote_state or "In progress"
        self._status_text = f"{label}: {finished}/{len(steps)} steps finished ({self._progress}%)"
