# ==============================
# Tracing Pipeline
# ==============================
"""
Operation tracing pipeline.

Responsibilities:
- Accept lifecycle events from the engine/controller
- Scrub payload via SecurityRedactor
- Keep a bounded in-memory trail (no persistence across restarts)
- Optionally mirror to logs
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.config.schema import Settings
from core.governance.security import SecurityRedactor


class TraceEvent(BaseModel):
    """A single lifecycle event emitted while tracking an operation."""
    model_config = ConfigDict(extra="forbid")

    kind: str = Field(..., description="Machine-readable event type (e.g., poll_applied).")
    operation_id: Optional[str] = Field(default=None)
    step_id: Optional[str] = Field(default=None)
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: Dict[str, Any] = Field(default_factory=dict, description="Structured payload (sanitized).")
    redacted: bool = Field(default=False)


class OperationTracer:
    def __init__(
        self,
        *,
        logger: Optional[logging.Logger] = None,
        redactor: Optional[SecurityRedactor] = None,
        mirror_to_log: bool = True,
        buffer_size: int = 500,
    ) -> None:
        self.logger = logger or logging.getLogger("tracker.trace")
        self.redactor = redactor or SecurityRedactor()
        self.mirror_to_log = mirror_to_log
        self._events: Deque[TraceEvent] = deque(maxlen=buffer_size)

    def emit(
        self,
        kind: str,
        *,
        operation_id: Optional[str] = None,
        step_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        level: int = logging.INFO,
    ) -> TraceEvent:
        raw = payload or {}
        sanitized = self.redactor.sanitize(raw)
        event = TraceEvent(
            kind=kind,
            operation_id=operation_id,
            step_id=step_id,
            payload=sanitized,
            redacted=sanitized != raw,
        )
        self._events.append(event)

        if self.mirror_to_log:
            self.logger.log(
                level,
                kind,
                extra={
                    "operation_id": operation_id,
                    "step_id": step_id,
                    "kind": kind,
                },
            )
        return event

    def recent(self, kind: Optional[str] = None) -> List[TraceEvent]:
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.kind == kind]

    @classmethod
    def from_settings(cls, settings: Settings) -> "OperationTracer":
        """
        Convenience constructor for CLI wiring.
        """
        return cls(
            redactor=SecurityRedactor.from_settings(settings),
            mirror_to_log=settings.logging.console,
            buffer_size=settings.tracking.trace_buffer_size,
        )
