# ==============================
# Operation Contracts
# ==============================
"""
Operation contracts for the tracker.

These models define the stable representation of a tracked operation, its steps,
the normalized log view and the platform record, plus the wire payloads consumed
from the orchestration service (start responses, status polls, push events).

Intended usage:
- Reconciliation engine owns OperationSnapshot and publishes it read-only
- Lifecycle controller composes TrackerState for UI/CLI consumers
- Remote client returns raw dicts; the controller validates them with these models
"""

# ==============================
# Imports
# ==============================
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from core.contracts.result_schema import OperationError


# ==============================
# Enums
# ==============================
class StepStatus(str, Enum):
    """Lifecycle status for a step, as reported by the orchestration service."""
    RUNNING = "RUNNING"
    UNKNOWN = "UNKNOWN"
    SUCCESS = "SUCCESS"
    DONE = "DONE"
    FAILURE = "FAILURE"
    CANCELLED = "CANCELLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    TIMEOUT = "TIMEOUT"


class OperationKind(str, Enum):
    """Action that started an operation."""
    DEPLOY = "deploy"
    ADD = "add"
    REMOVE = "remove"
    DELETE = "delete"
    RUN = "run"


class OperationPhase(str, Enum):
    """Reconciliation engine phase."""
    IDLE = "IDLE"
    STARTING = "STARTING"
    TRACKING = "TRACKING"
    COMPLETING = "COMPLETING"


# ==============================
# Models
# ==============================
class Step(BaseModel):
    """One unit of work inside an operation."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Canonical step identifier (lower case).")
    status: StepStatus = Field(default=StepStatus.RUNNING)
    reported: Optional[str] = Field(
        default=None,
        description="Upper-cased backend value when it did not map onto StepStatus.",
    )

    @property
    def label(self) -> str:
        return self.reported or self.status.value


class LogEntry(BaseModel):
    """A single normalized log line."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    line: str


class OperationSnapshot(BaseModel):
    """Read-only view of the operation currently (or last) tracked."""
    model_config = ConfigDict(frozen=True)

    operation_id: Optional[str] = None
    kind: Optional[OperationKind] = None
    steps: List[Step] = Field(default_factory=list, description="Steps in canonical order.")
    progress_percent: int = Field(default=0, ge=0, le=100)
    completion_flag: bool = False
    logs_locator_url: Optional[str] = None


class PlatformRecord(BaseModel):
    """Aggregate deployed resource reported by GET /platform."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = ""
    namespace: str = Field(default="", validation_alias=AliasChoices("namespace_name", "namespace"))
    deployed_application_ids: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("deployed_apps", "deployed_application_ids"),
    )
    owner_email: Optional[str] = Field(default=None, validation_alias=AliasChoices("user_email", "owner_email"))
    created_at: Optional[datetime] = None
    last_modified_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("last_modified", "last_modified_at"),
    )
    status: Optional[str] = None

    @field_validator("deployed_application_ids", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("namespace", "id", mode="before")
    @classmethod
    def _none_to_blank(cls, value: Any) -> Any:
        return "" if value is None else value


class TrackerState(BaseModel):
    """
    Immutable projection handed to UI/CLI consumers on every change.

    notice carries transient messages (busy, skipped loads) that must not touch
    the operation's steps, logs, progress or status text.
    last_error holds the most recent start, poll, load or push-transport failure.
    """
    model_config = ConfigDict(frozen=True)

    phase: OperationPhase = OperationPhase.IDLE
    running: bool = False
    idle: bool = True
    operation: OperationSnapshot = Field(default_factory=OperationSnapshot)
    status: str = "Ready."
    logs: List[LogEntry] = Field(default_factory=list)
    platform: Optional[PlatformRecord] = None
    platforms: List[PlatformRecord] = Field(default_factory=list)
    namespace: Optional[str] = None
    notice: Optional[str] = None
    last_error: Optional[OperationError] = None

    @property
    def progress(self) -> int:
        return self.operation.progress_percent

    @property
    def steps(self) -> List[Step]:
        return self.operation.steps

    @property
    def logs_url(self) -> Optional[str]:
        return self.operation.logs_locator_url


# ==============================
# Wire Payloads
# ==============================
class StartResponse(BaseModel):
    """Reply to any of the POST start calls."""
    model_config = ConfigDict(extra="ignore")

    operation: str = Field(..., min_length=1)
    namespace_name: Optional[str] = None
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)


class ReportedStep(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: Optional[str] = None


class StatusResponse(BaseModel):
    """Reply to GET /status?operation=<id>."""
    model_config = ConfigDict(extra="ignore")

    done: bool = False
    state: Optional[str] = None
    steps: List[ReportedStep] = Field(default_factory=list)
    events: Optional[List[str]] = None
    logs: Optional[str] = Field(default=None, description="Locator URL for the full remote log.")
    seq: Optional[int] = None

    @field_validator("steps", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class ProgressEvent(BaseModel):
    """Push-channel progress event."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    step: Optional[str] = None
    status: Optional[str] = None
    log: Optional[str] = None
    all_logs: Optional[List[str]] = Field(default=None, validation_alias=AliasChoices("allLogs", "all_logs"))
    seq: Optional[int] = None
