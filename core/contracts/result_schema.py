# ==============================
# Action Result Contracts
# ==============================
"""
Result envelope for tracker actions.

Errors are data, not control flow: every action entry point returns an
ActionResult instead of raising, so the UI never has to catch remote failures.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class OperationErrorCode(str, Enum):
    """Standard error codes surfaced by the lifecycle controller."""
    BUSY = "busy"
    VALIDATION = "validation"
    START_FAILED = "start_failed"
    POLL_FAILED = "poll_failed"
    LOAD_FAILED = "load_failed"
    TRANSPORT_DROP = "transport_drop"


class OperationError(BaseModel):
    """Structured error for a rejected or failed action."""
    model_config = ConfigDict(extra="forbid")

    code: OperationErrorCode = Field(..., description="Standard error code.")
    message: str = Field(..., description="Human readable message (also shown as status/notice).")
    details: Dict[str, Any] = Field(default_factory=dict, description="Optional structured details (sanitized).")


class ActionResult(BaseModel):
    """
    Envelope returned by every action entry point.

    Pattern:
      ok: bool
      data: dict | None
      error: OperationError | None
    """
    model_config = ConfigDict(extra="forbid")

    ok: bool = Field(..., description="True if the action was accepted.")
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[OperationError] = Field(default=None)

    @model_validator(mode="after")
    def _enforce_error_contract(self) -> "ActionResult":
        if self.ok and self.error is not None:
            raise ValueError("Action error must be None when ok=True")
        if not self.ok and self.error is None:
            raise ValueError("Action error must be set when ok=False")
        return self

    @classmethod
    def success(cls, data: Optional[Dict[str, Any]] = None) -> "ActionResult":
        return cls(ok=True, data=data or {}, error=None)

    @classmethod
    def failure(
        cls,
        *,
        code: OperationErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> "ActionResult":
        return cls(ok=False, error=OperationError(code=code, message=message, details=details or {}))
