# ==============================
# Remote Call Errors
# ==============================
"""
Exceptions raised by the orchestration-service client.

The lifecycle controller catches these at the call site and turns them into
status text; they never escape an action entry point.
"""

from __future__ import annotations

from typing import Any, Optional


class RemoteCallError(Exception):
    """Base error for any failed call to the orchestration service."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        payload: Any = None,
        url: Optional[str] = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.payload = payload
        self.url = url
        super().__init__(message)

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class RemoteTimeoutError(RemoteCallError):
    """The request did not complete within the configured timeout."""


class RemoteResponseError(RemoteCallError):
    """The service answered with an error status or an unreadable body."""


def error_message(payload: Any, fallback: str) -> str:
    """
    Pick the human readable message out of an error payload.

    Accepted shapes: {"error": "..."}, {"error": {"message": "..."}},
    {"message": "..."}, or a plain string body.
    """
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, str) and err.strip():
            return err.strip()
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
        msg = payload.get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    return fallback
