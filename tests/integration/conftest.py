# ==============================
# Integration fixtures
# ==============================
from __future__ import annotations

import itertools
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pytest

from core.remote import client as client_mod


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None) -> None:
        self.status_code = status_code
        self._body = body
        self.text = ""
        self.reason = ""

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeOrchestrator:
    """
    In-process stand-in for the orchestration service, answering requests.request calls.

    The operation reports one finished step on the first poll and completes on the second.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._polls = itertools.count(1)
        self.requests: List[Tuple[str, str, Optional[Dict[str, Any]]]] = []
        self.start_status = 200
        self.start_body: Dict[str, Any] = {"operation": "op-cli", "namespace_name": "team-a"}

    def __call__(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        path = url.split("://", 1)[1].split("/", 1)[1]
        with self._lock:
            self.requests.append((method, "/" + path, kwargs.get("json")))
        if method == "POST":
            return FakeResponse(self.start_status, self.start_body)
        if path == "status":
            n = next(self._polls)
            steps = [{"id": "frontend", "status": "SUCCESS"}, {"id": "backend", "status": "RUNNING" if n < 2 else "SUCCESS"}]
            return FakeResponse(body={"done": n >= 2, "state": "SUCCESS" if n >= 2 else "RUNNING", "steps": steps})
        if path == "platforms":
            return FakeResponse(body=[{"id": "team-a", "namespace_name": "team-a", "deployed_apps": ["frontend", "backend"]}])
        if path.startswith("platform"):
            return FakeResponse(body={"id": "team-a", "namespace_name": "team-a", "deployed_apps": ["frontend", "backend"]})
        return FakeResponse(404, {"error": f"no route for {path}"})

    def paths(self) -> List[str]:
        with self._lock:
            return [p for _, p, _ in self.requests]


@pytest.fixture
def orchestrator_service(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[FakeOrchestrator]:
    """
    Runs the CLI against a fake orchestration service with fast timers.

    The working directory becomes an empty repo root so only env overrides apply.
    The CLI reconfigures the root logger; it is restored afterwards.
    """
    service = FakeOrchestrator()
    monkeypatch.setattr(client_mod.requests, "request", service)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("TRACKER__APP__ORCHESTRATOR_URL", "http://orchestrator.test")
    monkeypatch.setenv("TRACKER__APP__DEFAULT_NAMESPACE", "team-a")
    monkeypatch.setenv("TRACKER__TRACKING__POLL_INTERVAL_SECONDS", "0.02")
    monkeypatch.setenv("TRACKER__TRACKING__SETTLE_DELAY_SECONDS", "0.0")
    monkeypatch.setenv("TRACKER__LOGGING__CONSOLE", "false")

    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        yield service
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
