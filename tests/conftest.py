# ==============================
# Testing Fixtures
# ==============================
from __future__ import annotations

import heapq
import itertools
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from core.config.schema import AppConfig, Settings
from core.governance.security import SecurityRedactor
from core.logging.metrics import Metrics
from core.logging.tracing import OperationTracer
from core.remote.push import LocalPushChannel
from core.tracking.controller import OperationController
from core.tracking.log_normalizer import LogNormalizer
from core.tracking.registry import StepRegistry
from core.tracking.scheduler import Scheduler

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class _ManualHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(Scheduler):
    """
    Deterministic virtual-time scheduler.

    Blocking calls handed to submit() run when the loop reaches them (or when
    released by the test if hold_submissions is set), and their outcome is
    delivered in the same turn.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self._queue: List[Tuple[float, int, _ManualHandle, Callable[..., None], Tuple[Any, ...]]] = []
        self._seq = itertools.count()
        self.hold_submissions = False
        self.held: List[Tuple[Callable[..., Any], Tuple[Any, ...], Callable[[Any], None], Callable[[BaseException], None]]] = []

    def monotonic(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[..., None], *args: Any) -> _ManualHandle:
        handle = _ManualHandle()
        heapq.heappush(self._queue, (self.now + max(delay, 0.0), next(self._seq), handle, callback, args))
        return handle

    def submit(
        self,
        fn: Callable[..., Any],
        *args: Any,
        on_result: Callable[[Any], None],
        on_error: Callable[[BaseException], None],
    ) -> None:
        job = (fn, args, on_result, on_error)
        if self.hold_submissions:
            self.held.append(job)
            return
        self.call_soon(self._run_job, job)

    def _run_job(self, job: Any) -> None:
        fn, args, on_result, on_error = job
        try:
            result = fn(*args)
        except Exception as exc:
            on_error(exc)
            return
        on_result(result)

    def release(self, index: int = 0) -> None:
        """Complete one held submission (by position) right now."""
        self._run_job(self.held.pop(index))

    def run_ready(self) -> None:
        self._run_due(self.now)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        self._run_due(target)
        self.now = target

    def pending(self) -> int:
        return sum(1 for entry in self._queue if not entry[2].cancelled)

    def _run_due(self, until: float) -> None:
        while self._queue and self._queue[0][0] <= until:
            when, _, handle, callback, args = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = max(self.now, when)
            callback(*args)


class FakePlatformApi:
    """
    Scripted stand-in for PlatformApiClient.

    statuses is consumed one entry per get_status call; the last entry repeats.
    Entries that are exceptions are raised.
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.start_response: Dict[str, Any] = {"operation": "op-1", "namespace_name": "team-a"}
        self.start_error: Optional[Exception] = None
        self.statuses: List[Any] = [{"done": False}]
        self.platform: Any = {
            "id": "team-a",
            "namespace_name": "team-a",
            "deployed_apps": ["frontend", "backend"],
            "user_email": "owner@example.com",
        }
        self.platform_error: Optional[Exception] = None
        self.platforms: List[Dict[str, Any]] = []
        self.platforms_error: Optional[Exception] = None

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    def _start(self, name: str, *args: Any) -> Dict[str, Any]:
        self.calls.append((name, args))
        if self.start_error is not None:
            raise self.start_error
        return dict(self.start_response)

    def deploy_platform(self, apps, branch, namespace, user_email):
        return self._start("deploy_platform", list(apps), branch, namespace, user_email)

    def add_apps(self, apps, branch, namespace):
        return self._start("add_apps", list(apps), branch, namespace)

    def remove_apps(self, apps, branch, namespace):
        return self._start("remove_apps", list(apps), branch, namespace)

    def delete_platform(self, branch, namespace):
        return self._start("delete_platform", branch, namespace)

    def run_pipeline(self, apps, branch, namespace):
        return self._start("run_pipeline", list(apps), branch, namespace)

    def get_status(self, operation_id):
        self.calls.append(("get_status", (operation_id,)))
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return item

    def get_platform(self, namespace=None):
        self.calls.append(("get_platform", (namespace,)))
        if self.platform_error is not None:
            raise self.platform_error
        return self.platform

    def list_platforms(self):
        self.calls.append(("list_platforms", ()))
        if self.platforms_error is not None:
            raise self.platforms_error
        return list(self.platforms)


@pytest.fixture
def settings() -> Settings:
    return Settings(app=AppConfig(default_namespace="team-a", user_email="owner@example.com"))


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def fake_api() -> FakePlatformApi:
    return FakePlatformApi()


@pytest.fixture
def push() -> LocalPushChannel:
    return LocalPushChannel()


@pytest.fixture
def registry(settings: Settings) -> StepRegistry:
    return StepRegistry.from_settings(settings)


@pytest.fixture
def normalizer() -> LogNormalizer:
    return LogNormalizer(clock=lambda: FIXED_NOW)


@pytest.fixture
def tracer() -> OperationTracer:
    """Tracer that keeps events in memory without touching production logging."""
    return OperationTracer(redactor=SecurityRedactor(), mirror_to_log=False)


@pytest.fixture
def metrics() -> Metrics:
    return Metrics()


@pytest.fixture
def controller(
    settings: Settings,
    fake_api: FakePlatformApi,
    scheduler: ManualScheduler,
    push: LocalPushChannel,
    registry: StepRegistry,
    normalizer: LogNormalizer,
    tracer: OperationTracer,
    metrics: Metrics,
) -> OperationController:
    """Controller wired to the fake API, the manual scheduler and an in-process push channel."""
    return OperationController(
        settings=settings,
        api=fake_api,  # type: ignore[arg-type]
        scheduler=scheduler,
        push=push,
        registry=registry,
        normalizer=normalizer,
        tracer=tracer,
        metrics=metrics,
    )
