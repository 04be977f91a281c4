# ==============================
# Operation Lifecycle Controller
# ==============================
"""
Drives one remote operation from start call to settled platform state.

Responsibilities:
- gate actions on idleness and validate their inputs
- issue the start call, then poll /status on an interval while the push channel
  (when connected) streams incremental events
- feed both producers into the ReconciliationEngine on the scheduler's loop
- after remote completion wait the settle delay, then refresh platform data
- publish an immutable TrackerState to subscribers after every change

Every action returns an ActionResult; remote failures become status text
plus TrackerState.last_error and never escape an entry point.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from core.config.schema import Settings
from core.contracts.operation_schema import (
    OperationKind,
    PlatformRecord,
    ProgressEvent,
    StartResponse,
    StatusResponse,
    TrackerState,
)
from core.contracts.result_schema import ActionResult, OperationError, OperationErrorCode
from core.logging.logger import LogContext, with_context
from core.logging import metrics as metrics_names
from core.logging.metrics import Metrics, Timer
from core.logging.tracing import OperationTracer
from core.remote.client import PlatformApiClient
from core.remote.errors import RemoteCallError
from core.remote.push import NullPushChannel, PushChannel
from core.tracking.engine import ReconciliationEngine
from core.tracking.log_normalizer import LogNormalizer
from core.tracking.registry import StepRegistry
from core.tracking.scheduler import Scheduler, TimerHandle
from core.tracking.state import ApplyOutcome, OperationPhase

logger = logging.getLogger("tracker.controller")

StateListener = Callable[[TrackerState], None]
StartedText = Callable[[StartResponse, List[str]], str]

BUSY_MESSAGE = "Another operation is in progress"


def _describe(exc: BaseException) -> str:
    if isinstance(exc, RemoteCallError):
        return exc.message
    if isinstance(exc, ValidationError):
        return "Invalid response from orchestration service"
    return str(exc) or exc.__class__.__name__


class OperationController:
    def __init__(
        self,
        *,
        settings: Settings,
        api: PlatformApiClient,
        scheduler: Scheduler,
        push: Optional[PushChannel] = None,
        registry: Optional[StepRegistry] = None,
        normalizer: Optional[LogNormalizer] = None,
        tracer: Optional[OperationTracer] = None,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self.settings = settings
        self.api = api
        self.scheduler = scheduler
        self.push = push or NullPushChannel()
        self.registry = registry or StepRegistry.from_settings(settings)
        self.tracer = tracer or OperationTracer(mirror_to_log=False)
        self.metrics = metrics or Metrics()
        self.engine = ReconciliationEngine(registry=self.registry, normalizer=normalizer, tracer=self.tracer)

        self._namespace: Optional[str] = settings.app.default_namespace
        self._platform: Optional[PlatformRecord] = None
        self._platforms: List[PlatformRecord] = []
        self._notice: Optional[str] = None

        self._poll_timer: Optional[TimerHandle] = None
        self._settle_timer: Optional[TimerHandle] = None
        self._tick = 0
        self._subscribed: Optional[str] = None
        self._op_timer: Optional[Timer] = None

        self._refreshing = 0
        self._last_error: Optional[OperationError] = None
        self._last_platform_load: Optional[float] = None

        self._listeners: List[StateListener] = []

        self.push.bind(on_event=self._on_push_event, on_connection=self._on_push_connection)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        scheduler: Scheduler,
        *,
        push: Optional[PushChannel] = None,
        metrics: Optional[Metrics] = None,
    ) -> "OperationController":
        return cls(
            settings=settings,
            api=PlatformApiClient.from_settings(settings),
            scheduler=scheduler,
            push=push,
            tracer=OperationTracer.from_settings(settings),
            metrics=metrics,
        )

    # ------------------------------------------------------------------ read surface
    @property
    def idle(self) -> bool:
        return self.engine.phase is OperationPhase.IDLE and self._refreshing == 0

    @property
    def namespace(self) -> Optional[str]:
        return self._namespace

    @property
    def state(self) -> TrackerState:
        return TrackerState(
            phase=self.engine.phase,
            running=self.engine.running,
            idle=self.idle,
            operation=self.engine.snapshot(),
            status=self.engine.status_text,
            logs=self.engine.logs,
            platform=self._platform,
            platforms=list(self._platforms),
            namespace=self._namespace,
            notice=self._notice,
            last_error=self._last_error,
        )

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a change listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self) -> None:
        if not self._listeners:
            return
        state = self.state
        for listener in list(self._listeners):
            listener(state)

    # ------------------------------------------------------------------ actions
    def deploy_platform(
        self,
        apps: Sequence[str],
        branch: Optional[str],
        namespace: Optional[str],
        user_email: Optional[str] = None,
    ) -> ActionResult:
        rejected = self._gate()
        if rejected is not None:
            return rejected
        ns = (namespace or "").strip()
        if not ns:
            return self._invalid("Namespace is required")
        selected = self.registry.select(apps)
        if not selected:
            return self._invalid("Select at least one application")

        self._namespace = ns
        email = user_email or self.settings.app.user_email

        def _started(resp: StartResponse, steps: List[str]) -> str:
            if resp.namespace_name:
                self._namespace = resp.namespace_name
            return f"Platform deployment started. Operation: {resp.operation}"

        return self._start(
            OperationKind.DEPLOY,
            selected,
            "Deploying platform...",
            _started,
            self.api.deploy_platform,
            selected,
            self._branch(branch),
            ns,
            email,
        )

    def add_apps(self, apps: Sequence[str], branch: Optional[str], namespace: Optional[str]) -> ActionResult:
        rejected = self._gate()
        if rejected is not None:
            return rejected
        ns = (namespace or self._namespace or "").strip()
        if not ns:
            return self._invalid("Namespace is required")
        selected = self.registry.select(apps)
        if not selected:
            return self._invalid("Select at least one application")

        self._namespace = ns

        def _started(resp: StartResponse, steps: List[str]) -> str:
            return f"Adding apps: {', '.join(resp.added or steps)}. Operation: {resp.operation}"

        return self._start(
            OperationKind.ADD,
            selected,
            "Adding applications...",
            _started,
            self.api.add_apps,
            selected,
            self._branch(branch),
            ns,
        )

    def remove_apps(self, apps: Sequence[str], branch: Optional[str], namespace: Optional[str]) -> ActionResult:
        rejected = self._gate()
        if rejected is not None:
            return rejected
        ns = (namespace or self._namespace or "").strip()
        if not ns:
            return self._invalid("Namespace is required")
        selected = self.registry.select(apps)
        if not selected:
            return self._invalid("Select at least one application")

        self._namespace = ns

        def _started(resp: StartResponse, steps: List[str]) -> str:
            return f"Removing apps: {', '.join(resp.removed or steps)}. Operation: {resp.operation}"

        return self._start(
            OperationKind.REMOVE,
            selected,
            "Removing applications...",
            _started,
            self.api.remove_apps,
            selected,
            self._branch(branch),
            ns,
        )

    def delete_platform(
        self,
        branch: Optional[str],
        namespace: Optional[str],
        *,
        confirm: bool = False,
    ) -> ActionResult:
        rejected = self._gate()
        if rejected is not None:
            return rejected
        ns = (namespace or self._namespace or "").strip()
        if not ns:
            return self._invalid("Namespace is required")
        if not confirm:
            return self._invalid("Platform deletion must be confirmed")
        deployed = self._platform.deployed_application_ids if self._platform is not None else []
        selected = self.registry.select(deployed)
        if not selected:
            return self._invalid("No platform to delete")

        self._namespace = ns

        def _started(resp: StartResponse, steps: List[str]) -> str:
            return f"Platform deletion started. Operation: {resp.operation}"

        return self._start(
            OperationKind.DELETE,
            selected,
            "Deleting entire platform...",
            _started,
            self.api.delete_platform,
            self._branch(branch),
            ns,
        )

    def run_selected(self, apps: Sequence[str], branch: Optional[str] = None) -> ActionResult:
        """Legacy pipeline run: POST /run with the selection joined by commas."""
        rejected = self._gate()
        if rejected is not None:
            return rejected
        selected = self.registry.select(apps)
        if not selected:
            return self._invalid("Select at least one application")

        def _started(resp: StartResponse, steps: List[str]) -> str:
            return f"Pipeline started. Operation: {resp.operation}"

        return self._start(
            OperationKind.RUN,
            selected,
            "Starting pipeline...",
            _started,
            self.api.run_pipeline,
            selected,
            self._branch(branch),
            self._namespace,
        )

    def load_platform(self, namespace: Optional[str] = None) -> ActionResult:
        """Fetch one platform record. Skipped while a refresh is in flight or within the debounce window."""
        if self.engine.busy:
            return self._busy()
        if not self.idle or self._within_debounce():
            return self._skip_load("platform load skipped", namespace or self._namespace)
        self._refresh_platform(namespace)
        return ActionResult.success({"skipped": False})

    def load_all_platforms(self) -> ActionResult:
        if self.engine.busy:
            return self._busy()
        if not self.idle:
            return self._skip_load("platform list load skipped", self._namespace)
        self._refresh_platforms()
        return ActionResult.success({"skipped": False})

    def shutdown(self) -> None:
        self._release_timers()
        self._unsubscribe_push()
        self.push.close()
        self._listeners.clear()

    # ------------------------------------------------------------------ action helpers
    def _branch(self, branch: Optional[str]) -> str:
        return (branch or "").strip() or self.settings.app.default_branch

    def _gate(self) -> Optional[ActionResult]:
        if not self.idle:
            return self._busy()
        return None

    def _busy(self) -> ActionResult:
        self._notice = BUSY_MESSAGE
        self.metrics.inc(metrics_names.ACTIONS_REJECTED_BUSY)
        self._publish()
        return ActionResult.failure(code=OperationErrorCode.BUSY, message=BUSY_MESSAGE)

    def _skip_load(self, message: str, namespace: Optional[str]) -> ActionResult:
        self.metrics.inc(metrics_names.PLATFORM_LOADS_SKIPPED)
        logger.debug(message, extra={"namespace": namespace})
        return ActionResult.success({"skipped": True})

    def _invalid(self, message: str) -> ActionResult:
        self._notice = None
        self.engine.set_status_text(message)
        self._publish()
        return ActionResult.failure(code=OperationErrorCode.VALIDATION, message=message)

    def _start(
        self,
        kind: OperationKind,
        selected: List[str],
        pending_text: str,
        started_text: StartedText,
        call: Callable[..., Any],
        *args: Any,
    ) -> ActionResult:
        self._release_timers()
        self._unsubscribe_push()
        self._notice = None
        self._last_error = None
        self._tick = 0

        self.engine.begin(kind, selected, pending_text)
        generation = self.engine.generation
        self.metrics.inc(metrics_names.OPERATIONS_STARTED)
        self._op_timer = self.metrics.start_timer(metrics_names.OPERATION_DURATION)
        logger.info("starting operation", extra={"action": kind.value, "namespace": self._namespace})
        self._publish()

        self.scheduler.submit(
            call,
            *args,
            on_result=functools.partial(self._on_start_result, generation, selected, started_text),
            on_error=functools.partial(self._on_start_error, generation),
        )
        return ActionResult.success({"kind": kind.value, "steps": list(selected)})

    # ------------------------------------------------------------------ start outcome
    def _on_start_result(
        self,
        generation: int,
        selected: List[str],
        started_text: StartedText,
        body: Any,
    ) -> None:
        if generation != self.engine.generation or self.engine.phase is not OperationPhase.STARTING:
            return
        try:
            resp = StartResponse.model_validate(body)
        except ValidationError as exc:
            self._on_start_error(generation, exc)
            return

        if not self.engine.accept_start(resp.operation, started_text(resp, selected)):
            return
        kind = self.engine.snapshot().kind
        op_log = with_context(
            logger,
            LogContext(operation_id=resp.operation, namespace=self._namespace, action=kind.value if kind else None),
        )
        op_log.info("operation started with %d step(s)", len(selected))
        self._subscribe_push(resp.operation)
        self._publish()

        self._poll()
        if self.engine.phase is OperationPhase.TRACKING:
            self._poll_timer = self.scheduler.call_every(self.settings.tracking.poll_interval_seconds, self._poll)

    def _on_start_error(self, generation: int, exc: BaseException) -> None:
        if generation != self.engine.generation or self.engine.phase is not OperationPhase.STARTING:
            return
        logger.warning("start call failed: %s", _describe(exc))
        self._abort(f"Error: {_describe(exc)}", OperationErrorCode.START_FAILED)

    # ------------------------------------------------------------------ polling
    def _poll(self) -> None:
        operation_id = self.engine.operation_id
        if self.engine.phase is not OperationPhase.TRACKING or operation_id is None:
            return
        self._tick += 1
        tick = self._tick
        self.metrics.inc(metrics_names.POLL_TICKS)
        self.scheduler.submit(
            self.api.get_status,
            operation_id,
            on_result=functools.partial(self._on_poll_result, operation_id, tick),
            on_error=functools.partial(self._on_poll_error, operation_id, tick),
        )

    def _on_poll_result(self, operation_id: str, tick: int, body: Any) -> None:
        try:
            response = StatusResponse.model_validate(body)
        except ValidationError as exc:
            self._on_poll_error(operation_id, tick, exc)
            return

        outcome = self.engine.apply_poll(operation_id, tick, response)
        if outcome is ApplyOutcome.STALE:
            self.metrics.inc(metrics_names.STALE_RESPONSES)
            return
        if outcome is ApplyOutcome.IGNORED:
            return
        if outcome is ApplyOutcome.COMPLETED:
            self._complete()
        self._publish()

    def _on_poll_error(self, operation_id: str, tick: int, exc: BaseException) -> None:
        if self.engine.phase is not OperationPhase.TRACKING or operation_id != self.engine.operation_id:
            return
        logger.warning("status poll failed: %s", _describe(exc), extra={"operation_id": operation_id})
        self._abort(f"Error polling status: {_describe(exc)}", OperationErrorCode.POLL_FAILED, operation_id)

    # ------------------------------------------------------------------ terminal transitions
    def _complete(self) -> None:
        self._cancel_poll()
        self._unsubscribe_push()
        self.metrics.inc(metrics_names.OPERATIONS_COMPLETED)
        self._stop_op_timer()
        generation = self.engine.generation
        self._settle_timer = self.scheduler.call_later(
            self.settings.tracking.settle_delay_seconds,
            self._settle,
            generation,
        )

    def _settle(self, generation: int) -> None:
        self._settle_timer = None
        if generation != self.engine.generation:
            return
        if not self.engine.finish():
            return
        self._refresh_platform(self._namespace)
        self._refresh_platforms()

    def _abort(self, message: str, code: OperationErrorCode, operation_id: Optional[str] = None) -> None:
        self._release_timers()
        self._unsubscribe_push()
        self._last_error = OperationError(
            code=code,
            message=message,
            details={"operation_id": operation_id} if operation_id else {},
        )
        self.engine.fail(message)
        self.metrics.inc(metrics_names.OPERATIONS_FAILED)
        self._stop_op_timer()
        self._publish()

    def _cancel_poll(self) -> None:
        if self._poll_timer is not None:
            self._poll_timer.cancel()
            self._poll_timer = None

    def _release_timers(self) -> None:
        self._cancel_poll()
        if self._settle_timer is not None:
            self._settle_timer.cancel()
            self._settle_timer = None

    def _clear_error(self, code: OperationErrorCode) -> bool:
        if self._last_error is None or self._last_error.code is not code:
            return False
        self._last_error = None
        return True

    def _stop_op_timer(self) -> None:
        if self._op_timer is not None:
            self.metrics.stop_timer(self._op_timer)
            self._op_timer = None

    # ------------------------------------------------------------------ push channel
    def _subscribe_push(self, operation_id: str) -> None:
        if not self.push.connected:
            return
        self.push.subscribe(operation_id)
        self._subscribed = operation_id

    def _unsubscribe_push(self) -> None:
        if self._subscribed is None:
            return
        self.push.unsubscribe(self._subscribed)
        self._subscribed = None

    def _on_push_event(self, operation_id: str, payload: Dict[str, Any]) -> None:
        # may run on a transport thread
        self.scheduler.call_soon(self._handle_push, operation_id, payload)

    def _on_push_connection(self, connected: bool, reason: Optional[str]) -> None:
        self.scheduler.call_soon(self._handle_connection, connected, reason)

    def _handle_push(self, operation_id: str, payload: Dict[str, Any]) -> None:
        self.metrics.inc(metrics_names.PUSH_EVENTS)
        try:
            event = ProgressEvent.model_validate(payload)
        except ValidationError:
            logger.warning("malformed push event dropped", extra={"operation_id": operation_id})
            return
        outcome = self.engine.apply_push(operation_id, event)
        if outcome is ApplyOutcome.STALE:
            self.metrics.inc(metrics_names.STALE_RESPONSES)
        elif outcome is ApplyOutcome.APPLIED:
            self._publish()

    def _handle_connection(self, connected: bool, reason: Optional[str]) -> None:
        operation_id = self.engine.operation_id
        if not connected:
            self._subscribed = None
            self.metrics.inc(metrics_names.TRANSPORT_DROPS)
            self.tracer.emit(
                "transport_drop",
                operation_id=operation_id,
                payload={"reason": reason or "", "code": OperationErrorCode.TRANSPORT_DROP.value},
                level=logging.WARNING,
            )
            self._last_error = OperationError(
                code=OperationErrorCode.TRANSPORT_DROP,
                message="Push channel disconnected; continuing with polling",
                details={"reason": reason or ""},
            )
            self._publish()
            return
        if self.engine.phase is OperationPhase.TRACKING and operation_id is not None and self._subscribed is None:
            self._subscribe_push(operation_id)
            self.tracer.emit("push_resubscribed", operation_id=operation_id)
        if self._clear_error(OperationErrorCode.TRANSPORT_DROP):
            self._publish()

    # ------------------------------------------------------------------ platform refresh
    def _within_debounce(self) -> bool:
        if self._last_platform_load is None:
            return False
        elapsed = self.scheduler.monotonic() - self._last_platform_load
        return elapsed < self.settings.tracking.platform_load_debounce_seconds

    def _refresh_platform(self, namespace: Optional[str]) -> None:
        target = namespace or self._namespace
        self._refreshing += 1
        self.metrics.inc(metrics_names.PLATFORM_LOADS)
        self._publish()
        self.scheduler.submit(
            self.api.get_platform,
            target,
            on_result=self._on_platform_loaded,
            on_error=self._on_platform_failed,
        )

    def _refresh_platforms(self) -> None:
        self._refreshing += 1
        self._publish()
        self.scheduler.submit(
            self.api.list_platforms,
            on_result=self._on_platforms_loaded,
            on_error=self._on_platforms_failed,
        )

    def _on_platform_loaded(self, body: Any) -> None:
        self._refreshing -= 1
        try:
            record = PlatformRecord.model_validate(body)
        except ValidationError as exc:
            self._on_platform_error(exc)
            return
        self._platform = record
        self._namespace = record.namespace or record.id or self._namespace
        self._last_platform_load = self.scheduler.monotonic()
        self._clear_error(OperationErrorCode.LOAD_FAILED)
        logger.info("platform loaded", extra={"namespace": self._namespace})
        self._publish()

    def _on_platform_failed(self, exc: BaseException) -> None:
        self._refreshing -= 1
        self._on_platform_error(exc)

    def _on_platform_error(self, exc: BaseException) -> None:
        message = f"Error loading platform: {_describe(exc)}"
        self.metrics.inc(metrics_names.PLATFORM_LOAD_FAILURES)
        logger.warning("platform load failed: %s", _describe(exc), extra={"namespace": self._namespace})
        self._last_error = OperationError(
            code=OperationErrorCode.LOAD_FAILED,
            message=message,
            details={"namespace": self._namespace},
        )
        self.engine.set_status_text(message)
        self._publish()

    def _on_platforms_loaded(self, body: Any) -> None:
        self._refreshing -= 1
        try:
            self._platforms = [PlatformRecord.model_validate(item) for item in body]
        except (TypeError, ValidationError) as exc:
            logger.warning("platform list rejected: %s", _describe(exc))
        self._publish()

    def _on_platforms_failed(self, exc: BaseException) -> None:
        self._refreshing -= 1
        logger.warning("platform list load failed: %s", _describe(exc))
        self._publish()
