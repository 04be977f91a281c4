# ==============================
# Scheduler
# ==============================
"""
Event-loop seam for the tracker.

Everything that mutates tracker state runs on one loop thread:
- timer callbacks (poll interval, settle delay)
- remote-call completions (submit -> on_result / on_error)
- push-channel events (posted with call_soon, which is thread-safe)

The loop's callback queue is the single mailbox; no locks are needed in the
engine or controller. Production uses AsyncioScheduler; tests drive a manual
virtual-time implementation of the same interface.
"""

from __future__ import annotations

import asyncio
import functools
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Protocol

ResultCallback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class RepeatingTimer:
    """Interval timer built from one-shot call_later handles."""

    def __init__(self, scheduler: "Scheduler", interval: float, callback: Callable[[], None]) -> None:
        self._scheduler = scheduler
        self._interval = interval
        self._callback = callback
        self._current: Optional[TimerHandle] = None
        self.cancelled = False
        self._arm()

    def _arm(self) -> None:
        self._current = self._scheduler.call_later(self._interval, self._fire)

    def _fire(self) -> None:
        if self.cancelled:
            return
        self._callback()
        if not self.cancelled:
            self._arm()

    def cancel(self) -> None:
        self.cancelled = True
        if self._current is not None:
            self._current.cancel()
            self._current = None


class Scheduler(ABC):
    @abstractmethod
    def monotonic(self) -> float:
        """Current loop time in seconds."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[..., None], *args: Any) -> TimerHandle:
        """Run callback on the loop after delay seconds."""

    @abstractmethod
    def submit(
        self,
        fn: Callable[..., Any],
        *args: Any,
        on_result: ResultCallback,
        on_error: ErrorCallback,
    ) -> None:
        """Run a blocking call off-loop; deliver its outcome back on the loop."""

    def call_soon(self, callback: Callable[..., None], *args: Any) -> None:
        self.call_later(0.0, callback, *args)

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        return RepeatingTimer(self, interval, callback)


class AsyncioScheduler(Scheduler):
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def monotonic(self) -> float:
        return self._loop.time()

    def call_later(self, delay: float, callback: Callable[..., None], *args: Any) -> TimerHandle:
        return self._loop.call_later(delay, callback, *args)

    def call_soon(self, callback: Callable[..., None], *args: Any) -> None:
        # push transports call this from their own threads
        self._loop.call_soon_threadsafe(callback, *args)

    def submit(
        self,
        fn: Callable[..., Any],
        *args: Any,
        on_result: ResultCallback,
        on_error: ErrorCallback,
    ) -> None:
        future = self._loop.run_in_executor(None, functools.partial(fn, *args))

        def _deliver(done: "asyncio.Future[Any]") -> None:
            if done.cancelled():
                return
            exc = done.exception()
            if exc is not None:
                on_error(exc)
            else:
                on_result(done.result())

        future.add_done_callback(_deliver)
