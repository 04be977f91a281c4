# ==============================
# Push Channel
# ==============================
"""
Push-channel interface for incremental progress events.

Contract:
- subscribe(operation_id) / unsubscribe(operation_id), keyed by operation id
- delivers (operation_id, {step, status, log, allLogs?}) to the bound listener
- reports connection changes; a drop degrades tracking to poll-only

Implementations:
- NullPushChannel: never connected (poll-only tracking)
- LocalPushChannel: in-process channel; a transport adapter or a test publishes into it

Listeners may be invoked from a transport thread; the controller re-posts them onto
its loop before touching state.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Set

logger = logging.getLogger("tracker.push")

EventListener = Callable[[str, Dict[str, Any]], None]
ConnectionListener = Callable[[bool, Optional[str]], None]


class PushChannel(ABC):
    def __init__(self) -> None:
        self._on_event: Optional[EventListener] = None
        self._on_connection: Optional[ConnectionListener] = None

    def bind(self, *, on_event: EventListener, on_connection: ConnectionListener) -> None:
        self._on_event = on_event
        self._on_connection = on_connection

    @property
    @abstractmethod
    def connected(self) -> bool: ...

    @abstractmethod
    def subscribe(self, operation_id: str) -> None: ...

    @abstractmethod
    def unsubscribe(self, operation_id: str) -> None: ...

    def close(self) -> None:
        return None


class NullPushChannel(PushChannel):
    @property
    def connected(self) -> bool:
        return False

    def subscribe(self, operation_id: str) -> None:
        return None

    def unsubscribe(self, operation_id: str) -> None:
        return None


class LocalPushChannel(PushChannel):
    def __init__(self, *, connected: bool = True) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._connected = connected
        self._subscriptions: Set[str] = set()

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._connected

    @property
    def subscriptions(self) -> Set[str]:
        with self._lock:
            return set(self._subscriptions)

    def subscribe(self, operation_id: str) -> None:
        with self._lock:
            if not self._connected:
                return
            self._subscriptions.add(operation_id)
        logger.info("subscribed", extra={"operation_id": operation_id})

    def unsubscribe(self, operation_id: str) -> None:
        with self._lock:
            self._subscriptions.discard(operation_id)
        logger.info("unsubscribed", extra={"operation_id": operation_id})

    def publish(self, operation_id: str, payload: Dict[str, Any]) -> bool:
        """Deliver an event if someone is subscribed to operation_id. Returns True if delivered."""
        with self._lock:
            deliver = self._connected and operation_id in self._subscriptions
            listener = self._on_event
        if not deliver or listener is None:
            return False
        listener(operation_id, payload)
        return True

    def disconnect(self, reason: Optional[str] = None) -> None:
        with self._lock:
            self._connected = False
            self._subscriptions.clear()
            listener = self._on_connection
        if listener is not None:
            listener(False, reason)

    def reconnect(self) -> None:
        with self._lock:
            self._connected = True
            listener = self._on_connection
        if listener is not None:
            listener(True, None)

    def close(self) -> None:
        with self._lock:
            self._subscriptions.clear()
            self._connected = False
