# ==============================
# Push Channel Tests
# ==============================
from __future__ import annotations

from typing import Any, List, Tuple

from core.remote.push import LocalPushChannel, NullPushChannel


def _bound(channel) -> Tuple[List[Any], List[Any]]:
    events: List[Any] = []
    changes: List[Any] = []
    channel.bind(on_event=lambda op, payload: events.append((op, payload)), on_connection=lambda c, r: changes.append((c, r)))
    return events, changes


def test_null_channel_is_never_connected() -> None:
    channel = NullPushChannel()
    assert channel.connected is False
    channel.subscribe("op-1")
    channel.unsubscribe("op-1")
    channel.close()


def test_local_channel_delivers_only_subscribed_operations() -> None:
    channel = LocalPushChannel()
    events, _ = _bound(channel)

    assert channel.publish("op-1", {"step": "gitea"}) is False
    channel.subscribe("op-1")
    assert channel.publish("op-1", {"step": "gitea"}) is True
    assert channel.publish("op-2", {"step": "jira"}) is False
    channel.unsubscribe("op-1")
    assert channel.publish("op-1", {"step": "gitea"}) is False

    assert events == [("op-1", {"step": "gitea"})]


def test_disconnect_drops_subscriptions_and_reports_state() -> None:
    channel = LocalPushChannel()
    events, changes = _bound(channel)
    channel.subscribe("op-1")

    channel.disconnect("network down")
    assert channel.connected is False
    assert channel.subscriptions == set()
    channel.subscribe("op-1")
    assert channel.subscriptions == set()
    assert channel.publish("op-1", {}) is False

    channel.reconnect()
    assert changes == [(False, "network down"), (True, None)]
    assert events == []
