# ==============================
# Orchestration Client Tests
# ==============================
from __future__ import annotations

from typing import Any, Dict, List

import pytest
import requests

from core.config.schema import AppConfig, SecretsConfig, Settings, TrackingConfig
from core.remote import client as client_mod
from core.remote.client import PlatformApiClient
from core.remote.errors import RemoteCallError, RemoteResponseError, RemoteTimeoutError, error_message


class _FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, text: str = "", reason: str = "") -> None:
        self.status_code = status_code
        self._body = body
        self.text = text
        self.reason = reason

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no json")
        return self._body


class _Recorder:
    """Stands in for requests.request and replays queued replies."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.replies: List[Any] = []

    def __call__(self, method: str, url: str, **kwargs: Any) -> Any:
        self.calls.append({"method": method, "url": url, **kwargs})
        reply = self.replies.pop(0) if self.replies else _FakeResponse(body={"operation": "op-1"})
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def recorded(monkeypatch) -> _Recorder:
    recorder = _Recorder()
    monkeypatch.setattr(client_mod.requests, "request", recorder)
    return recorder


@pytest.fixture
def api() -> PlatformApiClient:
    return PlatformApiClient("http://orch.local:8080/", timeout=4.0)


def _queue(recorded: _Recorder, *replies: Any) -> None:
    recorded.replies.extend(replies)


def test_from_settings_uses_url_timeout_and_token() -> None:
    settings = Settings(
        app=AppConfig(orchestrator_url="http://svc:9000/"),
        tracking=TrackingConfig(request_timeout_seconds=7.5),
        secrets=SecretsConfig(api_token="tok-123"),
    )
    api = PlatformApiClient.from_settings(settings)
    assert api.base_url == "http://svc:9000"
    assert api.timeout == 7.5
    assert api.headers["Authorization"] == "Bearer tok-123"


def test_deploy_posts_expected_payload(api, recorded) -> None:
    _queue(recorded, _FakeResponse(body={"operation": "op-9", "namespace_name": "team-a"}))

    body = api.deploy_platform(["frontend", "backend"], "main", "team-a", "me@example.com")

    assert body == {"operation": "op-9", "namespace_name": "team-a"}
    [call] = recorded.calls
    assert call["method"] == "POST"
    assert call["url"] == "http://orch.local:8080/platform/deploy"
    assert call["json"] == {
        "Apps": ["frontend", "backend"],
        "Branch": "main",
        "Namespace": "team-a",
        "UserEmail": "me@example.com",
    }
    assert call["timeout"] == 4.0
    assert "Authorization" not in call["headers"]


def test_change_and_delete_endpoints(api, recorded) -> None:
    api.add_apps(["gitea"], "dev", "team-a")
    api.remove_apps(["jira"], "dev", "team-a")
    api.delete_platform("dev", "team-a")
    api.run_pipeline(["frontend", "gitea"], "dev", "team-a")

    assert [c["url"].rsplit(":8080", 1)[1] for c in recorded.calls] == [
        "/platform/add",
        "/platform/remove",
        "/platform/delete",
        "/run",
    ]
    assert recorded.calls[2]["json"] == {"Branch": "dev", "Namespace": "team-a"}
    assert recorded.calls[3]["json"]["Apps"] == "frontend,gitea"


def test_status_and_platform_queries(api, recorded) -> None:
    _queue(
        recorded,
        _FakeResponse(body={"done": False}),
        _FakeResponse(body={"id": "x"}),
        _FakeResponse(body={"id": "y"}),
        _FakeResponse(body=[{"id": "x"}]),
    )
    assert api.get_status("op 1") == {"done": False}
    api.get_platform("team a")
    api.get_platform()
    assert api.list_platforms() == [{"id": "x"}]

    assert recorded.calls[0]["method"] == "GET"
    assert recorded.calls[0]["params"] == {"operation": "op 1"}
    assert recorded.calls[1]["url"].endswith("/platform/team%20a")
    assert recorded.calls[2]["url"].endswith("/platform")


def test_http_error_uses_payload_message(api, recorded) -> None:
    _queue(recorded, _FakeResponse(status_code=409, body={"error": "namespace already exists"}))
    with pytest.raises(RemoteResponseError) as excinfo:
        api.deploy_platform(["frontend"], "main", "team-a", None)
    assert excinfo.value.message == "namespace already exists"
    assert excinfo.value.status_code == 409
    assert str(excinfo.value) == "namespace already exists (HTTP 409)"


def test_http_error_without_json_falls_back_to_text(api, recorded) -> None:
    _queue(recorded, _FakeResponse(status_code=502, text="Bad Gateway"))
    with pytest.raises(RemoteResponseError) as excinfo:
        api.get_status("op-1")
    assert excinfo.value.message == "Bad Gateway"


def test_timeout_and_connection_errors(api, recorded) -> None:
    _queue(recorded, requests.Timeout("slow"), requests.ConnectionError("refused"))
    with pytest.raises(RemoteTimeoutError):
        api.get_status("op-1")
    with pytest.raises(RemoteCallError) as excinfo:
        api.get_status("op-1")
    assert "refused" in excinfo.value.message


def test_success_without_json_is_an_error(api, recorded) -> None:
    _queue(recorded, _FakeResponse(status_code=200, body=None))
    with pytest.raises(RemoteResponseError):
        api.get_status("op-1")


def test_platform_list_must_be_a_list(api, recorded) -> None:
    _queue(recorded, _FakeResponse(body={"items": []}))
    with pytest.raises(RemoteResponseError):
        api.list_platforms()


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"error": "plain"}, "plain"),
        ({"error": {"message": "nested"}}, "nested"),
        ({"message": "top level"}, "top level"),
        ("text body", "text body"),
        ({"unrelated": 1}, "fallback"),
        (None, "fallback"),
    ],
)
def test_error_message_shapes(payload, expected) -> None:
    assert error_message(payload, "fallback") == expected
