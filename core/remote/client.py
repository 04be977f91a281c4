# ==============================
# Orchestration Service Client
# ==============================
"""
Blocking HTTP client for the platform orchestration service.

Endpoints:
- POST /platform/deploy   {Apps, Branch, Namespace, UserEmail} -> {operation, namespace_name}
- POST /platform/add      {Apps, Branch, Namespace}            -> {operation, added}
- POST /platform/remove   {Apps, Branch, Namespace}            -> {operation, removed}
- POST /platform/delete   {Branch, Namespace}                  -> {operation}
- POST /run               {Apps: "a,b", Branch, Namespace}     -> {operation}
- GET  /status?operation=<id>
- GET  /platform[/<namespace>], GET /platforms

Calls block; the controller runs them through Scheduler.submit so the loop never waits.
Every failure is raised as RemoteCallError (or a subclass).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests

from core.config.schema import Settings
from core.remote.errors import RemoteCallError, RemoteResponseError, RemoteTimeoutError, error_message

logger = logging.getLogger("tracker.remote")


class PlatformApiClient:
    def __init__(self, base_url: str, *, timeout: float = 15.0, api_token: Optional[str] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers: Dict[str, str] = {"Accept": "application/json"}
        if api_token:
            self.headers["Authorization"] = f"Bearer {api_token}"

    @classmethod
    def from_settings(cls, settings: Settings) -> "PlatformApiClient":
        return cls(
            settings.app.orchestrator_url,
            timeout=settings.tracking.request_timeout_seconds,
            api_token=settings.secrets.api_token,
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug("request %s %s", method, path)
        try:
            resp = requests.request(
                method,
                url,
                json=payload,
                params=params,
                headers=self.headers,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise RemoteTimeoutError(f"Request to {path} timed out", url=url) from exc
        except requests.RequestException as exc:
            raise RemoteCallError(str(exc) or exc.__class__.__name__, url=url) from exc

        try:
            body = resp.json()
        except ValueError:
            body = None

        if not resp.ok:
            fallback = resp.text or resp.reason or f"HTTP {resp.status_code}"
            raise RemoteResponseError(
                error_message(body, fallback),
                status_code=resp.status_code,
                payload=body,
                url=url,
            )
        if body is None:
            raise RemoteResponseError(f"Invalid JSON from {path}", status_code=resp.status_code, url=url)
        return body

    # ------------------------------------------------------------------ start calls
    def deploy_platform(
        self,
        apps: Sequence[str],
        branch: str,
        namespace: str,
        user_email: Optional[str],
    ) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/platform/deploy",
            payload={"Apps": list(apps), "Branch": branch, "Namespace": namespace, "UserEmail": user_email},
        )

    def add_apps(self, apps: Sequence[str], branch: str, namespace: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/platform/add",
            payload={"Apps": list(apps), "Branch": branch, "Namespace": namespace},
        )

    def remove_apps(self, apps: Sequence[str], branch: str, namespace: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/platform/remove",
            payload={"Apps": list(apps), "Branch": branch, "Namespace": namespace},
        )

    def delete_platform(self, branch: str, namespace: str) -> Dict[str, Any]:
        return self._request("POST", "/platform/delete", payload={"Branch": branch, "Namespace": namespace})

    def run_pipeline(self, apps: Sequence[str], branch: str, namespace: Optional[str]) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/run",
            payload={"Apps": ",".join(apps), "Branch": branch, "Namespace": namespace},
        )

    # ------------------------------------------------------------------ queries
    def get_status(self, operation_id: str) -> Dict[str, Any]:
        return self._request("GET", "/status", params={"operation": operation_id})

    def get_platform(self, namespace: Optional[str] = None) -> Dict[str, Any]:
        path = f"/platform/{quote(namespace, safe='')}" if namespace else "/platform"
        return self._request("GET", path)

    def list_platforms(self) -> List[Dict[str, Any]]:
        body = self._request("GET", "/platforms")
        if not isinstance(body, list):
            raise RemoteResponseError("Expected a list from /platforms", payload=body)
        return body
