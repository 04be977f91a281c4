# ==============================
# CLI Entrypoint
# ==============================
"""
CLI for the platform operation tracker.

Supported commands:
  tracker deploy --apps frontend,backend --namespace team-a [--branch main] [--email me@x.io]
  tracker add --apps gitea,jira [--namespace team-a]
  tracker remove --apps jira [--namespace team-a]
  tracker delete --namespace team-a --yes
  tracker run --apps frontend,backend [--branch main]
  tracker platform [--namespace team-a]
  tracker platforms
  tracker status --operation op_123

Operation commands print one progress line per change on stderr and the final
tracker state as JSON on stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Callable, Dict, List, Optional

from core.config.loader import load_settings
from core.config.schema import Settings
from core.contracts.operation_schema import TrackerState
from core.contracts.result_schema import ActionResult
from core.logging.logger import bootstrap_logger
from core.logging.metrics import Metrics
from core.remote.client import PlatformApiClient
from core.remote.errors import RemoteCallError
from core.tracking.controller import OperationController
from core.tracking.scheduler import AsyncioScheduler

Action = Callable[[OperationController], ActionResult]


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def _split_apps(raw: Optional[str]) -> List[str]:
    return [a.strip() for a in (raw or "").split(",") if a.strip()]


def _progress_line(state: TrackerState) -> str:
    steps = " ".join(f"{s.id}={s.label}" for s in state.steps)
    line = f"[{state.progress:3d}%] {state.status}"
    if steps:
        line = f"{line} | {steps}"
    if state.notice:
        line = f"{line} ({state.notice})"
    return line


async def _drive(
    settings: Settings,
    actions: List[Action],
    metrics: Metrics,
) -> Dict[str, Any]:
    """Run actions one after another, each until the tracker is idle again."""
    controller = OperationController.from_settings(settings, AsyncioScheduler(), metrics=metrics)
    idle = asyncio.Event()
    last_line: List[str] = []

    def _on_change(state: TrackerState) -> None:
        line = _progress_line(state)
        if not last_line or last_line[-1] != line:
            last_line.append(line)
            print(line, file=sys.stderr)
        if state.idle:
            idle.set()
        else:
            idle.clear()

    controller.subscribe(_on_change)
    result = ActionResult.success()
    try:
        for action in actions:
            result = action(controller)
            if not result.ok:
                break
            if not controller.idle:
                await idle.wait()
    finally:
        controller.shutdown()

    return {"result": result, "state": controller.state}


def cmd_operation(settings: Settings, actions: List[Action], *, expect_completion: bool = True) -> int:
    metrics = Metrics()
    outcome = asyncio.run(_drive(settings, actions, metrics))
    result: ActionResult = outcome["result"]
    state: TrackerState = outcome["state"]
    _print_json(
        {
            "result": result.model_dump(mode="json"),
            "state": state.model_dump(mode="json"),
            "metrics": metrics.snapshot(),
        }
    )
    if not result.ok:
        return 1
    if expect_completion and not state.operation.completion_flag:
        return 1
    return 0


def cmd_platform(api: PlatformApiClient, *, namespace: Optional[str]) -> int:
    try:
        body = api.get_platform(namespace)
    except RemoteCallError as exc:
        _print_json({"ok": False, "error": str(exc)})
        return 1
    _print_json({"ok": True, "platform": body})
    return 0


def cmd_platforms(api: PlatformApiClient) -> int:
    try:
        body = api.list_platforms()
    except RemoteCallError as exc:
        _print_json({"ok": False, "error": str(exc)})
        return 1
    _print_json({"ok": True, "platforms": body})
    return 0


def cmd_status(api: PlatformApiClient, *, operation: str) -> int:
    try:
        body = api.get_status(operation)
    except RemoteCallError as exc:
        _print_json({"ok": False, "error": str(exc)})
        return 1
    _print_json({"ok": True, "status": body})
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="tracker")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_deploy = sub.add_parser("deploy")
    ap_deploy.add_argument("--apps", required=True, help="Comma separated application ids")
    ap_deploy.add_argument("--namespace", default=None)
    ap_deploy.add_argument("--branch", default=None)
    ap_deploy.add_argument("--email", default=None, help="Owner e-mail (defaults to app.user_email)")

    for name in ("add", "remove"):
        ap_change = sub.add_parser(name)
        ap_change.add_argument("--apps", required=True, help="Comma separated application ids")
        ap_change.add_argument("--namespace", default=None)
        ap_change.add_argument("--branch", default=None)

    ap_delete = sub.add_parser("delete")
    ap_delete.add_argument("--namespace", default=None)
    ap_delete.add_argument("--branch", default=None)
    ap_delete.add_argument("--yes", action="store_true", help="Confirm deletion of the whole platform")

    ap_run = sub.add_parser("run")
    ap_run.add_argument("--apps", required=True, help="Comma separated application ids")
    ap_run.add_argument("--branch", default=None)

    ap_platform = sub.add_parser("platform")
    ap_platform.add_argument("--namespace", default=None)

    sub.add_parser("platforms")

    ap_status = sub.add_parser("status")
    ap_status.add_argument("--operation", required=True)

    args = ap.parse_args(argv)

    settings = load_settings()
    bootstrap_logger(settings)

    if args.cmd == "deploy":
        apps = _split_apps(args.apps)
        namespace = args.namespace or settings.app.default_namespace
        return cmd_operation(
            settings,
            [lambda c: c.deploy_platform(apps, args.branch, namespace, args.email)],
        )
    if args.cmd == "add":
        apps = _split_apps(args.apps)
        return cmd_operation(settings, [lambda c: c.add_apps(apps, args.branch, args.namespace)])
    if args.cmd == "remove":
        apps = _split_apps(args.apps)
        return cmd_operation(settings, [lambda c: c.remove_apps(apps, args.branch, args.namespace)])
    if args.cmd == "delete":
        # deletion seeds its steps from the loaded platform record
        return cmd_operation(
            settings,
            [
                lambda c: c.load_platform(args.namespace),
                lambda c: c.delete_platform(args.branch, args.namespace, confirm=args.yes),
            ],
        )
    if args.cmd == "run":
        apps = _split_apps(args.apps)
        return cmd_operation(settings, [lambda c: c.run_selected(apps, args.branch)])

    api = PlatformApiClient.from_settings(settings)
    if args.cmd == "platform":
        return cmd_platform(api, namespace=args.namespace or settings.app.default_namespace)
    if args.cmd == "platforms":
        return cmd_platforms(api)
    if args.cmd == "status":
        return cmd_status(api, operation=args.operation)

    raise SystemExit("Unknown command")


if __name__ == "__main__":
    raise SystemExit(main())
