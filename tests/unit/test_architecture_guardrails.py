# ==============================
# Tests: Architecture Guardrails
# ==============================
from __future__ import annotations

import ast
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

REPO_ROOT = Path(__file__).resolve().parents[2]

# pure merge/normalize logic: no network, no event loop
PURE_TRACKING_MODULES = ("engine.py", "registry.py", "progress.py", "log_normalizer.py", "state.py")
PURE_FORBIDDEN = ("requests", "asyncio", "core.remote", "core.tracking.controller", "core.tracking.scheduler")


def _iter_python_files(root: Path) -> Iterable[Path]:
    for path in root.rglob("*.py"):
        if path.is_file():
            yield path


def _imports(path: Path) -> List[str]:
    tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    names: List[str] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            names.extend(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            names.append(node.module)
    return names


def _offenders(paths: Iterable[Path], forbidden: Sequence[str]) -> List[Tuple[str, str]]:
    found: List[Tuple[str, str]] = []
    for path in paths:
        for name in _imports(path):
            if any(name == prefix or name.startswith(prefix + ".") for prefix in forbidden):
                found.append((str(path.relative_to(REPO_ROOT)), name))
    return found


def test_reconciliation_logic_has_no_io_imports() -> None:
    tracking = REPO_ROOT / "core" / "tracking"
    offenders = _offenders((tracking / name for name in PURE_TRACKING_MODULES), PURE_FORBIDDEN)
    if offenders:
        details = "\n".join(f"{path}: {module}" for path, module in offenders)
        raise AssertionError(f"Forbidden imports in reconciliation modules:\n{details}")


def test_contracts_do_not_depend_on_runtime_modules() -> None:
    offenders = _offenders(
        _iter_python_files(REPO_ROOT / "core" / "contracts"),
        ("core.tracking", "core.remote", "gateway"),
    )
    assert offenders == []


def test_only_config_loader_reads_environment() -> None:
    readers = [
        str(path.relative_to(REPO_ROOT))
        for root in (REPO_ROOT / "core", REPO_ROOT / "gateway")
        for path in _iter_python_files(root)
        if "os.environ" in path.read_text(encoding="utf-8") or "os.getenv" in path.read_text(encoding="utf-8")
    ]
    assert readers == [str(Path("core") / "config" / "loader.py")]
