# ==============================
# Step Registry
# ==============================
"""
Canonical step identifiers and status classification.

The orchestration service may report steps in arbitrary order, in any case, or
include internal pseudo-steps (diagnostics, commit bookkeeping). The registry
decides which ids are shown and in what order, independent of arrival order.
"""

from __future__ import annotations

from typing import FrozenSet, Iterable, List, Optional, Sequence

from core.config.schema import Settings, StepsConfig
from core.contracts.operation_schema import StepStatus

# ==============================
# Status Groups
# ==============================
STEP_TERMINAL: FrozenSet[StepStatus] = frozenset(
    {
        StepStatus.SUCCESS,
        StepStatus.DONE,
        StepStatus.FAILURE,
        StepStatus.CANCELLED,
        StepStatus.INTERNAL_ERROR,
        StepStatus.TIMEOUT,
    }
)

_BY_VALUE = {s.value: s for s in StepStatus}


def parse_status(raw: Optional[str]) -> StepStatus:
    """Map any backend status string onto StepStatus; unrecognized values become UNKNOWN."""
    if raw is None:
        return StepStatus.UNKNOWN
    return _BY_VALUE.get(str(raw).strip().upper(), StepStatus.UNKNOWN)


def unrecognized_status(raw: Optional[str]) -> Optional[str]:
    """The upper-cased backend value when parse_status would fall back to UNKNOWN, else None."""
    if raw is None:
        return None
    value = str(raw).strip().upper()
    if not value or value in _BY_VALUE:
        return None
    return value


def is_terminal(status: StepStatus | str | None) -> bool:
    if not isinstance(status, StepStatus):
        status = parse_status(status)
    return status in STEP_TERMINAL


# ==============================
# Registry
# ==============================
class StepRegistry:
    def __init__(self, canonical: Iterable[str], default_order: Sequence[str]) -> None:
        self._canonical: FrozenSet[str] = frozenset(c.strip().lower() for c in canonical if c and c.strip())
        self._default_order: List[str] = [d for d in (x.strip().lower() for x in default_order) if d in self._canonical]

    @classmethod
    def from_settings(cls, settings: Settings) -> "StepRegistry":
        return cls.from_config(settings.steps)

    @classmethod
    def from_config(cls, config: StepsConfig) -> "StepRegistry":
        return cls(config.canonical, config.default_order)

    @property
    def canonical(self) -> FrozenSet[str]:
        return self._canonical

    def is_canonical(self, step_id: Optional[str]) -> bool:
        if not step_id:
            return False
        return step_id.strip().lower() in self._canonical

    def select(self, selection: Optional[Sequence[str]]) -> List[str]:
        """Lower-case, de-duplicate and drop non-canonical ids, keeping selection order."""
        out: List[str] = []
        seen = set()
        for raw in selection or ():
            sid = (raw or "").strip().lower()
            if sid in seen or sid not in self._canonical:
                continue
            seen.add(sid)
            out.append(sid)
        return out

    def canonical_order(self, selection: Optional[Sequence[str]] = None) -> List[str]:
        """
        Display order for a selection.

        Empty (or fully non-canonical) selections fall back to the default order.
        """
        return self.select(selection) or list(self._default_order)
