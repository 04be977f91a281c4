# ==============================
# Progress Calculator
# ==============================
"""
Completion percentage for a step list.

All known steps being terminal does not mean the backend is finished (state
commit, log flush), so only an explicit done signal reaches 100.
"""

from __future__ import annotations

import math
from typing import Iterable

from core.contracts.operation_schema import Step
from core.tracking.registry import is_terminal

MAX_UNCONFIRMED_PERCENT = 99


def compute_percent(steps: Iterable[Step], forced_done: bool) -> int:
    if forced_done:
        return 100
    items = list(steps)
    total = len(items)
    if not total:
        return 0
    finished = sum(1 for s in items if is_terminal(s.status))
    # round half up
    pct = math.floor(finished * 100 / total + 0.5)
    return min(MAX_UNCONFIRMED_PERCENT, pct)
