# ==============================
# Tracking State
# ==============================
"""
Engine phases and merge outcomes.

Intended usage:
- ReconciliationEngine moves between OperationPhase values
- apply_* methods return ApplyOutcome so the controller can react
  (COMPLETED -> stop polling, unsubscribe, arm settle timer)
"""

# ==============================
# Imports
# ==============================
from __future__ import annotations

from enum import Enum
from typing import FrozenSet

from core.contracts.operation_schema import OperationPhase as OperationPhase  # re-export


# ==============================
# Merge Outcomes
# ==============================
class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    COMPLETED = "completed"
    STALE = "stale"
    IGNORED = "ignored"


# ==============================
# Phase Groups
# ==============================
PHASE_RUNNING: FrozenSet[OperationPhase] = frozenset(
    {
        OperationPhase.STARTING,
        OperationPhase.TRACKING,
    }
)

PHASE_BUSY: FrozenSet[OperationPhase] = frozenset(
    {
        OperationPhase.STARTING,
        OperationPhase.TRACKING,
        OperationPhase.COMPLETING,
    }
)
