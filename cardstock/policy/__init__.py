"""Per-row authorization policies exposed for convenience."""

from .engine import Operation, PolicyContext, PolicyEngine, ProposedRow, TablePolicy
from .rules import build_policies, default_policy_engine

__all__ = [
    "Operation",
    "PolicyContext",
    "PolicyEngine",
    "ProposedRow",
    "TablePolicy",
    "build_policies",
    "default_policy_engine",
]
