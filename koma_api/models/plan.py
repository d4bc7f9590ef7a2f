"""
koma_api/models/plan.py

Plan tiers and their fixed monthly allowances.

There are exactly three tiers. Free users have no monthly allowance and are
served by the demo tier (daily, per client address) instead.
"""

from typing import Dict, Literal

FeatureKind = Literal["blog", "movie"]

PAID_PLANS = ("lite", "pro")
FEATURE_KINDS = ("blog", "movie")

# Generations per calendar month, shared by blog and movie
PLAN_LIMITS: Dict[str, int] = {
    "free": 0,
    "lite": 30,
    "pro": 100,
}

# Total order used for tier gating: free < lite < pro
PLAN_ORDER: Dict[str, int] = {
    "free": 0,
    "lite": 1,
    "pro": 2,
}


def normalize_plan(value) -> str:
    """Coerce a stored plan value to a known tier (unknown -> free)."""
    if isinstance(value, str) and value in PLAN_LIMITS:
        return value
    return "free"


def has_plan_access(plan: str, required: str) -> bool:
    return PLAN_ORDER[normalize_plan(plan)] >= PLAN_ORDER[required]
