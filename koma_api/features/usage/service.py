"""
koma_api/features/usage/service.py

Monthly usage ledger for subscription plans.

Handles:
- Usage event recording (after a successful generation)
- Current-month consumption per user
- Per-plan caps and plan-order gating

The check (get_usage) and the append (record_usage) are not wrapped in one
transaction; a burst of concurrent requests at the quota boundary can overshoot
by a small margin.
"""

from typing import Dict

from sqlalchemy import select, insert, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from koma_api.core.clock import Clock, utc_now, start_of_month
from koma_api.core.database import get_db_session, usage_events, users
from koma_api.core.errors import UsageLimitExceededError
from koma_api.core.logging import log_event
from koma_api.models.plan import FEATURE_KINDS, PLAN_LIMITS, has_plan_access, normalize_plan
from koma_api.models.usage_event import UsageEvent, UsageSummary


class UsageLedger:
    def __init__(self, session_factory: sessionmaker, clock: Clock = utc_now):
        self.session_factory = session_factory
        self.clock = clock

    def _plan_for(self, session, user_id: str) -> str:
        row = session.execute(select(users.c.plan).where(users.c.id == user_id)).first()
        return normalize_plan(row.plan) if row else "free"

    def _counts_by_kind(self, session, user_id: str) -> Dict[str, int]:
        since = start_of_month(self.clock())
        rows = session.execute(
            select(usage_events.c.kind, func.count())
            .where(usage_events.c.user_id == user_id)
            .where(usage_events.c.created_at >= since)
            .group_by(usage_events.c.kind)
        ).all()
        counts = {kind: 0 for kind in FEATURE_KINDS}
        for kind, count in rows:
            counts[kind] = counts.get(kind, 0) + int(count)
        return counts

    def get_usage(self, user_id: str) -> UsageSummary:
        """
        Current-month consumption for a user.

        Free users (and unknown users) are not metered here; they go through
        the demo tier, so the summary is always `allowed=False, limit=0`.
        """
        with get_db_session(self.session_factory) as session:
            plan = self._plan_for(session, user_id)
            if plan == "free":
                return UsageSummary(
                    plan="free",
                    used=0,
                    limit=0,
                    remaining=0,
                    allowed=False,
                    by_kind={kind: 0 for kind in FEATURE_KINDS},
                )
            by_kind = self._counts_by_kind(session, user_id)

        limit = PLAN_LIMITS[plan]
        used = sum(by_kind.values())
        remaining = max(0, limit - used)
        return UsageSummary(
            plan=plan,
            used=used,
            limit=limit,
            remaining=remaining,
            allowed=remaining > 0,
            by_kind=by_kind,
        )

    def ensure_allowed(self, user_id: str, required_plan: str = "lite") -> UsageSummary:
        """Raise UsageLimitExceededError unless the user may generate right now."""
        summary = self.get_usage(user_id)
        if not has_plan_access(summary.plan, required_plan):
            raise UsageLimitExceededError(
                f"This feature requires the {required_plan} plan or higher",
                hint="Subscribe to a plan, or use the demo / BYOK mode.",
            )
        if not summary.allowed:
            raise UsageLimitExceededError(
                f"Monthly limit of {summary.limit} generations reached",
            )
        return summary

    def record_usage(self, user_id: str, kind: str) -> bool:
        """
        Append one usage event. Call only after the generation succeeded.

        A failed write is logged and reported as False; the caller still
        returns the generation result.
        """
        if kind not in FEATURE_KINDS:
            raise ValueError(f"Unknown feature kind: {kind}")
        event = UsageEvent(user_id=user_id, kind=kind, created_at=self.clock())
        try:
            with get_db_session(self.session_factory) as session:
                session.execute(insert(usage_events).values(**event.model_dump()))
            return True
        except SQLAlchemyError as exc:
            log_event(
                "error",
                "usage.record_failed",
                user_id=user_id,
                error_code="USAGE_RECORD_FAILED",
                extra={"kind": kind, "error": exc},
            )
            return False
