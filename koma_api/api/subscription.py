"""
Subscription status API.

- GET /api/subscription: plan, monthly limits, usage and remaining for the caller

Only the forwarded identity selects the user; query parameters are ignored.
"""
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from koma_api.core.auth import Identity, get_identity
from koma_api.core.context import EngineContext, get_context
from koma_api.models.plan import PLAN_LIMITS

router = APIRouter(tags=["subscription"])


class SubscriptionUser(BaseModel):
    email: str
    hasStripeCustomer: bool


class SubscriptionResponse(BaseModel):
    plan: str
    limits: Dict[str, int]
    usage: Dict[str, int]
    remaining: Dict[str, int]
    user: Optional[SubscriptionUser] = None


def _limits_for(plan: str) -> Dict[str, int]:
    monthly = PLAN_LIMITS[plan]
    return {"blog": monthly, "movie": monthly, "monthly": monthly}


def _free_response(user: Optional[SubscriptionUser] = None) -> SubscriptionResponse:
    zero = {"blog": 0, "movie": 0, "total": 0}
    return SubscriptionResponse(plan="free", limits=_limits_for("free"), usage=zero, remaining=zero, user=user)


@router.get("/subscription", response_model=SubscriptionResponse)
def get_subscription(
    identity: Optional[Identity] = Depends(get_identity),
    ctx: EngineContext = Depends(get_context),
):
    if identity is None:
        return _free_response()

    user = ctx.directory.get_or_create_user(identity.email)
    user_view = SubscriptionUser(email=user.email, hasStripeCustomer=bool(user.billing_customer_id))

    summary = ctx.ledger.get_usage(user.id)
    if summary.plan == "free":
        return _free_response(user_view)

    # Blog and movie draw from one monthly pool
    return SubscriptionResponse(
        plan=summary.plan,
        limits=_limits_for(summary.plan),
        usage={
            "blog": summary.by_kind.get("blog", 0),
            "movie": summary.by_kind.get("movie", 0),
            "total": summary.used,
        },
        remaining={
            "blog": summary.remaining,
            "movie": summary.remaining,
            "total": summary.remaining,
        },
        user=user_view,
    )
