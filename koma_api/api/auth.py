"""
Session identity API.

- GET /api/auth/me: who the edge says the caller is; creates the user row on
  the first authenticated visit
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from koma_api.core.auth import Identity, get_identity
from koma_api.core.context import EngineContext, get_context

router = APIRouter(tags=["auth"])


class MeUser(BaseModel):
    email: str
    plan: str
    hasStripeCustomer: bool


class MeResponse(BaseModel):
    authenticated: bool
    user: Optional[MeUser] = None


@router.get("/auth/me", response_model=MeResponse)
def get_me(
    identity: Optional[Identity] = Depends(get_identity),
    ctx: EngineContext = Depends(get_context),
):
    if identity is None:
        return MeResponse(authenticated=False, user=None)

    user = ctx.directory.get_or_create_user(identity.email)
    return MeResponse(
        authenticated=True,
        user=MeUser(
            email=user.email,
            plan=user.plan,
            hasStripeCustomer=bool(user.billing_customer_id),
        ),
    )
