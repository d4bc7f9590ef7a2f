"""
Billing API routes.

Minimal surface:
- POST /api/checkout: Create hosted checkout session
- POST /api/portal: Create hosted portal session
- POST /api/webhook: Handle Stripe webhooks
- GET  /api/config: Public billing flags for the UI

Checkout and portal read their JSON body only after the billing switch and the
identity have been checked, so a disabled or anonymous call is answered 503/401
whatever it sent.
"""
from typing import Optional, Type, TypeVar

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, StrictBool
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from koma_api.core.auth import Identity, get_client_address, get_identity
from koma_api.core.context import EngineContext, get_context
from koma_api.core.errors import ValidationError
from koma_api.features.billing.service import require_billing, require_identity

router = APIRouter(tags=["billing"])

SIGNATURE_HEADER = "stripe-signature"

BodyModel = TypeVar("BodyModel", bound=BaseModel)


class ConsentIn(BaseModel):
    # Only a JSON `true` counts as acceptance
    accepted: Optional[StrictBool] = None
    version: Optional[str] = None


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    plan: Optional[str] = None
    userId: Optional[str] = None
    userEmail: Optional[str] = None
    consent: Optional[ConsentIn] = None


class PortalRequest(BaseModel):
    """Request to create portal session."""
    returnUrl: Optional[str] = None


class SessionUrlResponse(BaseModel):
    url: str


class WebhookResponse(BaseModel):
    received: bool
    duplicate: Optional[bool] = None


class ConfigResponse(BaseModel):
    billingEnabled: bool
    consentVersion: str


async def _read_body(request: Request, model: Type[BodyModel]) -> Optional[BodyModel]:
    """Parse an optional JSON body into `model`; an empty body is None."""
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return model.model_validate_json(raw)
    except PydanticValidationError as exc:
        errors = exc.errors()
        field = ".".join(str(p) for p in errors[0].get("loc", ())) if errors else ""
        raise ValidationError(f"Invalid request: {field}" if field else "Invalid request")


@router.post("/checkout", response_model=SessionUrlResponse)
async def create_checkout(
    request: Request,
    identity: Optional[Identity] = Depends(get_identity),
    ctx: EngineContext = Depends(get_context),
):
    """
    Create Stripe checkout session for the authenticated user.

    Body: {plan, userId, userEmail, consent: {accepted, version}}

    Errors:
        503: Billing disabled
        401: No identity
        403: userId/userEmail do not match the identity
        400: Malformed body, invalid plan or missing consent
        500: Processor error (generic message)
    """
    require_billing(ctx.settings)
    identity = require_identity(identity)
    body = await _read_body(request, CheckoutRequest) or CheckoutRequest()

    consent = body.consent or ConsentIn()
    url = await run_in_threadpool(
        ctx.checkout.create_checkout,
        identity,
        plan=body.plan,
        user_id=body.userId,
        user_email=body.userEmail,
        consent_accepted=consent.accepted,
        consent_version=consent.version,
        client_address=get_client_address(request),
        user_agent=request.headers.get("user-agent"),
    )
    return {"url": url}


@router.post("/portal", response_model=SessionUrlResponse)
async def create_portal(
    request: Request,
    identity: Optional[Identity] = Depends(get_identity),
    ctx: EngineContext = Depends(get_context),
):
    """
    Create Stripe billing portal session.

    Body (optional): {returnUrl}

    Errors:
        503: Billing disabled
        401: No identity
        400: Malformed body, or no billing customer (never checked out)
        500: Processor error
    """
    require_billing(ctx.settings)
    identity = require_identity(identity)
    body = await _read_body(request, PortalRequest)

    return_url = body.returnUrl if body else None
    url = await run_in_threadpool(ctx.portal.create_portal_session, identity, return_url)
    return {"url": url}


@router.post("/webhook", response_model=WebhookResponse, response_model_exclude_none=True)
async def handle_webhook(request: Request, ctx: EngineContext = Depends(get_context)):
    """
    Handle Stripe webhook events.

    The raw body is read before anything else; signature verification happens
    on those exact bytes.

    Errors:
        401: Invalid or stale signature
    """
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    result = await run_in_threadpool(ctx.webhooks.process, body, signature)
    if result.duplicate:
        return {"received": True, "duplicate": True}
    return {"received": True}


@router.get("/config", response_model=ConfigResponse)
def get_config(ctx: EngineContext = Depends(get_context)):
    return {
        "billingEnabled": ctx.settings.BILLING_ENABLED,
        "consentVersion": ctx.settings.CONSENT_VERSION,
    }
