"""
Demo tier status API.

- GET /api/demo-status?feature=blog|movie: remaining anonymous generations today
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from redis import RedisError

from koma_api.core.auth import get_client_address
from koma_api.core.context import EngineContext, get_context
from koma_api.models.plan import FeatureKind

logger = logging.getLogger("koma")

router = APIRouter(tags=["demo"])

STATUS_UNAVAILABLE_MESSAGE = "Could not fetch demo status"


class DemoStatusResponse(BaseModel):
    remainingCount: int
    maxCount: int
    isAvailable: bool
    message: Optional[str] = None


@router.get("/demo-status", response_model=DemoStatusResponse, response_model_exclude_none=True)
def demo_status(
    request: Request,
    feature: FeatureKind = Query("blog"),
    ctx: EngineContext = Depends(get_context),
):
    """
    Remaining demo count for the calling client address.

    Reading never consumes. When the counter store is unreachable the demo is
    reported as unavailable rather than failing the page.
    """
    client_address = get_client_address(request)
    try:
        status = ctx.demo_limiter.peek(client_address, feature)
    except RedisError:
        logger.error("demo.status_failed", exc_info=True, extra={"feature": feature})
        return DemoStatusResponse(
            remainingCount=0,
            maxCount=ctx.demo_limiter.max_for(feature),
            isAvailable=False,
            message=STATUS_UNAVAILABLE_MESSAGE,
        )

    return DemoStatusResponse(
        remainingCount=status.remaining,
        maxCount=status.max,
        isAvailable=status.is_available,
        message=status.message,
    )
