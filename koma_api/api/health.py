"""
Health endpoints.

Lightweight checks for operational monitoring without exposing secrets.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from koma_api.core.context import EngineContext, get_context
from koma_api.core.database import check_connection

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(ctx: EngineContext = Depends(get_context)):
    """Readiness check: connectivity of the database this app was wired with."""
    if not check_connection(ctx.session_factory):
        return JSONResponse(status_code=503, content={"status": "unavailable", "db": False})
    return {"status": "ok", "db": True}
