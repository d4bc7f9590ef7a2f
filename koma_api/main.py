"""
Application entrypoint.

Run with:
    uvicorn koma_api.main:create_app --factory
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from koma_api.api import auth, billing, demo, health, subscription
from koma_api.core.config import Settings, get_settings, validate_config
from koma_api.core.context import EngineContext, build_context
from koma_api.core.counter_store import RedisCounterStore
from koma_api.core.database import create_all_tables, get_session_factory, init_engine
from koma_api.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from koma_api.core.logging import configure_logging
from koma_api.core.middleware.request_id import RequestIdMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("koma")
    logger.info("Starting koma billing engine...")
    try:
        yield
    finally:
        logger.info("Stopping koma billing engine...")


def _default_context(settings: Settings) -> EngineContext:
    if not settings.DATABASE_URL:
        raise RuntimeError("DATABASE_URL is required to start the API")
    engine = init_engine(settings.DATABASE_URL)
    create_all_tables(engine)
    return build_context(
        settings,
        get_session_factory(),
        RedisCounterStore.from_url(settings.REDIS_URL),
    )


def create_app(settings: Optional[Settings] = None, context: Optional[EngineContext] = None) -> FastAPI:
    """Build the FastAPI app. Tests pass a prebuilt context with fakes wired in."""
    settings = settings or (context.settings if context else get_settings())

    configure_logging(settings.ENV)
    validate_config(settings)

    app = FastAPI(title="Koma - Billing & Usage", lifespan=lifespan)
    app.state.engine = context or _default_context(settings)

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(auth.router, prefix="/api")
    app.include_router(demo.router, prefix="/api")
    app.include_router(subscription.router, prefix="/api")
    app.include_router(billing.router, prefix="/api")
    app.include_router(health.router)

    return app
