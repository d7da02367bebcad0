import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from loqui.api import automations, content, health, integrations, schedule, usage
from loqui.core.config import Settings, settings, validate_config
from loqui.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from loqui.core.logging import configure_logging
from loqui.core.middleware.ratelimit import RateLimitMiddleware
from loqui.core.middleware.request_id import RequestIdMiddleware
from loqui.core.ratelimit import FixedWindowRateLimiter, build_rate_limiter
from loqui.features.integrations.registry import ProviderRegistry, build_default_registry
from loqui.features.usage.service import UsageAggregator


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("loqui")
    logger.info("Starting loqui scheduler...")
    try:
        yield
    finally:
        logger.info("Stopping loqui scheduler...")


def create_app(
    settings_obj: Optional[Settings] = None,
    *,
    rate_limiter: Optional[FixedWindowRateLimiter] = None,
    registry: Optional[ProviderRegistry] = None,
    aggregator: Optional[UsageAggregator] = None,
    clock: Optional[Callable[[], datetime]] = None,
    rate_limit_enabled: Optional[bool] = None,
    alert_fn: Optional[Callable[[str, str, str], None]] = None,
) -> FastAPI:
    cfg = settings_obj or settings
    configure_logging(cfg.ENV)
    validate_config(settings_obj=cfg)

    app = FastAPI(title="Loqui - Scheduler", lifespan=lifespan)
    app.state.settings = cfg
    app.state.registry = registry or build_default_registry(cfg)
    app.state.aggregator = aggregator or UsageAggregator()
    app.state.clock = clock
    app.state.rate_limiter = rate_limiter or build_rate_limiter(cfg)

    # Last added runs first: request ids wrap rate limiting
    app.add_middleware(
        RateLimitMiddleware,
        limiter=app.state.rate_limiter,
        enabled=cfg.RATE_LIMIT_ENABLED if rate_limit_enabled is None else rate_limit_enabled,
        alert_fn=alert_fn,
    )
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(usage.router)
    app.include_router(schedule.router)
    app.include_router(content.router)
    app.include_router(automations.router)
    app.include_router(integrations.router)
    app.include_router(health.root_router)

    return app


app = create_app()
