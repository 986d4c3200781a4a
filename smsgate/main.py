"""SMS Gate - FastAPI Application."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from smsgate.core.config import get_settings
from smsgate.core.exceptions import SmsGateError
from smsgate.core.redis import close_redis, init_redis
from smsgate.db import close_db, init_db
from smsgate.providers import (
    FlutterwaveClient,
    PriceCache,
    ProviderGateway,
    RateLimitedDispatcher,
    SmsActivateClient,
)
from smsgate.services.notifier import RedisNotifier

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Startup: Initialize database tables, Redis and provider clients
    Shutdown: Drain the dispatcher and close connections
    """
    # Startup
    await init_db()
    redis_client = await init_redis()

    sms_client = SmsActivateClient()
    dispatcher = RateLimitedDispatcher(sms_client.call)
    app.state.dispatcher = dispatcher
    app.state.gateway = ProviderGateway(dispatcher, PriceCache(redis_client))
    app.state.notifier = RedisNotifier(redis_client)
    app.state.payment_client = FlutterwaveClient()
    yield
    # Shutdown
    await dispatcher.close()
    await sms_client.close()
    await app.state.payment_client.close()
    await close_redis()
    await close_db()


async def smsgate_error_handler(request: Request, exc: SmsGateError) -> JSONResponse:
    """Render service errors as ``{success, error, code, details}``."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: [{exc.code}] {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.message,
            "code": exc.code,
            "details": exc.details,
        },
    )


def create_app() -> FastAPI:
    """Application factory.

    Returns:
        Configured FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Virtual number reseller API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SmsGateError, smsgate_error_handler)

    # Include routers
    from smsgate.api import balance_router, numbers_router, payments_router, webhooks_router

    app.include_router(numbers_router, prefix="/api")
    app.include_router(balance_router, prefix="/api")
    app.include_router(payments_router, prefix="/api")
    app.include_router(webhooks_router)  # Payment provider callbacks

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


# Application instance
app = create_app()
