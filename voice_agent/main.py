"""
Voice Agent API

FastAPI application entry point that ties all components together.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from voice_agent.api.routes import health, voice
from voice_agent.config import settings
from voice_agent.core.agent.dispatch import get_orchestrator
from voice_agent.core.agent.knowledge import get_knowledge_client
from voice_agent.core.scheduling.calendar_client import get_calendar_client
from voice_agent.infra.claude import ClaudeClient
from voice_agent.infra.notifications import get_notification_service
from voice_agent.infra.redis import RedisClient


def setup_logging() -> None:
    """Configure logging based on environment."""
    log_level = logging.DEBUG if settings.debug else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.INFO if settings.debug else logging.WARNING)


logger = logging.getLogger(__name__)


async def sweep_sessions_forever(interval_seconds: float) -> None:
    """Periodically delete expired sessions (each one gets its summary first)."""
    orchestrator = get_orchestrator()
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            expired = orchestrator.sweep_expired()
            if expired:
                logger.debug(f"Sweep removed sessions: {expired}")
        except Exception as e:
            logger.exception(f"Session sweep failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # === STARTUP ===
    setup_logging()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode")

    health.set_start_time()

    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY not set - extractors run their deterministic fallbacks")

    redis = await RedisClient.get_client()
    if redis is None:
        logger.warning("Redis unavailable - rate limiting disabled (fail open)")

    sweep_task = asyncio.create_task(sweep_sessions_forever(settings.session_sweep_interval_seconds))
    logger.info(f"Application ready at http://{settings.host}:{settings.port}")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down application...")

    sweep_task.cancel()
    with suppress(asyncio.CancelledError):
        await sweep_task

    await get_calendar_client().close()
    await get_knowledge_client().close()
    await get_notification_service().close()
    if ClaudeClient._instance is not None:
        await ClaudeClient._instance.close()
        ClaudeClient.reset_instance()

    await RedisClient.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Voice Agent API",
    description="""
    Multi-tenant voice customer-interaction agent.

    ## Features
    - Goodbye, identity, booking and knowledge routing per utterance
    - Appointment booking against Google or Microsoft calendars
    - Spoken-email and spelled-name extraction with deterministic fallbacks
    - Conversation summary emails when a call ends

    ## Tenants
    Pass the tenant in the `X-Tenant-ID` header; the default tenant is used otherwise.

    ## Rate Limiting
    Turns are rate-limited per tenant.
    """,
    version=health.VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "detail": exc.errors(),
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    # Don't expose internal errors in production
    detail = str(exc) if settings.is_development else "Internal server error"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": detail,
        },
    )


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    """Log request duration in debug mode."""
    start_time = time.time()
    try:
        return await call_next(request)
    finally:
        if settings.debug:
            duration = time.time() - start_time
            logger.debug(f"{request.method} {request.url.path} completed in {duration:.3f}s")


app.include_router(health.router)
app.include_router(voice.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    """
    Root endpoint.

    Returns basic API information.
    """
    return {
        "name": settings.app_name,
        "version": health.VERSION,
        "status": "running",
        "environment": settings.app_env,
        "docs": "/docs" if settings.is_development else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "voice_agent.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
