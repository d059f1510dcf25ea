"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Logging — structlog is configured before anything logs
  2. Lifespan manager — tables, background jobs, Finzen client, cleanup
  3. CORS middleware and per-request log context
  4. Exception handlers — maps domain errors to HTTP responses
  5. Router registration

Running locally:
    uvicorn app.main:app --reload
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import engine, Base, AsyncSessionLocal
from app.exceptions import register_exception_handlers
from app.logging_config import setup_logging
from app.notifications import WebSocketNotifier
from app.routers import auth, notifications, upi
from app.services import finzen_sync, idempotency_service

setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      Creates all database tables if they don't exist, opens the Finzen
      client, and starts the idempotency reaper plus (if configured) the
      periodic Finzen pull.

    Shutdown:
      Cancels the background jobs, lets pending Finzen forwards finish,
      and disposes of the database engine.
    """
    # --- Startup ---
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.finzen = finzen_sync.FinzenClient.from_settings()

    jobs = [
        asyncio.create_task(
            idempotency_service.run_reaper(
                AsyncSessionLocal, settings.IDEMPOTENCY_REAPER_INTERVAL_SECONDS,
            )
        )
    ]
    if app.state.finzen.enabled and settings.FINZEN_SYNC_INTERVAL_SECONDS > 0:
        jobs.append(
            asyncio.create_task(
                finzen_sync.run_periodic_sync(
                    AsyncSessionLocal, app.state.finzen, settings.FINZEN_SYNC_INTERVAL_SECONDS,
                )
            )
        )
    logger.info(
        "application_startup",
        app_name=settings.APP_NAME,
        finzen_enabled=app.state.finzen.enabled,
        background_jobs=len(jobs),
    )

    yield

    # --- Shutdown ---
    for job in jobs:
        job.cancel()
    await asyncio.gather(*jobs, return_exceptions=True)
    await app.state.finzen.aclose()
    await engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Mock UPI payments API with idempotent transfers and Finzen sync",
    lifespan=lifespan,
)

# Registry of websocket subscribers; lives as long as the process
app.state.notifier = WebSocketNotifier()

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Bind a request id to every log line emitted while handling the request."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        http_request_id=request_id,
        method=request.method,
        path=request.url.path,
    )
    start = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "request_completed",
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    return response


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(auth.router, prefix="/upi", tags=["Auth"])
app.include_router(upi.router, prefix="/upi", tags=["UPI"])
app.include_router(notifications.router, tags=["Notifications"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for deployment probes."""
    return {"status": "ok", "version": settings.APP_VERSION}


@app.get("/api/status", tags=["Health"])
async def api_status():
    return {
        "message": f"{settings.APP_NAME} is running",
        "version": settings.APP_VERSION,
        "endpoints": {"health": "/health", "api": "/api/status", "upi": "/upi/*", "ws": "/ws"},
    }
