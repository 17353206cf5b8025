"""
welcomecast.api.main — FastAPI application entry point
========================================================

Run with::

    uvicorn welcomecast.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from welcomecast.api.auth import router as auth_router  # noqa: E402
from welcomecast.api.deps import get_config, get_engine, get_fish_audio, get_whop  # noqa: E402
from welcomecast.api.rate_limit import configure_rate_limiter  # noqa: E402
from welcomecast.api.routes.admin import router as admin_router  # noqa: E402
from welcomecast.api.routes.audio import router as audio_router  # noqa: E402
from welcomecast.api.routes.billing import router as billing_router  # noqa: E402
from welcomecast.api.routes.customer import router as customer_router  # noqa: E402
from welcomecast.api.routes.webhooks import router as webhooks_router  # noqa: E402
from welcomecast.exceptions import (  # noqa: E402
    AuthorizationError,
    ConfigurationError,
    DeliveryError,
    GenerationAlreadyQueued,
    GenerationQueueFull,
    QuotaExceeded,
    TenantAccessDenied,
    TenantNotFound,
    VendorError,
    VoiceModelNotReady,
    WelcomecastError,
)
from welcomecast.services.generation_queue import GenerationQueue  # noqa: E402
from welcomecast.services.welcome_service import WelcomeOrchestrator  # noqa: E402

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins.
ERROR_STATUS: tuple[tuple[type[WelcomecastError], int], ...] = (
    (TenantAccessDenied, 403),
    (AuthorizationError, 401),
    (TenantNotFound, 404),
    (QuotaExceeded, 402),
    (GenerationAlreadyQueued, 409),
    (VoiceModelNotReady, 409),
    (GenerationQueueFull, 503),
    (ConfigurationError, 500),
    (VendorError, 502),
    (DeliveryError, 502),
)


def status_for(exc: WelcomecastError) -> int:
    for exc_type, status in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status
    return 500


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle: DB engine, rate limiter, generation workers."""
    engine = get_engine()
    cfg = get_config()
    configure_rate_limiter(engine=engine)

    orchestrator = WelcomeOrchestrator(engine, get_whop(), get_fish_audio(), cfg)
    queue = GenerationQueue(
        orchestrator.generate,
        workers=cfg.generation_workers,
        maxsize=cfg.generation_queue_size,
    )
    app.state.generation_queue = queue
    queue.start()
    logger.info("Welcomecast API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Welcomecast API shutting down")
    await queue.stop()


app = FastAPI(
    title="Welcomecast API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WelcomecastError)
async def welcomecast_error_handler(request: Request, exc: WelcomecastError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"error": str(exc)})


# Mount routers
app.include_router(auth_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
app.include_router(billing_router, prefix="/api")
app.include_router(customer_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")
app.include_router(audio_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
