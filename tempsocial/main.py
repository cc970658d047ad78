"""Main FastAPI application for Temporary Social"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tempsocial.api import auth, health, messages, payments, users, websockets
from tempsocial.config import settings
from tempsocial.db.database import AsyncSessionLocal, close_db, init_db
from tempsocial.errors import AppError
from tempsocial.middleware.logging import LoggingMiddleware
from tempsocial.middleware.rate_limit import RateLimitMiddleware
from tempsocial.middleware.request_id import RequestIDMiddleware
from tempsocial.services.notifier import build_notifier
from tempsocial.services.payment_gateway import build_gateway
from tempsocial.services.presence import PresenceRegistry
from tempsocial.services.relay import RelayService
from tempsocial.services.scheduler import ExpiryScheduler
from tempsocial.utils.logging import setup_logging

# Set up logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    logger.info("Starting Temporary Social application...")

    issues = settings.validate_configuration()
    for error in issues["errors"]:
        logger.error(f"Configuration error: {error}")
    for warning in issues["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    await init_db()

    presence = PresenceRegistry()
    relay = RelayService(presence, AsyncSessionLocal)
    app.state.session_factory = AsyncSessionLocal
    app.state.presence = presence
    app.state.relay = relay
    app.state.notifier = build_notifier()
    app.state.gateway = build_gateway()

    scheduler = None
    if settings.enable_scheduler:
        scheduler = ExpiryScheduler(presence, relay, AsyncSessionLocal)
        scheduler.start()
    app.state.scheduler = scheduler

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down Temporary Social application...")
    if scheduler is not None:
        scheduler.shutdown()
    await close_db()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Temporary Social API",
    description="""
    ## Ephemeral social backend

    Identities live for five hours after OTP login. Within that window users
    can message each other in real time, follow each other and exchange UPI
    payment requests. Everything expires with the session.

    ### Real-time relay
    Connect to `/ws?token=<session token>` and send `{"event": "join", "data": "<identity id>"}`.
    """,
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.app_debug else None,
    redoc_url="/redoc" if settings.app_debug else None,
)

# Configure middleware (order matters - last added runs first)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)
app.add_middleware(
    RateLimitMiddleware,
    requests_per_minute=100,
    requests_per_hour=2000,
    enable_rate_limiting=not settings.is_development,
)
app.add_middleware(RequestIDMiddleware)


@app.get("/status", response_class=JSONResponse)
async def api_status() -> dict[str, Any]:
    """API status endpoint for programmatic access"""
    return {
        "name": "Temporary Social API",
        "version": "0.1.0",
        "status": "operational",
        "docs": "/docs" if settings.app_debug else None,
    }


# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(messages.router, prefix="/api/messages", tags=["messages"])
app.include_router(payments.router, prefix="/api/payments", tags=["payments"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(websockets.router, tags=["relay"])


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Render domain errors as {"error": message, ...}"""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid request",
            "details": [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ],
        },
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle uncaught exceptions"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc) if settings.app_debug else "An error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tempsocial.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_debug,
        log_level=settings.log_level.lower(),
    )
