"""Telephony Orchestrator API - bring-your-own-carrier phone numbers for LiveKit voice agents.

This is the main entry point for the Telephony Orchestrator API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.router import api_router
from app.core.config import settings
from app.core.database import init_db
from app.core.errors import ServiceError, service_error_handler, validation_error_handler
from app.core.logging import logger, setup_logging
from app.services.background_tasks import drain_background_tasks
from app.services.redis_service import close_redis, init_redis


def get_cors_headers(request: Request) -> dict:
    """Get CORS headers based on request origin."""
    origin = request.headers.get("origin", "")
    if origin in settings.cors_origins:
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Allow-Methods": "*",
            "Access-Control-Allow-Headers": "*",
        }
    return {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    logger.info(
        "Starting Telephony Orchestrator API",
        version="1.0.0",
        env=settings.app_env,
        telephony_enabled=settings.telephony_enabled,
    )

    await init_db()
    logger.info("Database initialized")

    if settings.redis_enabled:
        await init_redis()

    yield

    # Shutdown
    logger.info("Shutting down Telephony Orchestrator API")
    await drain_background_tasks()
    if settings.redis_enabled:
        await close_redis()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="""
## Telephony Orchestrator API

Bring-your-own-carrier inbound calling for LiveKit voice agents.

### Key Features
- **Call Admission**: Verifies LiveKit webhooks and dispatches exactly one agent per inbound call
- **Carrier Onboarding**: Twilio, Telnyx and Plivo credentials stored encrypted (AES-256-GCM)
- **Number Binding**: Routes carrier phone numbers into LiveKit SIP and binds them to agents
- **SIP Provisioning**: Keeps the LiveKit inbound trunk and dispatch rule in sync with bound numbers

### Authentication
Management endpoints require the `x-api-key` header. The LiveKit webhook is
authenticated by its signed `Authorization` token.
    """,
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.add_exception_handler(ServiceError, service_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)


# HTTP exception handler (4xx errors)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with CORS headers."""
    cors_headers = get_cors_headers(request)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=cors_headers,
    )


# Global exception handler (5xx errors)
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=True,
    )

    cors_headers = get_cors_headers(request)

    # Don't expose internal errors in production
    if settings.is_production:
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
            headers=cors_headers,
        )

    return JSONResponse(
        status_code=500,
        content={"error": str(exc)},
        headers=cors_headers,
    )


# Include API router
app.include_router(api_router, prefix=settings.api_v1_prefix)


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint - basic API info."""
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "operational",
        "docs": "/docs" if settings.debug else None,
        "telephony_enabled": settings.telephony_enabled,
    }


# Simple health check for load balancers (no DB required)
@app.get("/health")
async def health():
    """Simple health check for load balancer."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )
