"""
Biztomate Receipt Validation - Main FastAPI Application

Entry point for the receipt validation gateway.
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from biztomate.config import get_settings
from biztomate.rate_limit import limiter
from biztomate.receipts import receipts_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    Owns the outbound HTTP client shared by every verification request.
    """
    # Startup
    logger.info(f"[Startup] Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"[Startup] Debug mode: {settings.debug}")
    if not settings.apple_shared_secret:
        logger.warning("[Startup] APPLE_SHARED_SECRET is not set; requests must supply a password")

    app.state.http_client = httpx.AsyncClient()

    yield

    # Shutdown
    logger.info("[Shutdown] Application shutting down...")
    await app.state.http_client.aclose()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Biztomate Receipt Validation API - App Store receipts for the business-card scanner.

    ## Features

    * **Receipt validation** - Verify receipts against Apple (production, then sandbox on 21007)
    * **Products** - Store product identifiers and plan quotas

    ## Architecture

    Built with FastAPI and httpx. Stateless: no receipt is stored server-side.
    """,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions globally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error", "code": "INTERNAL_ERROR"},
    )


# Health check endpoints
@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - API info."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@app.get("/health", tags=["Health"])
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


API_PREFIX = "/api"

# Include routers
app.include_router(receipts_router, prefix=API_PREFIX)
