"""
FastAPI application entry point.

Configures the API with all routes, middleware, error handling and the
background job that purges expired OTP records.
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .v1.router import router as v1_router
from .deps import get_services, close_services

logger = logging.getLogger(__name__)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def purge_expired_otps():
    """Background job: drop OTP records past their TTL, whether or not anyone read them."""
    try:
        get_services().otp.purge_expired()
    except Exception as e:
        logger.error(f"OTP purge failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan manager."""
    global scheduler

    logger.info("Starting account API...")

    # Initialize services on startup
    services = get_services()
    logger.info("Services initialized")

    interval = services.config.otp.purge_interval_seconds
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        purge_expired_otps,
        trigger=IntervalTrigger(seconds=interval),
        id="otp_purge",
        name="Purge expired OTP records",
        replace_existing=True
    )
    scheduler.start()
    logger.info(f"Background scheduler started - OTP purge every {interval}s")

    yield

    # Cleanup on shutdown
    logger.info("Shutting down...")
    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    close_services()


app = FastAPI(
    title="Account API",
    description="User registration, login and role-gated account endpoints",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Malformed or missing input is the caller's fault: 400, not 422
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(part) for part in err["loc"] if part != "body") for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"detail": f"Invalid or missing fields: {', '.join(fields)}"}
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


# Health check
@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "account-api"}


# Include API v1 routes
app.include_router(v1_router, prefix="/api/v1")


# Root endpoint
@app.get("/", tags=["System"])
async def root():
    """API root endpoint."""
    return {
        "name": "Account API",
        "version": "1.0.0",
        "docs": "/docs"
    }


def main():
    """Run the account API with uvicorn."""
    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))

    logger.info(f"Starting account API on {host}:{port}...")
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
