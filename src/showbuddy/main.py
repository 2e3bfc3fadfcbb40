"""
FastAPI application entry point
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from contextlib import asynccontextmanager
from sqlalchemy import text
from slowapi.errors import RateLimitExceeded
import logging

from showbuddy.core.config import settings
from showbuddy.core.database import engine, init_db
from showbuddy.core.exceptions import BookingError
from showbuddy.core.logging_config import setup_logging
from showbuddy.core.metrics import get_metrics
from showbuddy.core.redis import redis_client
from showbuddy.api import bookings, holds, showings
from showbuddy.services import start_expiry_worker, stop_expiry_worker
from showbuddy.middleware.rate_limiter import limiter
from showbuddy.middleware.tracing import TracingMiddleware

setup_logging(level=settings.LOG_LEVEL, json_output=settings.LOG_JSON, log_file=settings.LOG_FILE)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for startup and shutdown"""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection successful")
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        raise

    if settings.is_sqlite:
        await init_db()

    await redis_client.connect()

    if settings.BACKGROUND_WORKERS_ENABLED:
        await start_expiry_worker()

    yield

    logger.info("Shutting down...")
    await stop_expiry_worker()
    await redis_client.close()
    await engine.dispose()
    logger.info("Cleanup complete")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Movie ticket booking: showings, seat holds, payment and booking ledger",
    lifespan=lifespan,
)

app.state.limiter = limiter


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    """Render every domain error as {"error": kind, "message": ..., **details}"""
    if exc.status_code >= 500:
        logger.error(f"{exc.kind}: {exc.message}", extra=exc.details)
    else:
        logger.info(f"{exc.kind}: {exc.message}")

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded errors"""
    logger.warning(f"Rate limit exceeded for {request.url.path}")

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": "Too many requests. Please slow down.",
            "detail": str(exc.detail)
        },
        headers={"Retry-After": "60"}
    )


app.add_middleware(TracingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "redis": "healthy" if redis_client.available else "unavailable",
    }


@app.get("/metrics", tags=["Health"])
async def metrics():
    """Prometheus scrape endpoint"""
    body, content_type = get_metrics()
    return Response(content=body, media_type=content_type)


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/health",
        "features": [
            "All-or-nothing seat holds with automatic expiry",
            "Payment verification before booking",
            "Idempotent confirmation and hold creation",
            "Booking ledger with status history",
        ]
    }


app.include_router(showings.router, prefix="/api/v1", tags=["Showings"])
app.include_router(holds.router, prefix="/api/v1", tags=["Holds"])
app.include_router(bookings.router, prefix="/api/v1", tags=["Bookings"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "showbuddy.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info"
    )
