import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api import cart, products, reservations
from backend.app.api.deps import get_sequence_allocator, get_session
from backend.app.core.database import async_session
from backend.app.core.events import EventChannel
from backend.app.core.limiter import limiter
from backend.app.core.logging import setup_logging, get_logger
from backend.app.core.metrics import PrometheusMiddleware, get_metrics_response
from backend.app.core.settings import get_settings
from backend.app.services.listeners import register_listeners
from backend.app.services.notify import WebhookNotifier
from backend.app.services.scheduler import ExpiryScheduler
from backend.app.services.sequence import SequenceAllocator
from backend.app.services.shipping import ShippingPolicy

# Load and validate settings
try:
    settings = get_settings()
except ValueError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

# JSON logs in production
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.is_production
)

logger = get_logger(__name__)

logger.info(
    "Application configuration loaded",
    environment=settings.ENVIRONMENT,
    db_host=settings.DB_HOST,
    redis_host=settings.REDIS_HOST,
    promotion_window_minutes=settings.RESERVATION_PROMOTION_TIMER_MINUTES,
    sweep_interval_seconds=settings.EXPIRY_SWEEP_INTERVAL_SECONDS,
)

# Created at import time so request handlers work even when the lifespan is not run
events = EventChannel()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    - Startup: wire event listeners, start the expiry scheduler
    - Shutdown: stop the scheduler, close Redis
    """
    logger.info("Application starting up", version="1.0.0")
    register_listeners(
        events,
        async_session,
        promotion_window_minutes=settings.RESERVATION_PROMOTION_TIMER_MINUTES,
        shipping=ShippingPolicy.from_settings(settings),
        notifier=WebhookNotifier(settings.NOTIFICATION_WEBHOOK_URL, settings.NOTIFICATION_TIMEOUT_SECONDS),
    )
    scheduler = ExpiryScheduler(
        async_session,
        events,
        interval_seconds=settings.EXPIRY_SWEEP_INTERVAL_SECONDS,
        promotion_window_minutes=settings.RESERVATION_PROMOTION_TIMER_MINUTES,
    )
    app.state.scheduler = scheduler
    scheduler.start()
    yield
    logger.info("Application shutting down")
    await scheduler.stop()
    await SequenceAllocator.close()


app = FastAPI(title="Stock Reservation Engine", lifespan=lifespan)
app.state.events = events

# Shared limiter, counters in Redis
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

ALLOWED_ORIGINS = settings.allowed_origins_list
logger.info("CORS configuration", allowed_origins=ALLOWED_ORIGINS, is_production=settings.is_production)
if not ALLOWED_ORIGINS:
    if settings.is_production:
        logger.error("ALLOWED_ORIGINS must be set in production environment")
        raise ValueError("ALLOWED_ORIGINS environment variable is required in production")
    ALLOWED_ORIGINS = ["*"]
    logger.warning("CORS: Allowing all origins (development mode). Set ALLOWED_ORIGINS in production!")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(PrometheusMiddleware)

app.include_router(cart.router, prefix="/cart", tags=["cart"])
app.include_router(reservations.router, prefix="/reservations", tags=["reservations"])
app.include_router(products.router, prefix="/products", tags=["products"])


@app.get("/health")
@limiter.exempt
async def health_check(
    session: AsyncSession = Depends(get_session),
    sequence: SequenceAllocator = Depends(get_sequence_allocator),
):
    """
    Health check endpoint for monitoring and orchestration.
    Checks database and Redis connectivity.
    """
    health_status = {
        "status": "healthy",
        "version": "1.0.0",
        "checks": {
            "database": "ok",
            "redis": "ok"
        }
    }

    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    try:
        await sequence.ping()
    except Exception as e:
        logger.error("Redis health check failed", error=str(e))
        health_status["status"] = "unhealthy"
        health_status["checks"]["redis"] = f"error: {str(e)}"

    return health_status


@app.get("/metrics")
@limiter.exempt
async def metrics_endpoint(openmetrics: bool = False):
    """
    Prometheus metrics endpoint.

    Args:
        openmetrics: If True, return OpenMetrics format
    """
    return get_metrics_response(openmetrics=openmetrics)
