"""
Storefront backend application: pricing, shipping, catalog and report routers
plus health and metrics endpoints.
"""
import sys
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.api import catalog, pricing, reports, shipping
from storefront.app.api.deps import get_cache, get_session
from storefront.app.core.logging import RequestContextMiddleware, get_logger, setup_logging
from storefront.app.core.metrics import METRICS_PATH, PrometheusMiddleware, get_metrics_response
from storefront.app.core.settings import get_settings
from storefront.app.services.cache import CacheService

APP_VERSION = "1.0.0"
DEV_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]

try:
    settings = get_settings()
except ValueError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

setup_logging(log_level=settings.LOG_LEVEL, json_format=settings.is_production)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Storefront starting",
        version=APP_VERSION,
        environment=settings.ENVIRONMENT,
        db_host=settings.DB_HOST,
        redis_host=settings.REDIS_HOST,
        currency=settings.PRIMARY_CURRENCY_CODE,
        default_store_id=settings.DEFAULT_STORE_ID,
    )
    yield
    await CacheService.close()
    logger.info("Storefront stopped")


app = FastAPI(title="Storefront Backend", version=APP_VERSION, lifespan=lifespan)

# get_settings() already refused an empty list in production
origins = settings.allowed_origins_list or DEV_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id"],
)
# Added last so it wraps the others and binds the request id before they log
app.add_middleware(PrometheusMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(pricing.router, prefix="/pricing", tags=["pricing"])
app.include_router(shipping.router, prefix="/shipping", tags=["shipping"])
app.include_router(catalog.router, prefix="/catalog", tags=["catalog"])
app.include_router(reports.router, prefix="/reports", tags=["reports"])


@app.get("/")
async def root():
    return {"status": "ok"}


@app.get("/health")
async def health_check(
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    """Database and Redis reachability; status is "unhealthy" when either fails."""
    checks = {"database": "ok", "redis": "ok"}

    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        checks["database"] = f"error: {e}"

    try:
        await cache.ping()
    except Exception as e:
        logger.error("Redis health check failed", error=str(e))
        checks["redis"] = f"error: {e}"

    healthy = all(value == "ok" for value in checks.values())
    return {"status": "healthy" if healthy else "unhealthy", "version": APP_VERSION, "checks": checks}


@app.get(METRICS_PATH)
async def metrics_endpoint(openmetrics: bool = False):
    return get_metrics_response(openmetrics=openmetrics)
