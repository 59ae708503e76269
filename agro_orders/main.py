"""
Orders Microservice
Order lifecycle for the farm marketplace: placement, fulfillment, payment and tracking
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import subprocess
import os

from agro_orders.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from agro_orders.core_settings import get_settings
from agro_orders.api.routes import router as orders_router
from agro_orders.domain.errors import OrderError
from agro_orders.infrastructure.db import SessionLocal, get_engine, init_models
from agro_orders.infrastructure.repository import OrderRepository

# Service configuration
SERVICE_NAME = "orders-service"
SERVICE_VERSION = os.getenv("SERVICE_VERSION", "1.0.0")
SERVICE_DESCRIPTION = "Order lifecycle management microservice"

settings = get_settings()

setup_logging(
    service_name=SERVICE_NAME,
    level=settings.LOG_LEVEL
)

logger = get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    logger.info("Running database migrations")
    result = subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=os.path.join(os.path.dirname(__file__), ".."),
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        logger.warning(f"Migration output: {result.stderr}")
    else:
        logger.info("Database migrations completed")

    try:
        init_models()
        logger.info("Database models initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database models: {e}")
        raise

    logger.info(f"{SERVICE_NAME} started successfully")

    yield

    logger.info(f"Shutting down {SERVICE_NAME}")

app = FastAPI(
    title=SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError):
    """Domain errors carry their own status code and stable error code."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        f"Request rejected: {exc.code}",
        extra={'extra_fields': {'path': request.url.path, 'error': exc.code, 'detail': exc.message}}
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.code})

def order_metrics() -> dict:
    with SessionLocal() as db:
        return {"orders_by_status": OrderRepository(db).count_by_status()}

health_service = ServiceHealth(
    SERVICE_NAME,
    get_engine,
    SERVICE_VERSION,
    upstreams={"catalog": settings.CATALOG_SERVICE_URL, "payments": settings.PAYMENTS_SERVICE_URL},
    metrics_provider=order_metrics,
)
app.include_router(health_service.create_health_router())

app.include_router(orders_router)

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs"
    }

@app.get("/info")
async def info():
    """Service information endpoint"""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": SERVICE_DESCRIPTION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "endpoints": {
            "health": "/health",
            "ready": "/health/ready",
            "live": "/health/live",
            "metrics": "/metrics",
            "docs": "/api/docs",
            "orders": "/orders",
            "tracking": "/orders/track/{order_number}"
        }
    }
