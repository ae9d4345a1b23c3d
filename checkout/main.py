"""
Checkout Microservice
Order checkout, payment hand-off and settlement
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import subprocess
import os

from shared.core import HealthStatus, ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from checkout.api.routes import router as checkout_router, orders_router
from checkout.core_settings import get_settings
from checkout.gateways import get_gateway_factory
from checkout.infrastructure.db import engine, init_models

settings = get_settings()

# Service configuration
SERVICE_NAME = "checkout-service"
SERVICE_VERSION = settings.SERVICE_VERSION
SERVICE_DESCRIPTION = "Checkout and payment settlement microservice"

setup_logging(service_name=SERVICE_NAME, level=settings.LOG_LEVEL)

logger = get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    try:
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
    except OSError as e:
        logger.error(f"Migration error: {e}")

    try:
        init_models()
        logger.info("Database models initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database models: {e}")
        raise

    factory = get_gateway_factory()
    logger.info(
        f"{SERVICE_NAME} started successfully",
        extra={'extra_fields': {
            'default_gateway': factory.default,
            'available_gateways': factory.available_gateways(),
            'stock_policy': settings.STOCK_POLICY_ON_GATEWAY_FAILURE,
        }}
    )

    yield

    logger.info(f"Shutting down {SERVICE_NAME}")

def default_gateway_check():
    factory = get_gateway_factory()
    if factory.is_gateway_available(factory.default):
        return HealthStatus.PASS, None
    return HealthStatus.FAIL, f"Default gateway {factory.default} is not configured"

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

health_service = ServiceHealth(
    SERVICE_NAME,
    SERVICE_VERSION,
    engine=engine,
    checks={"payment-gateway:configuration": default_gateway_check},
)
app.include_router(health_service.create_health_router())

app.include_router(checkout_router)
app.include_router(orders_router)

@app.get("/")
async def root():
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
        "default_gateway": settings.PAYMENT_GATEWAY,
        "endpoints": {
            "checkout": "/checkout",
            "webhooks": "/checkout/webhooks/{gateway}",
            "health": "/health",
            "ready": "/health/ready",
            "live": "/health/live",
            "docs": "/api/docs"
        }
    }
