"""
Scanner Service
Receives barcode scans from network scanners, keeps product stock and the
movement log, and streams new movements to dashboards.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from contextlib import asynccontextmanager
import subprocess
import os

from shared.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from stockscan.core_settings import get_settings
from stockscan.api.routes import webhook_router, movements_router
from stockscan.application.errors import MSG_INVALID_PAYLOAD, MSG_SERVER_ERROR
from stockscan.infrastructure.db import engine, init_models

settings = get_settings()

SERVICE_NAME = settings.SERVICE_NAME
SERVICE_VERSION = settings.SERVICE_VERSION
SERVICE_DESCRIPTION = "Barcode scan ingestion and stock movement service"

setup_logging(
    service_name=SERVICE_NAME,
    level=settings.LOG_LEVEL
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    if settings.RUN_MIGRATIONS:
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

# Scanners post from arbitrary networks, dashboards from any host
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

# This handler runs outside CORSMiddleware
SERVER_ERROR_HEADERS = {"Access-Control-Allow-Origin": "*"} if "*" in settings.CORS_ALLOW_ORIGINS else {}


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed scan payloads are rejected before any store access"""
    logger.info(f"Rejected malformed payload on {request.url.path}")
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": MSG_INVALID_PAYLOAD,
            "errors": jsonable_encoder(exc.errors(), exclude={"input", "ctx"}),
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": MSG_SERVER_ERROR},
        headers=SERVER_ERROR_HEADERS,
    )


health_service = ServiceHealth(SERVICE_NAME, engine, SERVICE_VERSION)
app.include_router(health_service.create_health_router())

app.include_router(webhook_router)
app.include_router(movements_router)


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
        "environment": settings.ENVIRONMENT,
        "endpoints": {
            "webhook": "/esp32-webhook",
            "movements": "/movements/",
            "movement_feed": "/movements/ws",
            "health": "/health",
            "ready": "/health/ready",
            "live": "/health/live",
            "metrics": "/metrics",
            "docs": "/api/docs"
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "stockscan.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        log_level=settings.LOG_LEVEL.lower()
    )
