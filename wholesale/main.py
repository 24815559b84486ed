"""
Wholesale back-office service
Order requests, approval and invoicing for the storefront
"""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import subprocess
import os

from shared.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from wholesale.core_settings import get_settings
from wholesale.application.errors import DomainError
from wholesale.api.routes import router as orders_router
from wholesale.api.invoices import router as invoices_router
from wholesale.api.products import router as products_router
from wholesale.api.audit_logs import router as audit_router
from wholesale.api.tier_proposals import router as tier_proposals_router
from wholesale.infrastructure import db

# Service configuration
settings = get_settings()
SERVICE_NAME = "wholesale-service"
SERVICE_VERSION = settings.SERVICE_VERSION
SERVICE_DESCRIPTION = "Wholesale order requests and invoicing"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

setup_logging(
    service_name=SERVICE_NAME,
    level=settings.LOG_LEVEL,
    environment=ENVIRONMENT,
    version=SERVICE_VERSION,
)

logger = get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    if settings.RUN_MIGRATIONS:
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
        db.init_models()
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

# Every error leaves the service as {"error": ...}

@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": jsonable_encoder(exc.errors())})

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)

health_service = ServiceHealth(
    SERVICE_NAME,
    SERVICE_VERSION,
    engine_provider=lambda: db.engine,
    redis_url=settings.REDIS_URL,
)
app.include_router(health_service.create_health_router())

app.include_router(orders_router)
app.include_router(invoices_router)
app.include_router(products_router)
app.include_router(audit_router)
app.include_router(tier_proposals_router)

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
        "environment": ENVIRONMENT,
        "endpoints": {
            "orders": "/order-requests",
            "invoices": "/invoices",
            "products": "/products",
            "audit": "/audit-logs",
            "tierProposals": "/tier-proposals",
            "health": "/health",
            "ready": "/health/ready",
            "metrics": "/metrics",
            "docs": "/api/docs"
        }
    }
