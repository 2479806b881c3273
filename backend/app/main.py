"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.exceptions import PaymentError
from app.core.logging import setup_logging
from app.core.otel import initialize_otel, instrument_app, setup_otel_logging
from app.core.security import log_api_access
from app.db.redis import get_redis_client
from app.db.session import engine, init_db
from app.services.gateway_client import PaymentGatewayClient

# Import routers
from app.api import payments, webhooks

setup_logging()
logger = logging.getLogger(__name__)

# Error codes for errors raised as plain HTTPExceptions (auth, rate limiting, routing)
HTTP_ERROR_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    429: "RATE_LIMIT_EXCEEDED",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    otel_initialized = initialize_otel()
    if otel_initialized:
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        raise

    # Payments are optional: a disabled client answers 503 instead of failing startup
    app.state.gateway = PaymentGatewayClient.from_settings()
    if not settings.ENABLE_RAZORPAY:
        logger.info("Payments disabled (ENABLE_RAZORPAY is not set)")

    yield

    # Shutdown
    logger.info("Shutting down...")
    app.state.gateway.close()


# Create FastAPI app
app = FastAPI(
    title="Payments Backend",
    description="Course, book and live class payments with webhook reconciliation",
    version="1.0.0",
    lifespan=lifespan
)

# Instrument FastAPI, HTTPX and SQLAlchemy with OpenTelemetry
instrument_app(app, engine)

# CORS middleware
allowed_origins = [settings.FRONTEND_URL]
if settings.ENVIRONMENT == "development":
    allowed_origins.extend([
        "http://localhost:3000",
        "http://localhost:8081",
        "http://127.0.0.1:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(payments.router)
app.include_router(payments.orders_router)  # Separate router for /api/orders
app.include_router(webhooks.router)


@app.middleware("http")
async def access_log_middleware(request: Request, call_next):
    """API access logging; never reads the body so webhooks stay raw"""
    status_code = 500
    error = None
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    except Exception as e:
        error = type(e).__name__
        raise
    finally:
        log_api_access(request, status_code, error)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    """Render payment errors with a generic message; details are only logged"""
    logger.warning(f"{exc.error_code} on {request.method} {request.url.path}: {exc.details}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
            "message": exc.detail if isinstance(exc.detail, str) else "Request failed",
        }
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Validation error on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "VALIDATION_ERROR", "message": "Invalid request data"}
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "INTERNAL_ERROR", "message": "Internal server error"}
    )


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check(request: Request):
    """Health check endpoint; payments being off does not make the service unhealthy"""
    gateway = getattr(request.app.state, "gateway", None)
    if not settings.ENABLE_RAZORPAY:
        payments = "disabled"
    elif gateway is None or not gateway.enabled:
        payments = "unconfigured"
    else:
        payments = "enabled"
    return {"status": "healthy", "payments": payments}
