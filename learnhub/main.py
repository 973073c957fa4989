# learnhub/main.py - FastAPI application for course enrollment and EMI payments
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import traceback
import time

from learnhub.core.config import settings
from learnhub.core.db import get_engine, db_manager, health_check as db_health_check
from learnhub.core.errors import LearnHubError
from learnhub.schemas.common import ErrorResponse
from learnhub.models import Base
from learnhub.api.routers import enrollments, payments, analytics


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting LearnHub Enrollment API...")
    logger.info(f"Environment: {settings.ENV}")
    logger.info(f"Database URL: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'local'}")

    engine = get_engine()

    # Migrations own the schema outside development
    if settings.is_development:
        logger.info("Creating database tables...")
        try:
            Base.metadata.create_all(bind=engine)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Error creating tables: {e}")

    if not settings.gateway_configured:
        logger.warning("Payment gateway credentials missing; checkout endpoints will return 503")

    yield

    logger.info("Shutting down LearnHub Enrollment API...")
    db_manager.close()


app = FastAPI(
    title=settings.API_TITLE,
    description="Course enrollment, batch seating and installment payment engine",
    version=settings.API_VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan
)

logger.info(f"CORS Origins configured: {settings.CORS_ORIGINS}")


# Request logging middleware - BEFORE CORS
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log each request with its status and timing"""
    start_time = time.time()
    logger.info(f"Incoming {request.method} {request.url.path}")

    try:
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.info(
            f"Response {response.status_code} for {request.method} {request.url.path} "
            f"in {process_time:.3f}s"
        )
        return response
    except Exception as e:
        logger.error(f"Error processing {request.method} {request.url.path}: {str(e)}")
        logger.error(traceback.format_exc())
        raise


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
        "X-Requested-With",
        "X-Razorpay-Signature",
    ],
    max_age=3600,
)


@app.exception_handler(LearnHubError)
async def learnhub_exception_handler(request: Request, exc: LearnHubError):
    """Map service errors to their HTTP status with a machine-readable code"""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=ErrorResponse(**exc.to_dict()).model_dump(mode="json"))


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}")
    logger.error(f"   Exception: {str(exc)}")

    if settings.ENV == "dev":
        logger.error(f"   Traceback:\n{traceback.format_exc()}")
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "traceback": traceback.format_exc()
            }
        )
    else:
        logger.error(traceback.format_exc())
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENV,
        "version": settings.API_VERSION,
        "database": db_health_check(),
        "gateway_configured": settings.gateway_configured,
    }


# Include routers
logger.info("Registering API routers...")
app.include_router(enrollments.router, prefix="/api/enrollments", tags=["Enrollments"])
app.include_router(payments.router, prefix="/api/payments", tags=["Payments"])
app.include_router(analytics.router, prefix="/api/analytics", tags=["Analytics"])
logger.info("All routers registered successfully")


@app.get("/")
async def root():
    return {
        "message": settings.API_TITLE,
        "version": settings.API_VERSION,
        "docs_url": "/docs" if settings.is_development else "Documentation disabled in production",
    }
