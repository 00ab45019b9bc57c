from contextlib import asynccontextmanager
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
import logging

from app.core.config import settings
from app.core.database import engine
from app.core.exceptions import BookmarkBureauException
from app.core.middleware import SecurityHeadersMiddleware
from app.core.scheduler import start_scheduler, shutdown_scheduler
from app.api.routes.auth import router as auth_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Determine if running in production
IS_PRODUCTION = settings.ENVIRONMENT == "production"


def run_migrations():
    """Run database migrations on startup."""
    from alembic.config import Config
    from alembic import command

    logger.info("Running database migrations...")
    alembic_cfg = Config("alembic.ini")
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed successfully")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting Bookmark Bureau API...")

    errors = settings.validate_required_secrets()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        if IS_PRODUCTION:
            raise RuntimeError("Refusing to start with invalid configuration")

    if IS_PRODUCTION:
        run_migrations()

    start_scheduler()

    logger.info("Bookmark Bureau API started successfully")
    yield
    # Shutdown
    shutdown_scheduler()
    logger.info("Shutting down Bookmark Bureau API...")


app = FastAPI(
    title="Bookmark Bureau API",
    description="Authentication and login abuse prevention for Bookmark Bureau",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production
    docs_url=None if IS_PRODUCTION else "/docs",
    redoc_url=None if IS_PRODUCTION else "/redoc",
)


# Exception handlers
@app.exception_handler(BookmarkBureauException)
async def bookmark_bureau_exception_handler(request: Request, exc: BookmarkBureauException):
    """Handle custom Bookmark Bureau exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_content(),
        headers=exc.headers,
    )


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    """Handle database errors."""
    logger.error(f"Database error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "A database error occurred",
            "error_code": "DATABASE_ERROR",
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected error occurred",
            "error_code": "INTERNAL_ERROR",
        },
    )


app.add_middleware(SecurityHeadersMiddleware, enable_hsts=IS_PRODUCTION)

allowed_origins = [settings.FRONTEND_URL]
if not IS_PRODUCTION:
    # Allow localhost variations in development
    allowed_origins.extend([
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "Origin"],
    expose_headers=["Retry-After"],
    max_age=600,  # Cache preflight requests for 10 minutes
)

app.include_router(auth_router, prefix="/api")


@app.get("/health")
def health_check():
    """Health check endpoint for load balancers and monitoring."""
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
    }

    # Check database connectivity
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["database"] = "disconnected"

    return health_status
