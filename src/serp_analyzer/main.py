import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from .utils.logging import setup_logging

# Configure logging
setup_logging()
logger = logging.getLogger(__name__)

# Import after logging setup
from .config import settings  # noqa: E402
from .database import SessionLocal, create_tables, get_redis  # noqa: E402
from .api.rate_limit import limiter  # noqa: E402
from .api.analyze import router as analyze_router  # noqa: E402
from .api.analyses import router as analyses_router  # noqa: E402
from .api.api_keys import router as api_keys_router  # noqa: E402
from .api.token_auth import router as token_auth_router  # noqa: E402
from .api.users import router as users_router  # noqa: E402

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("🚀 Starting SERP Analyzer Service...")

    create_tables()
    logger.info("✅ Database initialized")

    logger.info(
        f"🔧 Strategy: {settings.orchestration_strategy}, batch size {settings.batch_size}, "
        f"max {settings.max_keywords} keywords per request"
    )
    logger.info("🎯 SERP Analyzer Service is ready!")

    yield

    # Shutdown
    logger.info("🛑 Shutting down SERP Analyzer Service...")


# Create FastAPI app
app = FastAPI(
    title="SERP Analyzer Service",
    description="Keyword SERP + domain authority analysis webhook with Apify key rotation",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)
app.state.limiter = limiter


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title="SERP Analyzer Service",
        version=VERSION,
        description="Keyword SERP + domain authority analysis webhook",
        routes=app.routes,
    )

    # Add security definitions
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "description": "Webhook token (serp-...) or dashboard session token",
        }
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else json.loads(settings.allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    return JSONResponse(
        status_code=400,
        content={
            "error": "invalid_request",
            "message": message,
            "details": [
                {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
                for error in errors
            ],
        },
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"⚠️ Rate limit exceeded for {request.client.host if request.client else 'unknown'}")
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests",
            "message": "Rate limit exceeded. Please try again later.",
        },
    )


@app.exception_handler(404)
async def not_found_handler(request, exc):
    detail = getattr(exc, "detail", None)
    return JSONResponse(
        status_code=404,
        content={"error": {"message": detail or "Not found", "type": "not_found"}},
    )


@app.exception_handler(500)
async def internal_error_handler(request, exc):
    logger.error(f"Internal server error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": {"message": "Internal server error", "type": "internal_error"}
        },
    )


# Root endpoints
@app.get("/")
async def root():
    """Root endpoint with service information."""
    return {
        "service": "SERP Analyzer Service",
        "version": VERSION,
        "status": "online",
        "endpoints": {
            "health": "/health",
            "docs": "/docs",
            "analyze": "/analyze",
            "users": "/v1/users",
            "api_keys": "/v1/api-keys",
            "analyses": "/v1/analyses",
        },
    }


@app.get("/health")
async def health_check():
    """Liveness probe; reports dependency state without failing."""
    database = "connected"
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check database probe failed: {e}")
        database = "unavailable"

    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
        "database": database,
        "redis": "connected" if get_redis() is not None else "not configured",
    }


# Include API routers
app.include_router(analyze_router)
app.include_router(users_router)
app.include_router(token_auth_router)
app.include_router(api_keys_router)
app.include_router(analyses_router)


# Development server
if __name__ == "__main__":
    import uvicorn

    logger.info("🚀 Starting development server...")
    uvicorn.run(
        "serp_analyzer.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level,
    )
