from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from rentshare.config import settings
from rentshare.api.v1.router import api_router
from rentshare.database import init_db, async_session_factory


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup creates any missing tables; schema changes go through Alembic.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()

    yield

    logger.info("Shutting down...")


# OpenAPI Tags with detailed descriptions
OPENAPI_TAGS = [
    {"name": "Discounts", "description": "Discount code issuance, assignment, validation and redemption"},
    {"name": "Health", "description": "Liveness and database connectivity"},
]

FULL_API_DESCRIPTION = """
## RentShare Discounts API

Discount codes for the rental marketplace checkout.

| Area | Description |
|------|-------------|
| **Issuance** | Percent or fixed codes with caps, minimums, windows and owner/item scope |
| **Private codes** | Per-user assignments with their own window and usage limit |
| **Checkout** | Validate, quote (public + private stacking) and redeem |

### Authentication

Endpoints require a JWT bearer token issued by the identity service.
`/validate`, `/quote` and `/redeem` also accept anonymous callers, who can
only use public codes.

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Bad Request - invalid input, or code rejected (`detail.reason`) |
| 401 | Unauthorized - Invalid/expired token |
| 403 | Forbidden - private code not assigned to the caller |
| 404 | Not Found - code doesn't exist or isn't available |
| 409 | Conflict - redemption rejected (`detail.reason`) |
| 503 | Code generation exhausted its attempts, retry |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=FULL_API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unexpected errors and return a generic 500."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")

    content = {
        "error": "Internal server error",
        "path": str(request.url.path),
        "method": request.method,
    }
    if settings.DEBUG:
        content["type"] = type(exc).__name__
        content["detail"] = str(exc)

    return JSONResponse(status_code=500, content=content)


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status
