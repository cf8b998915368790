"""
Main FastAPI application entry point.
"""
import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy import text

from .config import settings
from .database import init_db, engine
from .services.redis_pool import get_redis_client

logger = logging.getLogger(__name__)


def run_merge_suggestion_migration():
    """
    Run idempotent merge-suggestion schema migration on startup.

    Adds post merge/embedding columns to existing databases and enforces
    one pending suggestion per unordered post pair.
    """
    from .db_migrations.merge_suggestion_migration import migrate_merge_suggestions

    migrate_merge_suggestions(engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    """
    # Startup
    logger.info("Starting Feedback Portal API...")
    logger.info(f"Database: {engine.url.render_as_string(hide_password=True)}")
    logger.info(f"CORS origins: {settings.cors_origins_list}")

    # Initialize database
    init_db()
    logger.info("Database initialized")

    # Run schema migrations (idempotent, safe on every startup)
    run_merge_suggestion_migration()

    if not settings.llm_configured:
        logger.warning("No LLM provider key configured; merge checks will be skipped")

    yield

    # Shutdown
    logger.info("Shutting down Feedback Portal API...")


# Create FastAPI application
app = FastAPI(
    title="Feedback Portal API",
    description="Duplicate detection and merge suggestions for feedback posts",
    version="0.1.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/livez")
async def liveness():
    """Liveness probe - zero dependencies, confirms process is responsive."""
    return {"status": "ok"}


@app.get("/health")
async def health_check():
    """Health check - database and Redis connectivity.

    Redis is a soft dependency: its absence degrades background work but
    the API stays healthy.
    """
    checks = {}
    healthy = True

    try:
        def _check_db():
            with engine.connect() as conn:
                return conn.execute(text("SELECT 1")).scalar() == 1

        if await asyncio.to_thread(_check_db):
            checks["database"] = "ok"
        else:
            checks["database"] = "error: unexpected result"
            healthy = False
    except Exception as e:
        checks["database"] = f"error: {type(e).__name__}"
        healthy = False

    try:
        def _check_redis():
            client = get_redis_client()
            return client and client.ping()

        if await asyncio.to_thread(_check_redis):
            checks["redis"] = "ok"
        else:
            checks["redis"] = "warning: unavailable"
    except Exception as e:
        checks["redis"] = f"warning: {type(e).__name__}"

    status_code = 200 if healthy else 503
    status_label = "ok" if healthy else "unhealthy"
    if healthy and checks.get("redis", "").startswith("warning"):
        status_label = "degraded"

    return JSONResponse(
        content={"status": status_label, "checks": checks},
        status_code=status_code,
    )


# Include API routers
from .api.v1.router import router as api_router
app.include_router(api_router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True
    )
