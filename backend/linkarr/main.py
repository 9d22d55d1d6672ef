"""
FastAPI Main Application for Linkarr

This module defines the main FastAPI application entry point with:
- API route registration
- Request logging middleware with X-Request-ID correlation
- Lifespan context manager starting and stopping the reconciler

Entry Point:
    Run with: uvicorn linkarr.main:app (from backend/)
    Or:       python -m linkarr.main
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from linkarr.config import Config, ConfigurationError
from linkarr.database import engine
from linkarr.models.base import Base
from linkarr.services.structured_logging import (
    set_request_id, clear_context, generate_request_id, setup_json_logging
)

# Only set up basicConfig if no handlers exist yet
root_logger = logging.getLogger()
if not root_logger.handlers:
    if Config.LOG_JSON:
        root_logger.setLevel(Config.LOG_LEVEL)
        setup_json_logging(logger_name=None, level=root_logger.level, json_output=True)
    else:
        logging.basicConfig(
            level=Config.LOG_LEVEL,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
else:
    root_logger.setLevel(Config.LOG_LEVEL)

for uvicorn_logger_name in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
    logging.getLogger(uvicorn_logger_name).propagate = True

# Silence noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every HTTP request with a correlation id.

    The X-Request-ID header is reused when present, generated otherwise, set in
    the logging context and echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)

        client_ip = request.client.host if request.client else "unknown"
        logger.info(f"[{request_id}] {request.method} {request.url.path} from {client_ip}")

        start_time = time.time()
        try:
            response = await call_next(request)
            process_time = (time.time() - start_time) * 1000

            response.headers["X-Request-ID"] = request_id

            status_mark = "✓" if response.status_code < 400 else "✗"
            logger.info(
                f"   [{request_id}] {status_mark} {response.status_code} "
                f"({process_time:.2f}ms)"
            )

            return response
        except Exception as e:
            process_time = (time.time() - start_time) * 1000
            logger.error(
                f"   [{request_id}] ✗ Request failed after {process_time:.2f}ms: "
                f"{type(e).__name__}: {e}"
            )
            raise
        finally:
            clear_context()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup and shutdown tasks.

    Startup Tasks:
        1. Validate configuration (fatal on error)
        2. Create all database tables
        3. Load folder mappings and start the reconciler

    Shutdown Tasks:
        1. Stop the reconciler (the pass in flight is abandoned)
    """
    # ========== STARTUP ==========
    logger.info("=" * 60)
    logger.info(f"Starting {Config.APP_TITLE} v{Config.APP_VERSION}")
    logger.info("=" * 60)

    errors = Config.validate()
    if errors:
        for error in errors:
            logger.error(f"✗ Configuration error: {error}")
        raise ConfigurationError("; ".join(errors))

    if not Config.TMDB_API_KEY:
        logger.warning("⚠ TMDB_API_KEY not set: every new file will be recorded as Failed")

    for key, value in Config.get_summary().items():
        logger.debug(f"  {key}: {value}")

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("✓ Database tables created/verified")

    from linkarr.workers.reconciler import start_reconciler, stop_reconciler
    reconciler = await start_reconciler()
    logger.info(f"✓ Reconciler started for {len(reconciler.mappings)} mapping(s)")

    logger.info("✓ Application startup complete")
    logger.info("=" * 60)

    yield  # Application runs here

    # ========== SHUTDOWN ==========
    logger.info(f"Shutting down {Config.APP_TITLE}")

    try:
        await stop_reconciler()
        logger.info("✓ Reconciler stopped")
    except Exception as e:
        logger.warning(f"⚠ Reconciler shutdown error: {e}")

    logger.info("✓ Shutdown complete")


tags_metadata = [
    {
        "name": "tracked-files",
        "description": "Files under reconciliation: listing, statistics, manual match and re-detection.",
    },
    {
        "name": "health",
        "description": "Liveness/readiness probes and reconciler status.",
    },
]

app = FastAPI(
    title=Config.APP_TITLE,
    description="""
## Linkarr API

Watches download folders, identifies movies and TV episodes through TMDb, and
maintains a library of symbolic links named for Plex.

### Rate Limits
- TMDB API: 40 requests per 10 seconds
""",
    version=Config.APP_VERSION,
    lifespan=lifespan,
    openapi_tags=tags_metadata,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(RequestLoggingMiddleware)

# Register API routes
from linkarr.api import health_routes, tracked_files_routes  # noqa: E402

app.include_router(health_routes.router)
app.include_router(tracked_files_routes.router)
app.include_router(tracked_files_routes.symlinks_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=Config.APP_HOST, port=Config.APP_PORT)
