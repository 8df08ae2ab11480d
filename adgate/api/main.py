import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from adgate.adapters.sqlite_db import init_schema
from adgate.api.deps import get_settings
from adgate.ports.repo import StorageError
from adgate.rules.loader import load_rules, validate_ops_rules

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Load rules and validate on startup (fail-fast)
    try:
        rules = load_rules(settings.rules_path)
    except (FileNotFoundError, ValueError) as e:
        logger.critical("Rules load failed: %s", e)
        sys.exit(1)

    missing = validate_ops_rules(rules)
    if missing:
        logger.critical("Missing required environment variables: %s", ", ".join(missing))
        sys.exit(1)

    if settings.using_dev_secret:
        logger.warning("ADGATE_REFERRAL_SECRET not set, using development secret")

    init_schema(settings.db_path)
    logger.info("Rules loaded from %s, database at %s", settings.rules_path, settings.db_path)

    yield


app = FastAPI(
    title="adgate API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# --- Routers ---
from adgate.api.routes import unlock, visitor  # noqa: E402

app.include_router(visitor.router, prefix="/api/visitor", tags=["Visitor"])
app.include_router(unlock.router, prefix="/api/unlock", tags=["Unlock"])


# CORS (Allow Frontend)
origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "detail": {
                "code": "STORAGE_UNAVAILABLE",
                "message": "Storage is temporarily unavailable",
                "retryable": True,
            }
        },
    )


@app.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {"status": "ok", "service": "api"}
