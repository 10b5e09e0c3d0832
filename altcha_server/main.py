from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import inspect
import structlog

from altcha_server.config import Settings, settings
from altcha_server.database import engine
from altcha_server.logging_config import setup_logging
from altcha_server.middleware.logging import LoggingMiddleware
from altcha_server.middleware.rate_limit import limiter
from altcha_server.routers import challenges, verification
from altcha_server.scheduler import shutdown_scheduler, start_scheduler

# Database tables are managed by Alembic migrations
# Run: alembic upgrade head
REQUIRED_TABLES = {"session_entries"}

logger = structlog.get_logger()


def check_database_tables() -> None:
    """Fail fast when migrations have not been applied."""
    existing = set(inspect(engine).get_table_names())
    missing = REQUIRED_TABLES - existing
    if missing:
        raise RuntimeError(
            f"Database tables missing: {', '.join(sorted(missing))}. "
            "Run `make migrate` (alembic upgrade head) before starting the server."
        )


def warn_if_ephemeral_hmac_key(current: Settings = settings) -> bool:
    """Warn when the HMAC key was generated at import rather than configured."""
    if "altcha_hmac_key" in current.model_fields_set:
        return False
    logger.warning(
        "altcha_hmac_key_not_set",
        detail="Using a per-process random key. Challenges will not verify across "
        "workers or restarts. Set ALTCHA_HMAC_KEY.",
    )
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - check schema, start/stop scheduler."""
    setup_logging()
    warn_if_ephemeral_hmac_key()
    check_database_tables()
    start_scheduler()
    yield
    shutdown_scheduler()


app = FastAPI(
    title="altcha-server",
    description="Self-hosted ALTCHA proof-of-work CAPTCHA challenges",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)

# Routers
app.include_router(challenges.router, prefix="/api/v1", tags=["altcha"])
app.include_router(verification.router, prefix="/api/v1", tags=["altcha"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
