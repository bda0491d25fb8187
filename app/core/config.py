import os
import logging
from pydantic import BaseModel, Field
from dotenv import load_dotenv

load_dotenv()

class PtoSettings(BaseModel):
    hours_per_day: float = Field(default=float(os.getenv("PTO_HOURS_PER_DAY", "8")))
    # Upper bound on supervisor hops when walking the org chart
    max_hierarchy_depth: int = Field(default=int(os.getenv("PTO_MAX_HIERARCHY_DEPTH", "10")))
    max_delegation_depth: int = Field(default=int(os.getenv("PTO_MAX_DELEGATION_DEPTH", "5")))
    transactions_page_size: int = Field(default=int(os.getenv("PTO_TRANSACTIONS_PAGE_SIZE", "100")))
    reminder_after_hours: int = Field(default=int(os.getenv("PTO_REMINDER_AFTER_HOURS", "48")))
    submit_rate_limit: str = Field(default=os.getenv("PTO_SUBMIT_RATE_LIMIT", "30/minute"))

class Config(BaseModel):
    app_name: str = "PTO Ledger Service"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./database.db")
    sqlite_busy_timeout: float = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Identity header set by the upstream auth gateway
    user_id_header: str = "X-User-Id"
    request_id_header: str = "X-Request-ID"

    version: str = "1.0.0"
    build_id: str = os.getenv("BUILD_ID", "local")
    commit_hash: str = os.getenv("COMMIT_HASH", "HEAD")

    cors_origins: list[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if o.strip()
        ]
    )

    pto: PtoSettings = PtoSettings()

settings = Config()

# --- Startup Validation for Production ---
_logger = logging.getLogger(__name__)
if settings.environment not in ("development", "testing"):
    if settings.database_url.startswith("sqlite"):
        raise RuntimeError(
            "FATAL: DATABASE_URL points at SQLite in a non-development environment. "
            "Row-level locking for balance mutations requires PostgreSQL."
        )
else:
    if settings.database_url.startswith("sqlite"):
        _logger.warning("Using SQLite: balance row locks are process-local only.")
