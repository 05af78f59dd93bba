import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.adapters.dev_jobs import create_aggregation_scheduler
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite_db import SQLiteAnalyticsStore
from src.api.deps import get_clock, get_settings, require_read_analytics
from src.app_shell.config import ConfigError, validate_ops_rules
from src.rules.loader import load_rules

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    # Load rules, validate and migrate on startup (fail-fast)
    try:
        rules = load_rules(settings.rules_path)
        validate_ops_rules(rules, settings.data_dir)
        SQLiteMigrator(settings.db_path, settings.migrations_dir).run_migrations()
        logger.info("Rules loaded from %s", settings.rules_path)
    except (ConfigError, FileNotFoundError, ValueError, RuntimeError) as e:
        logger.critical("Startup failed: %s", e)
        sys.exit(1)

    scheduler = None
    if rules.analytics.enabled and rules.analytics.aggregation.run_in_api:
        scheduler = create_aggregation_scheduler(
            SQLiteAnalyticsStore(settings.db_path),
            interval_minutes=rules.analytics.aggregation.interval_minutes,
            time_port=get_clock(),
        )
        scheduler.start()

    yield

    if scheduler is not None:
        scheduler.stop()


app = FastAPI(
    title="Visitor Analytics API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# --- Routers ---
from src.api.routes import admin_analytics, shop_analytics  # noqa: E402

app.include_router(shop_analytics.router, prefix="/shop/analytics", tags=["Shop Analytics"])
app.include_router(
    admin_analytics.router,
    prefix="/admin/analytics",
    tags=["Admin Analytics"],
    dependencies=[Depends(require_read_analytics)],
)


# CORS (Allow Storefront / Admin UI)
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
    expose_headers=[shop_analytics.SESSION_TOKEN_HEADER],
)


@app.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {"status": "ok", "service": "analytics"}
