import logging
import os
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.adapters.clock import SystemClock
from src.adapters.sqlite_db import SQLiteAnalyticsStore
from src.components.analytics import AnalyticsStorePort, TimePort
from src.rules.loader import load_rules
from src.rules.models import Rules

logger = logging.getLogger(__name__)


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("ANALYTICS_DATA_DIR", "./data"))
        self.db_path = str(self.data_dir / "analytics.db")
        self.rules_path = Path(
            os.environ.get("ANALYTICS_RULES_PATH", str(self.base_dir / "rules.yaml"))
        )
        self.migrations_dir = str(self.base_dir / "migrations")


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
@lru_cache
def get_rules(settings: Settings = Depends(get_settings)) -> Rules:
    return load_rules(settings.rules_path)


# --- Store ---
def get_store(settings: Settings = Depends(get_settings)) -> AnalyticsStorePort:
    return SQLiteAnalyticsStore(settings.db_path)


# Time adapter for deterministic time operations
_clock_instance: SystemClock | None = None


def get_clock() -> TimePort:
    """Get clock singleton."""
    global _clock_instance
    if _clock_instance is None:
        _clock_instance = SystemClock()
    return _clock_instance


# --- Request context ---
def get_channel_id(
    x_channel_id: Annotated[str, Header(alias="X-Channel-Id")],
) -> str:
    """Active channel (tenant) of the request."""
    channel_id = x_channel_id.strip()
    if not channel_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Channel-Id header is required",
        )
    return channel_id


# --- Auth ---
bearer_scheme = HTTPBearer(auto_error=False)


def require_read_analytics(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    rules: Rules = Depends(get_rules),
) -> None:
    """
    Enforce the ReadAnalytics permission.

    The admin token is read from the environment variable named in
    rules.security.admin_token_env.
    """
    expected = os.environ.get(rules.security.admin_token_env)
    if not expected:
        logger.warning(
            "%s is not set; denying %s",
            rules.security.admin_token_env,
            rules.security.read_permission,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing permission: {rules.security.read_permission}",
        )

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not secrets.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing permission: {rules.security.read_permission}",
        )
