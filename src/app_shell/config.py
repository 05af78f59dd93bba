import logging
import os
from pathlib import Path

from src.rules.models import Rules

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Operational configuration is unusable."""


def validate_ops_rules(rules: Rules, data_dir: Path) -> None:
    """
    Validate operational requirements before startup.

    Raises:
        ConfigError: If the data dir cannot be used or required env vars
            are missing.
    """
    ops = rules.ops

    # 1. Data dir must exist (created on demand) and be writable
    if ops.data_dir_required:
        try:
            data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"Cannot create data dir {data_dir}: {e}") from e
        if not os.access(data_dir, os.W_OK):
            raise ConfigError(f"Data dir {data_dir} is not writable")

    # 2. Required env
    missing = [env_var for env_var in ops.required_env if env_var not in os.environ]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    # 3. Admin token is optional; without it admin routes deny everything
    if rules.security.admin_token_env not in os.environ:
        logger.warning(
            "%s is not set; admin analytics routes will reject all requests",
            rules.security.admin_token_env,
        )

    logger.info("Configuration validated.")
