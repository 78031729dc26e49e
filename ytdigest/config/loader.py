import os
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel
from structlog import get_logger

from ytdigest.config.schema import Settings
from ytdigest.utils import expand_env_vars

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "~/.ytdigest/ytdigest.yml"


def _warn_unknown_keys(model: BaseModel, path: str, config_path: Path) -> None:
    """Recursively warn about unknown keys in a model and its nested models."""
    if hasattr(model, "model_extra") and model.model_extra:
        logger.warning("Unknown keys in %s at %s: %s", path, config_path, list(model.model_extra.keys()))

    for field_name, field_value in model.__dict__.items():
        if isinstance(field_value, BaseModel):
            _warn_unknown_keys(field_value, f"{path}.{field_name}", config_path)


def _apply_env_overrides(settings: Settings) -> Settings:
    """Connection settings may come straight from the environment."""
    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        settings.redis.url = redis_url
    database_path = os.getenv("DATABASE_PATH")
    if database_path:
        settings.database.path = database_path
    bot_token = os.getenv("TELEGRAM_BOT_TOKEN")
    if bot_token:
        settings.telegram.bot_token = bot_token
    return settings


def load_config(path: Optional[Path] = None) -> Settings:
    """Load and validate configuration from a YAML file.

    Args:
        path: Path to the ytdigest.yml file. Defaults to ``$YTDIGEST_CONFIG``
            or ``~/.ytdigest/ytdigest.yml``.

    Returns:
        The validated settings; defaults when the file does not exist.

    Raises:
        pydantic.ValidationError: If the file contents are invalid.
    """
    load_dotenv()

    if path is None:
        path = Path(os.getenv("YTDIGEST_CONFIG", DEFAULT_CONFIG_PATH)).expanduser()

    if not path.exists():
        logger.info("No config file at %s; using defaults", path)
        return _apply_env_overrides(Settings())

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    expanded = expand_env_vars(raw)
    settings = Settings.model_validate(expanded)
    _warn_unknown_keys(settings, "root", path)
    return _apply_env_overrides(settings)
