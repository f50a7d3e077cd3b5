from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import os
import logging
from pathlib import Path

# Set up logging
logger = logging.getLogger(__name__)

# Config directory (database file lives here)
CONFIG_DIR = Path(os.environ.get("CONFIG_DIR", "./config"))


class AppSettings(BaseSettings):
    """Library settings from environment (IPTV_ prefix) or a .env file."""

    config_dir: Path = CONFIG_DIR
    database_file: str = "iptv.db"
    # HTTP fetch settings for playlist downloads
    http_timeout: float = Field(default=30.0, gt=0)  # seconds, connect + read
    http_user_agent: str = "iptv-playlist-core/0.1"
    # Backend log level: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = "INFO"
    # Default number of rows returned by watch history queries
    watch_history_limit: int = Field(default=50, gt=0)
    # Playlist names are trimmed and cut to this length
    playlist_name_max_length: int = Field(default=100, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="IPTV_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def database_path(self) -> Path:
        return Path(self.config_dir) / self.database_file

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"


# In-memory cache of settings
_cached_settings: AppSettings | None = None


def ensure_config_dir(settings: AppSettings | None = None) -> Path:
    """Ensure config directory exists."""
    config_dir = Path((settings or get_settings()).config_dir)
    config_dir.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Ensured config directory exists: {config_dir}")
    return config_dir


def load_settings() -> AppSettings:
    """Load settings from the environment, caching the result."""
    global _cached_settings

    if _cached_settings is not None:
        return _cached_settings

    _cached_settings = AppSettings()
    logger.debug(f"Loaded settings, database at {_cached_settings.database_path}")
    return _cached_settings


def clear_settings_cache() -> None:
    """Clear the cached settings (forces reload)."""
    global _cached_settings
    _cached_settings = None
    logger.debug("Settings cache cleared")


def get_settings() -> AppSettings:
    """Get the current settings."""
    return load_settings()


VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def set_log_level(level: str) -> str:
    """
    Change the log level of the running process.

    Unknown names fall back to INFO. Loggers created before the call are
    updated too, so the change applies to modules that are already imported.
    Returns the level actually applied.
    """
    level_name = (level or "").upper()
    if level_name not in VALID_LOG_LEVELS:
        logger.warning(f"Invalid log level '{level}', using INFO")
        level_name = "INFO"

    numeric_level = getattr(logging, level_name)
    logging.getLogger().setLevel(numeric_level)
    for existing in list(logging.root.manager.loggerDict.values()):
        if isinstance(existing, logging.Logger):
            existing.setLevel(numeric_level)

    logger.info(f"Log level set to {level_name}")
    return level_name
