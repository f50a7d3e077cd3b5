"""
Pytest configuration and shared fixtures for backend tests.
"""
import logging
import os
import sys
from pathlib import Path

import pytest

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Set test config directory before importing modules
os.environ["CONFIG_DIR"] = "/tmp/iptv_test_config"

# Ensure test config directory exists
Path("/tmp/iptv_test_config").mkdir(parents=True, exist_ok=True)

from config import AppSettings
from database import Database
from playlist_repository import PlaylistRepository
from playlist_service import PlaylistService
from stores import PlaylistStore, UserStore
from user_repository import UserRepository


@pytest.fixture(autouse=True)
def restore_log_levels():
    """Undo runtime log level changes (CLI runs, set_log_level) after each test."""
    root_level = logging.getLogger().level
    levels = {
        name: existing.level
        for name, existing in logging.root.manager.loggerDict.items()
        if isinstance(existing, logging.Logger)
    }
    yield
    logging.getLogger().setLevel(root_level)
    for name, existing in list(logging.root.manager.loggerDict.items()):
        if isinstance(existing, logging.Logger):
            existing.setLevel(levels.get(name, logging.NOTSET))


@pytest.fixture(scope="function")
def test_settings():
    """Settings that never read the developer's environment or .env file."""
    return AppSettings(
        _env_file=None,
        config_dir=Path("/tmp/iptv_test_config"),
        http_timeout=5.0,
        http_user_agent="iptv-test",
    )


@pytest.fixture(scope="function")
def database():
    """A fresh, fully migrated in-memory database per test."""
    db = Database.in_memory()
    yield db
    db.dispose()


@pytest.fixture(scope="function")
def playlist_repository(database):
    return PlaylistRepository(database)


@pytest.fixture(scope="function")
def user_repository(database):
    return UserRepository(database)


@pytest.fixture(scope="function")
def playlist_service(test_settings):
    """Service with its own lazily created httpx client (intercepted by respx)."""
    return PlaylistService(settings=test_settings)


@pytest.fixture(scope="function")
def user_store(user_repository, test_settings):
    return UserStore(user_repository, settings=test_settings)


@pytest.fixture(scope="function")
def playlist_store(playlist_repository, playlist_service, user_store, test_settings):
    return PlaylistStore(playlist_repository, playlist_service, user_store=user_store, settings=test_settings)
