"""
Composition root: builds the database, repositories, ingestion service and
stores for one process and owns their lifecycle.

    async with AppContext(settings) as app:
        await app.playlist_store.add_playlist(...)
"""
import logging
from typing import Optional

import httpx

from config import AppSettings, ensure_config_dir, get_settings
from database import IN_MEMORY_URL, Database
from playlist_repository import PlaylistRepository
from playlist_service import PlaylistService
from stores import PlaylistStore, UserStore
from user_repository import UserRepository

logger = logging.getLogger(__name__)


class AppContext:
    """Explicitly constructed services, in place of module-level singletons."""

    def __init__(self, settings: Optional[AppSettings] = None,
                 database: Optional[Database] = None,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self.database = database or Database(self.settings.database_url)
        self.playlist_repository = PlaylistRepository(self.database)
        self.user_repository = UserRepository(self.database)
        self.playlist_service = PlaylistService(http_client=http_client, settings=self.settings)
        self.user_store = UserStore(self.user_repository, settings=self.settings)
        self.playlist_store = PlaylistStore(
            self.playlist_repository,
            self.playlist_service,
            user_store=self.user_store,
            settings=self.settings,
        )

    def init(self) -> None:
        """Open and migrate the database, then load users and playlists."""
        if self.database.url != IN_MEMORY_URL:
            ensure_config_dir(self.settings)
        self.database.init()
        self.user_store.ensure_default_user()
        self.playlist_store.load_playlists()
        logger.info("[APP] Application context initialized")

    async def dispose(self) -> None:
        await self.playlist_service.aclose()
        self.database.dispose()
        logger.info("[APP] Application context disposed")

    async def __aenter__(self) -> "AppContext":
        self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()
