"""
Playlist state and the add/refresh ingestion pipeline.

    idle -> validating-input -> fetching -> parsing -> deduplicating
         -> validating-structure -> persisting -> done

Any step can move to ``error``; the in-memory playlist list only changes
after the repository write succeeded.
"""
import logging
import random
import string
import time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from config import AppSettings, get_settings
from domain import CreatePlaylistInput, ParsedPlaylist, Playlist, UpdatePlaylistInput
from errors import DuplicatePlaylistError, InvalidInputError, IPTVError, NotFoundError, PlaylistValidationError
from models import utcnow
from playlist_repository import PlaylistRepository
from playlist_service import IngestionStage, PlaylistService
from stores.base import StoreBase
from stores.user_store import UserStore

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_playlist_id() -> str:
    """playlist-<epoch ms>-<7 random base36 chars>"""
    suffix = "".join(random.choices(_ID_ALPHABET, k=7))
    return f"playlist-{int(time.time() * 1000)}-{suffix}"


def sanitize_playlist_name(name: str, max_length: int = 100) -> str:
    return (name or "").strip()[:max_length]


class PlaylistStore(StoreBase):
    """In-memory playlists and the active selection over a PlaylistRepository."""

    log_tag = "PLAYLIST"

    def __init__(self, repository: PlaylistRepository, service: PlaylistService,
                 user_store: Optional[UserStore] = None, settings: Optional[AppSettings] = None):
        super().__init__()
        self.repository = repository
        self.service = service
        self.user_store = user_store
        self.settings = settings or get_settings()
        self.playlists: list[Playlist] = []
        self.active_playlist_id: Optional[str] = None
        self.stage = IngestionStage.IDLE

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def load_playlists(self) -> list[Playlist]:
        """Load all playlists and restore the current user's active selection."""
        with self._tracked("Load playlists", loading=True):
            playlists = self.repository.get_all()

        self.playlists = playlists
        ids = {p.id for p in playlists}
        persisted = self._persisted_active_playlist_id()
        if persisted in ids:
            self.active_playlist_id = persisted
        elif self.active_playlist_id not in ids:
            self.active_playlist_id = playlists[0].id if playlists else None
        logger.info(f"[PLAYLIST] Loaded {len(playlists)} playlists, active={self.active_playlist_id}")
        return playlists

    def get_playlist_by_id(self, playlist_id: str) -> Optional[Playlist]:
        return next((p for p in self.playlists if p.id == playlist_id), None)

    def get_active_playlist(self) -> Optional[Playlist]:
        if self.active_playlist_id is None:
            return None
        return self.get_playlist_by_id(self.active_playlist_id)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def add_playlist(self, data: CreatePlaylistInput) -> Playlist:
        """
        Validate input, fetch and parse the playlist, then persist it.

        Raises:
            InvalidInputError: Missing name or URL, or malformed URL
            DuplicatePlaylistError: A stored playlist already uses this URL
            PlaylistValidationError: Parsed data failed the structural check
            plus any fetch/parse error from PlaylistService

        The first playlist becomes active. If remembering that choice in the
        user's settings fails, the failure is logged and the add still succeeds.
        """
        with self._tracked("Add playlist", loading=True):
            self._set_stage(IngestionStage.VALIDATING_INPUT)
            name, url = self._validate_input(data.name, data.url)
            self._check_duplicate_url(url)

            parsed = await self.service.fetch_and_parse(url, data.credentials, on_stage=self._set_stage)
            self._check_structure(parsed)

            self._set_stage(IngestionStage.PERSISTING)
            now = utcnow()
            playlist = self.repository.create(Playlist(
                id=generate_playlist_id(),
                name=name,
                url=url,
                credentials=data.credentials,
                parsed_data=parsed,
                channel_count=len(parsed.items),
                created_at=now,
                updated_at=now,
                last_fetched_at=now,
            ))

        self.playlists = [*self.playlists, playlist]
        if self.active_playlist_id is None:
            self.active_playlist_id = playlist.id
            try:
                self._persist_active_playlist(playlist.id)
            except (IPTVError, SQLAlchemyError) as e:
                # The playlist itself is stored; only the remembered selection is lost
                logger.warning(f"[PLAYLIST] Added {playlist.id} but could not save it as active playlist: {e}")
        self._set_stage(IngestionStage.DONE)
        return playlist

    async def refresh_playlist(self, playlist_id: str) -> Playlist:
        """Re-fetch a playlist and replace its channels. Old channels survive any failure."""
        with self._tracked("Refresh playlist", loading=True):
            existing = self._require(playlist_id)
            parsed = await self.service.fetch_and_parse(existing.url, existing.credentials, on_stage=self._set_stage)
            self._check_structure(parsed)

            self._set_stage(IngestionStage.PERSISTING)
            updated = self.repository.update(
                playlist_id,
                {"parsed_data": parsed, "last_fetched_at": utcnow()},
                expected_version=existing.version,
            )

        self._replace(updated)
        self._set_stage(IngestionStage.DONE)
        return updated

    async def update_playlist(self, playlist_id: str, data: UpdatePlaylistInput) -> Playlist:
        """
        Edit name, URL or credentials.

        A changed URL or changed credentials re-fetch the playlist, so the
        stored channels always match the stored source.
        """
        with self._tracked("Update playlist", loading=True):
            self._set_stage(IngestionStage.VALIDATING_INPUT)
            existing = self._require(playlist_id)
            updates: dict = {}

            if data.name is not None:
                name = sanitize_playlist_name(data.name, self.settings.playlist_name_max_length)
                if not name:
                    raise InvalidInputError("Playlist name is required")
                updates["name"] = name

            url = existing.url
            if data.url is not None:
                _, url = self._validate_input(existing.name, data.url)
                self._check_duplicate_url(url, exclude_id=playlist_id)
                updates["url"] = url

            credentials = existing.credentials
            if data.credentials is not None:
                credentials = data.credentials
                updates["credentials"] = credentials

            if url.lower() != existing.url.lower() or credentials != existing.credentials:
                parsed = await self.service.fetch_and_parse(url, credentials, on_stage=self._set_stage)
                self._check_structure(parsed)
                updates["parsed_data"] = parsed
                updates["last_fetched_at"] = utcnow()

            self._set_stage(IngestionStage.PERSISTING)
            updated = self.repository.update(playlist_id, updates, expected_version=existing.version)

        self._replace(updated)
        self._set_stage(IngestionStage.DONE)
        return updated

    def remove_playlist(self, playlist_id: str) -> None:
        """
        Delete a playlist. If it was active, the next remaining playlist (or
        none) becomes active, and no user keeps it as persisted selection.
        """
        with self._tracked("Remove playlist"):
            self.repository.delete(playlist_id)

        index = next((i for i, p in enumerate(self.playlists) if p.id == playlist_id), 0)
        self.playlists = [p for p in self.playlists if p.id != playlist_id]

        if self.user_store is not None:
            self.user_store.clear_active_playlist(playlist_id)

        if self.active_playlist_id == playlist_id:
            replacement = self.playlists[min(index, len(self.playlists) - 1)].id if self.playlists else None
            self.set_active_playlist(replacement)
        logger.info(f"[PLAYLIST] Removed playlist {playlist_id}, active={self.active_playlist_id}")

    def set_active_playlist(self, playlist_id: Optional[str]) -> None:
        """Select a playlist and persist the choice in the current user's settings."""
        with self._tracked("Set active playlist"):
            if playlist_id is not None and self.get_playlist_by_id(playlist_id) is None:
                raise NotFoundError(f"Playlist not found: {playlist_id}")
            self._persist_active_playlist(playlist_id)
        self.active_playlist_id = playlist_id

    def clear_error(self) -> None:
        super().clear_error()
        if self.stage == IngestionStage.ERROR:
            self.stage = IngestionStage.IDLE

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _record_error(self, action: str, exc: Exception) -> None:
        super()._record_error(action, exc)
        self.stage = IngestionStage.ERROR

    def _set_stage(self, stage: IngestionStage) -> None:
        self.stage = stage
        logger.debug(f"[PLAYLIST] Stage: {stage.value}")

    def _validate_input(self, name: Optional[str], url: Optional[str]) -> tuple[str, str]:
        name = sanitize_playlist_name(name or "", self.settings.playlist_name_max_length)
        url = (url or "").strip()
        if not name:
            raise InvalidInputError("Playlist name is required")
        if not url:
            raise InvalidInputError("Playlist URL is required")
        if not self.service.validate_url(url):
            raise InvalidInputError("Invalid URL format. Please enter a valid http or https URL.")
        return name, url

    def _check_duplicate_url(self, url: str, exclude_id: Optional[str] = None) -> None:
        wanted = url.strip().lower()
        for playlist in self.playlists:
            if playlist.id != exclude_id and playlist.url.strip().lower() == wanted:
                raise DuplicatePlaylistError(playlist.name)

    def _check_structure(self, parsed: ParsedPlaylist) -> None:
        self._set_stage(IngestionStage.VALIDATING_STRUCTURE)
        result = self.service.validate(parsed)
        if not result.valid:
            raise PlaylistValidationError(result.errors)

    def _require(self, playlist_id: str) -> Playlist:
        playlist = self.get_playlist_by_id(playlist_id)
        if playlist is None:
            raise NotFoundError(f"Playlist not found: {playlist_id}")
        return playlist

    def _replace(self, playlist: Playlist) -> None:
        self.playlists = [playlist if p.id == playlist.id else p for p in self.playlists]

    def _persist_active_playlist(self, playlist_id: Optional[str]) -> None:
        if self.user_store is not None and self.user_store.current_user is not None:
            self.user_store.update_settings({"active_playlist_id": playlist_id})

    def _persisted_active_playlist_id(self) -> Optional[str]:
        if self.user_store is None or self.user_store.current_user is None:
            return None
        settings = self.user_store.current_user.settings
        return settings.active_playlist_id if settings else None
