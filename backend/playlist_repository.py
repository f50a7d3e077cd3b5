"""
Persistence for playlists and their channel rows.

A playlist and its channels are always written in one transaction, so no
reader can observe a playlist without its channels (or with half of them).
"""
import logging
from collections import defaultdict
from typing import Any, Optional

from database import Database
from domain import Channel, ParsedPlaylist, Playlist, PlaylistCredentials
from errors import ConflictError, InvalidInputError, NotFoundError
from mappers import channel_from_record, channel_records_for, playlist_from_record, playlist_to_record
from models import ChannelRecord, PlaylistRecord, utcnow

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "name",
    "url",
    "credentials",
    "parsed_data",
    "channel_count",
    "last_fetched_at",
})


class PlaylistRepository:
    """CRUD over the playlists and channels tables."""

    def __init__(self, database: Database):
        self.database = database

    def get_all(self) -> list[Playlist]:
        session = self.database.session()
        try:
            records = session.query(PlaylistRecord).order_by(PlaylistRecord.created_at).all()
            channels_by_playlist: dict[str, list[ChannelRecord]] = defaultdict(list)
            for row in session.query(ChannelRecord).order_by(ChannelRecord.playlist_id, ChannelRecord.position):
                channels_by_playlist[row.playlist_id].append(row)
            return [playlist_from_record(record, channels_by_playlist[record.id]) for record in records]
        finally:
            session.close()

    def get_by_id(self, playlist_id: str) -> Optional[Playlist]:
        """Return the playlist with its channels, or None when it does not exist."""
        session = self.database.session()
        try:
            record = session.query(PlaylistRecord).filter(PlaylistRecord.id == playlist_id).first()
            if record is None:
                return None
            channels = self._channel_rows(session, playlist_id)
            return playlist_from_record(record, channels)
        finally:
            session.close()

    def get_channels(self, playlist_id: str) -> list[Channel]:
        session = self.database.session()
        try:
            return [channel_from_record(row) for row in self._channel_rows(session, playlist_id)]
        finally:
            session.close()

    def create(self, playlist: Playlist) -> Playlist:
        """
        Insert the playlist row and one row per channel.

        Any failure rolls back the whole write, including the playlist row.
        """
        items = playlist.channels
        if playlist.channel_count is None:
            playlist.channel_count = len(items)

        with self.database.transaction() as session:
            session.add(playlist_to_record(playlist))
            session.flush()
            session.add_all(channel_records_for(playlist.id, items))
            session.flush()

        logger.info(f"[PLAYLIST] Created playlist {playlist.id} ({playlist.name}) with {len(items)} channels")
        return playlist

    def update(self, playlist_id: str, updates: dict[str, Any],
               expected_version: Optional[int] = None) -> Playlist:
        """
        Merge partial updates into a stored playlist.

        When updates carry parsed_data its items replace every stored channel
        (delete all, insert all) in the same transaction as the metadata.

        Args:
            playlist_id: Playlist to update
            updates: Subset of name, url, credentials, parsed_data,
                channel_count, last_fetched_at
            expected_version: Reject the write unless the stored version matches

        Raises:
            NotFoundError: No playlist with this id
            ConflictError: Stored version differs from expected_version
            InvalidInputError: Unknown field in updates
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidInputError(f"Unknown playlist fields: {', '.join(sorted(unknown))}")

        with self.database.transaction() as session:
            record = session.query(PlaylistRecord).filter(PlaylistRecord.id == playlist_id).first()
            if record is None:
                raise NotFoundError(f"Playlist not found: {playlist_id}")

            current_version = record.version or 1
            if expected_version is not None and current_version != expected_version:
                raise ConflictError(playlist_id, expected_version, current_version)

            if "name" in updates:
                record.name = updates["name"]
            if "url" in updates:
                record.url = updates["url"]
            if "credentials" in updates:
                credentials: Optional[PlaylistCredentials] = updates["credentials"]
                record.username = credentials.username if credentials else None
                record.password = credentials.password if credentials else None
            if "last_fetched_at" in updates:
                record.last_fetched_at = updates["last_fetched_at"]

            parsed: Optional[ParsedPlaylist] = updates.get("parsed_data")
            if parsed is not None:
                deleted = session.query(ChannelRecord).filter(
                    ChannelRecord.playlist_id == playlist_id
                ).delete(synchronize_session=False)
                session.add_all(channel_records_for(playlist_id, parsed.items))
                record.channel_count = len(parsed.items)
                logger.debug(
                    f"[PLAYLIST] Replacing {deleted} channels of {playlist_id} with {len(parsed.items)}"
                )
            if "channel_count" in updates:
                record.channel_count = updates["channel_count"]

            record.updated_at = utcnow()
            record.version = current_version + 1
            session.flush()

            result = playlist_from_record(record, self._channel_rows(session, playlist_id))

        logger.info(f"[PLAYLIST] Updated playlist {playlist_id} to version {result.version}")
        return result

    def delete(self, playlist_id: str) -> None:
        """Delete a playlist; its channels go with it (ON DELETE CASCADE)."""
        with self.database.transaction() as session:
            deleted = session.query(PlaylistRecord).filter(
                PlaylistRecord.id == playlist_id
            ).delete(synchronize_session=False)
            if deleted == 0:
                raise NotFoundError(f"Playlist not found: {playlist_id}")
        logger.info(f"[PLAYLIST] Deleted playlist {playlist_id}")

    def clear(self) -> None:
        """Remove every playlist and channel. Full reset only."""
        with self.database.transaction() as session:
            session.query(ChannelRecord).delete(synchronize_session=False)
            session.query(PlaylistRecord).delete(synchronize_session=False)
        logger.warning("[PLAYLIST] Cleared all playlists and channels")

    @staticmethod
    def _channel_rows(session, playlist_id: str) -> list[ChannelRecord]:
        return (
            session.query(ChannelRecord)
            .filter(ChannelRecord.playlist_id == playlist_id)
            .order_by(ChannelRecord.position)
            .all()
        )
