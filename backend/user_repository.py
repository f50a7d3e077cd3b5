"""
Persistence for user profiles and everything that hangs off a user:
settings, favorite and hidden channels, favorite groups, custom channel
order, watch history and playback positions.

Channel references are channel identity strings (see channel_utils), not
channel row ids.
"""
import logging
import uuid
from dataclasses import asdict, is_dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Union

from sqlalchemy import literal_column
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from channel_utils import get_channel_id, get_legacy_channel_ids
from database import Database
from domain import (
    Channel,
    CreateUserInput,
    DEFAULT_USER_SETTINGS,
    PlaybackPosition,
    UpdateUserInput,
    User,
    UserSettings,
    WatchHistoryEntry,
)
from errors import InvalidInputError, NotFoundError
from mappers import (
    playback_position_from_record,
    settings_from_record,
    user_from_record,
    watch_history_from_record,
)
from models import (
    ChannelOrderRecord,
    FavoriteChannelRecord,
    FavoriteGroupRecord,
    HiddenChannelRecord,
    PlaybackPositionRecord,
    UserRecord,
    UserSettingsRecord,
    WatchHistoryRecord,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_WATCH_HISTORY_LIMIT = 50

USER_FIELDS = frozenset({"username", "avatar_url", "pin"})
SETTINGS_FIELDS = frozenset(key for key in DEFAULT_USER_SETTINGS)

# Insertion order tiebreaker for rows sharing a timestamp
_ROWID = literal_column("rowid")


def _new_id() -> str:
    return str(uuid.uuid4())


def _changes(updates: Union[dict, UpdateUserInput, None], allowed: frozenset) -> dict[str, Any]:
    """
    Normalize partial updates to a dict.

    Dataclass inputs contribute only their non-None fields; dicts are taken
    as-is so a key can explicitly clear a value with None.
    """
    if updates is None:
        return {}
    if is_dataclass(updates):
        changes = {k: v for k, v in asdict(updates).items() if v is not None}
    else:
        changes = dict(updates)
    unknown = set(changes) - allowed
    if unknown:
        raise InvalidInputError(f"Unknown fields: {', '.join(sorted(unknown))}")
    return changes


class UserRepository:
    """Users plus their per-user channel associations."""

    def __init__(self, database: Database):
        self.database = database

    # =========================================================================
    # Users
    # =========================================================================

    def get_all_users(self) -> list[User]:
        """All users, primary first, then by creation time."""
        session = self.database.session()
        try:
            records = (
                session.query(UserRecord)
                .order_by(UserRecord.is_primary.desc(), UserRecord.created_at, _ROWID)
                .all()
            )
            settings = {row.user_id: row for row in session.query(UserSettingsRecord).all()}
            return [user_from_record(record, settings.get(record.id)) for record in records]
        finally:
            session.close()

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        session = self.database.session()
        try:
            record = session.query(UserRecord).filter(UserRecord.id == user_id).first()
            if record is None:
                return None
            return user_from_record(record, self._settings_row(session, user_id))
        finally:
            session.close()

    def get_primary_user(self) -> Optional[User]:
        session = self.database.session()
        try:
            record = session.query(UserRecord).filter(UserRecord.is_primary.is_(True)).first()
            if record is None:
                return None
            return user_from_record(record, self._settings_row(session, record.id))
        finally:
            session.close()

    def create_user(self, data: CreateUserInput, is_primary: bool = False) -> User:
        """Create a user and its default settings row in one transaction."""
        username = (data.username or "").strip()
        if not username:
            raise InvalidInputError("Username is required")

        now = utcnow()
        user_id = _new_id()
        with self.database.transaction() as session:
            record = UserRecord(
                id=user_id,
                username=username,
                avatar_url=data.avatar_url,
                pin=data.pin,
                is_primary=is_primary,
                created_at=now,
                updated_at=now,
                last_active_at=now,
            )
            settings = UserSettingsRecord(user_id=user_id, **DEFAULT_USER_SETTINGS)
            session.add(record)
            session.flush()
            session.add(settings)
            session.flush()
            user = user_from_record(record, settings)

        logger.info(f"[USER] Created user {user_id} ({username}), primary={is_primary}")
        return user

    def update_user(self, user_id: str, updates: Union[dict, UpdateUserInput]) -> User:
        changes = _changes(updates, USER_FIELDS)
        if "username" in changes:
            changes["username"] = (changes["username"] or "").strip()
            if not changes["username"]:
                raise InvalidInputError("Username is required")

        with self.database.transaction() as session:
            record = session.query(UserRecord).filter(UserRecord.id == user_id).first()
            if record is None:
                raise NotFoundError(f"User not found: {user_id}")
            for key, value in changes.items():
                setattr(record, key, value)
            record.updated_at = utcnow()
            session.flush()
            user = user_from_record(record, self._settings_row(session, user_id))

        logger.debug(f"[USER] Updated user {user_id}: {sorted(changes)}")
        return user

    def delete_user(self, user_id: str) -> None:
        """Delete a user; settings and all associations cascade."""
        with self.database.transaction() as session:
            deleted = session.query(UserRecord).filter(
                UserRecord.id == user_id
            ).delete(synchronize_session=False)
            if deleted == 0:
                raise NotFoundError(f"User not found: {user_id}")
        logger.info(f"[USER] Deleted user {user_id}")

    def update_last_active(self, user_id: str) -> None:
        with self.database.transaction() as session:
            updated = session.query(UserRecord).filter(UserRecord.id == user_id).update(
                {UserRecord.last_active_at: utcnow()}, synchronize_session=False
            )
            if updated == 0:
                raise NotFoundError(f"User not found: {user_id}")

    def set_primary_user(self, user_id: str) -> User:
        """Make this user the only primary user."""
        with self.database.transaction() as session:
            record = session.query(UserRecord).filter(UserRecord.id == user_id).first()
            if record is None:
                raise NotFoundError(f"User not found: {user_id}")
            session.query(UserRecord).filter(UserRecord.id != user_id).update(
                {UserRecord.is_primary: False}, synchronize_session=False
            )
            record.is_primary = True
            record.updated_at = utcnow()
            session.flush()
            user = user_from_record(record, self._settings_row(session, user_id))

        logger.info(f"[USER] User {user_id} is now the primary user")
        return user

    # =========================================================================
    # Settings
    # =========================================================================

    def get_user_settings(self, user_id: str) -> Optional[UserSettings]:
        session = self.database.session()
        try:
            row = self._settings_row(session, user_id)
            return settings_from_record(row) if row is not None else None
        finally:
            session.close()

    def update_user_settings(self, user_id: str, changes: dict[str, Any]) -> UserSettings:
        """
        Merge changes into the user's settings.

        Raises:
            NotFoundError: The settings row is missing (it is created with the user)
            InvalidInputError: Unknown settings key
        """
        changes = _changes(changes, SETTINGS_FIELDS)
        with self.database.transaction() as session:
            row = self._settings_row(session, user_id)
            if row is None:
                raise NotFoundError(f"Settings not found for user: {user_id}")
            for key, value in changes.items():
                setattr(row, key, value)
            session.flush()
            settings = settings_from_record(row)
        return settings

    def clear_active_playlist(self, playlist_id: str) -> int:
        """Unset the active playlist for every user pointing at playlist_id."""
        with self.database.transaction() as session:
            cleared = session.query(UserSettingsRecord).filter(
                UserSettingsRecord.active_playlist_id == playlist_id
            ).update({UserSettingsRecord.active_playlist_id: None}, synchronize_session=False)
        if cleared:
            logger.info(f"[USER] Cleared active playlist {playlist_id} for {cleared} users")
        return cleared

    # =========================================================================
    # Favorite channels
    # =========================================================================

    def get_favorite_channels(self, user_id: str) -> list[str]:
        """Favorite channel ids, most recently added first."""
        return self._list_members(FavoriteChannelRecord, user_id, "channel_id", "added_at")

    def add_favorite_channel(self, user_id: str, channel_id: str) -> None:
        self._add_member(FavoriteChannelRecord, user_id, "channel_id", channel_id, "added_at")

    def remove_favorite_channel(self, user_id: str, channel_id: str) -> bool:
        return self._remove_member(FavoriteChannelRecord, user_id, "channel_id", channel_id)

    def is_favorite_channel(self, user_id: str, channel_id: str) -> bool:
        return self._has_member(FavoriteChannelRecord, user_id, "channel_id", channel_id)

    def toggle_favorite_channel(self, user_id: str, channel_id: str) -> bool:
        """Flip membership atomically. Returns True when the channel is now a favorite."""
        return self._toggle_member(FavoriteChannelRecord, user_id, "channel_id", channel_id, "added_at")

    # =========================================================================
    # Hidden channels
    # =========================================================================

    def get_hidden_channels(self, user_id: str) -> list[str]:
        return self._list_members(HiddenChannelRecord, user_id, "channel_id", "hidden_at")

    def hide_channel(self, user_id: str, channel_id: str) -> None:
        self._add_member(HiddenChannelRecord, user_id, "channel_id", channel_id, "hidden_at")

    def unhide_channel(self, user_id: str, channel_id: str) -> bool:
        return self._remove_member(HiddenChannelRecord, user_id, "channel_id", channel_id)

    def is_channel_hidden(self, user_id: str, channel_id: str) -> bool:
        return self._has_member(HiddenChannelRecord, user_id, "channel_id", channel_id)

    def toggle_hidden_channel(self, user_id: str, channel_id: str) -> bool:
        """Returns True when the channel is now hidden."""
        return self._toggle_member(HiddenChannelRecord, user_id, "channel_id", channel_id, "hidden_at")

    # =========================================================================
    # Favorite groups
    # =========================================================================

    def get_favorite_groups(self, user_id: str) -> list[str]:
        return self._list_members(FavoriteGroupRecord, user_id, "group_name", "added_at")

    def add_favorite_group(self, user_id: str, group_name: str) -> None:
        self._add_member(FavoriteGroupRecord, user_id, "group_name", group_name, "added_at")

    def remove_favorite_group(self, user_id: str, group_name: str) -> bool:
        return self._remove_member(FavoriteGroupRecord, user_id, "group_name", group_name)

    def is_favorite_group(self, user_id: str, group_name: str) -> bool:
        return self._has_member(FavoriteGroupRecord, user_id, "group_name", group_name)

    def toggle_favorite_group(self, user_id: str, group_name: str) -> bool:
        return self._toggle_member(FavoriteGroupRecord, user_id, "group_name", group_name, "added_at")

    # =========================================================================
    # Channel order
    # =========================================================================

    def get_channel_order(self, user_id: str) -> dict[str, int]:
        session = self.database.session()
        try:
            rows = (
                session.query(ChannelOrderRecord)
                .filter(ChannelOrderRecord.user_id == user_id)
                .order_by(ChannelOrderRecord.sort_order)
                .all()
            )
            return {row.channel_id: row.sort_order for row in rows}
        finally:
            session.close()

    def set_channel_order(self, user_id: str, channel_id: str, sort_order: int) -> None:
        """Insert or update the position of one channel for this user."""
        stmt = sqlite_insert(ChannelOrderRecord.__table__).values(
            id=_new_id(),
            user_id=user_id,
            channel_id=channel_id,
            sort_order=sort_order,
        ).on_conflict_do_update(
            index_elements=["user_id", "channel_id"],
            set_={"sort_order": sort_order},
        )
        with self.database.transaction() as session:
            session.execute(stmt)

    def clear_channel_order(self, user_id: str) -> int:
        with self.database.transaction() as session:
            return session.query(ChannelOrderRecord).filter(
                ChannelOrderRecord.user_id == user_id
            ).delete(synchronize_session=False)

    # =========================================================================
    # Watch history
    # =========================================================================

    def add_watch_history(self, user_id: str, channel_id: str, duration: int) -> WatchHistoryEntry:
        with self.database.transaction() as session:
            record = WatchHistoryRecord(
                id=_new_id(),
                user_id=user_id,
                channel_id=channel_id,
                watched_at=utcnow(),
                duration=duration,
            )
            session.add(record)
            session.flush()
            entry = watch_history_from_record(record)
        return entry

    def get_watch_history(self, user_id: str, limit: int = DEFAULT_WATCH_HISTORY_LIMIT) -> list[WatchHistoryEntry]:
        """Most recent first, at most limit entries."""
        session = self.database.session()
        try:
            rows = (
                session.query(WatchHistoryRecord)
                .filter(WatchHistoryRecord.user_id == user_id)
                .order_by(WatchHistoryRecord.watched_at.desc(), _ROWID.desc())
                .limit(limit)
                .all()
            )
            return [watch_history_from_record(row) for row in rows]
        finally:
            session.close()

    def clear_watch_history(self, user_id: str) -> int:
        with self.database.transaction() as session:
            return session.query(WatchHistoryRecord).filter(
                WatchHistoryRecord.user_id == user_id
            ).delete(synchronize_session=False)

    # =========================================================================
    # Playback position
    # =========================================================================

    def save_playback_position(self, user_id: str, channel_id: str, position: int,
                               total_duration: int) -> None:
        now = utcnow()
        stmt = sqlite_insert(PlaybackPositionRecord.__table__).values(
            id=_new_id(),
            user_id=user_id,
            channel_id=channel_id,
            position=position,
            total_duration=total_duration,
            updated_at=now,
        ).on_conflict_do_update(
            index_elements=["user_id", "channel_id"],
            set_={"position": position, "total_duration": total_duration, "updated_at": now},
        )
        with self.database.transaction() as session:
            session.execute(stmt)

    def get_playback_position(self, user_id: str, channel_id: str) -> Optional[PlaybackPosition]:
        session = self.database.session()
        try:
            row = session.query(PlaybackPositionRecord).filter(
                PlaybackPositionRecord.user_id == user_id,
                PlaybackPositionRecord.channel_id == channel_id,
            ).first()
            return playback_position_from_record(row) if row is not None else None
        finally:
            session.close()

    def clear_playback_position(self, user_id: str, channel_id: str) -> bool:
        with self.database.transaction() as session:
            deleted = session.query(PlaybackPositionRecord).filter(
                PlaybackPositionRecord.user_id == user_id,
                PlaybackPositionRecord.channel_id == channel_id,
            ).delete(synchronize_session=False)
        return deleted > 0

    # =========================================================================
    # Legacy favorite ids
    # =========================================================================

    def migrate_favorites_to_new_format(self, user_id: str, channels: Iterable[Channel]) -> int:
        """
        Rewrite favorites stored under legacy ids (bare name, or name|url for
        channels that now have a tvg-id) to the canonical channel id.

        Each favorite is rewritten in its own transaction and keeps its
        original added_at. A row that fails is logged and skipped, and is
        retried on the next call. Safe to call repeatedly.

        Returns:
            Number of favorites rewritten
        """
        channels = list(channels)
        canonical_ids = {get_channel_id(channel) for channel in channels}
        legacy_to_canonical: dict[str, str] = {}
        for channel in channels:
            canonical = get_channel_id(channel)
            for legacy in get_legacy_channel_ids(channel):
                # Never remap an id that is itself canonical for some channel
                if legacy != canonical and legacy not in canonical_ids:
                    legacy_to_canonical.setdefault(legacy, canonical)

        if not legacy_to_canonical:
            return 0

        session = self.database.session()
        try:
            favorites = [
                (row.channel_id, row.added_at)
                for row in session.query(FavoriteChannelRecord).filter(
                    FavoriteChannelRecord.user_id == user_id
                ).all()
            ]
        finally:
            session.close()

        migrated = 0
        for old_id, added_at in favorites:
            new_id = legacy_to_canonical.get(old_id)
            if new_id is None:
                continue
            try:
                with self.database.transaction() as session:
                    session.query(FavoriteChannelRecord).filter(
                        FavoriteChannelRecord.user_id == user_id,
                        FavoriteChannelRecord.channel_id == old_id,
                    ).delete(synchronize_session=False)
                    self._insert_member(
                        session, FavoriteChannelRecord, user_id, "channel_id", new_id, "added_at", added_at
                    )
                migrated += 1
                logger.debug(f"[USER] Migrated favorite '{old_id}' -> '{new_id}' for user {user_id}")
            except SQLAlchemyError as e:
                logger.error(f"[USER] Failed to migrate favorite '{old_id}' for user {user_id}: {e}")

        if migrated:
            logger.info(f"[USER] Migrated {migrated} favorites to canonical ids for user {user_id}")
        return migrated

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _settings_row(session, user_id: str) -> Optional[UserSettingsRecord]:
        return session.query(UserSettingsRecord).filter(UserSettingsRecord.user_id == user_id).first()

    @staticmethod
    def _insert_member(session, model, user_id: str, key: str, value: str, stamp: str,
                       when: Optional[datetime] = None) -> int:
        """INSERT OR IGNORE on the (user_id, key) unique pair. Returns rows inserted."""
        stmt = sqlite_insert(model.__table__).values(
            {"id": _new_id(), "user_id": user_id, key: value, stamp: when or utcnow()}
        ).on_conflict_do_nothing(index_elements=["user_id", key])
        return session.execute(stmt).rowcount

    def _list_members(self, model, user_id: str, key: str, stamp: str) -> list[str]:
        session = self.database.session()
        try:
            rows = (
                session.query(model)
                .filter(model.user_id == user_id)
                .order_by(getattr(model, stamp).desc(), _ROWID.desc())
                .all()
            )
            return [getattr(row, key) for row in rows]
        finally:
            session.close()

    def _add_member(self, model, user_id: str, key: str, value: str, stamp: str) -> None:
        with self.database.transaction() as session:
            self._insert_member(session, model, user_id, key, value, stamp)

    def _remove_member(self, model, user_id: str, key: str, value: str) -> bool:
        with self.database.transaction() as session:
            deleted = session.query(model).filter(
                model.user_id == user_id,
                getattr(model, key) == value,
            ).delete(synchronize_session=False)
        return deleted > 0

    def _has_member(self, model, user_id: str, key: str, value: str) -> bool:
        session = self.database.session()
        try:
            return session.query(model.id).filter(
                model.user_id == user_id,
                getattr(model, key) == value,
            ).first() is not None
        finally:
            session.close()

    def _toggle_member(self, model, user_id: str, key: str, value: str, stamp: str) -> bool:
        """Delete if present, otherwise insert, inside one transaction."""
        with self.database.transaction() as session:
            deleted = session.query(model).filter(
                model.user_id == user_id,
                getattr(model, key) == value,
            ).delete(synchronize_session=False)
            if deleted:
                return False
            self._insert_member(session, model, user_id, key, value, stamp)
            return True
