"""
User profile state: the user list, the current user and the current user's
favorites, hidden channels, ordering, history and playback positions.
"""
import logging
from typing import Any, Iterable, Optional, Union

from config import AppSettings, get_settings
from domain import (
    Channel,
    CreateUserInput,
    PlaybackPosition,
    UpdateUserInput,
    User,
    UserSettings,
    WatchHistoryEntry,
)
from errors import InvalidInputError, NotFoundError
from stores.base import StoreBase
from user_repository import UserRepository

logger = logging.getLogger(__name__)

DEFAULT_USERNAME = "Default"


class UserStore(StoreBase):
    """In-memory users and per-user preferences over a UserRepository."""

    log_tag = "USER"

    def __init__(self, repository: UserRepository, settings: Optional[AppSettings] = None):
        super().__init__()
        self.repository = repository
        self.settings = settings or get_settings()
        self.users: list[User] = []
        self.current_user: Optional[User] = None

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    def load_users(self) -> list[User]:
        """Load all users and keep the current user if it still exists, else pick the primary."""
        with self._tracked("Load users", loading=True):
            users = self.repository.get_all_users()

        self.users = users
        current_id = self.current_user.id if self.current_user else None
        self.current_user = (
            self._find(current_id)
            or next((u for u in users if u.is_primary), None)
            or (users[0] if users else None)
        )
        logger.debug(f"[USER] Loaded {len(users)} users")
        return users

    def create_user(self, data: CreateUserInput) -> User:
        """Create a user. The first user becomes primary and current."""
        with self._tracked("Create user", loading=True):
            is_primary = not self.users and self.repository.get_primary_user() is None
            user = self.repository.create_user(data, is_primary=is_primary)

        self.users = [*self.users, user]
        if self.current_user is None:
            self.current_user = user
        return user

    def switch_user(self, user_id: str) -> User:
        with self._tracked("Switch user"):
            if self._find(user_id) is None:
                raise NotFoundError(f"User not found: {user_id}")
            self.repository.update_last_active(user_id)
            user = self.repository.get_user_by_id(user_id)
            if user is None:
                raise NotFoundError(f"User not found: {user_id}")

        self._replace(user)
        self.current_user = user
        logger.info(f"[USER] Switched to user {user_id}")
        return user

    def update_user(self, user_id: str, updates: Union[dict, UpdateUserInput]) -> User:
        with self._tracked("Update user"):
            user = self.repository.update_user(user_id, updates)
        self._replace(user)
        return user

    def delete_user(self, user_id: str) -> None:
        """
        Delete a user.

        The primary user can only be deleted when it is the last user; make
        another user primary with set_primary_user() first.
        """
        with self._tracked("Delete user"):
            user = self._find(user_id)
            if user is not None and user.is_primary and len(self.users) > 1:
                raise InvalidInputError(
                    "Cannot delete the primary user while other users exist. "
                    "Make another user primary first."
                )
            self.repository.delete_user(user_id)

        self.users = [u for u in self.users if u.id != user_id]
        if self.current_user and self.current_user.id == user_id:
            self.current_user = next((u for u in self.users if u.is_primary), None) or (
                self.users[0] if self.users else None
            )

    def set_primary_user(self, user_id: str) -> User:
        with self._tracked("Set primary user"):
            user = self.repository.set_primary_user(user_id)
            users = self.repository.get_all_users()

        self.users = users
        if self.current_user is not None:
            self.current_user = self._find(self.current_user.id)
        return user

    def ensure_default_user(self, username: str = DEFAULT_USERNAME) -> User:
        """Make sure at least one user exists and one is selected."""
        if not self.users:
            self.load_users()
        if not self.users:
            logger.info(f"[USER] No users found, creating default user '{username}'")
            self.create_user(CreateUserInput(username=username))
        return self.current_user

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def update_settings(self, changes: dict[str, Any]) -> UserSettings:
        with self._tracked("Update settings"):
            user = self._require_user()
            settings = self.repository.update_user_settings(user.id, changes)
        user.settings = settings
        return settings

    def clear_active_playlist(self, playlist_id: str) -> None:
        """Drop a deleted playlist from every user's persisted selection."""
        with self._tracked("Clear active playlist"):
            self.repository.clear_active_playlist(playlist_id)
        for user in self.users:
            if user.settings and user.settings.active_playlist_id == playlist_id:
                user.settings.active_playlist_id = None
        if self.current_user and self.current_user.settings and \
                self.current_user.settings.active_playlist_id == playlist_id:
            self.current_user.settings.active_playlist_id = None

    # -------------------------------------------------------------------------
    # Favorites, hidden channels, groups
    # -------------------------------------------------------------------------

    def get_favorite_channels(self) -> list[str]:
        with self._tracked("Load favorites"):
            return self.repository.get_favorite_channels(self._require_user().id)

    def toggle_favorite(self, channel_id: str) -> bool:
        with self._tracked("Toggle favorite"):
            return self.repository.toggle_favorite_channel(self._require_user().id, channel_id)

    def is_favorite(self, channel_id: str) -> bool:
        with self._tracked("Check favorite"):
            return self.repository.is_favorite_channel(self._require_user().id, channel_id)

    def get_hidden_channels(self) -> list[str]:
        with self._tracked("Load hidden channels"):
            return self.repository.get_hidden_channels(self._require_user().id)

    def toggle_hidden(self, channel_id: str) -> bool:
        with self._tracked("Toggle hidden"):
            return self.repository.toggle_hidden_channel(self._require_user().id, channel_id)

    def is_hidden(self, channel_id: str) -> bool:
        with self._tracked("Check hidden"):
            return self.repository.is_channel_hidden(self._require_user().id, channel_id)

    def get_favorite_groups(self) -> list[str]:
        with self._tracked("Load favorite groups"):
            return self.repository.get_favorite_groups(self._require_user().id)

    def toggle_favorite_group(self, group_name: str) -> bool:
        with self._tracked("Toggle favorite group"):
            return self.repository.toggle_favorite_group(self._require_user().id, group_name)

    # -------------------------------------------------------------------------
    # Ordering, history, playback
    # -------------------------------------------------------------------------

    def get_channel_order(self) -> dict[str, int]:
        with self._tracked("Load channel order"):
            return self.repository.get_channel_order(self._require_user().id)

    def set_channel_order(self, channel_id: str, sort_order: int) -> None:
        with self._tracked("Set channel order"):
            self.repository.set_channel_order(self._require_user().id, channel_id, sort_order)

    def clear_channel_order(self) -> None:
        with self._tracked("Clear channel order"):
            self.repository.clear_channel_order(self._require_user().id)

    def add_watch_history(self, channel_id: str, duration: int) -> WatchHistoryEntry:
        with self._tracked("Add watch history"):
            return self.repository.add_watch_history(self._require_user().id, channel_id, duration)

    def get_watch_history(self, limit: Optional[int] = None) -> list[WatchHistoryEntry]:
        with self._tracked("Load watch history"):
            return self.repository.get_watch_history(
                self._require_user().id,
                limit if limit is not None else self.settings.watch_history_limit,
            )

    def clear_watch_history(self) -> None:
        with self._tracked("Clear watch history"):
            self.repository.clear_watch_history(self._require_user().id)

    def save_playback_position(self, channel_id: str, position: int, total_duration: int) -> None:
        with self._tracked("Save playback position"):
            self.repository.save_playback_position(self._require_user().id, channel_id, position, total_duration)

    def get_playback_position(self, channel_id: str) -> Optional[PlaybackPosition]:
        with self._tracked("Load playback position"):
            return self.repository.get_playback_position(self._require_user().id, channel_id)

    def clear_playback_position(self, channel_id: str) -> None:
        with self._tracked("Clear playback position"):
            self.repository.clear_playback_position(self._require_user().id, channel_id)

    def migrate_favorites_to_new_format(self, channels: Iterable[Channel]) -> int:
        """Rewrite legacy favorite ids of the current user. Run before reading favorites."""
        with self._tracked("Migrate favorites"):
            return self.repository.migrate_favorites_to_new_format(self._require_user().id, channels)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_user(self) -> User:
        if self.current_user is None:
            raise InvalidInputError("No user selected")
        return self.current_user

    def _find(self, user_id: Optional[str]) -> Optional[User]:
        if user_id is None:
            return None
        return next((u for u in self.users if u.id == user_id), None)

    def _replace(self, user: User) -> None:
        self.users = [user if u.id == user.id else u for u in self.users]
        if self.current_user and self.current_user.id == user.id:
            self.current_user = user
