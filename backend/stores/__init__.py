"""
Application State Stores.

In-memory state over the repositories. UI code reads from the stores and
calls their methods; stores never write their own state until the
repository call behind it has succeeded.
"""

from stores.playlist_store import PlaylistStore, generate_playlist_id, sanitize_playlist_name
from stores.user_store import UserStore

__all__ = [
    "PlaylistStore",
    "UserStore",
    "generate_playlist_id",
    "sanitize_playlist_name",
]
