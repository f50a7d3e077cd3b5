"""
Domain objects for playlists, channels and user profiles.

These are plain dataclasses handed to and returned from the repositories and
stores. The SQLAlchemy row classes live in models.py and are converted by the
functions in mappers.py.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


# -----------------------------------------------------------------------------
# Playlists and channels
# -----------------------------------------------------------------------------

@dataclass
class PlaylistCredentials:
    """Basic-auth credentials for a protected playlist URL."""
    username: str
    password: str


@dataclass
class TvgInfo:
    """TV-guide metadata from the #EXTINF attributes."""
    id: Optional[str] = None
    name: Optional[str] = None
    logo: Optional[str] = None
    country: Optional[str] = None
    language: Optional[str] = None
    url: Optional[str] = None


@dataclass
class HttpHeaders:
    """Per-channel HTTP headers required by some stream providers."""
    referrer: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class Channel:
    """A single entry of a parsed playlist."""
    name: str
    url: str
    tvg: TvgInfo = field(default_factory=TvgInfo)
    group_title: Optional[str] = None
    http: HttpHeaders = field(default_factory=HttpHeaders)


@dataclass
class ParsedPlaylist:
    """Result of parsing and deduplicating an M3U document."""
    items: list[Channel] = field(default_factory=list)
    header: dict[str, str] = field(default_factory=dict)
    duplicates_removed: int = 0


@dataclass
class Playlist:
    """A user-added M3U subscription plus its cached channel list."""
    id: str
    name: str
    url: str
    created_at: datetime
    updated_at: datetime
    credentials: Optional[PlaylistCredentials] = None
    parsed_data: Optional[ParsedPlaylist] = None
    channel_count: Optional[int] = None
    last_fetched_at: Optional[datetime] = None
    version: int = 1

    @property
    def channels(self) -> list[Channel]:
        return self.parsed_data.items if self.parsed_data else []


@dataclass
class CreatePlaylistInput:
    name: str
    url: str
    credentials: Optional[PlaylistCredentials] = None


@dataclass
class UpdatePlaylistInput:
    name: Optional[str] = None
    url: Optional[str] = None
    credentials: Optional[PlaylistCredentials] = None


# -----------------------------------------------------------------------------
# Users
# -----------------------------------------------------------------------------

DEFAULT_USER_SETTINGS = {
    "theme": "system",
    "language": "en",
    "default_quality": "auto",
    "autoplay": False,
    "show_channel_logos": True,
    "view_mode": "grid",
    "channel_sort_by": "name",
    "parental_control_enabled": False,
    "parental_control_pin": None,
    "active_playlist_id": None,
}


@dataclass
class UserSettings:
    """Per-user preferences, one-to-one with User."""
    user_id: str
    theme: str = "system"  # "light", "dark" or "system"
    language: str = "en"
    default_quality: str = "auto"  # "auto", "low", "medium", "high", "max"
    autoplay: bool = False
    show_channel_logos: bool = True
    view_mode: str = "grid"  # "grid" or "list"
    channel_sort_by: str = "name"  # "name", "recent", "custom", "mostWatched"
    parental_control_enabled: bool = False
    parental_control_pin: Optional[str] = None
    active_playlist_id: Optional[str] = None


@dataclass
class User:
    """A local profile on a shared device."""
    id: str
    username: str
    created_at: datetime
    updated_at: datetime
    is_primary: bool = False
    avatar_url: Optional[str] = None
    pin: Optional[str] = None
    last_active_at: Optional[datetime] = None
    settings: Optional[UserSettings] = None


@dataclass
class CreateUserInput:
    username: str
    avatar_url: Optional[str] = None
    pin: Optional[str] = None


@dataclass
class UpdateUserInput:
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    pin: Optional[str] = None


@dataclass
class WatchHistoryEntry:
    id: str
    user_id: str
    channel_id: str
    watched_at: datetime
    duration: int  # seconds watched


@dataclass
class PlaybackPosition:
    id: str
    user_id: str
    channel_id: str
    position: int  # seconds
    total_duration: int  # seconds
    updated_at: datetime
