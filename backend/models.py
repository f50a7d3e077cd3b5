"""
SQLAlchemy ORM models for playlists, channels and user profiles.

Tables are created by migrations.py, not by Base.metadata.create_all(); the
columns here must match the migration DDL.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, UniqueConstraint
from database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored by the SQLite DateTime type."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PlaylistRecord(Base):
    """
    A stored M3U subscription.
    Its parsed channel list lives in the channels table.
    """
    __tablename__ = "playlists"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)
    username = Column(String(255), nullable=True)  # Basic-auth credentials, both or neither
    password = Column(String(255), nullable=True)
    channel_count = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    last_fetched_at = Column(DateTime, nullable=True)
    version = Column(Integer, default=1, nullable=False)  # Bumped on every update

    def __repr__(self):
        return f"<PlaylistRecord(id={self.id}, name={self.name}, version={self.version})>"


class ChannelRecord(Base):
    """
    One channel row of a playlist.
    The row id is storage-internal; channel identity comes from get_channel_id().
    """
    __tablename__ = "channels"

    id = Column(String(36), primary_key=True)
    playlist_id = Column(String(64), ForeignKey("playlists.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, default=0, nullable=False)  # Order within the playlist
    name = Column(Text, nullable=False)
    url = Column(Text, nullable=False)
    tvg_id = Column(String(255), nullable=True)
    tvg_name = Column(String(255), nullable=True)
    tvg_logo = Column(Text, nullable=True)
    tvg_country = Column(String(64), nullable=True)
    tvg_language = Column(String(64), nullable=True)
    tvg_url = Column(Text, nullable=True)
    group_title = Column(String(255), nullable=True)
    http_referrer = Column(Text, nullable=True)
    http_user_agent = Column(Text, nullable=True)

    def __repr__(self):
        return f"<ChannelRecord(id={self.id}, playlist_id={self.playlist_id}, name={self.name})>"


class UserRecord(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    username = Column(String(255), nullable=False)
    avatar_url = Column(Text, nullable=True)
    is_primary = Column(Boolean, default=False, nullable=False)
    pin = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    last_active_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<UserRecord(id={self.id}, username={self.username}, primary={self.is_primary})>"


class UserSettingsRecord(Base):
    """Per-user preferences, one row per user."""
    __tablename__ = "user_settings"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    theme = Column(String(16), default="system", nullable=False)
    language = Column(String(16), default="en", nullable=False)
    default_quality = Column(String(16), default="auto", nullable=False)
    autoplay = Column(Boolean, default=False, nullable=False)
    show_channel_logos = Column(Boolean, default=True, nullable=False)
    view_mode = Column(String(16), default="grid", nullable=False)
    channel_sort_by = Column(String(16), default="name", nullable=False)
    parental_control_enabled = Column(Boolean, default=False, nullable=False)
    parental_control_pin = Column(String(32), nullable=True)
    active_playlist_id = Column(String(64), nullable=True)  # Not a foreign key, cleared on playlist delete

    def __repr__(self):
        return f"<UserSettingsRecord(user_id={self.user_id}, theme={self.theme})>"


# -----------------------------------------------------------------------------
# Per-user channel associations. channel_id holds a channel identity string,
# not a channels.id row id, so there is no foreign key to channels.
# -----------------------------------------------------------------------------

class FavoriteChannelRecord(Base):
    __tablename__ = "user_favorite_channels"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    channel_id = Column(Text, nullable=False)
    added_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "channel_id"),
    )

    def __repr__(self):
        return f"<FavoriteChannelRecord(user_id={self.user_id}, channel_id={self.channel_id})>"


class HiddenChannelRecord(Base):
    __tablename__ = "user_hidden_channels"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    channel_id = Column(Text, nullable=False)
    hidden_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "channel_id"),
    )

    def __repr__(self):
        return f"<HiddenChannelRecord(user_id={self.user_id}, channel_id={self.channel_id})>"


class FavoriteGroupRecord(Base):
    __tablename__ = "user_favorite_groups"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    group_name = Column(String(255), nullable=False)
    added_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "group_name"),
    )

    def __repr__(self):
        return f"<FavoriteGroupRecord(user_id={self.user_id}, group_name={self.group_name})>"


class ChannelOrderRecord(Base):
    __tablename__ = "user_channel_order"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    channel_id = Column(Text, nullable=False)
    sort_order = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "channel_id"),
    )

    def __repr__(self):
        return f"<ChannelOrderRecord(user_id={self.user_id}, channel_id={self.channel_id}, order={self.sort_order})>"


class WatchHistoryRecord(Base):
    """Append-only viewing log."""
    __tablename__ = "user_watch_history"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    channel_id = Column(Text, nullable=False)
    watched_at = Column(DateTime, default=utcnow, nullable=False)
    duration = Column(Integer, nullable=False)  # Seconds watched

    def __repr__(self):
        return f"<WatchHistoryRecord(user_id={self.user_id}, channel_id={self.channel_id}, duration={self.duration})>"


class PlaybackPositionRecord(Base):
    """Resume point, one row per (user, channel)."""
    __tablename__ = "user_playback_position"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    channel_id = Column(Text, nullable=False)
    position = Column(Integer, nullable=False)  # Seconds
    total_duration = Column(Integer, nullable=False)  # Seconds
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "channel_id"),
    )

    def __repr__(self):
        return f"<PlaybackPositionRecord(user_id={self.user_id}, channel_id={self.channel_id}, position={self.position})>"
