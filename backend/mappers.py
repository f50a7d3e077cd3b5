"""
Row <-> domain conversions.

Pure functions with no session access, so they are testable on detached
records. Every column is accounted for; nullable columns map to Optional
fields.
"""
import uuid
from typing import Iterable, Optional

from domain import (
    Channel,
    HttpHeaders,
    ParsedPlaylist,
    PlaybackPosition,
    Playlist,
    PlaylistCredentials,
    TvgInfo,
    User,
    UserSettings,
    WatchHistoryEntry,
)
from models import (
    ChannelRecord,
    PlaybackPositionRecord,
    PlaylistRecord,
    UserRecord,
    UserSettingsRecord,
    WatchHistoryRecord,
)


# -----------------------------------------------------------------------------
# Playlists
# -----------------------------------------------------------------------------

def credentials_from_columns(username: Optional[str], password: Optional[str]) -> Optional[PlaylistCredentials]:
    if username is None or password is None:
        return None
    return PlaylistCredentials(username=username, password=password)


def channel_from_record(record: ChannelRecord) -> Channel:
    return Channel(
        name=record.name,
        url=record.url,
        tvg=TvgInfo(
            id=record.tvg_id,
            name=record.tvg_name,
            logo=record.tvg_logo,
            country=record.tvg_country,
            language=record.tvg_language,
            url=record.tvg_url,
        ),
        group_title=record.group_title,
        http=HttpHeaders(
            referrer=record.http_referrer,
            user_agent=record.http_user_agent,
        ),
    )


def channel_to_record(channel: Channel, playlist_id: str, position: int,
                      row_id: Optional[str] = None) -> ChannelRecord:
    """Build a channel row. The row id is a fresh UUID, never the channel identity."""
    tvg = channel.tvg or TvgInfo()
    http = channel.http or HttpHeaders()
    return ChannelRecord(
        id=row_id or str(uuid.uuid4()),
        playlist_id=playlist_id,
        position=position,
        name=channel.name,
        url=channel.url,
        tvg_id=tvg.id,
        tvg_name=tvg.name,
        tvg_logo=tvg.logo,
        tvg_country=tvg.country,
        tvg_language=tvg.language,
        tvg_url=tvg.url,
        group_title=channel.group_title,
        http_referrer=http.referrer,
        http_user_agent=http.user_agent,
    )


def channel_records_for(playlist_id: str, channels: Iterable[Channel]) -> list[ChannelRecord]:
    return [channel_to_record(channel, playlist_id, position) for position, channel in enumerate(channels)]


def playlist_from_record(record: PlaylistRecord, channel_records: Iterable[ChannelRecord]) -> Playlist:
    """Rebuild a Playlist; channel rows are ordered by position here."""
    ordered = sorted(channel_records, key=lambda row: row.position)
    return Playlist(
        id=record.id,
        name=record.name,
        url=record.url,
        credentials=credentials_from_columns(record.username, record.password),
        parsed_data=ParsedPlaylist(items=[channel_from_record(row) for row in ordered]),
        channel_count=record.channel_count,
        created_at=record.created_at,
        updated_at=record.updated_at,
        last_fetched_at=record.last_fetched_at,
        version=record.version if record.version is not None else 1,
    )


def playlist_to_record(playlist: Playlist) -> PlaylistRecord:
    credentials = playlist.credentials
    return PlaylistRecord(
        id=playlist.id,
        name=playlist.name,
        url=playlist.url,
        username=credentials.username if credentials else None,
        password=credentials.password if credentials else None,
        channel_count=playlist.channel_count,
        created_at=playlist.created_at,
        updated_at=playlist.updated_at,
        last_fetched_at=playlist.last_fetched_at,
        version=playlist.version,
    )


# -----------------------------------------------------------------------------
# Users
# -----------------------------------------------------------------------------

def settings_from_record(record: UserSettingsRecord) -> UserSettings:
    return UserSettings(
        user_id=record.user_id,
        theme=record.theme,
        language=record.language,
        default_quality=record.default_quality,
        autoplay=bool(record.autoplay),
        show_channel_logos=bool(record.show_channel_logos),
        view_mode=record.view_mode,
        channel_sort_by=record.channel_sort_by,
        parental_control_enabled=bool(record.parental_control_enabled),
        parental_control_pin=record.parental_control_pin,
        active_playlist_id=record.active_playlist_id,
    )


def user_from_record(record: UserRecord, settings: Optional[UserSettingsRecord] = None) -> User:
    return User(
        id=record.id,
        username=record.username,
        avatar_url=record.avatar_url,
        is_primary=bool(record.is_primary),
        pin=record.pin,
        created_at=record.created_at,
        updated_at=record.updated_at,
        last_active_at=record.last_active_at,
        settings=settings_from_record(settings) if settings is not None else None,
    )


def watch_history_from_record(record: WatchHistoryRecord) -> WatchHistoryEntry:
    return WatchHistoryEntry(
        id=record.id,
        user_id=record.user_id,
        channel_id=record.channel_id,
        watched_at=record.watched_at,
        duration=record.duration,
    )


def playback_position_from_record(record: PlaybackPositionRecord) -> PlaybackPosition:
    return PlaybackPosition(
        id=record.id,
        user_id=record.user_id,
        channel_id=record.channel_id,
        position=record.position,
        total_duration=record.total_duration,
        updated_at=record.updated_at,
    )
