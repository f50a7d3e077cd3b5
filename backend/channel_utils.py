"""
Channel identity and list helpers.

get_channel_id() is the single source of truth for channel identity.
Deduplication, favorites, hidden channels and custom ordering all key on it.
"""
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from domain import Channel

logger = logging.getLogger(__name__)

UNCATEGORIZED_GROUP = "Uncategorized"


def get_channel_id(channel: Channel) -> str:
    """
    Return the canonical identifier for a channel.

    The trimmed tvg-id when present and non-empty, otherwise "name|url".
    """
    tvg_id = channel.tvg.id if channel.tvg else None
    if tvg_id and tvg_id.strip():
        return tvg_id.strip()
    return f"{channel.name}|{channel.url}"


def get_raw_channel_id(item: Any) -> str:
    """get_channel_id() for loosely-typed dict entries (tvg.id or tvgId keys)."""
    if isinstance(item, Channel):
        return get_channel_id(item)

    tvg = item.get("tvg") or {}
    tvg_id = tvg.get("id") or item.get("tvg_id") or item.get("tvgId")
    if isinstance(tvg_id, str) and tvg_id.strip():
        return tvg_id.strip()
    return f"{item.get('name') or ''}|{item.get('url') or ''}"


def get_legacy_channel_ids(channel: Channel) -> list[str]:
    """Identifiers used by older releases: the bare name, then name|url."""
    return [channel.name, f"{channel.name}|{channel.url}"]


def deduplicate_channels(channels: Iterable[Channel]) -> tuple[list[Channel], int]:
    """
    Drop channels whose identity was already seen. First occurrence wins.

    Returns:
        (unique channels in original order, number of duplicates dropped)
    """
    seen: set[str] = set()
    unique: list[Channel] = []
    dropped = 0
    for channel in channels:
        channel_id = get_channel_id(channel)
        if channel_id in seen:
            dropped += 1
            continue
        seen.add(channel_id)
        unique.append(channel)
    if dropped:
        logger.debug(f"[CHANNELS] Dropped {dropped} duplicate channels")
    return unique, dropped


@dataclass
class GroupOption:
    """A selectable channel group. The empty name stands for "all channels"."""
    name: str
    channel_count: int


def calculate_channel_groups(channels: list[Channel]) -> list[GroupOption]:
    """Group counts sorted by name, preceded by an "all channels" entry."""
    counts: dict[str, int] = {}
    for channel in channels:
        title = channel.group_title or UNCATEGORIZED_GROUP
        counts[title] = counts.get(title, 0) + 1

    groups = [GroupOption(name, count) for name, count in sorted(counts.items(), key=lambda kv: kv[0].lower())]
    return [GroupOption("", len(channels))] + groups


def filter_channels_by_group(channels: list[Channel], group_name: str) -> list[Channel]:
    if not group_name:
        return channels
    return [c for c in channels if (c.group_title or UNCATEGORIZED_GROUP) == group_name]


def filter_channels_by_search(channels: list[Channel], search_text: str) -> list[Channel]:
    needle = (search_text or "").strip().lower()
    if not needle:
        return channels
    return [c for c in channels if needle in c.name.lower()]


def filter_hidden_channels(channels: list[Channel], hidden_ids: Iterable[str]) -> list[Channel]:
    hidden = set(hidden_ids)
    if not hidden:
        return channels
    return [c for c in channels if get_channel_id(c) not in hidden]


def sort_channels_with_favorites(channels: list[Channel], favorite_ids: Iterable[str]) -> list[Channel]:
    """Move favorite channels to the front, keeping relative order otherwise."""
    favorites = set(favorite_ids)
    if not favorites:
        return channels
    front = [c for c in channels if get_channel_id(c) in favorites]
    back = [c for c in channels if get_channel_id(c) not in favorites]
    return front + back


def sort_channels_by_order(channels: list[Channel], order: dict[str, int]) -> list[Channel]:
    """Apply a user's custom ordering; channels without a position keep their place at the end."""
    if not order:
        return channels

    def sort_key(pair):
        index, channel = pair
        position = order.get(get_channel_id(channel))
        if position is None:
            return (1, index, index)
        return (0, position, index)

    return [channel for _, channel in sorted(enumerate(channels), key=sort_key)]
