"""
Line-based M3U / M3U8 playlist parser.

Understands the extended M3U attributes used by IPTV providers:

    #EXTM3U x-tvg-url="http://guide.example/epg.xml"
    #EXTINF:-1 tvg-id="bbc1.uk" tvg-logo="http://..." group-title="News",BBC One
    #EXTVLCOPT:http-user-agent=Mozilla/5.0
    http://stream.example/bbc1.m3u8
"""
import logging
import re
from typing import Optional

from domain import Channel, HttpHeaders, TvgInfo

logger = logging.getLogger(__name__)

ATTRIBUTE_PATTERN = re.compile(r'([\w-]+)="([^"]*)"')

STREAM_PREFIXES = ("http", "rtmp", "rtsp", "rtp", "udp", "mms", "p3p")


class M3USyntaxError(ValueError):
    """Raised when the text is not an extended M3U document."""


def _split_extinf(line: str) -> tuple[str, str]:
    """Split an #EXTINF line into (attribute section, title) at the first unquoted comma."""
    body = line[len("#EXTINF:"):]
    in_quotes = False
    for index, char in enumerate(body):
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            return body[:index], body[index + 1:].strip()
    return body, ""


def _none_if_blank(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class M3UParser:
    """Parse raw playlist text into header attributes and channel entries."""

    @staticmethod
    def parse(content: str) -> tuple[dict[str, str], list[Channel]]:
        lines = content.lstrip("\ufeff").splitlines()

        first = next((line.strip() for line in lines if line.strip()), "")
        if not first.startswith("#EXTM3U"):
            raise M3USyntaxError("Invalid playlist format: missing #EXTM3U header")

        header = dict(ATTRIBUTE_PATTERN.findall(first))
        channels: list[Channel] = []
        current: Optional[dict] = None

        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith("#EXTM3U"):
                continue

            if line.startswith("#EXTINF:"):
                attr_section, title = _split_extinf(line)
                attrs = dict(ATTRIBUTE_PATTERN.findall(attr_section))
                current = {
                    "name": title or attrs.get("tvg-name", ""),
                    "attrs": attrs,
                    "group": attrs.get("group-title"),
                    "referrer": None,
                    "user_agent": attrs.get("user-agent"),
                }
            elif line.startswith("#EXTGRP:"):
                if current is not None and not current["group"]:
                    current["group"] = line[len("#EXTGRP:"):].strip()
            elif line.startswith("#EXTVLCOPT:"):
                if current is None:
                    continue
                option, _, value = line[len("#EXTVLCOPT:"):].partition("=")
                option = option.strip().lower()
                if option == "http-referrer":
                    current["referrer"] = value.strip()
                elif option == "http-user-agent":
                    current["user_agent"] = value.strip()
            elif line.startswith("#"):
                continue
            elif current is not None:
                channels.append(M3UParser._build_channel(current, line))
                current = None
            elif line.lower().startswith(STREAM_PREFIXES):
                # Bare stream URL without an #EXTINF line
                channels.append(Channel(name=line.rstrip("/").split("/")[-1], url=line))

        logger.debug(f"[M3U] Parsed {len(channels)} entries from {len(lines)} lines")
        return header, channels

    @staticmethod
    def _build_channel(entry: dict, url: str) -> Channel:
        attrs = entry["attrs"]
        return Channel(
            name=entry["name"],
            url=url,
            tvg=TvgInfo(
                id=_none_if_blank(attrs.get("tvg-id")),
                name=_none_if_blank(attrs.get("tvg-name")),
                logo=_none_if_blank(attrs.get("tvg-logo")),
                country=_none_if_blank(attrs.get("tvg-country")),
                language=_none_if_blank(attrs.get("tvg-language")),
                url=_none_if_blank(attrs.get("tvg-url")),
            ),
            group_title=_none_if_blank(entry["group"]),
            http=HttpHeaders(
                referrer=_none_if_blank(entry["referrer"]),
                user_agent=_none_if_blank(entry["user_agent"]),
            ),
        )
