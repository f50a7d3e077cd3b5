#!/usr/bin/env python3
"""
IPTV playlist maintenance utility.

Usage:
    python main.py migrate
    python main.py add "My TV" https://example.com/tv.m3u [--username U --password P]
    python main.py list
    python main.py refresh <playlist-id>
    python main.py remove <playlist-id>

The database lives at $IPTV_CONFIG_DIR/$IPTV_DATABASE_FILE (./config/iptv.db by default).
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from app_context import AppContext
from config import AppSettings, ensure_config_dir, get_settings, set_log_level
from database import Database
from domain import CreatePlaylistInput, PlaylistCredentials
from errors import IPTVError
from log_utils import configure_logging
from migrations import run_migrations

logger = logging.getLogger(__name__)

# ── Colours ────────────────────────────────────────────────────────────
GREEN = "\033[0;32m"
RED = "\033[0;31m"
BOLD = "\033[1m"
NC = "\033[0m"  # No Color


def cmd_migrate(settings: AppSettings, args: argparse.Namespace) -> int:
    ensure_config_dir(settings)
    database = Database(settings.database_url)
    try:
        database.init(run_migrations=False)
        applied = run_migrations(database.engine)
    finally:
        database.dispose()
    print(f"{GREEN}Applied {applied} migration(s).{NC}")
    return 0


async def cmd_add(app: AppContext, args: argparse.Namespace) -> int:
    credentials = None
    if args.username or args.password:
        if not (args.username and args.password):
            print(f"{RED}Error: --username and --password must be given together.{NC}", file=sys.stderr)
            return 2
        credentials = PlaylistCredentials(username=args.username, password=args.password)

    playlist = await app.playlist_store.add_playlist(
        CreatePlaylistInput(name=args.name, url=args.url, credentials=credentials)
    )
    print(f"{GREEN}Added playlist '{playlist.name}' ({playlist.id}) with {playlist.channel_count} channels.{NC}")
    return 0


async def cmd_list(app: AppContext, args: argparse.Namespace) -> int:
    playlists = app.playlist_store.playlists
    if not playlists:
        print("No playlists.")
        return 0

    print(f"  {'':<2}{'ID':<32} {'Name':<30} {'Channels':>8}  {'Last fetched'}")
    print(f"  {'':<2}{'─'*32} {'─'*30} {'─'*8}  {'─'*19}")
    for playlist in playlists:
        marker = "*" if playlist.id == app.playlist_store.active_playlist_id else " "
        fetched = playlist.last_fetched_at.strftime("%Y-%m-%d %H:%M:%S") if playlist.last_fetched_at else "never"
        print(f"  {marker:<2}{playlist.id:<32} {playlist.name:<30} {playlist.channel_count or 0:>8}  {fetched}")
    return 0


async def cmd_refresh(app: AppContext, args: argparse.Namespace) -> int:
    playlist = await app.playlist_store.refresh_playlist(args.playlist_id)
    print(f"{GREEN}Refreshed '{playlist.name}': {playlist.channel_count} channels.{NC}")
    return 0


async def cmd_remove(app: AppContext, args: argparse.Namespace) -> int:
    app.playlist_store.remove_playlist(args.playlist_id)
    print(f"{GREEN}Removed playlist {args.playlist_id}.{NC}")
    return 0


COMMANDS = {
    "add": cmd_add,
    "list": cmd_list,
    "refresh": cmd_refresh,
    "remove": cmd_remove,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage IPTV playlists from the command line.")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR or CRITICAL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("migrate", help="Apply pending database migrations")

    add = subparsers.add_parser("add", help="Fetch and store a new playlist")
    add.add_argument("name", help="Display name")
    add.add_argument("url", help="http(s) URL of the M3U playlist")
    add.add_argument("--username", help="Basic-auth username")
    add.add_argument("--password", help="Basic-auth password")

    subparsers.add_parser("list", help="List stored playlists")

    refresh = subparsers.add_parser("refresh", help="Re-fetch a playlist and replace its channels")
    refresh.add_argument("playlist_id")

    remove = subparsers.add_parser("remove", help="Delete a playlist and its channels")
    remove.add_argument("playlist_id")

    return parser


async def _run(settings: AppSettings, args: argparse.Namespace) -> int:
    async with AppContext(settings) as app:
        return await COMMANDS[args.command](app, args)


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging()
    set_log_level(args.log_level or settings.log_level)

    try:
        if args.command == "migrate":
            return cmd_migrate(settings, args)
        return asyncio.run(_run(settings, args))
    except IPTVError as e:
        print(f"{RED}Error ({e.category}): {e}{NC}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
