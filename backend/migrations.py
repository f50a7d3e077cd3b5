"""
Versioned schema migrations.

Each migration runs exactly once, in ascending version order, inside its own
transaction together with the ledger row that records it. A failing migration
rolls back completely and aborts startup.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from errors import MigrationError
from models import utcnow

logger = logging.getLogger(__name__)

LEDGER_TABLE = "migrations"


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    up: Callable[[Connection], None]


def _table_exists(conn: Connection, table: str) -> bool:
    result = conn.execute(
        text("SELECT name FROM sqlite_master WHERE type='table' AND name=:name"),
        {"name": table},
    )
    return result.fetchone() is not None


def _column_exists(conn: Connection, table: str, column: str) -> bool:
    result = conn.execute(text(f"PRAGMA table_info({table})"))
    return column in [row[1] for row in result.fetchall()]


def _ensure_ledger(conn: Connection) -> None:
    conn.execute(text(f"""
        CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} (
            version INTEGER PRIMARY KEY NOT NULL,
            name VARCHAR(255) NOT NULL,
            applied_at DATETIME NOT NULL
        )
    """))


# -----------------------------------------------------------------------------
# Migration bodies
# -----------------------------------------------------------------------------

def _initial_schema(conn: Connection) -> None:
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS playlists (
            id VARCHAR(64) PRIMARY KEY NOT NULL,
            name VARCHAR(255) NOT NULL,
            url TEXT NOT NULL,
            username VARCHAR(255),
            password VARCHAR(255),
            channel_count INTEGER,
            created_at DATETIME NOT NULL,
            updated_at DATETIME NOT NULL,
            last_fetched_at DATETIME
        )
    """))
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS channels (
            id VARCHAR(36) PRIMARY KEY NOT NULL,
            playlist_id VARCHAR(64) NOT NULL,
            position INTEGER NOT NULL DEFAULT 0,
            name TEXT NOT NULL,
            url TEXT NOT NULL,
            tvg_id VARCHAR(255),
            tvg_name VARCHAR(255),
            tvg_logo TEXT,
            tvg_country VARCHAR(64),
            tvg_language VARCHAR(64),
            tvg_url TEXT,
            group_title VARCHAR(255),
            http_referrer TEXT,
            http_user_agent TEXT,
            FOREIGN KEY (playlist_id) REFERENCES playlists (id) ON DELETE CASCADE
        )
    """))
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_channels_playlist_id ON channels (playlist_id)"))
    _ensure_ledger(conn)


def _add_user_tables(conn: Connection) -> None:
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS users (
            id VARCHAR(36) PRIMARY KEY NOT NULL,
            username VARCHAR(255) NOT NULL,
            avatar_url TEXT,
            is_primary BOOLEAN NOT NULL DEFAULT 0,
            pin VARCHAR(32),
            created_at DATETIME NOT NULL,
            updated_at DATETIME NOT NULL,
            last_active_at DATETIME
        )
    """))
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS user_settings (
            user_id VARCHAR(36) PRIMARY KEY NOT NULL,
            theme VARCHAR(16) NOT NULL DEFAULT 'system',
            language VARCHAR(16) NOT NULL DEFAULT 'en',
            default_quality VARCHAR(16) NOT NULL DEFAULT 'auto',
            autoplay BOOLEAN NOT NULL DEFAULT 0,
            show_channel_logos BOOLEAN NOT NULL DEFAULT 1,
            view_mode VARCHAR(16) NOT NULL DEFAULT 'grid',
            channel_sort_by VARCHAR(16) NOT NULL DEFAULT 'name',
            parental_control_enabled BOOLEAN NOT NULL DEFAULT 0,
            parental_control_pin VARCHAR(32),
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
        )
    """))
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS user_favorite_channels (
            id VARCHAR(36) PRIMARY KEY NOT NULL,
            user_id VARCHAR(36) NOT NULL,
            channel_id TEXT NOT NULL,
            added_at DATETIME NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
            UNIQUE (user_id, channel_id)
        )
    """))
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS user_hidden_channels (
            id VARCHAR(36) PRIMARY KEY NOT NULL,
            user_id VARCHAR(36) NOT NULL,
            channel_id TEXT NOT NULL,
            hidden_at DATETIME NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
            UNIQUE (user_id, channel_id)
        )
    """))
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS user_channel_order (
            id VARCHAR(36) PRIMARY KEY NOT NULL,
            user_id VARCHAR(36) NOT NULL,
            channel_id TEXT NOT NULL,
            sort_order INTEGER NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
            UNIQUE (user_id, channel_id)
        )
    """))
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS user_watch_history (
            id VARCHAR(36) PRIMARY KEY NOT NULL,
            user_id VARCHAR(36) NOT NULL,
            channel_id TEXT NOT NULL,
            watched_at DATETIME NOT NULL,
            duration INTEGER NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
        )
    """))
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS user_playback_position (
            id VARCHAR(36) PRIMARY KEY NOT NULL,
            user_id VARCHAR(36) NOT NULL,
            channel_id TEXT NOT NULL,
            position INTEGER NOT NULL,
            total_duration INTEGER NOT NULL,
            updated_at DATETIME NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
            UNIQUE (user_id, channel_id)
        )
    """))
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_user_favorite_channels_user_id ON user_favorite_channels (user_id)"))
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_user_hidden_channels_user_id ON user_hidden_channels (user_id)"))
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_user_channel_order_user_id ON user_channel_order (user_id)"))
    conn.execute(text(
        "CREATE INDEX IF NOT EXISTS idx_user_watch_history_user_watched ON user_watch_history (user_id, watched_at)"
    ))
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_user_playback_position_user_id ON user_playback_position (user_id)"))


def _add_user_favorite_groups(conn: Connection) -> None:
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS user_favorite_groups (
            id VARCHAR(36) PRIMARY KEY NOT NULL,
            user_id VARCHAR(36) NOT NULL,
            group_name VARCHAR(255) NOT NULL,
            added_at DATETIME NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
            UNIQUE (user_id, group_name)
        )
    """))
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_user_favorite_groups_user_id ON user_favorite_groups (user_id)"))


def _add_active_playlist_id(conn: Connection) -> None:
    if _column_exists(conn, "user_settings", "active_playlist_id"):
        logger.debug("[MIGRATION] active_playlist_id column already exists in user_settings")
        return
    conn.execute(text("ALTER TABLE user_settings ADD COLUMN active_playlist_id VARCHAR(64)"))
    logger.info("[MIGRATION] Added active_playlist_id column to user_settings")


def _add_playlist_version(conn: Connection) -> None:
    if _column_exists(conn, "playlists", "version"):
        logger.debug("[MIGRATION] version column already exists in playlists")
        return
    conn.execute(text("ALTER TABLE playlists ADD COLUMN version INTEGER NOT NULL DEFAULT 1"))
    logger.info("[MIGRATION] Added version column to playlists")


MIGRATIONS: list[Migration] = [
    Migration(1, "initial_schema", _initial_schema),
    Migration(2, "add_user_tables", _add_user_tables),
    Migration(3, "add_user_favorite_groups", _add_user_favorite_groups),
    Migration(4, "add_active_playlist_id", _add_active_playlist_id),
    Migration(5, "add_playlist_version", _add_playlist_version),
]


# -----------------------------------------------------------------------------
# Runner
# -----------------------------------------------------------------------------

def get_current_version(conn: Connection) -> int:
    """Highest applied version, or 0 for a fresh database without a ledger."""
    if not _table_exists(conn, LEDGER_TABLE):
        return 0
    result = conn.execute(text(f"SELECT MAX(version) FROM {LEDGER_TABLE}"))
    version = result.scalar()
    return version or 0


def run_migrations(engine: Engine, migrations: Optional[Sequence[Migration]] = None) -> int:
    """
    Apply all pending migrations.

    Returns:
        Number of migrations applied (0 when the schema is up to date)

    Raises:
        MigrationError: If a migration body fails; its transaction is rolled back
    """
    if migrations is None:
        migrations = MIGRATIONS

    with engine.connect() as conn:
        current_version = get_current_version(conn)

    pending = sorted(
        (m for m in migrations if m.version > current_version),
        key=lambda m: m.version,
    )
    if not pending:
        logger.info(f"[DB] Database is up to date (version {current_version})")
        return 0

    logger.info(f"[DB] Running {len(pending)} migrations from version {current_version}")

    for migration in pending:
        try:
            with engine.begin() as conn:
                logger.info(f"[DB] Applying migration {migration.version}: {migration.name}")
                migration.up(conn)
                _ensure_ledger(conn)
                conn.execute(
                    text(f"INSERT INTO {LEDGER_TABLE} (version, name, applied_at) VALUES (:version, :name, :applied_at)"),
                    {"version": migration.version, "name": migration.name, "applied_at": utcnow()},
                )
        except Exception as e:
            logger.exception(f"[DB] Migration {migration.version} ({migration.name}) failed, rolled back")
            raise MigrationError(migration.version, migration.name, e) from e

    logger.info("[DB] All migrations completed successfully")
    return len(pending)
