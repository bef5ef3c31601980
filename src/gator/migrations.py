"""Database migration management"""
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from .exceptions import StoreError

logger = logging.getLogger(__name__)

CURRENT_VERSION = 5

MIGRATIONS = {
    # v1: users
    1: [
        """CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            name TEXT NOT NULL UNIQUE
        )""",
    ],

    # v2: feeds owned by a user
    2: [
        """CREATE TABLE IF NOT EXISTS feeds (
            id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            name TEXT NOT NULL,
            url TEXT NOT NULL UNIQUE,
            user_id TEXT REFERENCES users(id) ON DELETE CASCADE
        )""",
        "CREATE INDEX IF NOT EXISTS idx_feeds_user_id ON feeds(user_id)",
    ],

    # v3: follow edges
    3: [
        """CREATE TABLE IF NOT EXISTS feed_follows (
            id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
            UNIQUE(user_id, feed_id)
        )""",
        "CREATE INDEX IF NOT EXISTS idx_feed_follows_feed_id ON feed_follows(feed_id)",
    ],

    # v4: freshness stamp used by the scraper to pick the next feed
    4: [
        "ALTER TABLE feeds ADD COLUMN last_fetched_at TEXT",
        "CREATE INDEX IF NOT EXISTS idx_feeds_last_fetched_at ON feeds(last_fetched_at)",
    ],

    # v5: posts, deduplicated per feed on url
    5: [
        """CREATE TABLE IF NOT EXISTS posts (
            id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            title TEXT,
            url TEXT NOT NULL,
            description TEXT,
            published_at TEXT,
            feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
            UNIQUE(feed_id, url)
        )""",
        "CREATE INDEX IF NOT EXISTS idx_posts_published_at ON posts(published_at)",
    ],
}


def get_schema_version(db_path: Path) -> int:
    """Return the applied schema version, 0 for an empty database"""
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if not cursor.fetchone():
            return 0

        cursor = conn.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1")
        row = cursor.fetchone()
        return row[0] if row else 0
    finally:
        conn.close()


def set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Record an applied schema version"""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
    """)
    conn.execute(
        "INSERT OR REPLACE INTO schema_version (version, applied_at) VALUES (?, ?)",
        (version, datetime.now(timezone.utc).isoformat())
    )


def pending_versions(current: int, target: int) -> List[int]:
    return [version for version in sorted(MIGRATIONS) if current < version <= target]


def migrate(db_path: Path, target_version: Optional[int] = None) -> Tuple[int, int]:
    """Bring the schema up to target_version (latest by default)

    Each version is applied and recorded in its own transaction, so a failure
    leaves the database at the last complete version.

    Returns:
        (old version, new version)
    """
    target = CURRENT_VERSION if target_version is None else target_version
    current = get_schema_version(db_path)
    pending = pending_versions(current, target)
    if not pending:
        return current, current

    conn = sqlite3.connect(db_path)
    try:
        for version in pending:
            try:
                with conn:
                    for sql in MIGRATIONS[version]:
                        conn.execute(sql)
                    set_schema_version(conn, version)
            except sqlite3.Error as e:
                raise StoreError(f"schema upgrade to v{version} failed: {e}") from e
            logger.info(f"Schema upgraded to v{version}")
    finally:
        conn.close()
    return current, pending[-1]


def check_migration_needed(db_path: Path) -> Tuple[bool, int, int]:
    """Returns (migration needed, current version, latest version)

    A missing or empty database is fresh, opening it creates the schema.
    """
    current = get_schema_version(db_path) if db_path.exists() else 0
    return 0 < current < CURRENT_VERSION, current, CURRENT_VERSION
