import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, List, Optional

from .exceptions import AlreadyExistsError, StoreError
from .migrations import migrate
from .models import Feed, FeedFollow, Post, User

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: Optional[datetime]) -> Optional[str]:
    """Serialize a timestamp so that text order equals time order"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _is_unique_violation(error: sqlite3.IntegrityError) -> bool:
    return "UNIQUE constraint failed" in str(error)


class Database:
    """SQLite database repository

    Every method runs on its own connection and commits before returning, so
    each call is individually atomic.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._init_db()

    @contextmanager
    def _get_conn(self) -> Generator[sqlite3.Connection, None, None]:
        """Get database connection context manager"""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(f"cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create or upgrade tables"""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            migrate(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(f"cannot initialise database {self.db_path}: {e}") from e

    # User operations
    def create_user(self, name: str) -> User:
        """Add a new user, AlreadyExistsError if the name is taken"""
        now = utcnow()
        user = User(id=str(uuid.uuid4()), name=name, created_at=now, updated_at=now)
        with self._get_conn() as conn:
            try:
                conn.execute(
                    "INSERT INTO users (id, created_at, updated_at, name) VALUES (?, ?, ?, ?)",
                    (user.id, _ts(now), _ts(now), name)
                )
            except sqlite3.IntegrityError as e:
                if _is_unique_violation(e):
                    raise AlreadyExistsError(f"user {name!r} already exists") from e
                raise
        return user

    def get_user(self, name: str) -> Optional[User]:
        """Get user by name"""
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM users WHERE name = ?", (name,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        """Get user by id"""
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_users(self) -> List[User]:
        """Get all users ordered by name"""
        with self._get_conn() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY name").fetchall()
        return [self._row_to_user(row) for row in rows]

    def reset(self) -> int:
        """Delete every user; feeds, follows and posts go with them"""
        with self._get_conn() as conn:
            cursor = conn.execute("DELETE FROM users")
        return cursor.rowcount

    # Feed operations
    def create_feed(self, name: str, url: str, user_id: str) -> Feed:
        """Add a feed owned by user_id, AlreadyExistsError if url is known"""
        now = utcnow()
        feed = Feed(
            id=str(uuid.uuid4()),
            name=name,
            url=url,
            user_id=user_id,
            created_at=now,
            updated_at=now
        )
        with self._get_conn() as conn:
            try:
                conn.execute(
                    "INSERT INTO feeds (id, created_at, updated_at, name, url, user_id) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (feed.id, _ts(now), _ts(now), name, url, user_id)
                )
            except sqlite3.IntegrityError as e:
                if _is_unique_violation(e):
                    raise AlreadyExistsError(f"feed {url!r} already exists") from e
                raise
        return feed

    def get_feeds(self) -> List[Feed]:
        """Get all feeds in creation order"""
        with self._get_conn() as conn:
            rows = conn.execute("SELECT * FROM feeds ORDER BY created_at, id").fetchall()
        return [self._row_to_feed(row) for row in rows]

    def get_feed_by_url(self, url: str) -> Optional[Feed]:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM feeds WHERE url = ?", (url,)).fetchone()
        return self._row_to_feed(row) if row else None

    def get_feed(self, feed_id: str) -> Optional[Feed]:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM feeds WHERE id = ?", (feed_id,)).fetchone()
        return self._row_to_feed(row) if row else None

    def get_next_feed_to_fetch(self) -> Optional[Feed]:
        """Feed whose last fetch is the oldest, never-fetched feeds first"""
        with self._get_conn() as conn:
            row = conn.execute("""
                SELECT * FROM feeds
                ORDER BY last_fetched_at IS NOT NULL, last_fetched_at, created_at, id
                LIMIT 1
            """).fetchone()
        return self._row_to_feed(row) if row else None

    def mark_feed_fetched(self, feed_id: str, fetched_at: Optional[datetime] = None) -> None:
        """Stamp a fetch attempt; the stamp never moves backwards"""
        stamp = _ts(fetched_at or utcnow())
        with self._get_conn() as conn:
            conn.execute("""
                UPDATE feeds
                SET last_fetched_at = CASE
                        WHEN last_fetched_at IS NULL OR last_fetched_at < ? THEN ?
                        ELSE last_fetched_at
                    END,
                    updated_at = ?
                WHERE id = ?
            """, (stamp, stamp, _ts(utcnow()), feed_id))

    # Follow operations
    def create_feed_follow(self, user_id: str, feed_id: str) -> FeedFollow:
        """Follow a feed, AlreadyExistsError if already followed"""
        now = utcnow()
        follow_id = str(uuid.uuid4())
        with self._get_conn() as conn:
            try:
                conn.execute(
                    "INSERT INTO feed_follows (id, created_at, updated_at, user_id, feed_id) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (follow_id, _ts(now), _ts(now), user_id, feed_id)
                )
            except sqlite3.IntegrityError as e:
                if _is_unique_violation(e):
                    raise AlreadyExistsError("feed is already followed") from e
                raise
            row = conn.execute("""
                SELECT ff.*, f.name AS feed_name, u.name AS user_name
                FROM feed_follows ff
                JOIN feeds f ON f.id = ff.feed_id
                JOIN users u ON u.id = ff.user_id
                WHERE ff.id = ?
            """, (follow_id,)).fetchone()
        return self._row_to_follow(row)

    def get_feed_follows_for_user(self, user_id: str) -> List[FeedFollow]:
        with self._get_conn() as conn:
            rows = conn.execute("""
                SELECT ff.*, f.name AS feed_name, u.name AS user_name
                FROM feed_follows ff
                JOIN feeds f ON f.id = ff.feed_id
                JOIN users u ON u.id = ff.user_id
                WHERE ff.user_id = ?
                ORDER BY ff.created_at, ff.id
            """, (user_id,)).fetchall()
        return [self._row_to_follow(row) for row in rows]

    def delete_feed_follow(self, user_id: str, url: str) -> bool:
        """Unfollow by feed url, returns True if an edge was removed"""
        with self._get_conn() as conn:
            cursor = conn.execute("""
                DELETE FROM feed_follows
                WHERE user_id = ?
                  AND feed_id IN (SELECT id FROM feeds WHERE url = ?)
            """, (user_id, url))
        return cursor.rowcount > 0

    # Post operations
    def create_post(self, post: Post) -> bool:
        """Insert a post if (feed_id, url) is new, returns True if inserted"""
        with self._get_conn() as conn:
            try:
                conn.execute(
                    "INSERT INTO posts (id, created_at, updated_at, title, url, description, "
                    "published_at, feed_id) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (post.id, _ts(post.created_at), _ts(post.updated_at), post.title,
                     post.url, post.description, _ts(post.published_at), post.feed_id)
                )
                return True
            except sqlite3.IntegrityError as e:
                if _is_unique_violation(e):
                    return False
                raise

    def get_posts_for_feed(self, feed_id: str) -> List[Post]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM posts WHERE feed_id = ? ORDER BY published_at DESC, id",
                (feed_id,)
            ).fetchall()
        return [self._row_to_post(row) for row in rows]

    def get_posts_for_user(self, user_id: str, limit: int = 2) -> List[Post]:
        """Newest posts from the feeds a user follows"""
        with self._get_conn() as conn:
            rows = conn.execute("""
                SELECT p.* FROM posts p
                JOIN feed_follows ff ON ff.feed_id = p.feed_id
                WHERE ff.user_id = ?
                ORDER BY p.published_at DESC, p.created_at DESC
                LIMIT ?
            """, (user_id, limit)).fetchall()
        return [self._row_to_post(row) for row in rows]

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"])
        )

    @staticmethod
    def _row_to_feed(row: sqlite3.Row) -> Feed:
        return Feed(
            id=row["id"],
            name=row["name"],
            url=row["url"],
            user_id=row["user_id"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
            last_fetched_at=_dt(row["last_fetched_at"])
        )

    @staticmethod
    def _row_to_follow(row: sqlite3.Row) -> FeedFollow:
        return FeedFollow(
            id=row["id"],
            user_id=row["user_id"],
            feed_id=row["feed_id"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
            feed_name=row["feed_name"],
            user_name=row["user_name"]
        )

    @staticmethod
    def _row_to_post(row: sqlite3.Row) -> Post:
        return Post(
            id=row["id"],
            feed_id=row["feed_id"],
            url=row["url"],
            title=row["title"],
            description=row["description"],
            published_at=_dt(row["published_at"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"])
        )
