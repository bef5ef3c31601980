import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable

from .database import Database, utcnow
from .exceptions import DateParseError, StoreError
from .models import FeedItem, Post
from .sanitize import sanitize_text

logger = logging.getLogger(__name__)

# RFC 1123 with a numeric zone, e.g. "Mon, 02 Jan 2006 15:04:05 -0700"
PUB_DATE_FORMAT = "%a, %d %b %Y %H:%M:%S %z"


class Outcome(str, Enum):
    """What happened to a single feed item"""
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"


@dataclass
class IngestResult:
    """Per-batch counters"""
    inserted: int = 0
    duplicates: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.duplicates + self.skipped

    def add(self, outcome: Outcome) -> None:
        if outcome is Outcome.INSERTED:
            self.inserted += 1
        elif outcome is Outcome.DUPLICATE:
            self.duplicates += 1
        else:
            self.skipped += 1


def parse_pub_date(raw: str) -> datetime:
    """Parse an RSS pubDate, raising DateParseError on any other format"""
    try:
        return datetime.strptime(raw.strip(), PUB_DATE_FORMAT)
    except (ValueError, AttributeError) as e:
        raise DateParseError(raw) from e


class PostIngestor:
    """Turn feed items into posts

    A bad item is logged and skipped; ingest() never raises for a single
    item. Duplicates are left to the store's unique (feed_id, url) index.
    """

    def __init__(self, db: Database):
        self.db = db

    def ingest(self, feed_id: str, items: Iterable[FeedItem]) -> IngestResult:
        result = IngestResult()
        for item in items:
            result.add(self._ingest_item(feed_id, item))
        return result

    def _ingest_item(self, feed_id: str, item: FeedItem) -> Outcome:
        """Store one item and report what happened to it"""
        title = sanitize_text(item.title)
        description = sanitize_text(item.description)

        if not item.link:
            logger.warning(f"⚠️ [{feed_id}] skipping item without link: {title[:60]!r}")
            return Outcome.SKIPPED

        try:
            published_at = parse_pub_date(item.published_at_raw)
        except DateParseError as e:
            logger.warning(f"⚠️ [{feed_id}] skipping {item.link}: {e}")
            return Outcome.SKIPPED

        now = utcnow()
        post = Post(
            id=str(uuid.uuid4()),
            feed_id=feed_id,
            url=item.link,
            title=title,
            description=description,
            published_at=published_at,
            created_at=now,
            updated_at=now
        )
        try:
            inserted = self.db.create_post(post)
        except StoreError as e:
            logger.error(f"❌ [{feed_id}] failed to store {item.link}: {e}")
            return Outcome.SKIPPED

        return Outcome.INSERTED if inserted else Outcome.DUPLICATE
