from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class User:
    """Registered CLI user"""
    id: str
    name: str
    created_at: datetime
    updated_at: datetime


@dataclass
class Feed:
    """Subscribed RSS source

    user_id is a nullable column but create_feed always sets it, and feeds
    are deleted together with their owner, so a stored feed never has None.
    last_fetched_at stays None until the first fetch attempt and never moves
    backwards afterwards.
    """
    id: str
    name: str
    url: str
    user_id: Optional[str]
    created_at: datetime
    updated_at: datetime
    last_fetched_at: Optional[datetime] = None


@dataclass
class FeedFollow:
    """Follow edge between a user and a feed"""
    id: str
    user_id: str
    feed_id: str
    created_at: datetime
    updated_at: datetime
    feed_name: str = ""
    user_name: str = ""


@dataclass
class Post:
    """Deduplicated item ingested from a feed, unique on (feed_id, url)"""
    id: str
    feed_id: str
    url: str
    title: Optional[str]
    description: Optional[str]
    published_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


@dataclass
class FeedItem:
    """Single <item> of a fetched feed, not persisted"""
    title: str = ""
    link: str = ""
    description: str = ""
    published_at_raw: str = ""


@dataclass
class Channel:
    """<channel> element of a fetched feed"""
    title: str = ""
    link: str = ""
    description: str = ""
    items: List[FeedItem] = field(default_factory=list)


@dataclass
class FeedDocument:
    """Parsed RSS document"""
    channel: Channel = field(default_factory=Channel)
