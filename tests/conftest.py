"""
Pytest fixtures shared by the gator test suite.
"""

import asyncio
from pathlib import Path
from typing import Callable, List, Optional

import httpx
import pytest

from gator.database import Database
from gator.models import Channel, Feed, FeedDocument, FeedItem, User
from gator.rss import FeedFetcher

VALID_PUB_DATE = "Mon, 02 Jan 2006 15:04:05 -0700"


def rss_xml(items: List[dict], title: str = "Example Blog") -> str:
    """
    Build an RSS 2.0 document from item dicts (title, link, description, pubDate).
    """
    parts = []
    for item in items:
        fields = "".join(
            f"<{key}>{value}</{key}>" for key, value in item.items() if value is not None
        )
        parts.append(f"<item>{fields}</item>")
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel>'
        f"<title>{title}</title>"
        "<link>https://example.com/</link>"
        "<description>Posts from the example blog</description>"
        f"{''.join(parts)}"
        "</channel></rss>"
    )


def make_items(count: int, bad_date_at: Optional[int] = None) -> List[FeedItem]:
    """
    FeedItems with distinct links; item number bad_date_at (1-based) gets an invalid pubDate.
    """
    return [
        FeedItem(
            title=f"Post {i}",
            link=f"https://example.com/posts/{i}",
            description=f"Body of post {i}",
            published_at_raw="not-a-date" if i == bad_date_at else VALID_PUB_DATE,
        )
        for i in range(1, count + 1)
    ]


class StaticFetcher:
    """
    Fetcher double returning a fixed document or raising a fixed error.
    """

    def __init__(
        self,
        document: Optional[FeedDocument] = None,
        error: Optional[Exception] = None,
    ):
        self.document = document or FeedDocument()
        self.error = error
        self.calls: List[str] = []
        self.fetched = asyncio.Event()

    async def fetch(self, url: str) -> FeedDocument:
        self.calls.append(url)
        self.fetched.set()
        if self.error is not None:
            raise self.error
        return self.document


class HangingFetcher:
    """
    Fetcher double whose fetch never completes until cancelled.
    """

    def __init__(self):
        self.entered = asyncio.Event()
        self.cancelled = False

    async def fetch(self, url: str) -> FeedDocument:
        self.entered.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return FeedDocument()


def document_with(items: List[FeedItem]) -> FeedDocument:
    return FeedDocument(channel=Channel(title="Example Blog", items=items))


@pytest.fixture
def db(tmp_path: Path) -> Database:
    """
    Fresh SQLite database in a temporary directory.
    """
    return Database(tmp_path / "gator.db")


@pytest.fixture
def user(db: Database) -> User:
    return db.create_user("kahya")


@pytest.fixture
def feed(db: Database, user: User) -> Feed:
    return db.create_feed("Example Blog", "https://example.com/rss.xml", user.id)


@pytest.fixture
def mock_fetcher() -> Callable[[Callable[[httpx.Request], httpx.Response]], FeedFetcher]:
    """
    Build a FeedFetcher whose HTTP traffic is served by the given handler.

    Usage:
        fetcher = mock_fetcher(lambda request: httpx.Response(404))
    """

    def create(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> FeedFetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return FeedFetcher(client=client, **kwargs)

    return create
