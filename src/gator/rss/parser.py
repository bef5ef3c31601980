import xml.sax
from typing import Union

import feedparser

from ..exceptions import ParseError
from ..models import Channel, FeedDocument, FeedItem


class RSSParser:
    """Parse RSS feed content"""

    def parse(self, content: Union[bytes, str]) -> FeedDocument:
        """Parse RSS content into a FeedDocument

        Raises ParseError when the document is not well-formed XML.
        """
        # markup is escaped later by sanitize_text, so keep it intact here
        feed = feedparser.parse(content, sanitize_html=False, resolve_relative_uris=False)

        # feedparser falls back to a loose parser on broken XML, we don't
        if feed.bozo and isinstance(feed.get("bozo_exception"), xml.sax.SAXException):
            raise ParseError(f"malformed feed XML: {feed.bozo_exception}")

        channel = Channel(
            title=feed.feed.get("title", ""),
            link=feed.feed.get("link", ""),
            description=feed.feed.get("description", ""),
        )
        for entry in feed.entries:
            channel.items.append(self._parse_item(entry))

        return FeedDocument(channel=channel)

    def _parse_item(self, entry) -> FeedItem:
        """Map a feedparser entry to a FeedItem, keeping pubDate raw"""
        return FeedItem(
            title=entry.get("title", ""),
            link=entry.get("link", ""),
            description=entry.get("description", ""),
            published_at_raw=entry.get("published", ""),
        )
