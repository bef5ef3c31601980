from .fetcher import FeedFetcher
from .parser import RSSParser

__all__ = ["FeedFetcher", "RSSParser"]
