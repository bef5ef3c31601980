import logging
from typing import Optional

import httpx

from .. import __version__
from ..exceptions import HTTPStatusError, NetworkError
from ..models import FeedDocument
from .parser import RSSParser

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"gator/{__version__}"


class FeedFetcher:
    """HTTP-based RSS fetcher

    Performs exactly one GET per fetch() call. Can be used as an async
    context manager to share one connection pool across cycles, otherwise a
    client is created per call.
    """

    def __init__(
        self,
        timeout: float = 30,
        user_agent: str = DEFAULT_USER_AGENT,
        client: Optional[httpx.AsyncClient] = None,
        parser: Optional[RSSParser] = None
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self.parser = parser or RSSParser()
        self._client = client
        self._owns_client = False

    async def __aenter__(self) -> "FeedFetcher":
        if self._client is None:
            self._client = self._build_client()
            self._owns_client = True
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
            self._owns_client = False

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent},
            follow_redirects=True
        )

    async def fetch(self, url: str) -> FeedDocument:
        """Fetch and parse an RSS feed

        Raises NetworkError, HTTPStatusError or ParseError.
        """
        content = await self._fetch_content(url)
        return self.parser.parse(content)

    async def _fetch_content(self, url: str) -> bytes:
        """Fetch RSS content via HTTP"""
        if self._client is not None:
            return await self._get(self._client, url)
        async with self._build_client() as client:
            return await self._get(client, url)

    async def _get(self, client: httpx.AsyncClient, url: str) -> bytes:
        try:
            response = await client.get(url, headers={"User-Agent": self.user_agent})
        except (httpx.RequestError, httpx.InvalidURL) as e:
            raise NetworkError(f"request to {url} failed: {e!r}", url=url) from e

        if not response.is_success:
            raise HTTPStatusError(response.status_code, url)

        logger.debug(f"GET {url} -> {response.status_code} ({len(response.content)} bytes)")
        return response.content
