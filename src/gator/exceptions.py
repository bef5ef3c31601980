"""Error types raised by gator"""
from typing import Optional


class GatorError(Exception):
    """Base class for all gator errors"""


class FetchError(GatorError):
    """A feed could not be fetched or parsed"""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class NetworkError(FetchError):
    """Connection failure or timeout"""


class HTTPStatusError(FetchError):
    """Server answered with a non-2xx status"""

    def __init__(self, status_code: int, url: str):
        super().__init__(f"HTTP {status_code} from {url}", url=url)
        self.status_code = status_code


class ParseError(FetchError):
    """Response body is not well-formed feed XML"""


class DateParseError(GatorError):
    """pubDate does not match the expected timestamp format"""

    def __init__(self, raw: str):
        super().__init__(f"unparsable pubDate: {raw!r}")
        self.raw = raw


class StoreError(GatorError):
    """Persistence failure"""


class AlreadyExistsError(StoreError):
    """Unique constraint violated on create"""


class ConfigError(GatorError):
    """Invalid or unreadable configuration"""


class NotLoggedInError(GatorError):
    """Command requires a current user but none is usable"""
