"""
Base Fetcher for the Advisory Feed Engine

Abstract base class for feed transports plus the aiohttp implementation
that goes through the CORS proxy relay (or directly to the origin when no
proxy is configured).

FETCH POLICY:
- One request per call: no retry loop, the next refresh interval is the retry
- Bounded timeout per request (30s by default)
- Minimum spacing between requests to the same hostname (1s by default),
  applied to the feed's origin host, not the proxy host
- Any non-2xx status, timeout or network error raises FetchException
"""

import abc
import asyncio
import json
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, TYPE_CHECKING
from urllib.parse import quote

import aiohttp

from .exceptions import FetchException

if TYPE_CHECKING:
    from ...config.source_config import FeedSource

logger = logging.getLogger(__name__)

ACCEPT_HEADERS = {
    'RSS': 'application/rss+xml, application/xml, text/xml, */*',
    'JSON': 'application/json, */*',
    'API': 'application/json, */*',
    'TEXT': 'text/plain, */*',
    'TAXII': 'application/taxii+json;version=2.1, application/json, */*',
}


class HostRateLimiter:
    """
    Per-hostname minimum inter-request spacing

    Requests to one host are serialized through a per-host lock so that
    concurrent fetches of two feeds on the same origin are spaced out;
    distinct hosts never wait on each other.
    """

    def __init__(self, min_interval: float = 1.0,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.min_interval = min_interval
        self.clock = clock
        self.sleep = sleep
        self._last_request: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def wait(self, hostname: str) -> float:
        """
        Block until a request to hostname is allowed

        Returns:
            Seconds waited
        """
        lock = self._locks.setdefault(hostname, asyncio.Lock())
        async with lock:
            waited = 0.0
            last = self._last_request.get(hostname)
            if last is not None:
                remaining = self.min_interval - (self.clock() - last)
                if remaining > 0:
                    logger.debug(f"Rate limiting {hostname}: waiting {remaining:.2f}s")
                    await self.sleep(remaining)
                    waited = remaining
            self._last_request[hostname] = self.clock()
            return waited


class BaseFetcher(abc.ABC):
    """Abstract base class for feed transports"""

    def __init__(self, timeout: float = 30.0,
                 rate_limiter: Optional[HostRateLimiter] = None,
                 user_agent: str = 'AdvisoryFeeds/1.0'):
        """
        Args:
            timeout: Seconds allowed for one request
            rate_limiter: Shared per-host limiter
            user_agent: User-Agent header sent with every request
        """
        self.timeout = timeout
        self.rate_limiter = rate_limiter or HostRateLimiter()
        self.user_agent = user_agent

    @abc.abstractmethod
    async def _request(self, url: str, headers: Dict[str, str], source: 'FeedSource') -> str:
        """
        Perform a single GET and return the body text

        Raises:
            FetchException: On non-2xx status or network failure
        """
        pass

    def build_request_url(self, source: 'FeedSource') -> str:
        return source.url

    def build_headers(self, source: 'FeedSource', api_key: Optional[str] = None) -> Dict[str, str]:
        headers = {
            'User-Agent': self.user_agent,
            'Accept': ACCEPT_HEADERS.get(source.transport_format.value, '*/*'),
        }
        if api_key:
            headers['X-API-Key'] = api_key
        return headers

    async def fetch(self, source: 'FeedSource', api_key: Optional[str] = None) -> str:
        """
        Fetch the raw payload of a feed

        Args:
            source: Feed to fetch
            api_key: Credential for sources that require one

        Returns:
            Raw payload text

        Raises:
            FetchException: If the request fails or times out
        """
        await self.rate_limiter.wait(source.hostname)

        url = self.build_request_url(source)
        headers = self.build_headers(source, api_key)

        try:
            return await asyncio.wait_for(self._request(url, headers, source), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise FetchException(f"Request timed out after {self.timeout}s", source.name,
                                 url=source.url, timed_out=True)

    async def close(self):
        """Release transport resources"""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class ProxyFetcher(BaseFetcher):
    """
    aiohttp transport through the proxy relay

    The relay is called as GET {proxy_url}?url=<encoded target>. It answers
    400 on a missing url, 502 when the upstream is non-2xx and 500 with a
    JSON {error} body on any other failure; all of these are transport
    failures here.
    """

    def __init__(self, proxy_url: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.proxy_url = proxy_url
        self.session: Optional[aiohttp.ClientSession] = None

    def build_request_url(self, source: 'FeedSource') -> str:
        if not self.proxy_url:
            return source.url
        separator = '&' if '?' in self.proxy_url else '?'
        return f"{self.proxy_url}{separator}url={quote(source.url, safe='')}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self.session

    async def _request(self, url: str, headers: Dict[str, str], source: 'FeedSource') -> str:
        session = self._get_session()
        try:
            async with session.get(url, headers=headers) as response:
                body = await response.text(errors='replace')
                if not 200 <= response.status < 300:
                    raise FetchException(
                        f"HTTP {response.status}{self._error_detail(body)}",
                        source.name,
                        status_code=response.status,
                        url=source.url,
                    )
                return body
        except aiohttp.ClientError as e:
            raise FetchException(f"Network error: {e}", source.name, url=source.url)

    @staticmethod
    def _error_detail(body: str) -> str:
        try:
            error = json.loads(body).get('error')
        except (ValueError, AttributeError):
            return ''
        return f": {error}" if error else ''

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None
