"""Shared fixtures: fake transports, controllable clocks and sample payloads."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from advisory_feeds.cache.feed_cache import FeedCache
from advisory_feeds.config.source_config import FeedSource, SourceConfigManager, TransportFormat
from advisory_feeds.orchestration.feed_manager import FeedManager
from advisory_feeds.orchestration.health_tracker import HealthTracker
from advisory_feeds.sources.base.base_fetcher import BaseFetcher

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class ManualClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start_ms: int = 0):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int):
        self.now_ms += ms


class FakeFetcher(BaseFetcher):
    """
    In-memory transport keyed by source id.

    A response may be a payload string or an exception instance to raise.
    """

    def __init__(self, responses: Optional[Dict[str, object]] = None,
                 delays: Optional[Dict[str, float]] = None):
        super().__init__(timeout=5.0)
        self.responses = dict(responses or {})
        self.delays = dict(delays or {})
        self.calls: List[str] = []
        self.api_keys: List[Optional[str]] = []
        self.closed = False

    async def fetch(self, source, api_key=None):
        self.calls.append(source.id)
        self.api_keys.append(api_key)
        return await self._request(source.url, {}, source)

    async def _request(self, url, headers, source):
        if source.id in self.delays:
            await asyncio.sleep(self.delays[source.id])
        response = self.responses[source.id]
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        self.closed = True


def make_source(source_id: str = 'src-a',
                transport_format: TransportFormat = TransportFormat.RSS,
                category: str = 'government',
                priority: int = 1,
                refresh_interval_ms: int = 1_800_000,
                parser_id: Optional[str] = None,
                requires_api_key: bool = False,
                url: Optional[str] = None) -> FeedSource:
    return FeedSource(
        id=source_id,
        name=source_id.upper(),
        url=url or f"https://{source_id}.example.org/feed",
        transport_format=transport_format,
        category=category,
        priority=priority,
        refresh_interval_ms=refresh_interval_ms,
        parser_id=parser_id,
        requires_api_key=requires_api_key,
    )


def make_registry(*sources: FeedSource) -> SourceConfigManager:
    registry = SourceConfigManager()
    registry.source_configs = {source.id: source for source in sources}
    registry._build_mappings()
    return registry


def rss_feed(count: int, prefix: str = 'Advisory', start: datetime = FIXED_NOW) -> str:
    """RSS 2.0 document with count items, newest first."""
    items = []
    for i in range(count):
        published = (start - timedelta(hours=i)).strftime('%a, %d %b %Y %H:%M:%S +0000')
        items.append(
            f"<item>"
            f"<title>{prefix} {i}</title>"
            f"<link>https://example.org/{prefix.lower()}/{i}</link>"
            f"<guid>{prefix.lower()}-{i}</guid>"
            f"<pubDate>{published}</pubDate>"
            f"<description>&lt;p&gt;Details for {prefix} {i}&lt;/p&gt;</description>"
            f"</item>"
        )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel><title>Test feed</title>'
        '<link>https://example.org</link><description>test</description>'
        + ''.join(items) +
        '</channel></rss>'
    )


def kev_catalog(entries: List[dict]) -> str:
    return json.dumps({
        'title': 'CISA Catalog of Known Exploited Vulnerabilities',
        'catalogVersion': '2024.06.01',
        'count': len(entries),
        'vulnerabilities': entries,
    })


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def cache(clock):
    return FeedCache(clock=clock)


@pytest.fixture
def health():
    return HealthTracker(clock=lambda: FIXED_NOW)


@pytest.fixture
def build_manager(cache, health):
    """Factory for a FeedManager over fake transports."""

    def _build(sources, responses=None, delays=None, **kwargs):
        fetcher = FakeFetcher(responses, delays)
        manager = FeedManager(
            registry=make_registry(*sources),
            cache=cache,
            fetcher=fetcher,
            health=health,
            clock=lambda: FIXED_NOW,
            **kwargs,
        )
        return manager, fetcher

    return _build
