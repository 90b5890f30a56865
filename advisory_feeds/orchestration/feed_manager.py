"""
Feed Manager for the Advisory Feed Engine

OBJECTIVE:
Central orchestrator that turns the source registry into normalized,
deduplicated advisory items. Every fetch goes through the cache freshness
gate, the per-host rate limiter and the parser dispatch, and every attempt
that is not intentionally skipped updates the health tracker.

PER-SOURCE FLOW (fetch_one):
1. Live `feed:{source_id}` cache entry -> returned as is, no network call
2. Source requires an API key and none is configured -> [] (skipped, not a failure)
3. Fetch through the proxy relay (30s timeout, 1s spacing per host)
4. Parse failure -> logged, health failure, []
5. Success -> cached with ttl = refresh interval, kept as last-good snapshot,
   health success
6. Transport failure -> health failure, last-good snapshot (possibly stale) or []

AGGREGATES:
fetch_by_category / fetch_priority1 / fetch_all fan out fetch_one in
batches of FETCH_BATCH_SIZE, each batch bounded by BATCH_TIMEOUT_SECONDS.
A failing or slow source never fails its siblings. Results are
concatenated, deduplicated once and sorted newest first.

INTEGRATION WITH LOCAL CODES:
- config/source_config.py: FeedSource registry
- sources/base/: fetcher, normalizer, duplicate manager, classifier
- sources/parsers/registry.py: ParserDispatch
- cache/feed_cache.py: freshness gate and derived-view memoization
- orchestration/health_tracker.py: per-source health
- Used by scripts/scheduler.py and the advisory_api service
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..cache.feed_cache import FeedCache
from ..config.source_config import FeedSource, SourceConfigManager, load_registry
from ..sources.base.base_fetcher import BaseFetcher, HostRateLimiter, ProxyFetcher
from ..sources.base.base_parser import parse_date
from ..sources.base.classifier import Classification, SEVERITY_LEVELS, classify
from ..sources.base.data_normalizer import DataNormalizer
from ..sources.base.duplicate_manager import DuplicateManager
from ..sources.base.exceptions import FeedSourceException
from ..sources.base.feed_item import FeedItem
from ..sources.parsers.registry import ParserDispatch
from .health_tracker import HealthAlerts, HealthStatus, HealthTracker

logger = logging.getLogger(__name__)

AGGREGATE_KEY = 'aggregate:all'
AGGREGATE_TTL_MS = 900_000  # 15 minutes

PRELOAD_CATEGORIES = ['government']


class FeedManager:
    """
    Fetches, parses, normalizes and caches advisory feeds

    RESPONSIBILITIES:
    1. Per-source fetch with freshness gate and stale-on-failure fallback
    2. Batched, isolated fan-out for category / priority / full refreshes
    3. Filtering, search and statistics over aggregated items
    4. Health reporting across all registered sources
    """

    def __init__(self,
                 registry: SourceConfigManager,
                 cache: Optional[FeedCache] = None,
                 fetcher: Optional[BaseFetcher] = None,
                 dispatch: Optional[ParserDispatch] = None,
                 normalizer: Optional[DataNormalizer] = None,
                 duplicate_manager: Optional[DuplicateManager] = None,
                 health: Optional[HealthTracker] = None,
                 api_keys: Optional[Dict[str, str]] = None,
                 batch_size: int = 5,
                 batch_timeout: float = 60.0,
                 clock: Callable[[], datetime] = None):
        self.registry = registry
        self.cache = cache or FeedCache()
        self.fetcher = fetcher or ProxyFetcher()
        self.dispatch = dispatch or ParserDispatch()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.normalizer = normalizer or DataNormalizer(clock=self.clock)
        self.duplicate_manager = duplicate_manager or DuplicateManager()
        self.health = health or HealthTracker(clock=self.clock)
        self.api_keys = dict(api_keys or {})
        self.batch_size = max(1, batch_size)
        self.batch_timeout = batch_timeout

        # Last successful result per source; survives cache expiry and eviction
        self._last_good: Dict[str, List[FeedItem]] = {}

    # ------------------------------------------------------------------
    # Per-source fetch
    # ------------------------------------------------------------------

    @staticmethod
    def cache_key(source: FeedSource) -> str:
        return f"feed:{source.id}"

    async def fetch_one(self, source: FeedSource, force_refresh: bool = False) -> List[FeedItem]:
        """
        Fetch one source, honoring the cache freshness gate

        Args:
            source: Source to fetch
            force_refresh: Skip the freshness gate

        Returns:
            Normalized items; stale items on transport failure; [] on parse failure
        """
        if not force_refresh:
            cached = self.cache.get_feed_data(source.id)
            if cached is not None:
                logger.debug(f"Cache hit for {source.id}")
                return [FeedItem.from_dict(data) for data in cached]

        api_key = self.api_keys.get(source.id)
        if source.requires_api_key and not api_key:
            logger.info(f"Skipping {source.id}: API key required but not configured")
            return []

        source_logger = logging.getLogger(f"fetcher.{source.id}")

        try:
            raw = await self.fetcher.fetch(source, api_key=api_key)
        except FeedSourceException as e:
            return self._fallback(source, e)
        except Exception as e:
            source_logger.error(f"Unexpected fetch error: {e}")
            return self._fallback(source, e)

        result = self.dispatch.dispatch(raw, source)
        if not result.ok:
            self.health.record_failure(source.id, f"Parse error: {result.error}")
            return []

        items = self.normalizer.normalize_items(result.items, source)

        self.cache.cache_feed_data(source.id, [item.to_dict() for item in items],
                                   source.refresh_interval_ms)
        self._last_good[source.id] = items
        self.health.record_success(source.id, len(items))

        source_logger.info(f"Fetched {len(items)} items")
        return list(items)

    def _fallback(self, source: FeedSource, error: Exception) -> List[FeedItem]:
        self.health.record_failure(source.id, error)

        stale = self._last_good.get(source.id)
        if stale:
            logger.warning(f"Fetch failed for {source.id} ({error}); serving {len(stale)} stale items")
            return list(stale)

        logger.warning(f"Fetch failed for {source.id} ({error}); no cached items")
        return []

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    async def fetch_sources(self, sources: Iterable[FeedSource],
                            force_refresh: bool = False) -> List[FeedItem]:
        """Fetch sources in bounded batches and merge their items"""
        sources = list(sources)
        collected: List[FeedItem] = []

        for start in range(0, len(sources), self.batch_size):
            batch = sources[start:start + self.batch_size]
            collected.extend(await self._fetch_batch(batch, force_refresh))

        return self.merge(collected)

    async def _fetch_batch(self, batch: List[FeedSource], force_refresh: bool) -> List[FeedItem]:
        tasks = {asyncio.ensure_future(self.fetch_one(source, force_refresh)): source for source in batch}
        done, pending = await asyncio.wait(tasks, timeout=self.batch_timeout)

        items: List[FeedItem] = []
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task, source in tasks.items():
            if task in pending:
                items.extend(self._fallback(source, TimeoutError(
                    f"batch budget of {self.batch_timeout}s exceeded")))
                continue

            error = task.exception()
            if error is not None:
                logger.error(f"Unhandled error fetching {source.id}: {error}")
                self.health.record_failure(source.id, error)
                continue
            items.extend(task.result())

        return items

    def merge(self, items: List[FeedItem]) -> List[FeedItem]:
        """Deduplicate and sort newest first"""
        unique = self.duplicate_manager.deduplicate(items)
        return sorted(unique, key=lambda item: item.date, reverse=True)

    async def fetch_by_category(self, category: str) -> List[FeedItem]:
        sources = self.registry.by_category(category)
        if not sources:
            logger.warning(f"No sources registered for category '{category}'")
        return await self.fetch_sources(sources)

    async def fetch_priority1(self) -> List[FeedItem]:
        return await self.fetch_sources(self.registry.by_priority(1))

    async def fetch_all(self, force_refresh: bool = False) -> List[FeedItem]:
        """
        Fetch every registered source, priority 1 first

        The merged result is cached for 15 minutes under aggregate:all.
        """
        if not force_refresh:
            cached = self.cache.get(AGGREGATE_KEY)
            if cached is not None:
                return [FeedItem.from_dict(data) for data in cached]

        sources = sorted(self.registry.all(), key=lambda s: s.priority)
        items = await self.fetch_sources(sources, force_refresh=force_refresh)

        self.cache.set(AGGREGATE_KEY, [item.to_dict() for item in items], AGGREGATE_TTL_MS)
        logger.info(f"Fetched {len(items)} items from {len(sources)} sources")
        return items

    async def preload(self):
        """Warm the feed cache for priority 1 and government sources"""
        await self.fetch_priority1()
        for category in PRELOAD_CATEGORIES:
            await self.fetch_by_category(category)

    # ------------------------------------------------------------------
    # Queries over aggregated items
    # ------------------------------------------------------------------

    async def query_items(self, filters: Optional[Dict[str, Any]] = None) -> List[FeedItem]:
        """
        Aggregated items matching filters

        Supported filter keys: categories, sources, severities, query, since.
        Results are cached for 15 minutes per normalized filter set.
        """
        items, _ = await self._run_query(filters)
        return items

    async def query_clusters(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, List[FeedItem]]:
        """Items matching filters grouped by category"""
        items, clusters = await self._run_query(filters)
        by_id = {item.id: item for item in items}
        return {category: [by_id[item_id] for item_id in ids if item_id in by_id]
                for category, ids in clusters.items()}

    async def _run_query(self, filters: Optional[Dict[str, Any]]) -> Tuple[List[FeedItem], Dict[str, List[str]]]:
        cached = self.cache.get_cached_clustered_feeds(filters)
        if cached is not None:
            return [FeedItem.from_dict(data) for data in cached['all_items']], cached['clusters']

        items = self.apply_filters(await self.fetch_all(), filters)
        clusters = self.cluster_by_category(items)
        self.cache.cache_clustered_feeds(filters, clusters, [item.to_dict() for item in items])
        return items, clusters

    async def search(self, query: str, filters: Optional[Dict[str, Any]] = None) -> List[FeedItem]:
        """Full-text search over the filtered aggregate, cached for 10 minutes"""
        cached = self.cache.get_cached_search_results(query, filters)
        if cached is not None:
            return [FeedItem.from_dict(data) for data in cached]

        results = self.search_items(await self.query_items(filters), query)
        self.cache.cache_search_results(query, filters, [item.to_dict() for item in results])
        return results

    def apply_filters(self, items: List[FeedItem], filters: Optional[Dict[str, Any]]) -> List[FeedItem]:
        filters = filters or {}

        if filters.get('categories'):
            categories = {c.lower() for c in filters['categories']}
            items = [item for item in items if item.category.lower() in categories]

        if filters.get('sources'):
            sources = {s.lower() for s in filters['sources']}
            items = [item for item in items if item.source.lower() in sources]

        if filters.get('severities'):
            items = self.filter_by_severity(items, filters['severities'])

        since = filters.get('since')
        if since:
            since_date = parse_date(since)
            if since_date is None:
                logger.warning(f"Ignoring unparseable since filter: {since!r}")
            else:
                items = [item for item in items if item.date >= since_date]

        if filters.get('query'):
            items = self.search_items(items, filters['query'])

        return items

    @staticmethod
    def search_items(items: List[FeedItem], query: str) -> List[FeedItem]:
        """Items containing every whitespace-separated term of query"""
        terms = [term for term in (query or '').lower().split() if term]
        if not terms:
            return list(items)

        def haystack(item: FeedItem) -> str:
            return ' '.join([item.title, item.description, item.source, item.cve or '',
                             ' '.join(item.tags)]).lower()

        return [item for item in items if all(term in haystack(item) for term in terms)]

    @staticmethod
    def filter_by_category(items: List[FeedItem], category: str) -> List[FeedItem]:
        return [item for item in items if item.category.lower() == category.lower()]

    @staticmethod
    def filter_by_severity(items: List[FeedItem], severities: Iterable[str]) -> List[FeedItem]:
        wanted = {s.upper() for s in severities}
        return [item for item in items if item.severity in wanted]

    @staticmethod
    def cluster_by_category(items: List[FeedItem]) -> Dict[str, List[str]]:
        clusters: Dict[str, List[str]] = {}
        for item in items:
            clusters.setdefault(item.category, []).append(item.id)
        return clusters

    def get_item_stats(self, items: List[FeedItem]) -> Dict[str, Any]:
        """Summary counts over a list of items"""
        cutoff = self.clock() - timedelta(hours=24)

        severity_counts = {level: 0 for level in SEVERITY_LEVELS}
        for item in items:
            if item.severity in severity_counts:
                severity_counts[item.severity] += 1

        return {
            'total': len(items),
            'last_24h': sum(1 for item in items if item.date >= cutoff),
            'sources': len({item.source for item in items}),
            'with_cve': sum(1 for item in items if item.cve),
            'severity_counts': severity_counts,
        }

    def classify_text(self, text: str) -> Classification:
        """Classify free text, memoized for 24 hours"""
        cached = self.cache.get_cached_classification(text)
        if cached is not None:
            return Classification.from_dict(cached)

        classification = classify(text)
        self.cache.cache_classification(text, classification.to_dict())
        return classification

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health_status(self) -> HealthStatus:
        return self.health.health_status([source.id for source in self.registry.all()])

    def health_alerts(self) -> HealthAlerts:
        """Stale priority 1 sources, critically failing sources and low overall health"""
        return self.health.check_alerts(
            [source.id for source in self.registry.all()],
            watched_ids=[source.id for source in self.registry.by_priority(1)],
        )

    def health_report(self) -> Dict[str, Any]:
        """Health aggregate plus per-source records and cache statistics"""
        return {
            'status': self.health_status().to_dict(),
            'sources': {
                source.id: (self.health.get_record(source.id).to_dict()
                            if self.health.get_record(source.id) else None)
                for source in self.registry.all()
            },
            'cache': self.cache.stats().to_dict(),
            'duplicates': self.duplicate_manager.get_resolution_stats(),
            'alerts': self.health_alerts().to_dict(),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        await self.cache.start()

    async def close(self):
        await self.cache.stop()
        await self.fetcher.close()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def build_feed_manager(settings) -> FeedManager:
    """Wire a FeedManager from application settings"""
    registry = load_registry(settings.FEEDS_CONFIG_PATH)

    cache = FeedCache(
        max_size_bytes=settings.CACHE_MAX_SIZE_BYTES,
        max_entries=settings.CACHE_MAX_ENTRIES,
        compression_enabled=settings.CACHE_COMPRESSION_ENABLED,
        compression_threshold=settings.CACHE_COMPRESSION_THRESHOLD,
        cleanup_interval=settings.CACHE_CLEANUP_INTERVAL_SECONDS,
    )

    fetcher = ProxyFetcher(
        proxy_url=settings.PROXY_URL,
        timeout=settings.FETCH_TIMEOUT_SECONDS,
        rate_limiter=HostRateLimiter(min_interval=settings.RATE_LIMIT_SECONDS),
        user_agent=settings.USER_AGENT,
    )

    return FeedManager(
        registry=registry,
        cache=cache,
        fetcher=fetcher,
        api_keys=settings.FEED_API_KEYS,
        batch_size=settings.FETCH_BATCH_SIZE,
        batch_timeout=settings.BATCH_TIMEOUT_SECONDS,
    )
