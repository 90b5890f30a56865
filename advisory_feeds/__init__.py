"""
Advisory Feed Engine

Ingests security advisories from government, vendor, research and news
feeds (RSS/Atom, JSON APIs, plain text lists and STIX bundles), normalizes
them into one item shape and serves them from a bounded in-memory cache.

Architecture:
- config/: settings and the feed source registry
- sources/base/: fetcher, parser base, normalizer, deduplicator, classifier
- sources/parsers/: one parser per payload shape plus the dispatch registry
- cache/: TTL cache with LRU eviction and compression
- orchestration/: FeedManager and HealthTracker
- scripts/: scheduler CLI

Usage:
    from advisory_feeds.config.settings import settings
    from advisory_feeds.orchestration import build_feed_manager

    async with build_feed_manager(settings) as manager:
        items = await manager.fetch_priority1()
"""

__version__ = "1.0.0"
