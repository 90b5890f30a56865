from .feed_cache import CacheEntry, CacheStats, FeedCache

__all__ = ['CacheEntry', 'CacheStats', 'FeedCache']
