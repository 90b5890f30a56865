from .feed_manager import FeedManager, build_feed_manager
from .health_tracker import HealthRecord, HealthStatus, HealthTracker

__all__ = ['FeedManager', 'build_feed_manager', 'HealthRecord', 'HealthStatus', 'HealthTracker']
