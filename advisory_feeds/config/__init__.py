# Config package for the advisory feed engine
from .source_config import FeedSource, SourceConfigManager, TransportFormat, load_registry

__all__ = ['FeedSource', 'SourceConfigManager', 'TransportFormat', 'load_registry']
