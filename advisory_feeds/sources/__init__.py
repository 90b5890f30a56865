"""
Feed Sources

Architecture:
- base/: Transport, parsing utilities, normalization and deduplication
- parsers/: Built-in parsers and the (transport format, parser id) registry

All sources follow the same pattern:
1. Fetcher: Retrieves the raw payload (through the proxy relay)
2. Parser: Extracts raw item dictionaries from the payload
3. Normalizer: Produces canonical FeedItems
"""

from .base import (
    BaseFetcher,
    BaseParser,
    DataNormalizer,
    DuplicateManager,
    FeedItem,
    FeedSourceException,
)

__all__ = [
    'BaseFetcher',
    'BaseParser',
    'DataNormalizer',
    'DuplicateManager',
    'FeedItem',
    'FeedSourceException',
]
