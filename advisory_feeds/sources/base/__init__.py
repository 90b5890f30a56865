"""
Base Infrastructure for the Advisory Feed Engine

This module provides the foundational classes and utilities that every feed
source goes through. Parser implementations in ../parsers inherit from
these base classes to ensure consistency.

Key Components:
- BaseFetcher / ProxyFetcher: Network transport with per-host rate limiting
- BaseParser: Common parsing utilities
- DataNormalizer: Converts raw parser output to the canonical FeedItem
- DuplicateManager: Per-query near-duplicate removal
- classify: Severity / CVE / tag extraction from free text
"""

from .base_fetcher import BaseFetcher, ProxyFetcher, HostRateLimiter
from .base_parser import BaseParser
from .classifier import Classification, classify
from .data_normalizer import DataNormalizer
from .duplicate_manager import DuplicateManager
from .exceptions import (
    FeedSourceException,
    FetchException,
    ParseException,
    ConfigException,
    ValidationException,
)
from .feed_item import FeedItem, RawItem

__all__ = [
    'BaseFetcher',
    'ProxyFetcher',
    'HostRateLimiter',
    'BaseParser',
    'Classification',
    'classify',
    'DataNormalizer',
    'DuplicateManager',
    'FeedItem',
    'RawItem',
    'FeedSourceException',
    'FetchException',
    'ParseException',
    'ConfigException',
    'ValidationException',
]
