"""
Base Parser for the Advisory Feed Engine

Abstract base class that all feed parsers inherit from.
Provides common parsing functionality and enforces a consistent interface.

OBJECTIVE:
Common parsing infrastructure that turns a raw fetched payload (RSS/Atom,
JSON, plain text, STIX bundles) into a list of raw item dictionaries for
the DataNormalizer.

CONTRACT:
- parse_raw_data() may raise ParseException for a malformed payload
- ParserDispatch (sources/parsers/registry.py) is the boundary that turns
  any parser exception into an empty result plus a logged reason
- Each parser returns at most max_items items per fetch
"""

import abc
import html
import io
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union, TYPE_CHECKING

import feedparser
from bs4 import BeautifulSoup
from dateutil import parser as dateutil_parser

from .exceptions import ParseException
from .feed_item import RawItem

if TYPE_CHECKING:
    from ...config.source_config import FeedSource

DEFAULT_MAX_ITEMS = 20

DATE_FORMATS = [
    '%Y-%m-%d',
    '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%dT%H:%M:%SZ',
    '%Y-%m-%dT%H:%M:%S.%f',
    '%Y-%m-%dT%H:%M:%S.%fZ',
]


def clean_text(text: Optional[str]) -> str:
    """Strip HTML tags and entities and collapse whitespace"""
    if not text:
        return ""

    text = str(text)
    if '<' in text and '>' in text:
        text = BeautifulSoup(text, 'html.parser').get_text(' ')
    text = html.unescape(text)

    return ' '.join(text.split())


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_date(date_value: Any) -> Optional[datetime]:
    """
    Parse a date value into a timezone-aware UTC datetime

    Tries the common fixed formats first, then dateutil (RFC 822 pubDate
    strings and friends). Returns None when nothing matches.
    """
    if not date_value:
        return None
    if isinstance(date_value, datetime):
        return _as_utc(date_value)

    date_str = str(date_value).strip()

    for date_format in DATE_FORMATS:
        try:
            return _as_utc(datetime.strptime(date_str, date_format))
        except ValueError:
            continue

    try:
        return _as_utc(dateutil_parser.parse(date_str))
    except (ValueError, OverflowError):
        return None


class BaseParser(abc.ABC):
    """Abstract base class for all feed parsers"""

    max_items = DEFAULT_MAX_ITEMS

    def __init__(self, source: 'FeedSource'):
        """
        Initialize parser for a feed source

        Args:
            source: FeedSource the payload was fetched for
        """
        self.source = source
        self.source_name = source.name
        self.logger = logging.getLogger(f"parser.{source.id}")

    @abc.abstractmethod
    def parse_raw_data(self, raw: str) -> List[RawItem]:
        """
        Parse a raw payload into raw item dictionaries

        Args:
            raw: Payload text as returned by the fetcher

        Returns:
            List of raw item dictionaries (at most max_items)
        """
        pass

    def parse_json(self, data: Union[str, bytes, Dict, List]) -> Union[Dict, List]:
        """Parse JSON data with error handling"""
        if isinstance(data, (dict, list)):
            return data
        try:
            return json.loads(data)
        except (json.JSONDecodeError, TypeError) as e:
            raise ParseException(f"Invalid JSON data: {e}", self.source_name,
                                 raw_data_sample=self._sample(data))

    def parse_rss(self, data: str) -> Any:
        """Parse RSS/Atom feed data"""
        if isinstance(data, str):
            data = data.encode("utf-8")
        # a stream keeps feedparser from treating the payload as a URL or path
        parsed = feedparser.parse(io.BytesIO(data))

        if not parsed.entries and (parsed.bozo or not parsed.version):
            reason = parsed.get("bozo_exception") or "unrecognized feed format"
            raise ParseException(f"Error parsing RSS feed: {reason}",
                                 self.source_name, raw_data_sample=self._sample(data))
        return parsed

    def clean_text(self, text: Optional[str]) -> str:
        return clean_text(text)

    def parse_date(self, date_value: Any) -> Optional[datetime]:
        parsed = parse_date(date_value)
        if parsed is None and date_value:
            self.logger.debug(f"Could not parse date: {date_value}")
        return parsed

    def limit(self, records: List[Any]) -> List[Any]:
        return list(records)[:self.max_items]

    @staticmethod
    def _sample(data: Any, length: int = 200) -> str:
        if isinstance(data, bytes):
            data = data.decode('utf-8', errors='ignore')
        return str(data)[:length]
