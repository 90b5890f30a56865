"""
Feed Source Registry

OBJECTIVE:
Centralized, read-only registry of all configured advisory feed sources.
Loads the feeds configuration document (a JSON array of feed definitions)
once at process start and exposes lookups by category and priority.

INTEGRATION WITH LOCAL CODES:
- Reads the document named by settings.FEEDS_CONFIG_PATH
- Provides FeedSource objects to orchestration/feed_manager.py
- Parser ids are resolved later by sources/parsers/registry.py

FAILURE POLICY:
- A malformed entry is skipped with a warning, never fatal to the load
- An unreadable or empty document falls back to DEFAULT_FEEDS so the
  system degrades rather than goes empty
- There is no mutation API; configuration changes require a restart
"""

import json
import logging
import re
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from typing import Dict, List, Any, Optional, Union
from urllib.parse import urlparse

from ..sources.base.exceptions import ConfigException

logger = logging.getLogger(__name__)

# priority=1 sources must refresh at least this often
MAX_PRIORITY1_REFRESH_MS = 1_800_000

DEFAULT_REFRESH_MS = {
    1: 1_800_000,   # 30 minutes
    2: 3_600_000,   # 1 hour
    3: 7_200_000,   # 2 hours
}


class TransportFormat(Enum):
    """Wire format of a feed payload"""
    RSS = "RSS"
    JSON = "JSON"
    API = "API"
    TEXT = "TEXT"
    TAXII = "TAXII"


# Missing priority defaults by source_type
SOURCE_TYPE_PRIORITIES = {
    'government': 1,
    'gov': 1,
    'cert': 1,
    'specialized': 1,
    'vendor': 2,
    'research': 2,
    'threat_intel': 2,
    'news': 3,
    'community': 3,
    'blog': 3,
}


@dataclass(frozen=True)
class FeedSource:
    """Configuration for a single advisory feed source"""
    id: str
    name: str
    url: str
    transport_format: TransportFormat
    category: str
    priority: int
    refresh_interval_ms: int
    parser_id: Optional[str] = None
    requires_api_key: bool = False
    source_type: Optional[str] = None

    @property
    def hostname(self) -> str:
        return urlparse(self.url).hostname or ''

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['transport_format'] = self.transport_format.value
        return data


DEFAULT_FEEDS: List[Dict[str, Any]] = [
    {
        'id': 'cisa-kev',
        'name': 'CISA KEV',
        'url': 'https://www.cisa.gov/sites/default/files/feeds/known_exploited_vulnerabilities.json',
        'type': 'JSON',
        'source_type': 'government',
        'priority': 1,
        'parser': 'kev',
    },
    {
        'id': 'cisa-advisories',
        'name': 'CISA Cybersecurity Advisories',
        'url': 'https://www.cisa.gov/cybersecurity-advisories/all.xml',
        'type': 'RSS',
        'source_type': 'government',
        'priority': 1,
    },
    {
        'id': 'cisa-current',
        'name': 'CISA Current Activity',
        'url': 'https://www.cisa.gov/uscert/ncas/current-activity.xml',
        'type': 'RSS',
        'source_type': 'government',
        'priority': 1,
    },
    {
        'id': 'msrc',
        'name': 'Microsoft MSRC',
        'url': 'https://msrc.microsoft.com/update-guide/rss',
        'type': 'RSS',
        'source_type': 'vendor',
    },
    {
        'id': 'talos',
        'name': 'Cisco Talos Blog',
        'url': 'https://blog.talosintelligence.com/rss/',
        'type': 'RSS',
        'source_type': 'research',
    },
    {
        'id': 'krebs',
        'name': 'Krebs on Security',
        'url': 'https://krebsonsecurity.com/feed/',
        'type': 'RSS',
        'source_type': 'news',
    },
]


class SourceConfigManager:
    """
    Loads and holds feed source configurations

    RESPONSIBILITIES:
    1. Load the feeds configuration document
    2. Validate each entry, skipping malformed ones
    3. Build category and priority mappings
    4. Fall back to DEFAULT_FEEDS when the document is unusable
    """

    def __init__(self, config_path: Union[str, Path, None] = None):
        self.config_path = Path(config_path) if config_path else None
        self.source_configs: Dict[str, FeedSource] = {}
        self.category_mappings: Dict[str, List[str]] = {}
        self.priority_mappings: Dict[int, List[str]] = {}
        self.used_defaults = False

    def load_configurations(self) -> Dict[str, FeedSource]:
        """
        Load all source configurations

        STEPS:
        1. Read and parse the configuration document
        2. Create a FeedSource for each valid entry, in document order
        3. Fall back to DEFAULT_FEEDS if nothing usable was loaded
        4. Build category and priority mappings

        Returns:
            Dictionary mapping source ids to FeedSource objects
        """
        self.source_configs = {}
        entries = None

        if self.config_path is not None:
            logger.info(f"Loading feed configurations from {self.config_path}")
            try:
                entries = self._read_document(self.config_path)
            except (OSError, ValueError, ConfigException) as e:
                logger.warning(f"Failed to load feed configurations: {e}; using built-in defaults")

        if entries is not None:
            self._load_entries(entries)
            if not self.source_configs:
                logger.warning("Feed configuration contained no valid sources; using built-in defaults")

        if not self.source_configs:
            self.used_defaults = True
            self._load_entries(DEFAULT_FEEDS)

        self._build_mappings()

        logger.info(f"Loaded {len(self.source_configs)} feed sources")
        logger.info(f"Categories: {list(self.category_mappings.keys())}")

        return self.source_configs

    def _read_document(self, path: Path) -> List[Any]:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        if isinstance(data, dict):
            data = data.get('feeds')
        if not isinstance(data, list):
            raise ConfigException("Feed configuration must be a list of feed definitions",
                                  config_key='feeds')
        return data

    def _load_entries(self, entries: List[Any]):
        for index, entry in enumerate(entries):
            try:
                source = self._create_source_config(entry)
            except ConfigException as e:
                logger.warning(f"Skipping feed entry #{index}: {e}")
                continue

            if source.id in self.source_configs:
                logger.warning(f"Skipping feed entry #{index}: duplicate id '{source.id}'")
                continue

            self.source_configs[source.id] = source

    def _create_source_config(self, entry: Any) -> FeedSource:
        """Create FeedSource from a JSON feed definition"""
        if not isinstance(entry, dict):
            raise ConfigException(f"Feed definition must be an object, got {type(entry).__name__}")

        name = str(entry.get('name') or '').strip()
        source_id = str(entry.get('id') or '').strip() or self._slugify(name)
        if not source_id:
            raise ConfigException("Feed definition missing id and name", config_key='id')
        if not name:
            name = source_id

        url = str(entry.get('url') or '').strip()
        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ConfigException(f"Invalid url '{url}'", source_id, config_key='url')

        type_str = str(entry.get('type') or '').strip().upper()
        try:
            transport_format = TransportFormat(type_str)
        except ValueError:
            raise ConfigException(f"Unknown feed type '{entry.get('type')}'", source_id,
                                  config_key='type')

        source_type = entry.get('source_type')
        source_type = str(source_type).strip().lower() if source_type else None
        priority = self._calculate_priority(entry.get('priority'), source_type, source_id)
        refresh_interval_ms = self._calculate_refresh_interval(
            entry.get('refresh_interval'), priority, source_id
        )

        requires_api_key = entry.get('api_key_required', False)
        if not isinstance(requires_api_key, bool):
            raise ConfigException(f"api_key_required must be true or false, got {requires_api_key!r}",
                                  source_id, config_key='api_key_required')

        category = entry.get('category') or source_type or 'general'
        parser_id = entry.get('parser')

        return FeedSource(
            id=source_id,
            name=name,
            url=url,
            transport_format=transport_format,
            category=str(category).strip().lower(),
            priority=priority,
            refresh_interval_ms=refresh_interval_ms,
            parser_id=str(parser_id).strip().lower() if parser_id else None,
            requires_api_key=requires_api_key,
            source_type=source_type,
        )

    def _calculate_priority(self, raw_priority: Any, source_type: Optional[str], source_id: str) -> int:
        """
        Resolve the numerical priority of a source

        PRIORITY SYSTEM:
        - explicit priority 1..3 is used as given
        - otherwise government/specialized -> 1, news/community -> 3,
          everything else -> 2
        """
        if raw_priority is None:
            return SOURCE_TYPE_PRIORITIES.get(source_type, 2)

        try:
            priority = int(raw_priority)
        except (TypeError, ValueError):
            raise ConfigException(f"Invalid priority '{raw_priority}'", source_id, config_key='priority')

        if priority not in (1, 2, 3):
            raise ConfigException(f"Priority must be 1..3, got {priority}", source_id,
                                  config_key='priority')
        return priority

    def _calculate_refresh_interval(self, raw_interval: Any, priority: int, source_id: str) -> int:
        if raw_interval is None:
            return DEFAULT_REFRESH_MS[priority]

        try:
            interval = int(raw_interval)
        except (TypeError, ValueError):
            raise ConfigException(f"Invalid refresh_interval '{raw_interval}'", source_id,
                                  config_key='refresh_interval')
        if interval <= 0:
            raise ConfigException("refresh_interval must be positive", source_id,
                                  config_key='refresh_interval')

        if priority == 1 and interval > MAX_PRIORITY1_REFRESH_MS:
            logger.warning(f"Source {source_id}: priority 1 refresh interval {interval}ms "
                           f"clamped to {MAX_PRIORITY1_REFRESH_MS}ms")
            interval = MAX_PRIORITY1_REFRESH_MS
        return interval

    @staticmethod
    def _slugify(name: str) -> str:
        return re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-')

    def _build_mappings(self):
        """Build mappings of categories and priorities to source ids"""
        self.category_mappings = {}
        self.priority_mappings = {}
        for source_id, config in self.source_configs.items():
            self.category_mappings.setdefault(config.category, []).append(source_id)
            self.priority_mappings.setdefault(config.priority, []).append(source_id)

    def all(self) -> List[FeedSource]:
        """All sources in configuration order"""
        return list(self.source_configs.values())

    def get(self, source_id: str) -> Optional[FeedSource]:
        return self.source_configs.get(source_id)

    def by_category(self, category: str) -> List[FeedSource]:
        """Get all source configurations for a category"""
        source_ids = self.category_mappings.get(category.lower(), [])
        return [self.source_configs[sid] for sid in source_ids]

    def by_priority(self, priority: int) -> List[FeedSource]:
        source_ids = self.priority_mappings.get(priority, [])
        return [self.source_configs[sid] for sid in source_ids]

    def categories(self) -> List[str]:
        return sorted(self.category_mappings.keys())

    def get_configuration_summary(self) -> Dict[str, Any]:
        """Get summary of all configurations"""
        return {
            'total_sources': len(self.source_configs),
            'used_defaults': self.used_defaults,
            'category_distribution': {
                category: len(ids) for category, ids in self.category_mappings.items()
            },
            'priority_distribution': {
                priority: len(ids) for priority, ids in self.priority_mappings.items()
            },
            'api_key_sources': [s.id for s in self.source_configs.values() if s.requires_api_key],
            'config_file': str(self.config_path) if self.config_path else None,
        }


def load_registry(config_path: Union[str, Path, None] = None) -> SourceConfigManager:
    """Build and load a registry in one step"""
    manager = SourceConfigManager(config_path)
    manager.load_configurations()
    return manager


__all__ = ['SourceConfigManager', 'FeedSource', 'TransportFormat',
           'DEFAULT_FEEDS', 'load_registry']
