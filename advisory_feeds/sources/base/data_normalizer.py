"""
Data Normalizer for the Advisory Feed Engine

Universal normalizer that converts raw parser output from any source into
the canonical FeedItem shape.

OBJECTIVE:
Whatever parser produced a raw item (RSS, generic JSON, KEV catalog, CNA
records, STIX bundles...), the dashboard consumes one shape. Required
fields are always filled: never a null title, link or date.

RULES:
- id: source-provided guid, else a deterministic hash of source/link/title
  so the id is stable across repeated fetches of the same record
- description: HTML stripped, at most 300 characters
- date: parsed, or "now" when missing or unparseable
- severity/cve: validated source values, else extracted from the text
- tags: source tags merged with tags found in the text
"""

import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from .base_parser import clean_text, parse_date
from .classifier import SEVERITY_LEVELS, classify
from .exceptions import ValidationException
from .feed_item import FeedItem, MAX_DESCRIPTION_LENGTH, RawItem

if TYPE_CHECKING:
    from ...config.source_config import FeedSource


class DataNormalizer:
    """Universal data normalizer for all feed sources"""

    def __init__(self, clock: Callable[[], datetime] = None):
        """
        Args:
            clock: Returns the current time; used for items without a date
        """
        self.logger = logging.getLogger("normalizer")
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.severity_mapping = {
            'CRITICAL': 'CRITICAL',
            'HIGH': 'HIGH',
            'IMPORTANT': 'HIGH',
            'MEDIUM': 'MEDIUM',
            'MODERATE': 'MEDIUM',
            'LOW': 'LOW',
            'MINIMAL': 'LOW',
        }

        self.cve_pattern = re.compile(r'^CVE-\d{4}-\d+$')

    def normalize(self, raw: RawItem, source: 'FeedSource') -> FeedItem:
        """
        Normalize one raw item into a FeedItem

        Raises:
            ValidationException: If raw is not an item dictionary
        """
        if not isinstance(raw, dict):
            raise ValidationException(f"Raw item must be a dict, got {type(raw).__name__}",
                                      source.name)

        title = clean_text(raw.get('title')) or 'Untitled'
        full_description = clean_text(raw.get('description'))
        link = str(raw.get('link') or '').strip() or source.url

        classification = classify(f"{title} {full_description}")

        tags = set(classification.tags)
        tags.update(str(tag).strip().lower() for tag in (raw.get('tags') or []) if str(tag).strip())

        return FeedItem(
            id=self._normalize_id(raw, source, link, title),
            title=title,
            description=self._truncate(full_description),
            link=link,
            date=parse_date(raw.get('date')) or self.clock(),
            source=source.name,
            category=str(raw.get('category') or source.category),
            severity=self._normalize_severity(raw.get('severity')) or classification.severity,
            cve=self._normalize_cve(raw.get('cve')) or classification.cve,
            tags=tags,
        )

    def normalize_items(self, raw_items: List[RawItem], source: 'FeedSource') -> List[FeedItem]:
        """Normalize a parser's output, skipping items that fail validation"""
        items = []
        for raw in raw_items:
            try:
                items.append(self.normalize(raw, source))
            except ValidationException as e:
                self.logger.warning(f"Skipping invalid item: {e}")
        return items

    def _normalize_id(self, raw: Dict[str, Any], source: 'FeedSource', link: str, title: str) -> str:
        item_id = str(raw.get('id') or '').strip()
        if item_id:
            return item_id

        digest = hashlib.sha1(f"{source.id}|{link}|{title}".encode('utf-8')).hexdigest()[:16]
        return f"{source.id}-{digest}"

    def _normalize_severity(self, severity: Any) -> Optional[str]:
        if not severity:
            return None
        normalized = self.severity_mapping.get(str(severity).upper().strip())
        return normalized if normalized in SEVERITY_LEVELS else None

    def _normalize_cve(self, cve: Any) -> Optional[str]:
        if not cve:
            return None

        cve = str(cve).upper().strip()
        if self.cve_pattern.match(cve):
            return cve

        self.logger.debug(f"Invalid CVE ID format: {cve}")
        return None

    @staticmethod
    def _truncate(description: str) -> str:
        if len(description) > MAX_DESCRIPTION_LENGTH:
            return description[:MAX_DESCRIPTION_LENGTH - 3] + '...'
        return description
