"""
Canonical feed item shape shared by the normalizer, the cache and the API
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from dateutil import parser as dateutil_parser

MAX_DESCRIPTION_LENGTH = 300

# Parsers emit plain dictionaries; DataNormalizer turns them into FeedItems
RawItem = Dict[str, Any]


@dataclass
class FeedItem:
    """Normalized advisory item"""
    id: str
    title: str
    description: str
    link: str
    date: datetime
    source: str
    category: str
    severity: Optional[str] = None
    cve: Optional[str] = None
    tags: Set[str] = field(default_factory=set)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serializable wire shape (ISO-8601 date, sorted tags)"""
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'link': self.link,
            'date': self.date.isoformat(),
            'source': self.source,
            'category': self.category,
            'severity': self.severity,
            'cve': self.cve,
            'tags': sorted(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FeedItem':
        date = data.get('date')
        if isinstance(date, str):
            date = dateutil_parser.isoparse(date)
        if not isinstance(date, datetime):
            date = datetime.now(timezone.utc)

        return cls(
            id=data['id'],
            title=data.get('title', ''),
            description=data.get('description', ''),
            link=data.get('link', ''),
            date=date,
            source=data.get('source', ''),
            category=data.get('category', ''),
            severity=data.get('severity'),
            cve=data.get('cve'),
            tags=set(data.get('tags') or []),
        )
