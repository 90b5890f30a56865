"""
Generic JSON parser

Handles a top-level array of records, an object wrapping the records in one
of the usual container keys, or a single record object. Field names are
looked up from a list of common aliases.
"""

from typing import Any, Dict, List

from ..base.base_parser import BaseParser
from ..base.exceptions import ParseException
from ..base.feed_item import RawItem

CONTAINER_KEYS = ('data', 'items', 'vulnerabilities', 'results', 'entries')

FIELD_ALIASES = {
    'id': ('id', 'guid', 'cveID', 'uuid'),
    'title': ('title', 'name', 'vulnerabilityName', 'headline'),
    'description': ('description', 'shortDescription', 'summary', 'content'),
    'link': ('link', 'url', 'href'),
    'date': ('date', 'dateAdded', 'published', 'pubDate', 'updated', 'created'),
    'severity': ('severity', 'baseSeverity'),
    'cve': ('cveID', 'cve', 'cve_id'),
}


class GenericJsonParser(BaseParser):
    """Parser for JSON arrays / objects of advisory records"""

    def parse_raw_data(self, raw: str) -> List[RawItem]:
        data = self.parse_json(raw)
        records = self.extract_records(data)

        items = []
        for record in self.limit(r for r in records if isinstance(r, dict)):
            items.append(self.record_to_item(record))

        self.logger.debug(f"Parsed {len(items)} JSON records")
        return items

    def extract_records(self, data: Any) -> List[Any]:
        if isinstance(data, list):
            return data

        if isinstance(data, dict):
            for key in CONTAINER_KEYS:
                if isinstance(data.get(key), list):
                    return data[key]
            if any(key in data for key in FIELD_ALIASES['title']):
                return [data]
            return []

        raise ParseException(f"Expected JSON array or object, got {type(data).__name__}",
                             self.source_name)

    def record_to_item(self, record: Dict[str, Any]) -> RawItem:
        item = {field: self._first(record, aliases) for field, aliases in FIELD_ALIASES.items()}

        if not item['link'] and item['cve']:
            item['link'] = f"https://nvd.nist.gov/vuln/detail/{item['cve']}"
        item['date'] = self.parse_date(item['date'])

        tags = record.get('tags')
        item['tags'] = [str(t) for t in tags] if isinstance(tags, list) else []
        return item

    @staticmethod
    def _first(record: Dict[str, Any], keys) -> Any:
        for key in keys:
            value = record.get(key)
            if value not in (None, ''):
                return value
        return None
