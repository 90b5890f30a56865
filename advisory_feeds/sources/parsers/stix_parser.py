"""
STIX 2.x bundle parser for TAXII collections

Reads the `objects` array of a STIX bundle or TAXII envelope. Only SDOs
that make sense as advisory items are kept; relationships, identities and
marking definitions are ignored. Objects are ordered by modified date
(newest first) before the item cap since bundles carry no ordering.
"""

from typing import Any, Dict, List, Optional

from ..base.base_parser import BaseParser
from ..base.exceptions import ParseException
from ..base.feed_item import RawItem

ADVISORY_OBJECT_TYPES = {
    'indicator',
    'vulnerability',
    'report',
    'malware',
    'attack-pattern',
    'campaign',
    'intrusion-set',
}


class StixBundleParser(BaseParser):
    """Parser for STIX 2.x bundles"""

    def parse_raw_data(self, raw: str) -> List[RawItem]:
        data = self.parse_json(raw)

        if isinstance(data, list):
            objects = data
        elif isinstance(data, dict) and isinstance(data.get('objects'), list):
            objects = data['objects']
        else:
            raise ParseException("STIX payload missing 'objects' array", self.source_name,
                                 raw_data_sample=self._sample(str(data)))

        selected = [obj for obj in objects
                    if isinstance(obj, dict) and obj.get('type') in ADVISORY_OBJECT_TYPES
                    and not obj.get('revoked')]
        selected.sort(key=lambda obj: str(obj.get('modified') or obj.get('created') or ''), reverse=True)

        items = [self._object_to_item(obj) for obj in self.limit(selected)]
        self.logger.debug(f"Parsed {len(items)} STIX objects out of {len(objects)}")
        return items

    def _object_to_item(self, obj: Dict[str, Any]) -> RawItem:
        references = obj.get('external_references') or []
        link = next((ref.get('url') for ref in references if ref.get('url')), None)

        tags = [obj['type']]
        tags.extend(str(label) for label in (obj.get('labels') or []))

        return {
            'id': obj.get('id'),
            'title': obj.get('name') or obj.get('pattern') or obj.get('id'),
            'description': obj.get('description', ''),
            'link': link,
            'date': self.parse_date(obj.get('modified') or obj.get('published') or obj.get('created')),
            'cve': self._cve_reference(obj, references),
            'tags': tags,
        }

    @staticmethod
    def _cve_reference(obj: Dict[str, Any], references: List[Dict[str, Any]]) -> Optional[str]:
        if obj.get('type') != 'vulnerability':
            return None
        for ref in references:
            if str(ref.get('source_name', '')).lower() == 'cve' and ref.get('external_id'):
                return ref['external_id']
        return None
