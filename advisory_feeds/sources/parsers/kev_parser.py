"""
CISA Known Exploited Vulnerabilities catalog parser

The catalog is a single JSON document with a `vulnerabilities` array.
Every catalog entry is actively exploited, so severity is always HIGH.
Entries are ordered by dateAdded (newest first) before the item cap is
applied since the catalog itself is not wire-ordered by recency.
"""

from typing import Any, Dict, List

from ..base.base_parser import BaseParser
from ..base.exceptions import ParseException
from ..base.feed_item import RawItem

NVD_DETAIL_URL = "https://nvd.nist.gov/vuln/detail/{cve}"


class KevParser(BaseParser):
    """Parser for the CISA KEV catalog"""

    def parse_raw_data(self, raw: str) -> List[RawItem]:
        data = self.parse_json(raw)

        if not isinstance(data, dict) or not isinstance(data.get('vulnerabilities'), list):
            raise ParseException("KEV catalog missing 'vulnerabilities' array", self.source_name,
                                 raw_data_sample=self._sample(raw))

        entries = [v for v in data['vulnerabilities'] if isinstance(v, dict) and v.get('cveID')]
        entries.sort(key=lambda v: str(v.get('dateAdded') or ''), reverse=True)

        items = [self._entry_to_item(entry) for entry in self.limit(entries)]
        self.logger.debug(f"Parsed {len(items)} KEV entries "
                          f"(catalog version {data.get('catalogVersion', 'unknown')})")
        return items

    def _entry_to_item(self, entry: Dict[str, Any]) -> RawItem:
        cve_id = str(entry['cveID']).strip()

        tags = ['exploited', 'kev']
        if str(entry.get('knownRansomwareCampaignUse', '')).lower() == 'known':
            tags.append('ransomware')

        title = (f"{entry.get('vendorProject', '')} {entry.get('product', '')} - "
                 f"{entry.get('vulnerabilityName', cve_id)}")

        return {
            'id': f"kev-{cve_id}",
            'title': title.strip(),
            'description': entry.get('shortDescription') or 'Known exploited vulnerability',
            'link': NVD_DETAIL_URL.format(cve=cve_id),
            'date': self.parse_date(entry.get('dateAdded')),
            'severity': 'HIGH',
            'cve': cve_id,
            'tags': tags,
        }
