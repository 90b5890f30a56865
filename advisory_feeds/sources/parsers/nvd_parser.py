"""
NVD CVE API 2.0 parser

OBJECTIVE:
Turn an NVD API response page ({"vulnerabilities": [{"cve": {...}}]}) into
advisory items. Severity comes from the CVSS base score, preferring v3.1,
then v3.0, then v2.

SCORE MAPPING:
- >= 9.0 -> CRITICAL
- >= 7.0 -> HIGH
- >= 4.0 -> MEDIUM
- otherwise LOW
"""

from typing import Any, Dict, List, Optional

from ..base.base_parser import BaseParser
from ..base.exceptions import ParseException
from ..base.feed_item import RawItem

NVD_DETAIL_URL = "https://nvd.nist.gov/vuln/detail/{cve}"

CVSS_METRIC_KEYS = ['cvssMetricV31', 'cvssMetricV30', 'cvssMetricV2']


def score_to_severity(score: Optional[float]) -> Optional[str]:
    """Map a CVSS base score to a severity level"""
    if score is None:
        return None
    if score >= 9.0:
        return 'CRITICAL'
    if score >= 7.0:
        return 'HIGH'
    if score >= 4.0:
        return 'MEDIUM'
    return 'LOW'


class NvdApiParser(BaseParser):
    """Parser for NVD CVE API 2.0 responses"""

    def parse_raw_data(self, raw: str) -> List[RawItem]:
        data = self.parse_json(raw)

        if not isinstance(data, dict) or not isinstance(data.get('vulnerabilities'), list):
            raise ParseException("NVD response missing 'vulnerabilities' array", self.source_name,
                                 raw_data_sample=self._sample(raw))

        items = []
        for wrapper in data['vulnerabilities']:
            cve = wrapper.get('cve') if isinstance(wrapper, dict) else None
            if not cve or not cve.get('id'):
                continue
            items.append(self._cve_to_item(cve))

        return self.limit(items)

    def _cve_to_item(self, cve: Dict[str, Any]) -> RawItem:
        cve_id = cve['id']
        description = ''
        for entry in cve.get('descriptions', []):
            if entry.get('lang') == 'en':
                description = entry.get('value', '')
                break

        return {
            'id': cve_id,
            'title': cve_id,
            'description': description,
            'link': NVD_DETAIL_URL.format(cve=cve_id),
            'date': self.parse_date(cve.get('published') or cve.get('lastModified')),
            'severity': score_to_severity(self.extract_base_score(cve.get('metrics') or {})),
            'cve': cve_id,
            'tags': [],
        }

    @staticmethod
    def extract_base_score(metrics: Dict[str, Any]) -> Optional[float]:
        for key in CVSS_METRIC_KEYS:
            entries = metrics.get(key) or []
            if not entries:
                continue
            score = (entries[0].get('cvssData') or {}).get('baseScore')
            if score is not None:
                try:
                    return float(score)
                except (TypeError, ValueError):
                    return None
        return None
