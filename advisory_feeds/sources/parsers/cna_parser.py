"""
CVE JSON 5.x record parser

For feeds published by CVE Numbering Authorities. Accepts a single CVE
record, an array of records, or an object holding them under `cveRecords`
or `vulnerabilities`. Rejected records are skipped.
"""

from typing import Any, Dict, List, Optional

from ..base.base_parser import BaseParser
from ..base.exceptions import ParseException
from ..base.feed_item import RawItem

CVE_RECORD_URL = "https://www.cve.org/CVERecord?id={cve}"


class CnaParser(BaseParser):
    """Parser for CVE JSON 5 records"""

    def parse_raw_data(self, raw: str) -> List[RawItem]:
        data = self.parse_json(raw)
        records = self._extract_records(data)

        items = []
        for record in records:
            metadata = record.get('cveMetadata') or {}
            if str(metadata.get('state', '')).upper() == 'REJECTED':
                continue
            item = self._record_to_item(record)
            if item is not None:
                items.append(item)

        return self.limit(items)

    def _extract_records(self, data: Any) -> List[Dict[str, Any]]:
        if isinstance(data, dict) and 'cveMetadata' in data:
            records = [data]
        elif isinstance(data, dict):
            records = data.get('cveRecords') or data.get('vulnerabilities') or []
        elif isinstance(data, list):
            records = data
        else:
            records = None

        if not isinstance(records, list):
            raise ParseException("Unrecognized CVE record document", self.source_name,
                                 raw_data_sample=self._sample(str(data)))
        return [r for r in records if isinstance(r, dict)]

    def _record_to_item(self, record: Dict[str, Any]) -> Optional[RawItem]:
        metadata = record.get('cveMetadata') or {}
        cve_id = metadata.get('cveId')
        if not cve_id:
            self.logger.debug("Skipping CVE record without cveId")
            return None

        cna = (record.get('containers') or {}).get('cna') or {}
        description = self._english_description(cna.get('descriptions') or [])

        title = cna.get('title')
        if not title:
            affected = (cna.get('affected') or [{}])[0]
            product = f"{affected.get('vendor', '')} {affected.get('product', '')}".strip()
            title = f"{cve_id}: {product}" if product else cve_id

        references = cna.get('references') or []
        link = next((ref.get('url') for ref in references if ref.get('url')), None)

        return {
            'id': cve_id,
            'title': title,
            'description': description,
            'link': link or CVE_RECORD_URL.format(cve=cve_id),
            'date': self.parse_date(metadata.get('datePublished') or metadata.get('dateUpdated')),
            'severity': self._base_severity(cna.get('metrics') or []),
            'cve': cve_id,
            'tags': [],
        }

    @staticmethod
    def _english_description(descriptions: List[Dict[str, Any]]) -> str:
        for entry in descriptions:
            if str(entry.get('lang', '')).lower().startswith('en'):
                return entry.get('value', '')
        return descriptions[0].get('value', '') if descriptions else ''

    @staticmethod
    def _base_severity(metrics: List[Dict[str, Any]]) -> Optional[str]:
        for metric in metrics:
            for key, value in metric.items():
                if key.startswith('cvss') and isinstance(value, dict) and value.get('baseSeverity'):
                    return value['baseSeverity']
        return None
