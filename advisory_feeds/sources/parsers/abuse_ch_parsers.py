"""
abuse.ch API parsers (URLhaus and ThreatFox)

Both APIs wrap their records in a JSON object with a query_status field.
A `no_results` status is an empty but valid answer.
"""

from typing import Any, Dict, List

from ..base.base_parser import BaseParser
from ..base.exceptions import ParseException
from ..base.feed_item import RawItem

NO_RESULT_STATUSES = ('no_results', 'no_result')


class UrlhausParser(BaseParser):
    """Parser for URLhaus recent URL listings"""

    def parse_raw_data(self, raw: str) -> List[RawItem]:
        data = self.parse_json(raw)
        if not isinstance(data, dict):
            raise ParseException("URLhaus response must be an object", self.source_name)
        if data.get('query_status') in NO_RESULT_STATUSES:
            return []

        urls = data.get('urls')
        if not isinstance(urls, list):
            raise ParseException(f"URLhaus response missing 'urls' (status: {data.get('query_status')})",
                                 self.source_name, raw_data_sample=self._sample(raw))

        return [self._url_to_item(entry) for entry in self.limit(u for u in urls if isinstance(u, dict))]

    def _url_to_item(self, entry: Dict[str, Any]) -> RawItem:
        url = entry.get('url', '')
        threat = entry.get('threat') or 'malicious_url'

        tags = ['malware']
        tags.extend(str(t) for t in (entry.get('tags') or []))

        return {
            'id': f"urlhaus-{entry.get('id')}" if entry.get('id') is not None else None,
            'title': f"Malicious URL: {url}",
            'description': f"{threat.replace('_', ' ')} hosted at {url} (status: {entry.get('url_status', 'unknown')})",
            'link': entry.get('urlhaus_reference') or url,
            'date': self.parse_date(entry.get('date_added')),
            'severity': 'HIGH' if threat == 'malware_download' else 'MEDIUM',
            'tags': tags,
        }


class ThreatFoxParser(BaseParser):
    """Parser for ThreatFox IOC listings"""

    high_confidence = 75

    def parse_raw_data(self, raw: str) -> List[RawItem]:
        data = self.parse_json(raw)
        if not isinstance(data, dict):
            raise ParseException("ThreatFox response must be an object", self.source_name)
        if data.get('query_status') in NO_RESULT_STATUSES:
            return []

        iocs = data.get('data')
        if not isinstance(iocs, list):
            raise ParseException(f"ThreatFox response missing 'data' (status: {data.get('query_status')})",
                                 self.source_name, raw_data_sample=self._sample(raw))

        return [self._ioc_to_item(entry) for entry in self.limit(i for i in iocs if isinstance(i, dict))]

    def _ioc_to_item(self, entry: Dict[str, Any]) -> RawItem:
        ioc_id = entry.get('id')
        malware = entry.get('malware_printable') or entry.get('malware') or 'unknown malware'

        try:
            confidence = int(entry.get('confidence_level') or 0)
        except (TypeError, ValueError):
            confidence = 0

        tags = ['ioc']
        tags.extend(str(t) for t in (entry.get('tags') or []))

        return {
            'id': f"threatfox-{ioc_id}" if ioc_id is not None else None,
            'title': f"IoC: {entry.get('ioc', '')}",
            'description': f"{malware} {entry.get('threat_type', 'indicator')} "
                           f"({entry.get('ioc_type', 'ioc')}, confidence {confidence}%)",
            'link': f"https://threatfox.abuse.ch/ioc/{ioc_id}/" if ioc_id is not None else entry.get('reference'),
            'date': self.parse_date(entry.get('first_seen')),
            'severity': 'HIGH' if confidence > self.high_confidence else 'MEDIUM',
            'tags': tags,
        }
