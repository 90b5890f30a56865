"""
Generic RSS / Atom parser

Feeds are wire-ordered newest first, so only the first 20 entries of each
fetch are kept. Text fields are stripped of HTML tags and entities; CVE and
severity are extracted from title + description.
"""

from datetime import datetime, timezone
from typing import List

from ..base.base_parser import BaseParser
from ..base.classifier import classify
from ..base.feed_item import RawItem


class RssParser(BaseParser):
    """Parser for RSS 2.0 and Atom feeds"""

    def parse_raw_data(self, raw: str) -> List[RawItem]:
        feed = self.parse_rss(raw)

        items = []
        for entry in self.limit(feed.entries):
            title = self.clean_text(entry.get('title'))
            description = self.clean_text(entry.get('summary') or entry.get('description'))
            link = (entry.get('link') or '').strip()
            classification = classify(f"{title} {description}")

            items.append({
                'id': (entry.get('id') or link or '').strip(),
                'title': title,
                'description': description,
                'link': link,
                'date': self._entry_date(entry),
                'cve': classification.cve,
                'severity': classification.severity,
                'tags': classification.tags,
            })

        self.logger.debug(f"Parsed {len(items)} RSS entries")
        return items

    def _entry_date(self, entry):
        date = self.parse_date(entry.get('published') or entry.get('updated'))
        if date is not None:
            return date

        parsed = entry.get('published_parsed') or entry.get('updated_parsed')
        if parsed:
            return datetime(*parsed[:6], tzinfo=timezone.utc)
        return None
