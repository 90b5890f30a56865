"""Plain-text list parser: one item per non-empty, non-comment line"""

from typing import List

from ..base.base_parser import BaseParser
from ..base.feed_item import RawItem


class PlainTextParser(BaseParser):

    comment_prefixes = ('#', ';', '//')

    def parse_raw_data(self, raw: str) -> List[RawItem]:
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8', errors='replace')

        lines = []
        for line in str(raw).splitlines():
            line = line.strip()
            if line and not line.startswith(self.comment_prefixes):
                lines.append(line)

        items = []
        for line in self.limit(lines):
            is_url = line.startswith(('http://', 'https://'))
            items.append({
                'title': line,
                'description': '',
                'link': line if is_url else self.source.url,
                'tags': [],
            })
        return items
