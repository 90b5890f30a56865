"""
Duplicate Manager for the Advisory Feed Engine

Removes near-duplicate items from an aggregated item list.

OBJECTIVE:
Sources frequently re-announce the same advisory (updated posts, mirrored
channels of one publisher). The aggregate views run one O(n) pass over the
concatenated list keyed on (lowercased title truncated to 50 chars, source);
the first occurrence wins and later duplicates are dropped.

Identical titles from different sources are both kept.
"""

import logging
from typing import Dict, List, Tuple

from .feed_item import FeedItem

TITLE_KEY_LENGTH = 50


class DuplicateManager:
    """Per-query duplicate removal"""

    def __init__(self):
        self.logger = logging.getLogger("duplicate_manager")
        self.resolution_stats = {
            'items_checked': 0,
            'duplicates_found': 0,
        }

    @staticmethod
    def duplicate_key(item: FeedItem) -> Tuple[str, str]:
        return (item.title.lower()[:TITLE_KEY_LENGTH], item.source)

    def deduplicate(self, items: List[FeedItem]) -> List[FeedItem]:
        """
        Drop later items whose duplicate key was already seen

        Args:
            items: Concatenated items from one aggregate query

        Returns:
            Items in original order with duplicates removed
        """
        seen = set()
        unique = []

        for item in items:
            key = self.duplicate_key(item)
            if key in seen:
                continue
            seen.add(key)
            unique.append(item)

        dropped = len(items) - len(unique)
        self.resolution_stats['items_checked'] += len(items)
        self.resolution_stats['duplicates_found'] += dropped
        if dropped:
            self.logger.debug(f"Dropped {dropped} duplicate items out of {len(items)}")

        return unique

    def get_resolution_stats(self) -> Dict[str, int]:
        """Return duplicate resolution statistics"""
        return self.resolution_stats.copy()

    def reset_stats(self):
        self.resolution_stats = {
            'items_checked': 0,
            'duplicates_found': 0,
        }
