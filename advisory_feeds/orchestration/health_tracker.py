"""
Health Tracker for the Advisory Feed Engine

Per-source record of fetch outcomes. A source is reported as failed if and
only if its most recent attempt failed; records are created on the first
attempt and never deleted.

ALERT THRESHOLDS:
- stale: a watched source with no success for more than 2 hours
- critical: 5 or more consecutive failures
- low health: under 70% of registered sources currently successful
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

STALE_THRESHOLD = timedelta(hours=2)
CRITICAL_FAILURE_THRESHOLD = 5
HEALTH_SCORE_THRESHOLD = 70.0


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class HealthRecord:
    """Outcome history for one source"""
    source_id: str
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    consecutive_failures: int = 0
    last_item_count: int = 0
    last_error: Optional[str] = None

    @property
    def is_failing(self) -> bool:
        return self.consecutive_failures > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_id': self.source_id,
            'last_success_at': _iso(self.last_success_at),
            'last_failure_at': _iso(self.last_failure_at),
            'consecutive_failures': self.consecutive_failures,
            'last_item_count': self.last_item_count,
            'last_error': self.last_error,
        }


@dataclass
class HealthStatus:
    """Point-in-time aggregate over all registered sources"""
    total: int
    successful: int
    failed: int
    failed_source_ids: List[str] = field(default_factory=list)
    last_updates: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'successful': self.successful,
            'failed': self.failed,
            'failed_source_ids': list(self.failed_source_ids),
            'last_updates': dict(self.last_updates),
        }


@dataclass
class HealthAlerts:
    """Sources and aggregate health that need attention"""
    health_percentage: float
    stale_source_ids: List[str] = field(default_factory=list)
    critical_source_ids: List[str] = field(default_factory=list)

    @property
    def below_threshold(self) -> bool:
        return self.health_percentage < HEALTH_SCORE_THRESHOLD

    @property
    def has_alerts(self) -> bool:
        return self.below_threshold or bool(self.stale_source_ids) or bool(self.critical_source_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'health_percentage': round(self.health_percentage, 1),
            'below_threshold': self.below_threshold,
            'stale_source_ids': list(self.stale_source_ids),
            'critical_source_ids': list(self.critical_source_ids),
        }


class HealthTracker:
    """Tracks fetch success and failure per source"""

    def __init__(self, clock: Callable[[], datetime] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.records: Dict[str, HealthRecord] = {}

    def _record(self, source_id: str) -> HealthRecord:
        if source_id not in self.records:
            self.records[source_id] = HealthRecord(source_id=source_id)
        return self.records[source_id]

    def record_success(self, source_id: str, item_count: int):
        record = self._record(source_id)
        record.last_success_at = self.clock()
        record.consecutive_failures = 0
        record.last_item_count = item_count
        record.last_error = None

    def record_failure(self, source_id: str, error: Any):
        record = self._record(source_id)
        record.last_failure_at = self.clock()
        record.consecutive_failures += 1
        record.last_error = str(error)

        if record.consecutive_failures > 1:
            logger.warning(f"Source {source_id} failed {record.consecutive_failures} times in a row: {error}")

    def get_record(self, source_id: str) -> Optional[HealthRecord]:
        return self.records.get(source_id)

    def last_updates(self) -> Dict[str, str]:
        """ISO timestamp of the last successful fetch per source"""
        return {source_id: _iso(record.last_success_at)
                for source_id, record in self.records.items()
                if record.last_success_at is not None}

    def health_status(self, source_ids: Optional[List[str]] = None) -> HealthStatus:
        """
        Aggregate health over the registered sources

        Args:
            source_ids: Registered source ids (defaults to every source seen so far);
                sources never attempted count as neither successful nor failed
        """
        ids = list(source_ids) if source_ids is not None else list(self.records)

        failed = [sid for sid in ids if sid in self.records and self.records[sid].is_failing]
        successful = [sid for sid in ids
                      if sid in self.records and not self.records[sid].is_failing
                      and self.records[sid].last_success_at is not None]

        return HealthStatus(
            total=len(ids),
            successful=len(successful),
            failed=len(failed),
            failed_source_ids=failed,
            last_updates={sid: ts for sid, ts in self.last_updates().items() if sid in ids},
        )

    def check_alerts(self, source_ids: Optional[List[str]] = None,
                     watched_ids: Optional[List[str]] = None) -> HealthAlerts:
        """
        Evaluate the alert thresholds

        Args:
            source_ids: Registered source ids (defaults to every source seen so far)
            watched_ids: Sources checked for staleness (defaults to source_ids)

        Returns:
            HealthAlerts with the stale and critically failing sources
        """
        ids = list(source_ids) if source_ids is not None else list(self.records)
        watched = list(watched_ids) if watched_ids is not None else ids
        status = self.health_status(ids)
        now = self.clock()

        stale = [sid for sid in watched
                 if sid in self.records and self.records[sid].last_success_at is not None
                 and now - self.records[sid].last_success_at > STALE_THRESHOLD]
        critical = [sid for sid in ids
                    if sid in self.records
                    and self.records[sid].consecutive_failures >= CRITICAL_FAILURE_THRESHOLD]

        return HealthAlerts(
            health_percentage=(status.successful / status.total * 100) if status.total else 100.0,
            stale_source_ids=stale,
            critical_source_ids=critical,
        )
