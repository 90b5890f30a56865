"""Tests for HealthTracker."""

from datetime import datetime, timedelta, timezone

import pytest

from advisory_feeds.orchestration.health_tracker import HealthTracker


class SteppingClock:

    def __init__(self):
        self.now = datetime(2024, 6, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


class TestHealthTracker:

    def test_success_then_failure_is_failed(self):
        tracker = HealthTracker(clock=SteppingClock())
        tracker.record_success('a', 5)
        tracker.record_failure('a', 'HTTP 503')

        status = tracker.health_status(['a'])

        assert (status.total, status.successful, status.failed) == (1, 0, 1)
        assert status.failed_source_ids == ['a']
        record = tracker.get_record('a')
        assert record.last_item_count == 5
        assert record.last_error == 'HTTP 503'
        assert record.last_failure_at > record.last_success_at

    def test_failure_then_success_is_healthy(self):
        tracker = HealthTracker()
        tracker.record_failure('a', 'timeout')
        tracker.record_failure('a', 'timeout')
        assert tracker.get_record('a').consecutive_failures == 2

        tracker.record_success('a', 1)

        record = tracker.get_record('a')
        assert record.consecutive_failures == 0
        assert record.last_error is None
        assert tracker.health_status().failed == 0

    def test_never_attempted_counts_in_total_only(self):
        tracker = HealthTracker()
        tracker.record_success('a', 1)

        status = tracker.health_status(['a', 'b'])

        assert (status.total, status.successful, status.failed) == (2, 1, 0)

    def test_last_updates_only_successful(self):
        tracker = HealthTracker(clock=SteppingClock())
        tracker.record_success('a', 1)
        tracker.record_failure('b', 'boom')

        updates = tracker.last_updates()

        assert list(updates) == ['a']
        assert updates['a'] == '2024-06-01T00:01:00+00:00'
        assert tracker.health_status(['a', 'b']).last_updates == updates

    def test_serialization(self):
        tracker = HealthTracker()
        tracker.record_failure('a', ValueError('bad'))

        assert tracker.get_record('a').to_dict()['last_error'] == 'bad'
        assert tracker.health_status().to_dict()['failed_source_ids'] == ['a']


class MovableClock:

    def __init__(self):
        self.now = datetime(2024, 6, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


class TestAlerts:

    def test_stale_and_critical_sources_flagged(self):
        clock = MovableClock()
        tracker = HealthTracker(clock=clock)
        tracker.record_success('fresh', 1)
        tracker.record_success('old', 1)
        for _ in range(5):
            tracker.record_failure('down', 'HTTP 503')

        clock.now += timedelta(hours=3)
        tracker.record_success('fresh', 2)

        alerts = tracker.check_alerts(['fresh', 'old', 'down'])

        assert alerts.stale_source_ids == ['old']
        assert alerts.critical_source_ids == ['down']
        assert alerts.health_percentage == pytest.approx(200 / 3)
        assert alerts.below_threshold
        assert alerts.has_alerts

    def test_stale_after_two_hours_exactly_is_not_flagged(self):
        clock = MovableClock()
        tracker = HealthTracker(clock=clock)
        tracker.record_success('a', 1)

        clock.now += timedelta(hours=2)
        assert tracker.check_alerts(['a']).stale_source_ids == []

        clock.now += timedelta(seconds=1)
        assert tracker.check_alerts(['a']).stale_source_ids == ['a']

    def test_only_watched_sources_checked_for_staleness(self):
        clock = MovableClock()
        tracker = HealthTracker(clock=clock)
        tracker.record_success('p1', 1)
        tracker.record_success('p3', 1)
        clock.now += timedelta(hours=5)

        alerts = tracker.check_alerts(['p1', 'p3'], watched_ids=['p1'])

        assert alerts.stale_source_ids == ['p1']

    def test_four_failures_not_critical(self):
        tracker = HealthTracker()
        tracker.record_success('a', 1)
        for _ in range(4):
            tracker.record_failure('b', 'timeout')
        for _ in range(3):
            tracker.record_success('c', 1)

        alerts = tracker.check_alerts(['a', 'b', 'c'])

        assert alerts.critical_source_ids == []
        assert alerts.health_percentage == pytest.approx(200 / 3)

    def test_healthy_system_has_no_alerts(self):
        tracker = HealthTracker()
        tracker.record_success('a', 1)

        alerts = tracker.check_alerts()

        assert not alerts.has_alerts
        assert alerts.to_dict() == {
            'health_percentage': 100.0,
            'below_threshold': False,
            'stale_source_ids': [],
            'critical_source_ids': [],
        }
