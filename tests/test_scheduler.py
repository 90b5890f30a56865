"""Tests for the scheduler jobs and CLI parsing."""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest
import requests

from advisory_feeds.scripts.scheduler import FeedScheduler, build_parser, fetch_remote_health

from conftest import make_source, rss_feed


class Clock:

    def __init__(self):
        self.now = datetime(2024, 6, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def scheduler_setup(build_manager):
    sources = [
        make_source('gov', priority=1),
        make_source('vendor', category='vendor', priority=2, refresh_interval_ms=3_600_000),
    ]
    manager, fetcher = build_manager(sources, {'gov': rss_feed(2), 'vendor': rss_feed(1)})
    clock = Clock()
    return FeedScheduler(manager, clock=clock), fetcher, clock


class TestFeedScheduler:

    def test_jobs_per_priority_tier(self, scheduler_setup):
        scheduler, _, _ = scheduler_setup

        jobs = scheduler.scheduled_jobs

        assert set(jobs) == {'priority_1', 'priority_2', 'health_check'}
        assert jobs['priority_1'].frequency_minutes == 30
        assert jobs['priority_2'].frequency_minutes == 60

    @pytest.mark.asyncio
    async def test_due_jobs_run_and_reschedule(self, scheduler_setup):
        scheduler, fetcher, clock = scheduler_setup

        ran = await scheduler.check_and_run_jobs()
        assert ran == ['priority_1', 'priority_2', 'health_check']
        assert fetcher.calls == ['gov', 'vendor']

        clock.now += timedelta(minutes=31)
        assert await scheduler.check_and_run_jobs() == ['priority_1']
        assert scheduler.scheduled_jobs['priority_1'].next_run == clock.now + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_disabled_job_skipped(self, scheduler_setup):
        scheduler, fetcher, _ = scheduler_setup
        scheduler.scheduled_jobs['priority_2'].enabled = False

        await scheduler.check_and_run_jobs()

        assert 'vendor' not in fetcher.calls

    def test_status(self, scheduler_setup):
        scheduler, _, _ = scheduler_setup

        status = scheduler.get_scheduler_status()

        assert status['jobs']['priority_1']['last_run'] is None
        assert status['sources']['total_sources'] == 2

    def test_health_summary(self, scheduler_setup):
        scheduler, _, _ = scheduler_setup
        scheduler.manager.health.record_failure('gov', 'boom')

        summary = scheduler.log_health_summary()

        assert summary['failed_source_ids'] == ['gov']
        assert summary['alerts']['critical_source_ids'] == []

    def test_health_summary_reports_critical_sources(self, scheduler_setup, caplog):
        scheduler, _, _ = scheduler_setup
        for _ in range(5):
            scheduler.manager.health.record_failure('vendor', 'HTTP 500')
        scheduler.manager.health.record_success('gov', 3)

        with caplog.at_level(logging.WARNING):
            summary = scheduler.log_health_summary()

        assert summary['alerts']['critical_source_ids'] == ['vendor']
        assert summary['alerts']['health_percentage'] == 50.0
        assert 'vendor failed 5 times in a row' in caplog.text


class TestCli:

    def test_run_flags(self):
        args = build_parser().parse_args(['run', '--priority1', '--force'])

        assert args.command == 'run'
        assert args.priority1 and args.force
        assert args.category is None

    def test_category_and_priority1_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(['run', '--priority1', '--category', 'news'])

    def test_daemon_interval(self):
        assert build_parser().parse_args(['daemon', '--interval', '5']).interval == 5.0


class TestRemoteHealth:

    @patch('advisory_feeds.scripts.scheduler.requests')
    def test_fetch_remote_health(self, mock_requests):
        mock_response = Mock()
        mock_response.json.return_value = {'status': {'total': 3}}
        mock_requests.get.return_value = mock_response

        result = fetch_remote_health('http://localhost:8000/')

        assert result == {'status': {'total': 3}}
        mock_requests.get.assert_called_once_with('http://localhost:8000/api/health', timeout=10.0)

    @patch('advisory_feeds.scripts.scheduler.requests.get')
    def test_http_error_propagates(self, mock_get):
        mock_get.return_value.raise_for_status.side_effect = requests.HTTPError('503')

        with pytest.raises(requests.HTTPError):
            fetch_remote_health('http://localhost:8000')
