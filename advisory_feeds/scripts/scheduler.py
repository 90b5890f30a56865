"""
Advisory Feed Scheduler

OBJECTIVE:
Keep the feed cache warm by refreshing each priority tier on its own
interval, and offer manual triggers for one-off refreshes and health checks.

SCHEDULING STRATEGY:
1. One refresh job per priority tier, due every min(refresh interval) of
   the sources in that tier (30 min / 1 h / 2 h by default)
2. Health summary every 2 hours
3. The freshness gate inside FeedManager decides which sources actually
   hit the network, so a job that runs early costs nothing

INTEGRATION WITH LOCAL CODES:
- Builds a FeedManager from config/settings.py
- `health --api-url` queries a running advisory_api service instead

USAGE EXAMPLES:
python -m advisory_feeds.scripts.scheduler daemon --interval 60
python -m advisory_feeds.scripts.scheduler run                 # all sources once
python -m advisory_feeds.scripts.scheduler run --priority1
python -m advisory_feeds.scripts.scheduler run --category government --force
python -m advisory_feeds.scripts.scheduler health
python -m advisory_feeds.scripts.scheduler health --api-url http://localhost:8000
python -m advisory_feeds.scripts.scheduler status
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from ..config.settings import settings
from ..orchestration.feed_manager import FeedManager, build_feed_manager

logger = logging.getLogger(__name__)

HEALTH_CHECK_MINUTES = 120


@dataclass
class ScheduledJob:
    """Configuration for a scheduled job"""
    name: str
    description: str
    frequency_minutes: int
    priority: Optional[int] = None
    enabled: bool = True
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None


class FeedScheduler:
    """Runs priority-tier refresh jobs against a FeedManager"""

    def __init__(self, manager: FeedManager, clock: Callable[[], datetime] = None):
        self.manager = manager
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.scheduled_jobs = self._build_jobs()

        current_time = self.clock()
        for job in self.scheduled_jobs.values():
            job.next_run = current_time

    def _build_jobs(self) -> Dict[str, ScheduledJob]:
        jobs = {}
        for priority in (1, 2, 3):
            sources = self.manager.registry.by_priority(priority)
            if not sources:
                continue
            interval_ms = min(source.refresh_interval_ms for source in sources)
            jobs[f'priority_{priority}'] = ScheduledJob(
                name=f'priority_{priority}',
                description=f'Refresh {len(sources)} priority {priority} sources',
                frequency_minutes=max(1, interval_ms // 60_000),
                priority=priority,
            )

        jobs['health_check'] = ScheduledJob(
            name='health_check',
            description='Log a health summary for all sources',
            frequency_minutes=HEALTH_CHECK_MINUTES,
        )
        return jobs

    async def run_scheduler_daemon(self, check_interval: float = 60.0):
        """Check for due jobs every check_interval seconds until cancelled"""
        logger.info("Starting advisory feed scheduler daemon")

        while True:
            try:
                await self.check_and_run_jobs()
            except Exception as e:
                logger.error(f"Scheduler daemon error: {e}")
            await asyncio.sleep(check_interval)

    async def check_and_run_jobs(self) -> List[str]:
        """Run every enabled job that is due; returns the names of jobs run"""
        current_time = self.clock()
        ran = []

        for job in self.scheduled_jobs.values():
            if not job.enabled or (job.next_run and current_time < job.next_run):
                continue

            logger.info(f"Executing scheduled job: {job.name}")
            await self._run_job(job)

            job.last_run = current_time
            job.next_run = current_time + timedelta(minutes=job.frequency_minutes)
            ran.append(job.name)
            logger.info(f"Job {job.name} completed. Next run: {job.next_run.isoformat()}")

        return ran

    async def _run_job(self, job: ScheduledJob):
        if job.priority is None:
            self.log_health_summary()
            return

        sources = self.manager.registry.by_priority(job.priority)
        items = await self.manager.fetch_sources(sources)
        logger.info(f"Job {job.name}: {len(items)} items from {len(sources)} sources")

    def log_health_summary(self) -> Dict[str, Any]:
        status = self.manager.health_status()
        alerts = self.manager.health_alerts()

        logger.info(f"Health check: {status.successful}/{status.total} sources healthy "
                    f"({alerts.health_percentage:.1f}%)")
        if alerts.below_threshold:
            logger.warning(f"Overall feed health {alerts.health_percentage:.0f}% is below threshold; "
                           f"failing sources {status.failed_source_ids}")
        for source_id in alerts.stale_source_ids:
            record = self.manager.health.get_record(source_id)
            logger.warning(f"Priority 1 source {source_id} stale since {record.last_success_at.isoformat()}")
        for source_id in alerts.critical_source_ids:
            record = self.manager.health.get_record(source_id)
            logger.error(f"Source {source_id} failed {record.consecutive_failures} times in a row: "
                         f"{record.last_error}")

        summary = status.to_dict()
        summary['alerts'] = alerts.to_dict()
        return summary

    def get_scheduler_status(self) -> Dict[str, Any]:
        current_time = self.clock()
        return {
            'current_time': current_time.isoformat(),
            'jobs': {
                name: {
                    'enabled': job.enabled,
                    'description': job.description,
                    'frequency_minutes': job.frequency_minutes,
                    'last_run': job.last_run.isoformat() if job.last_run else None,
                    'next_run': job.next_run.isoformat() if job.next_run else None,
                }
                for name, job in self.scheduled_jobs.items()
            },
            'sources': self.manager.registry.get_configuration_summary(),
        }


def fetch_remote_health(api_url: str, timeout: float = 10.0) -> Dict[str, Any]:
    """Query the health endpoint of a running advisory_api service"""
    response = requests.get(f"{api_url.rstrip('/')}/api/health", timeout=timeout)
    response.raise_for_status()
    return response.json()


async def run_command(args: argparse.Namespace) -> int:
    if args.command == 'health' and args.api_url:
        try:
            print(json.dumps(fetch_remote_health(args.api_url), indent=2))
        except requests.RequestException as e:
            logger.error(f"Health query failed: {e}")
            return 1
        return 0

    async with build_feed_manager(settings) as manager:
        scheduler = FeedScheduler(manager)

        if args.command == 'daemon':
            await scheduler.run_scheduler_daemon(args.interval)

        elif args.command == 'run':
            if args.category:
                items = await manager.fetch_by_category(args.category)
            elif args.priority1:
                items = await manager.fetch_priority1()
            else:
                items = await manager.fetch_all(force_refresh=args.force)
            logger.info(f"Fetched {len(items)} items")
            print(json.dumps(manager.get_item_stats(items), indent=2))

        elif args.command == 'health':
            await manager.fetch_all()
            print(json.dumps(manager.health_report(), indent=2, default=str))

        elif args.command == 'status':
            print(json.dumps(scheduler.get_scheduler_status(), indent=2, default=str))

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Advisory Feed Scheduler')
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    daemon_parser = subparsers.add_parser('daemon', help='Run scheduler daemon')
    daemon_parser.add_argument('--interval', type=float, default=60.0,
                               help='Seconds between checks for due jobs')

    run_parser = subparsers.add_parser('run', help='Refresh sources once')
    group = run_parser.add_mutually_exclusive_group()
    group.add_argument('--category', help='Only refresh sources in this category')
    group.add_argument('--priority1', action='store_true', help='Only refresh priority 1 sources')
    run_parser.add_argument('--force', action='store_true', help='Ignore cache freshness')

    health_parser = subparsers.add_parser('health', help='Fetch all sources and print health')
    health_parser.add_argument('--api-url', help='Query a running API service instead')

    subparsers.add_parser('status', help='Show scheduled jobs')
    return parser


def main(argv: Optional[List[str]] = None):
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return

    try:
        sys.exit(asyncio.run(run_command(args)))
    except KeyboardInterrupt:
        logger.info("Operation interrupted by user")


if __name__ == '__main__':
    main()
