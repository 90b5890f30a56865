"""Tests for FeedManager orchestration."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from advisory_feeds.config.source_config import TransportFormat
from advisory_feeds.orchestration.feed_manager import AGGREGATE_KEY
from advisory_feeds.sources.base.classifier import classify
from advisory_feeds.sources.base.exceptions import FetchException

from conftest import FIXED_NOW, kev_catalog, make_source, rss_feed


class TestFetchOne:
    """Per-source fetch flow."""

    @pytest.mark.asyncio
    async def test_parses_and_normalizes_rss(self, build_manager):
        source = make_source('cisa')
        manager, fetcher = build_manager([source], {'cisa': rss_feed(5)})

        items = await manager.fetch_one(source)

        assert len(items) == 5
        assert items[0].id == 'advisory-0'
        assert items[0].title == 'Advisory 0'
        assert items[0].description == 'Details for Advisory 0'
        assert items[0].source == 'CISA'
        assert items[0].category == 'government'
        assert fetcher.calls == ['cisa']

    @pytest.mark.asyncio
    async def test_refetch_within_ttl_hits_cache(self, build_manager, clock):
        source = make_source('cisa')
        manager, fetcher = build_manager([source], {'cisa': rss_feed(5)})

        first = await manager.fetch_one(source)
        clock.advance(600_000)
        second = await manager.fetch_one(source)

        assert [item.id for item in first] == [item.id for item in second]
        assert [item.to_dict() for item in first] == [item.to_dict() for item in second]
        assert fetcher.calls == ['cisa']

    @pytest.mark.asyncio
    async def test_refetch_after_ttl_goes_to_network(self, build_manager, clock):
        source = make_source('cisa', refresh_interval_ms=1000)
        manager, fetcher = build_manager([source], {'cisa': rss_feed(2)})

        await manager.fetch_one(source)
        clock.advance(1001)
        await manager.fetch_one(source)

        assert fetcher.calls == ['cisa', 'cisa']

    @pytest.mark.asyncio
    async def test_force_refresh_skips_freshness_gate(self, build_manager):
        source = make_source('cisa')
        manager, fetcher = build_manager([source], {'cisa': rss_feed(2)})

        await manager.fetch_one(source)
        await manager.fetch_one(source, force_refresh=True)

        assert fetcher.calls == ['cisa', 'cisa']

    @pytest.mark.asyncio
    async def test_stale_items_served_on_transport_failure(self, build_manager, clock):
        source = make_source('cisa', priority=1, refresh_interval_ms=1_800_000)
        manager, fetcher = build_manager([source], {'cisa': rss_feed(5)})

        first = await manager.fetch_one(source)
        status = manager.health_status()
        assert (status.successful, status.failed) == (1, 0)

        clock.advance(600_000)
        second = await manager.fetch_one(source)
        assert len(second) == 5
        assert fetcher.calls == ['cisa']

        clock.advance(1_800_001)
        fetcher.responses['cisa'] = FetchException("HTTP 503", 'CISA', status_code=503)
        third = await manager.fetch_one(source)

        assert [item.id for item in third] == [item.id for item in first]
        assert fetcher.calls == ['cisa', 'cisa']
        status = manager.health_status()
        assert (status.successful, status.failed) == (0, 1)
        assert status.failed_source_ids == ['cisa']
        assert 'HTTP 503' in manager.health.get_record('cisa').last_error

    @pytest.mark.asyncio
    async def test_transport_failure_without_history_returns_empty(self, build_manager):
        source = make_source('down')
        manager, _ = build_manager([source], {'down': FetchException("Network error", 'DOWN')})

        assert await manager.fetch_one(source) == []
        assert manager.health.get_record('down').consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_unexpected_fetch_error_is_contained(self, build_manager):
        source = make_source('weird')
        manager, _ = build_manager([source], {'weird': RuntimeError("boom")})

        assert await manager.fetch_one(source) == []
        assert manager.health_status().failed_source_ids == ['weird']

    @pytest.mark.asyncio
    async def test_parse_failure_returns_empty_and_marks_failed(self, build_manager):
        source = make_source('kev', TransportFormat.JSON, parser_id='kev')
        manager, _ = build_manager([source], {'kev': '{not json'})

        assert await manager.fetch_one(source) == []
        record = manager.health.get_record('kev')
        assert record.consecutive_failures == 1
        assert record.last_error.startswith('Parse error')

    @pytest.mark.asyncio
    async def test_api_key_source_skipped_without_credential(self, build_manager):
        source = make_source('threatfox', TransportFormat.API, parser_id='threatfox',
                             requires_api_key=True)
        manager, fetcher = build_manager([source], {'threatfox': '{}'})

        assert await manager.fetch_one(source) == []
        assert fetcher.calls == []
        assert manager.health.get_record('threatfox') is None

    @pytest.mark.asyncio
    async def test_api_key_passed_to_fetcher(self, build_manager):
        source = make_source('threatfox', TransportFormat.API, parser_id='threatfox',
                             requires_api_key=True)
        payload = json.dumps({'query_status': 'ok', 'data': [
            {'id': 1, 'ioc': 'evil.example', 'ioc_type': 'domain', 'threat_type': 'botnet_cc',
             'malware_printable': 'Emotet', 'confidence_level': 100,
             'first_seen': '2024-05-31 10:00:00 UTC'},
        ]})
        manager, fetcher = build_manager([source], {'threatfox': payload},
                                         api_keys={'threatfox': 'secret'})

        items = await manager.fetch_one(source)

        assert fetcher.api_keys == ['secret']
        assert items[0].id == 'threatfox-1'
        assert items[0].severity == 'HIGH'

    @pytest.mark.asyncio
    async def test_success_after_failure_clears_failure(self, build_manager):
        source = make_source('flaky')
        manager, fetcher = build_manager([source], {'flaky': FetchException("HTTP 500", 'FLAKY')})

        await manager.fetch_one(source)
        fetcher.responses['flaky'] = rss_feed(1)
        await manager.fetch_one(source)

        record = manager.health.get_record('flaky')
        assert record.consecutive_failures == 0
        assert record.last_item_count == 1
        assert manager.health_status().failed == 0


class TestAggregates:
    """Batched fan-out, isolation and merging."""

    @pytest.mark.asyncio
    async def test_category_fetch_isolates_failing_parser(self, build_manager):
        sources = [
            make_source('a'),
            make_source('b'),
            make_source('broken', TransportFormat.JSON, parser_id='kev'),
            make_source('news', category='news', priority=3),
        ]
        manager, fetcher = build_manager(sources, {
            'a': rss_feed(3, 'Alpha'),
            'b': rss_feed(2, 'Bravo'),
            'broken': '<html>not json</html>',
            'news': rss_feed(4, 'News'),
        })

        items = await manager.fetch_by_category('government')

        assert len(items) == 5
        assert {item.source for item in items} == {'A', 'B'}
        assert 'news' not in fetcher.calls
        assert manager.health_status().failed_source_ids == ['broken']

    @pytest.mark.asyncio
    async def test_results_sorted_newest_first(self, build_manager):
        sources = [make_source('a'), make_source('b')]
        manager, _ = build_manager(sources, {'a': rss_feed(3, 'Alpha'), 'b': rss_feed(3, 'Bravo')})

        items = await manager.fetch_priority1()

        dates = [item.date for item in items]
        assert dates == sorted(dates, reverse=True)

    @pytest.mark.asyncio
    async def test_duplicates_removed_once(self, build_manager):
        source = make_source('dup')
        feed = rss_feed(1, 'Same').replace('</channel>',
                                          '<item><title>Same 0</title><guid>other</guid>'
                                          '<link>https://example.org/other</link></item></channel>')
        manager, _ = build_manager([source], {'dup': feed})

        assert len(await manager.fetch_one(source)) == 2
        items = await manager.fetch_priority1()

        assert len(items) == 1
        assert items[0].id == 'same-0'

    @pytest.mark.asyncio
    async def test_priority1_only_fetches_priority1(self, build_manager):
        sources = [make_source('gov', priority=1), make_source('vendor', category='vendor', priority=2)]
        manager, fetcher = build_manager(sources, {'gov': rss_feed(1), 'vendor': rss_feed(1)})

        await manager.fetch_priority1()

        assert fetcher.calls == ['gov']

    @pytest.mark.asyncio
    async def test_batches_bounded_by_batch_size(self, build_manager):
        sources = [make_source(f's{i}') for i in range(7)]
        manager, fetcher = build_manager(sources, {s.id: rss_feed(1, s.id) for s in sources},
                                         batch_size=3)

        with patch.object(manager, '_fetch_batch', wraps=manager._fetch_batch) as batch:
            items = await manager.fetch_priority1()

        assert [len(call.args[0]) for call in batch.call_args_list] == [3, 3, 1]
        assert len(items) == 7

    @pytest.mark.asyncio
    async def test_slow_source_does_not_block_siblings(self, build_manager):
        sources = [make_source('fast'), make_source('slow')]
        manager, _ = build_manager(
            sources,
            {'fast': rss_feed(2, 'Fast'), 'slow': rss_feed(2, 'Slow')},
            delays={'slow': 5.0},
            batch_timeout=0.05,
        )

        items = await manager.fetch_priority1()

        assert {item.source for item in items} == {'FAST'}
        assert manager.health_status().failed_source_ids == ['slow']

    @pytest.mark.asyncio
    async def test_fetch_all_orders_by_priority_and_caches_aggregate(self, build_manager, cache):
        sources = [make_source('low', category='news', priority=3), make_source('high', priority=1)]
        manager, fetcher = build_manager(sources, {'low': rss_feed(1, 'Low'), 'high': rss_feed(1, 'High')},
                                         batch_size=1)

        await manager.fetch_all()
        await manager.fetch_all()

        assert fetcher.calls == ['high', 'low']
        assert cache.has(AGGREGATE_KEY)

    @pytest.mark.asyncio
    async def test_fetch_all_force_refresh(self, build_manager):
        source = make_source('a')
        manager, fetcher = build_manager([source], {'a': rss_feed(1)})

        await manager.fetch_all()
        await manager.fetch_all(force_refresh=True)

        assert fetcher.calls == ['a', 'a']

    @pytest.mark.asyncio
    async def test_preload_warms_priority1_and_government(self, build_manager):
        sources = [
            make_source('gov1'),
            make_source('gov2', priority=2),
            make_source('news', category='news', priority=3),
        ]
        manager, fetcher = build_manager(sources, {s.id: rss_feed(1, s.id) for s in sources})

        await manager.preload()

        assert fetcher.calls == ['gov1', 'gov2']
        assert manager.cache.get_feed_data('gov2') is not None

    @pytest.mark.asyncio
    async def test_unhandled_error_marks_source_failed(self, build_manager):
        sources = [make_source('a'), make_source('b')]
        manager, _ = build_manager(sources, {'a': rss_feed(1, 'A'), 'b': rss_feed(1, 'B')})
        normalize_items = manager.normalizer.normalize_items

        def crash_on_b(items, source):
            if source.id == 'b':
                raise RuntimeError('normalizer crashed')
            return normalize_items(items, source)

        with patch.object(manager.normalizer, 'normalize_items', side_effect=crash_on_b):
            items = await manager.fetch_sources(sources)

        assert [item.title for item in items] == ['A 0']
        record = manager.health.get_record('b')
        assert record.consecutive_failures == 1
        assert 'normalizer crashed' in record.last_error
        assert manager.health_status().failed_source_ids == ['b']

    @pytest.mark.asyncio
    async def test_kev_source_through_pipeline(self, build_manager):
        source = make_source('cisa-kev', TransportFormat.JSON, parser_id='cisa_kev')
        payload = kev_catalog([{
            'cveID': 'CVE-2024-3400', 'vendorProject': 'Palo Alto Networks', 'product': 'PAN-OS',
            'vulnerabilityName': 'PAN-OS Command Injection', 'dateAdded': '2024-04-12',
            'shortDescription': 'Command injection in GlobalProtect.',
            'knownRansomwareCampaignUse': 'Unknown',
        }])
        manager, _ = build_manager([source], {'cisa-kev': payload})

        [item] = await manager.fetch_one(source)

        assert item.id == 'kev-CVE-2024-3400'
        assert item.cve == 'CVE-2024-3400'
        assert item.severity == 'HIGH'
        assert {'exploited', 'kev'} <= item.tags
        assert item.link == 'https://nvd.nist.gov/vuln/detail/CVE-2024-3400'


class TestQueries:
    """Filtering, search, stats and classification."""

    @pytest.fixture
    def mixed_manager(self, build_manager):
        sources = [
            make_source('gov'),
            make_source('vendor', category='vendor', priority=2),
        ]
        gov_feed = rss_feed(2, 'Gov').replace('Details for Gov 0', 'Critical flaw CVE-2024-1111')
        return build_manager(sources, {'gov': gov_feed, 'vendor': rss_feed(3, 'Vendor')})[0]

    @pytest.mark.asyncio
    async def test_query_items_filters(self, mixed_manager):
        assert len(await mixed_manager.query_items()) == 5
        assert len(await mixed_manager.query_items({'categories': ['VENDOR']})) == 3
        assert len(await mixed_manager.query_items({'sources': ['gov']})) == 2

        critical = await mixed_manager.query_items({'severities': ['critical']})
        assert [item.cve for item in critical] == ['CVE-2024-1111']

        recent = await mixed_manager.query_items({'since': '2024-06-01T11:30:00+00:00'})
        assert {item.title for item in recent} == {'Gov 0', 'Vendor 0'}

    @pytest.mark.asyncio
    async def test_unparseable_since_is_ignored(self, mixed_manager):
        assert len(await mixed_manager.query_items({'since': 'sometime'})) == 5
        assert len(await mixed_manager.search('vendor', {'since': 'sometime'})) == 3

        clusters = await mixed_manager.query_clusters({'since': 'sometime', 'categories': ['gov']})
        assert clusters == {}

    @pytest.mark.asyncio
    async def test_query_items_cached_per_filter_set(self, mixed_manager):
        items = await mixed_manager.fetch_all()

        with patch.object(mixed_manager, 'fetch_all', new=AsyncMock(return_value=items)) as fetch_all:
            await mixed_manager.query_items({'categories': ['vendor', 'government']})
            await mixed_manager.query_items({'categories': ['government', 'vendor']})

        assert fetch_all.await_count == 1

    @pytest.mark.asyncio
    async def test_query_clusters_groups_by_category(self, mixed_manager):
        clusters = await mixed_manager.query_clusters()

        assert set(clusters) == {'government', 'vendor'}
        assert len(clusters['vendor']) == 3

    @pytest.mark.asyncio
    async def test_search(self, mixed_manager):
        results = await mixed_manager.search('cve-2024-1111')

        assert [item.title for item in results] == ['Gov 0']
        assert await mixed_manager.search('nothing matches this') == []

    def test_search_items_requires_all_terms(self, mixed_manager):
        from advisory_feeds.sources.base.feed_item import FeedItem

        items = [
            FeedItem(id='1', title='Ransomware hits hospital', description='', link='l',
                     date=FIXED_NOW, source='News', category='news'),
            FeedItem(id='2', title='Hospital update', description='', link='l',
                     date=FIXED_NOW, source='News', category='news'),
        ]

        assert [i.id for i in mixed_manager.search_items(items, 'hospital RANSOMWARE')] == ['1']
        assert len(mixed_manager.search_items(items, '  ')) == 2

    @pytest.mark.asyncio
    async def test_item_stats(self, mixed_manager):
        items = await mixed_manager.fetch_all()

        stats = mixed_manager.get_item_stats(items)

        assert stats['total'] == 5
        assert stats['last_24h'] == 5
        assert stats['sources'] == 2
        assert stats['with_cve'] == 1
        assert stats['severity_counts']['CRITICAL'] == 1

    def test_classify_text_is_memoized(self, mixed_manager):
        text = 'Critical ransomware campaign exploiting CVE-2024-0001'

        with patch('advisory_feeds.orchestration.feed_manager.classify', wraps=classify) as spy:
            first = mixed_manager.classify_text(text)
            second = mixed_manager.classify_text(text)

        assert spy.call_count == 1
        assert first == second
        assert first.severity == 'CRITICAL'
        assert first.cve == 'CVE-2024-0001'
        assert 'ransomware' in first.tags


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_context_manager_closes_fetcher(self, build_manager):
        manager, fetcher = build_manager([make_source('a')], {'a': rss_feed(1)})

        async with manager as entered:
            assert entered is manager
            assert manager.cache._sweep_task is not None

        assert fetcher.closed
        assert manager.cache._sweep_task is None

    @pytest.mark.asyncio
    async def test_health_report_shape(self, build_manager):
        manager, _ = build_manager([make_source('a'), make_source('b')], {'a': rss_feed(1), 'b': rss_feed(1)})
        await manager.fetch_one(manager.registry.get('a'))

        report = manager.health_report()

        assert report['status']['total'] == 2
        assert report['status']['successful'] == 1
        assert report['sources']['b'] is None
        assert report['sources']['a']['last_item_count'] == 1
        assert 'hit_rate' in report['cache']
        assert report['alerts']['health_percentage'] == 50.0
        assert report['alerts']['below_threshold'] is True
