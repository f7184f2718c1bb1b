"""Unit tests for ScheduleCrawlerService."""
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from processor.models import (
    ALL_PLATFORMS,
    ConfigurationError,
    DateRange,
    Platform,
    PlatformResult,
    Schedule,
    VendorQuery,
)
from processor.schedule_crawler import ScheduleCrawlerService, merge_vendor_options

MONDAY = date(2025, 9, 1)
NOW = datetime(2025, 9, 1, 12, 0, tzinfo=timezone.utc)


class StubAggregator:
    """Aggregator double that records calls and returns canned results."""

    def __init__(self, results):
        self.results = results
        self.calls = []

    async def fetch_many(self, platforms, query):
        self.calls.append((platforms, query))
        return {
            platform: self.results.get(platform, PlatformResult(platform=platform))
            for platform in platforms
        }


@pytest.fixture
def vendor():
    return VendorQuery(
        vendor_id='vendor-1',
        vendor_name='Taco Truck',
        social_handle='tacotruck',
        search_terms=['tacos near me', 'food truck'],
        hashtags=['tacos'],
    )


@pytest.fixture
def twitter_result(make_post):
    return PlatformResult(
        platform=Platform.TWITTER,
        posts=[
            make_post('Serving 9/5 at Central Park 11am-2pm', post_id='1'),
            make_post('What a day, thanks everyone', post_id='2'),
        ],
        errors=['Twitter API request failed: 429 Too Many Requests'],
    )


class TestBuildCrawlQuery:
    """Test cases for crawl query construction."""

    def test_merges_vendor_hints_with_generic_keywords(self, vendor):
        query = ScheduleCrawlerService(StubAggregator({})).build_crawl_query(vendor, NOW)

        assert query.search_terms == [
            'tacos near me', 'food truck', 'Taco Truck', 'schedule', 'location', 'serving', 'open',
        ]
        assert query.hashtags == ['tacos', 'foodtruck', 'foodie', 'schedule']
        assert query.usernames == ['tacotruck']
        assert query.max_posts == 50
        assert query.date_range.start == NOW - timedelta(days=7)
        assert query.date_range.end == NOW + timedelta(days=14)

    def test_keeps_explicit_options(self):
        window = DateRange(start=NOW, end=NOW + timedelta(days=1))
        vendor = VendorQuery(vendor_id='v', usernames=['a', 'b'], max_posts=5, date_range=window)

        query = ScheduleCrawlerService(StubAggregator({})).build_crawl_query(vendor, NOW)

        assert query.usernames == ['a', 'b']
        assert query.max_posts == 5
        assert query.date_range is window

    def test_determine_platforms(self, vendor):
        service = ScheduleCrawlerService(StubAggregator({}))

        assert service.determine_platforms(vendor) == list(ALL_PLATFORMS)
        vendor.platform = Platform.REDDIT
        assert service.determine_platforms(vendor) == [Platform.REDDIT]


class TestCrawlVendorSchedules:
    """Test cases for single-vendor crawls."""

    @pytest.mark.asyncio
    async def test_crawl_reconciles_and_summarizes(self, vendor, twitter_result):
        aggregator = StubAggregator({Platform.TWITTER: twitter_result})
        service = ScheduleCrawlerService(aggregator)

        result = await service.crawl_vendor_schedules(vendor, today=MONDAY)

        assert len(aggregator.calls) == 1
        assert aggregator.calls[0][0] == list(ALL_PLATFORMS)
        assert [(s.date, s.location) for s in result.schedules] == [('2025-09-05', 'Central Park')]
        assert len(result.posts) == 2
        assert len(result.activity_logs) == 2
        assert result.reconcile_summary == {'created': 1, 'updated': 0, 'rejected': 1, 'duplicates': 0}
        assert result.summary.total_posts == 2
        assert result.summary.total_schedules == 1
        assert result.summary.average_confidence == 0.25
        assert result.summary.platform_breakdown == {
            'twitter': 2, 'instagram': 0, 'reddit': 0, 'youtube': 0,
        }
        assert result.summary.errors == ['Twitter API request failed: 429 Too Many Requests']
        assert result.vendor is vendor

    @pytest.mark.asyncio
    async def test_existing_schedule_is_updated(self, vendor, twitter_result):
        existing = Schedule(
            vendor_id='vendor-1',
            date='2025-09-05',
            start_time='11:00 AM',
            end_time='2:00 PM',
            location='Central Park',
            source='manual',
            confidence=0.4,
        )
        service = ScheduleCrawlerService(StubAggregator({Platform.TWITTER: twitter_result}))

        result = await service.crawl_vendor_schedules(vendor, [existing], today=MONDAY)

        assert result.reconcile_summary['updated'] == 1
        assert result.schedules[0].confidence == 0.5
        assert result.schedules[0].source == 'twitter:1'

    @pytest.mark.asyncio
    async def test_vendor_threshold_overrides_default(self, vendor, twitter_result):
        vendor.min_confidence = 0.9
        service = ScheduleCrawlerService(StubAggregator({Platform.TWITTER: twitter_result}))

        result = await service.crawl_vendor_schedules(vendor, today=MONDAY)

        assert result.schedules == []
        assert result.reconcile_summary['rejected'] == 2

    @pytest.mark.asyncio
    async def test_invalid_threshold_raises(self, vendor):
        vendor.min_confidence = 1.5
        aggregator = StubAggregator({})

        with pytest.raises(ConfigurationError):
            await ScheduleCrawlerService(aggregator).crawl_vendor_schedules(vendor)
        assert aggregator.calls == []

    @pytest.mark.asyncio
    async def test_missing_identity_raises(self):
        with pytest.raises(ConfigurationError):
            await ScheduleCrawlerService(StubAggregator({})).crawl_vendor_schedules(VendorQuery(vendor_id=''))

    def test_invalid_default_threshold(self):
        with pytest.raises(ConfigurationError):
            ScheduleCrawlerService(StubAggregator({}), min_confidence=-1)

    def test_set_min_confidence(self):
        service = ScheduleCrawlerService(StubAggregator({}))
        service.set_min_confidence(0.7)
        assert service.min_confidence == 0.7


class TestCrawlMultipleVendors:
    """Test cases for sequential batch crawls."""

    @pytest.mark.asyncio
    async def test_sequential_with_delay_and_skips_failures(self, twitter_result):
        vendors = [
            VendorQuery(vendor_id='a', vendor_name='A'),
            VendorQuery(vendor_id='b', vendor_name='B', min_confidence=2.0),
            VendorQuery(vendor_id='c', vendor_name='C'),
        ]
        service = ScheduleCrawlerService(StubAggregator({Platform.TWITTER: twitter_result}), vendor_delay=0.5)

        with patch('processor.schedule_crawler.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            results = await service.crawl_multiple_vendor_schedules(vendors)

        assert [result.vendor.vendor_id for result in results] == ['a', 'c']
        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(0.5)

    @pytest.mark.asyncio
    async def test_base_options_and_existing_schedules(self, twitter_result):
        aggregator = StubAggregator({Platform.REDDIT: twitter_result})
        service = ScheduleCrawlerService(aggregator, vendor_delay=0)
        existing = Schedule(
            vendor_id='a',
            date='2025-09-05',
            start_time='11:00 AM',
            end_time='2:00 PM',
            location='Central Park',
            source='manual',
            confidence=0.9,
        )

        results = await service.crawl_multiple_vendor_schedules(
            [VendorQuery(vendor_id='a', vendor_name='A', hashtags=['own'])],
            base={'platform': 'reddit', 'max_posts': 10, 'hashtags': ['eats']},
            existing_by_vendor={'a': [existing]},
            today=MONDAY,
        )

        platforms, query = aggregator.calls[0]
        assert platforms == [Platform.REDDIT]
        assert query.max_posts == 10
        assert query.hashtags[:2] == ['eats', 'own']
        assert results[0].reconcile_summary['duplicates'] == 1
        assert results[0].schedules[0].source == 'manual'

    @pytest.mark.asyncio
    async def test_reference_date_reaches_every_vendor(self, twitter_result):
        """Test that yearless post dates resolve against the given reference date."""
        service = ScheduleCrawlerService(StubAggregator({Platform.TWITTER: twitter_result}), vendor_delay=0)

        results = await service.crawl_multiple_vendor_schedules(
            [VendorQuery(vendor_id='a'), VendorQuery(vendor_id='b')],
            today=date(2031, 8, 20),
        )

        assert [result.schedules[0].date for result in results] == ['2031-09-05', '2031-09-05']

    def test_merge_vendor_options_prefers_vendor_settings(self):
        vendor = VendorQuery(vendor_id='a', platform=Platform.TWITTER, min_confidence=0.3)

        merged = merge_vendor_options(vendor, {'platform': 'reddit', 'min_confidence': 0.8, 'usernames': ['x']})

        assert merged.platform == Platform.TWITTER
        assert merged.min_confidence == 0.3
        assert merged.usernames == ['x']

    def test_merge_vendor_options_rejects_unknown_platform(self):
        with pytest.raises(ConfigurationError):
            merge_vendor_options(VendorQuery(vendor_id='a'), {'platform': 'myspace'})


class TestSchedulesForDateRange:
    """Test cases for date-window filtering."""

    @pytest.mark.asyncio
    async def test_keeps_schedules_inside_window(self, vendor, make_post):
        result = PlatformResult(
            platform=Platform.TWITTER,
            posts=[
                make_post('Serving 9/5/2025 at Central Park 11am-2pm', post_id='1'),
                make_post('Serving 9/20/2025 at Harbor Pier 11am-2pm', post_id='2'),
            ],
        )
        aggregator = StubAggregator({Platform.TWITTER: result})
        window = DateRange(
            start=datetime(2025, 9, 1, tzinfo=timezone.utc),
            end=datetime(2025, 9, 10, tzinfo=timezone.utc),
        )

        schedules = await ScheduleCrawlerService(aggregator).get_schedules_for_date_range(vendor, window)

        assert [s.location for s in schedules] == ['Central Park']
        assert aggregator.calls[0][1].date_range is window
