"""Vendor-level orchestration: crawl, extract, score, reconcile."""
import asyncio
import logging
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from processor.models import (
    ALL_PLATFORMS,
    ConfigurationError,
    CrawlQuery,
    CrawlSummary,
    DateRange,
    Platform,
    PlatformResult,
    Post,
    Schedule,
    ScheduleCrawlerResult,
    VendorQuery,
)
from processor.reconciler import ScheduleReconciler, validate_confidence
from scraper.aggregator import SocialMediaAggregator

logger = logging.getLogger(__name__)

GENERIC_SEARCH_TERMS = ['food truck', 'schedule', 'location', 'serving', 'open']
GENERIC_HASHTAGS = ['foodtruck', 'foodie', 'schedule']
DEFAULT_MAX_POSTS = 50
LOOKBACK_DAYS = 7
LOOKAHEAD_DAYS = 14


def _unique(values: Iterable[str]) -> List[str]:
    seen = set()
    unique = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            unique.append(value)
    return unique


class ScheduleCrawlerService:
    """
    Facade over the aggregator and reconciler for one or many vendors.

    Only configuration errors raise; platform failures come back as error
    strings in the result summary.
    """

    def __init__(
        self,
        aggregator: Optional[SocialMediaAggregator] = None,
        min_confidence: float = 0.5,
        vendor_delay: float = 1.0,
    ):
        """
        Args:
            aggregator: Platform fan-out; a credential-less one by default
            min_confidence: Default acceptance threshold in [0, 1]
            vendor_delay: Seconds to sleep between vendors in a batch crawl
        """
        self.aggregator = aggregator or SocialMediaAggregator()
        self.min_confidence = validate_confidence(min_confidence)
        self.vendor_delay = vendor_delay

    def set_min_confidence(self, confidence: float) -> None:
        self.min_confidence = validate_confidence(confidence)

    def build_crawl_query(self, vendor: VendorQuery, now: Optional[datetime] = None) -> CrawlQuery:
        """Merge the vendor's identity hints with generic food-vendor keywords."""
        now = now or datetime.now(timezone.utc)

        if vendor.social_handle:
            usernames = [vendor.social_handle]
        else:
            usernames = _unique(vendor.usernames)

        return CrawlQuery(
            search_terms=_unique([*vendor.search_terms, vendor.vendor_name or '', *GENERIC_SEARCH_TERMS]),
            hashtags=_unique([*vendor.hashtags, *GENERIC_HASHTAGS]),
            usernames=usernames,
            max_posts=vendor.max_posts or DEFAULT_MAX_POSTS,
            # Narrows the YouTube API search; other platforms only expose recent posts
            date_range=vendor.date_range or DateRange(
                start=now - timedelta(days=LOOKBACK_DAYS),
                end=now + timedelta(days=LOOKAHEAD_DAYS),
            ),
        )

    def determine_platforms(self, vendor: VendorQuery) -> List[Platform]:
        if vendor.platform:
            return [Platform(vendor.platform)]
        return list(ALL_PLATFORMS)

    async def crawl_vendor_schedules(
        self,
        vendor: VendorQuery,
        existing: Iterable[Schedule] = (),
        today: Optional[date] = None,
    ) -> ScheduleCrawlerResult:
        """
        Crawl every selected platform for one vendor and reconcile the posts.

        Args:
            vendor: Vendor identity hints and crawl options
            existing: Schedules already known for the vendor
            today: Reference date for relative date expressions

        Returns:
            ScheduleCrawlerResult with accepted schedules, every post seen,
            one activity log per post and a run summary

        Raises:
            ConfigurationError: If the vendor has no identity or the
                confidence threshold is out of range
        """
        if not (vendor.vendor_id or vendor.vendor_name or vendor.social_handle):
            raise ConfigurationError('At least one of vendorId, vendorName, or socialHandle is required')

        min_confidence = self.min_confidence
        if vendor.min_confidence is not None:
            min_confidence = validate_confidence(vendor.min_confidence)

        query = self.build_crawl_query(vendor)
        platforms = self.determine_platforms(vendor)
        logger.info(
            f"Crawling {', '.join(p.value for p in platforms)} for vendor {vendor.vendor_id}"
        )

        platform_results = await self.aggregator.fetch_many(platforms, query)

        posts: List[Post] = []
        errors: List[str] = []
        for result in platform_results.values():
            posts.extend(result.posts)
            errors.extend(result.errors)

        reconciler = ScheduleReconciler(min_confidence)
        batch = reconciler.process_posts(posts, vendor.vendor_id, existing, today)

        summary = self._summarize(posts, batch.schedules, batch.activity_logs, platform_results, errors)
        logger.info(
            f"Vendor {vendor.vendor_id}: {summary.total_posts} posts, "
            f"{summary.total_schedules} schedules, {len(errors)} errors"
        )

        return ScheduleCrawlerResult(
            vendor=vendor,
            schedules=batch.schedules,
            posts=posts,
            platform_results=platform_results,
            activity_logs=batch.activity_logs,
            reconcile_summary=batch.summary,
            summary=summary,
        )

    async def crawl_multiple_vendor_schedules(
        self,
        vendors: List[VendorQuery],
        base: Optional[Mapping[str, Any]] = None,
        existing_by_vendor: Optional[Mapping[str, List[Schedule]]] = None,
        today: Optional[date] = None,
    ) -> List[ScheduleCrawlerResult]:
        """
        Crawl vendors one after another with a fixed delay between them.

        A vendor whose crawl raises is logged and skipped.

        Args:
            vendors: Vendors to crawl
            base: Options shared by every vendor (search_terms, hashtags,
                usernames, platform, max_posts, date_range, min_confidence)
            existing_by_vendor: Known schedules keyed by vendor id
            today: Reference date for relative date expressions

        Returns:
            One result per vendor that crawled successfully, in input order
        """
        base = base or {}
        existing_by_vendor = existing_by_vendor or {}
        results = []

        for index, vendor in enumerate(vendors):
            if index and self.vendor_delay:
                await asyncio.sleep(self.vendor_delay)

            try:
                merged = merge_vendor_options(vendor, base)
                result = await self.crawl_vendor_schedules(
                    merged,
                    existing_by_vendor.get(vendor.vendor_id, []),
                    today,
                )
                results.append(result)
            except Exception as e:
                logger.error(f"Failed to crawl vendor {vendor.vendor_id}: {str(e)}")

        logger.info(f"Crawled {len(results)} of {len(vendors)} vendors")
        return results

    async def get_schedules_for_date_range(
        self,
        vendor: VendorQuery,
        date_range: DateRange,
        existing: Iterable[Schedule] = (),
        today: Optional[date] = None,
    ) -> List[Schedule]:
        """Crawl with the given window and keep the schedules dated inside it."""
        result = await self.crawl_vendor_schedules(replace(vendor, date_range=date_range), existing, today)
        start = date_range.start.date().isoformat()
        end = date_range.end.date().isoformat()
        return [schedule for schedule in result.schedules if start <= schedule.date <= end]

    def _summarize(
        self,
        posts: List[Post],
        schedules: List[Schedule],
        activity_logs,
        platform_results: Dict[Platform, PlatformResult],
        errors: List[str],
    ) -> CrawlSummary:
        # One activity log per post, each carrying that post's confidence
        average = 0.0
        if activity_logs:
            average = sum(log.confidence_score for log in activity_logs) / len(activity_logs)

        return CrawlSummary(
            total_posts=len(posts),
            total_schedules=len(schedules),
            average_confidence=round(average, 2),
            platform_breakdown={
                Platform(platform).value: len(result.posts)
                for platform, result in platform_results.items()
            },
            errors=errors,
        )


def merge_vendor_options(vendor: VendorQuery, base: Mapping[str, Any]) -> VendorQuery:
    """Apply batch-wide options underneath a vendor's own settings."""
    if not base:
        return vendor

    platform = vendor.platform or base.get('platform')
    if platform is not None:
        try:
            platform = Platform(platform)
        except ValueError:
            raise ConfigurationError(f"Platform {platform} is not supported")

    return replace(
        vendor,
        search_terms=[*(base.get('search_terms') or []), *vendor.search_terms],
        hashtags=[*(base.get('hashtags') or []), *vendor.hashtags],
        usernames=vendor.usernames or list(base.get('usernames') or []),
        platform=platform,
        max_posts=vendor.max_posts or base.get('max_posts'),
        date_range=vendor.date_range or base.get('date_range'),
        min_confidence=(
            vendor.min_confidence if vendor.min_confidence is not None else base.get('min_confidence')
        ),
    )
