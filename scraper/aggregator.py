"""Fan-out of one crawl query across several platform adapters."""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

from processor.models import (
    ALL_PLATFORMS,
    ApiCredentials,
    CrawlQuery,
    DateRange,
    Platform,
    PlatformResult,
    Post,
)
from scraper.base import DEFAULT_TIMEOUT, SourceAdapter
from scraper.instagram import InstagramAdapter
from scraper.reddit import RedditAdapter
from scraper.twitter import TwitterAdapter
from scraper.youtube import YouTubeAdapter

logger = logging.getLogger(__name__)

ADAPTERS = {
    Platform.TWITTER: TwitterAdapter,
    Platform.INSTAGRAM: InstagramAdapter,
    Platform.REDDIT: RedditAdapter,
    Platform.YOUTUBE: YouTubeAdapter,
}

DEFAULT_MERGED_MAX_POSTS = 100


@dataclass
class MergedPosts:
    """Posts from all platforms in one stream, newest first."""
    all_posts: List[Post]
    by_platform: Dict[Platform, PlatformResult]
    total_posts: int
    platform_counts: Dict[str, int]
    errors: List[str] = field(default_factory=list)


@dataclass
class InfluencerStats:
    username: str
    platform: Platform
    post_count: int
    total_engagement: int

    @property
    def avg_engagement(self) -> float:
        return self.total_engagement / self.post_count if self.post_count else 0.0


class SocialMediaAggregator:
    """Runs platform fetches concurrently and settles every one of them."""

    def __init__(
        self,
        credentials: Optional[ApiCredentials] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        fetch_timeout: Optional[float] = 60.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """
        Args:
            credentials: Per-platform credential bundles; missing ones mean scraping
            client: Shared HTTP client, mostly for tests
            timeout: Per-request HTTP timeout in seconds
            fetch_timeout: Upper bound in seconds for a whole platform fetch, or None
            max_retries: Attempts per HTTP request
            retry_delay: Base backoff delay in seconds
        """
        self.credentials = credentials or ApiCredentials()
        self.client = client
        self.timeout = timeout
        self.fetch_timeout = fetch_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def build_adapter(self, platform: Platform) -> SourceAdapter:
        """
        Raises:
            ValueError: If no adapter exists for the platform
        """
        try:
            adapter_class = ADAPTERS[Platform(platform)]
        except (KeyError, ValueError):
            raise ValueError(f"Platform {platform} is not supported yet")

        return adapter_class(
            credentials=getattr(self.credentials, Platform(platform).value),
            client=self.client,
            timeout=self.timeout,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
        )

    async def fetch_platform(self, platform: Platform, query: CrawlQuery) -> PlatformResult:
        adapter = self.build_adapter(platform)
        if self.fetch_timeout is None:
            return await adapter.fetch(query)
        try:
            return await asyncio.wait_for(adapter.fetch(query), timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"fetch timed out after {self.fetch_timeout} seconds")

    async def fetch_many(
        self,
        platforms: List[Platform],
        query: CrawlQuery,
    ) -> Dict[Platform, PlatformResult]:
        """
        Fetch every platform concurrently, never letting one failure cancel the others.

        Args:
            platforms: Platforms to query
            query: Crawl query shared by all platforms

        Returns:
            One PlatformResult per requested platform; a platform whose fetch
            raised gets an empty result carrying the error message
        """
        outcomes = await asyncio.gather(
            *(self.fetch_platform(platform, query) for platform in platforms),
            return_exceptions=True,
        )

        results: Dict[Platform, PlatformResult] = {}
        for platform, outcome in zip(platforms, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                message = str(outcome) or type(outcome).__name__
                logger.error(f"Platform {platform} fetch failed: {message}")
                results[platform] = PlatformResult(
                    platform=platform,
                    posts=[],
                    errors=[message],
                    search_query=build_search_query(query),
                )
            else:
                results[platform] = outcome

        return results

    async def search_all(
        self,
        query: CrawlQuery,
        platforms: Optional[List[Platform]] = None,
    ) -> MergedPosts:
        """
        Fetch all platforms and merge the posts into one stream.

        Returns:
            MergedPosts sorted newest first and capped at ``query.max_posts``
            (100 by default), with per-platform counts and errors prefixed by
            their platform
        """
        by_platform = await self.fetch_many(platforms or list(ALL_PLATFORMS), query)

        all_posts: List[Post] = []
        platform_counts: Dict[str, int] = {}
        errors: List[str] = []
        for platform, result in by_platform.items():
            all_posts.extend(result.posts)
            platform_counts[Platform(platform).value] = len(result.posts)
            errors.extend(f"{Platform(platform).value}: {error}" for error in result.errors)

        all_posts.sort(key=lambda post: post.timestamp, reverse=True)

        return MergedPosts(
            all_posts=all_posts[:query.max_posts or DEFAULT_MERGED_MAX_POSTS],
            by_platform=by_platform,
            total_posts=len(all_posts),
            platform_counts=platform_counts,
            errors=errors,
        )


def build_search_query(query: CrawlQuery) -> str:
    parts = list(query.search_terms)
    parts.extend(f"#{tag}" for tag in query.hashtags)
    parts.extend(query.usernames)
    return ' OR '.join(parts)


def filter_posts_by_date_range(posts: List[Post], date_range: DateRange) -> List[Post]:
    return [post for post in posts if date_range.contains(post.timestamp)]


def filter_posts_by_engagement(posts: List[Post], min_likes: int = 0, min_shares: int = 0) -> List[Post]:
    return [
        post for post in posts
        if (post.engagement.likes or 0) >= min_likes and (post.engagement.shares or 0) >= min_shares
    ]


def group_posts_by_hashtag(posts: List[Post]) -> Dict[str, List[Post]]:
    grouped: Dict[str, List[Post]] = defaultdict(list)
    for post in posts:
        for hashtag in post.hashtags:
            grouped[hashtag].append(post)
    return dict(grouped)


def get_top_influencers(posts: List[Post], limit: int = 10) -> List[InfluencerStats]:
    """Rank authors by total likes + shares + comments across their posts."""
    stats: Dict[tuple, InfluencerStats] = {}
    for post in posts:
        key = (post.author.username, post.platform)
        if key not in stats:
            stats[key] = InfluencerStats(
                username=post.author.username,
                platform=post.platform,
                post_count=0,
                total_engagement=0,
            )
        stats[key].post_count += 1
        stats[key].total_engagement += post.engagement.total

    ranked = sorted(stats.values(), key=lambda item: item.total_engagement, reverse=True)
    return ranked[:limit]
