"""Data models for schedule crawling and reconciliation."""
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class ConfigurationError(ValueError):
    """Raised for invalid queries or thresholds, before any I/O happens."""


class Platform(str, Enum):
    """Supported social media platforms."""
    TWITTER = 'twitter'
    INSTAGRAM = 'instagram'
    REDDIT = 'reddit'
    YOUTUBE = 'youtube'


ALL_PLATFORMS = [Platform.TWITTER, Platform.INSTAGRAM, Platform.REDDIT, Platform.YOUTUBE]

# Minimum confidence for a parse to count as a schedule, whatever the caller threshold
VALIDITY_THRESHOLD = 0.5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Author:
    """Author of a social media post."""
    username: str
    display_name: Optional[str] = None
    profile_url: Optional[str] = None
    avatar_url: Optional[str] = None
    verified: bool = False


@dataclass
class Engagement:
    """Engagement counters; None when the source does not expose them."""
    likes: Optional[int] = None
    shares: Optional[int] = None
    comments: Optional[int] = None
    views: Optional[int] = None

    @property
    def total(self) -> int:
        return (self.likes or 0) + (self.shares or 0) + (self.comments or 0)


@dataclass
class Post:
    """A social media post normalized across platforms."""
    id: str
    platform: Platform
    author: Author
    text: str
    post_url: str
    timestamp: datetime = field(default_factory=utc_now)
    images: List[str] = field(default_factory=list)
    videos: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    hashtags: List[str] = field(default_factory=list)
    mentions: List[str] = field(default_factory=list)
    engagement: Engagement = field(default_factory=Engagement)

    @property
    def source_tag(self) -> str:
        return f"{self.platform.value}:{self.id}"


@dataclass
class DateRange:
    """Inclusive datetime window."""
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


@dataclass
class CrawlQuery:
    """Query sent to every source adapter."""
    search_terms: List[str] = field(default_factory=list)
    hashtags: List[str] = field(default_factory=list)
    usernames: List[str] = field(default_factory=list)
    max_posts: Optional[int] = None
    date_range: Optional[DateRange] = None
    include_replies: bool = False
    include_retweets: bool = True


@dataclass
class PlatformResult:
    """Posts and error strings produced by one platform fetch."""
    platform: Platform
    posts: List[Post] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    search_query: str = ''
    total_found: int = 0
    crawled_at: datetime = field(default_factory=utc_now)


@dataclass
class ParsedScheduleData:
    """Schedule fragments extracted from free text."""
    date: Optional[str]
    start_time: Optional[str]
    end_time: Optional[str]
    time_range: Optional[str]
    location: Optional[str]
    confidence: float
    raw_text: str

    @property
    def has_fragments(self) -> bool:
        return any(value is not None for value in (self.date, self.time_range, self.location))

    @property
    def is_valid(self) -> bool:
        return self.confidence >= VALIDITY_THRESHOLD and self.has_fragments


@dataclass
class ScheduleCandidate:
    """A parsed post waiting to be reconciled for one vendor."""
    vendor_id: str
    parsed: ParsedScheduleData
    source: str
    platform: Optional[str] = None
    post_id: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.parsed.is_valid


@dataclass(frozen=True)
class Schedule:
    """A vendor's claimed presence at a date, time and location."""
    vendor_id: str
    date: str
    start_time: str
    end_time: str
    location: str
    source: str
    confidence: float
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def identity_key(self) -> Tuple[str, str, str]:
        return (self.vendor_id, self.date, self.location)

    @property
    def schedule_id(self) -> str:
        return f"{self.vendor_id}_{self.date}_{self.location}"


class ActivityAction(str, Enum):
    """Audit actions recorded in the activity log."""
    SCHEDULE_DETECTED = 'schedule_detected'
    SCHEDULE_UPDATED = 'schedule_updated'
    SCHEDULE_REJECTED = 'schedule_rejected'
    MANUAL_REVIEW = 'manual_review'
    BUSINESS_SEARCH = 'business_search'


@dataclass(frozen=True)
class ActivityLog:
    """Immutable audit record of one extraction attempt."""
    id: str
    vendor_id: str
    timestamp: datetime
    source: str
    confidence_score: float
    action: ActivityAction
    metadata: Dict[str, Any] = field(default_factory=dict)


class ReconcileAction(str, Enum):
    """Outcome of reconciling one candidate."""
    CREATED = 'created'
    UPDATED = 'updated'
    REJECTED = 'rejected'
    DUPLICATE = 'duplicate'


@dataclass
class ReconcileResult:
    action: ReconcileAction
    activity_log: ActivityLog
    schedule: Optional[Schedule] = None
    reason: Optional[str] = None


@dataclass
class BatchReconcileResult:
    schedules: List[Schedule]
    activity_logs: List[ActivityLog]
    summary: Dict[str, int]


@dataclass
class VendorQuery:
    """Vendor identity hints and crawl options."""
    vendor_id: str
    vendor_name: Optional[str] = None
    social_handle: Optional[str] = None
    search_terms: List[str] = field(default_factory=list)
    hashtags: List[str] = field(default_factory=list)
    usernames: List[str] = field(default_factory=list)
    platform: Optional[Platform] = None
    max_posts: Optional[int] = None
    date_range: Optional[DateRange] = None
    min_confidence: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'VendorQuery':
        """
        Build a vendor query from a camelCase or snake_case payload.

        Raises:
            ConfigurationError: If the payload has no vendor identity or
                names an unknown platform
        """
        def pick(*keys):
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        vendor_id = pick('vendorId', 'vendor_id', 'id')
        vendor_name = pick('vendorName', 'vendor_name', 'name')
        social_handle = pick('socialHandle', 'social_handle')
        if not (vendor_id or vendor_name or social_handle):
            raise ConfigurationError(
                'At least one of vendorId, vendorName, or socialHandle is required'
            )

        platform = pick('platform')
        if platform is not None:
            try:
                platform = Platform(platform)
            except ValueError:
                raise ConfigurationError(f"Platform {platform} is not supported")

        date_range = pick('dateRange', 'date_range')
        if date_range is not None and not isinstance(date_range, DateRange):
            try:
                date_range = DateRange(
                    start=datetime.fromisoformat(date_range['from']),
                    end=datetime.fromisoformat(date_range['to']),
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid dateRange: {e}")

        return cls(
            vendor_id=vendor_id or vendor_name or social_handle,
            vendor_name=vendor_name,
            social_handle=social_handle,
            search_terms=list(pick('searchTerms', 'search_terms') or []),
            hashtags=list(pick('hashtags') or []),
            usernames=list(pick('usernames') or []),
            platform=platform,
            max_posts=pick('maxPosts', 'max_posts'),
            date_range=date_range,
            min_confidence=pick('minConfidence', 'min_confidence'),
        )


@dataclass
class CrawlSummary:
    total_posts: int
    total_schedules: int
    average_confidence: float
    platform_breakdown: Dict[str, int]
    errors: List[str]


@dataclass
class ScheduleCrawlerResult:
    """Everything produced by crawling one vendor."""
    vendor: VendorQuery
    schedules: List[Schedule]
    posts: List[Post]
    platform_results: Dict[Platform, PlatformResult]
    activity_logs: List[ActivityLog]
    reconcile_summary: Dict[str, int]
    summary: CrawlSummary


@dataclass
class SyncResult:
    """Result of persisting a crawl."""
    added: int
    updated: int
    logged: int
    errors: List[str]


@dataclass
class TwitterCredentials:
    bearer_token: str
    api_key: Optional[str] = None
    api_secret: Optional[str] = None


@dataclass
class InstagramCredentials:
    access_token: str
    client_id: Optional[str] = None
    client_secret: Optional[str] = None


@dataclass
class RedditCredentials:
    user_agent: str
    client_id: Optional[str] = None
    client_secret: Optional[str] = None


@dataclass
class YouTubeCredentials:
    api_key: str


@dataclass
class ApiCredentials:
    """Optional per-platform credential bundles."""
    twitter: Optional[TwitterCredentials] = None
    instagram: Optional[InstagramCredentials] = None
    reddit: Optional[RedditCredentials] = None
    youtube: Optional[YouTubeCredentials] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ApiCredentials':
        """
        Read credentials from environment variables.

        Platforms whose required variable is unset get no bundle, which sends
        their adapter down the scraping path.
        """
        env = os.environ if environ is None else environ

        twitter = None
        if env.get('TWITTER_BEARER_TOKEN'):
            twitter = TwitterCredentials(
                bearer_token=env['TWITTER_BEARER_TOKEN'],
                api_key=env.get('TWITTER_API_KEY'),
                api_secret=env.get('TWITTER_API_SECRET'),
            )

        instagram = None
        if env.get('INSTAGRAM_ACCESS_TOKEN'):
            instagram = InstagramCredentials(
                access_token=env['INSTAGRAM_ACCESS_TOKEN'],
                client_id=env.get('INSTAGRAM_CLIENT_ID'),
                client_secret=env.get('INSTAGRAM_CLIENT_SECRET'),
            )

        reddit = RedditCredentials(
            user_agent=env.get('REDDIT_USER_AGENT', 'Food Vendor Schedule Crawler'),
            client_id=env.get('REDDIT_CLIENT_ID'),
            client_secret=env.get('REDDIT_CLIENT_SECRET'),
        )

        youtube = None
        if env.get('YOUTUBE_API_KEY'):
            youtube = YouTubeCredentials(api_key=env['YOUTUBE_API_KEY'])

        return cls(twitter=twitter, instagram=instagram, reddit=reddit, youtube=youtube)
