"""YouTube source adapter."""
import logging
from datetime import timezone
from typing import Dict, List, Optional

import httpx
from bs4 import BeautifulSoup

from processor.models import (
    Author,
    ConfigurationError,
    CrawlQuery,
    Engagement,
    Platform,
    PlatformResult,
    Post,
    YouTubeCredentials,
)
from scraper.base import (
    DEFAULT_TIMEOUT,
    add_unique,
    build_result,
    clean_text,
    collect,
    extract_hashtags,
    extract_mentions,
    generate_post_id,
    open_client,
    parse_count,
    parse_timestamp,
    send_request,
)

logger = logging.getLogger(__name__)


def _video_id(item: dict) -> str:
    item_id = item.get('id')
    if isinstance(item_id, dict):
        return item_id.get('videoId', '')
    return item_id or ''


def _safe_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _published_window(query: CrawlQuery) -> Dict[str, str]:
    """RFC 3339 publishedAfter/publishedBefore search filters for the query's date range."""
    if not query.date_range:
        return {}
    return {
        'publishedAfter': query.date_range.start.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ'),
        'publishedBefore': query.date_range.end.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ'),
    }


class YouTubeAdapter:
    """Fetches videos through the YouTube Data API v3 or the results page."""

    platform = Platform.YOUTUBE

    API_BASE_URL = 'https://www.googleapis.com/youtube/v3'
    RESULTS_URL = 'https://www.youtube.com/results'

    def __init__(
        self,
        credentials: Optional[YouTubeCredentials] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        self.credentials = credentials
        self.client = client
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def validate_config(self, query: CrawlQuery) -> None:
        if not (query.search_terms or query.usernames):
            raise ConfigurationError(
                'Invalid configuration: At least one search term or username is required'
            )

    async def fetch(self, query: CrawlQuery) -> PlatformResult:
        """
        Raises:
            ConfigurationError: If the query has no search terms or usernames
        """
        self.validate_config(query)
        posts: List[Post] = []
        errors: List[str] = []

        async with open_client(self.client, self.timeout) as client:
            api_ok = False
            if self.credentials and self.credentials.api_key:
                api_ok = await collect(
                    'YouTube API request',
                    lambda found: self._fetch_api(client, query, found),
                    posts,
                    errors,
                )

            if not api_ok:
                logger.info("Falling back to YouTube results page scraping")
                await collect(
                    'YouTube scraping',
                    lambda found: self._scrape(client, query, found),
                    posts,
                    errors,
                )

        logger.info(f"YouTube fetch complete: {len(posts)} posts, {len(errors)} errors")
        return build_result(self.platform, posts, errors, query, ' OR '.join(query.search_terms))

    async def _api_get(self, client: httpx.AsyncClient, endpoint: str, params: dict) -> dict:
        response = await send_request(
            client,
            'GET',
            f"{self.API_BASE_URL}/{endpoint}",
            max_retries=self.max_retries,
            base_delay=self.retry_delay,
            params={**params, 'key': self.credentials.api_key},
        )
        return response.json() or {}

    async def _fetch_api(self, client: httpx.AsyncClient, query: CrawlQuery, posts: List[Post]) -> None:
        max_results = str(min(query.max_posts or 25, 50))

        for term in query.search_terms:
            search_data = await self._api_get(client, 'search', {
                'part': 'snippet',
                'q': term,
                'type': 'video',
                'maxResults': max_results,
                'order': 'date',
                **_published_window(query),
            })
            items = search_data.get('items') or []
            if not items:
                continue

            video_ids = [_video_id(item) for item in items]
            stats_data = await self._api_get(client, 'videos', {
                'part': 'statistics',
                'id': ','.join(video_ids),
            })
            stats = {_video_id(item): item for item in stats_data.get('items') or []}
            add_unique(posts, [self._parse_api_video(item, stats.get(_video_id(item))) for item in items])

        for channel_name in query.usernames:
            channel_data = await self._api_get(client, 'search', {
                'part': 'snippet',
                'q': channel_name,
                'type': 'channel',
                'maxResults': '1',
            })
            channels = channel_data.get('items') or []
            if not channels:
                raise ValueError(f'Channel "{channel_name}" not found')

            channel = channels[0]
            channel_id = (
                (channel.get('id') or {}).get('channelId')
                or (channel.get('snippet') or {}).get('channelId', '')
            )
            videos_data = await self._api_get(client, 'search', {
                'part': 'snippet',
                'channelId': channel_id,
                'type': 'video',
                'maxResults': max_results,
                'order': 'date',
                **_published_window(query),
            })
            add_unique(posts, [self._parse_api_video(item) for item in videos_data.get('items') or []])

    def _parse_api_video(self, video: dict, stats: Optional[dict] = None) -> Post:
        video_id = _video_id(video)
        snippet = video.get('snippet') or {}
        title = snippet.get('title', '')
        description = snippet.get('description', '')
        thumbnails: Dict[str, dict] = snippet.get('thumbnails') or {}
        thumbnail = (thumbnails.get('high') or thumbnails.get('default') or {}).get('url')
        statistics = (stats or {}).get('statistics') or {}
        watch_url = f"https://www.youtube.com/watch?v={video_id}"

        return Post(
            id=generate_post_id(self.platform, video_id),
            platform=self.platform,
            author=Author(
                username=snippet.get('channelTitle') or 'unknown',
                display_name=snippet.get('channelTitle'),
                profile_url=f"https://www.youtube.com/channel/{snippet.get('channelId', '')}",
            ),
            text=f"{title}\n\n{description}" if description else title,
            post_url=watch_url,
            timestamp=parse_timestamp(snippet.get('publishedAt')),
            images=[thumbnail] if thumbnail else [],
            videos=[watch_url],
            hashtags=extract_hashtags(description),
            mentions=extract_mentions(description),
            engagement=Engagement(
                likes=_safe_int(statistics.get('likeCount')),
                comments=_safe_int(statistics.get('commentCount')),
                views=_safe_int(statistics.get('viewCount')),
            ),
        )

    async def _scrape(self, client: httpx.AsyncClient, query: CrawlQuery, posts: List[Post]) -> None:
        for term in query.search_terms:
            response = await send_request(
                client,
                'GET',
                self.RESULTS_URL,
                max_retries=self.max_retries,
                base_delay=self.retry_delay,
                params={'search_query': term, 'sp': 'CAI='},
                follow_redirects=True,
            )
            soup = BeautifulSoup(response.text, 'html.parser')
            scraped = [self._parse_scraped_video(element) for element in soup.select('ytd-video-renderer')]
            add_unique(posts, [post for post in scraped if post])

    def _parse_scraped_video(self, element) -> Optional[Post]:
        title_elem = element.select_one('#video-title')
        if not title_elem or not title_elem.get('href'):
            return None

        title = clean_text(title_elem.get('title') or title_elem.get_text())
        video_url = f"https://www.youtube.com{title_elem['href']}"
        channel_elem = element.select_one('#channel-name a')
        channel = channel_elem.get_text(strip=True) if channel_elem else ''
        views_elem = element.select_one('#metadata-line span')

        return Post(
            id=generate_post_id(self.platform, None, video_url),
            platform=self.platform,
            author=Author(username=channel or 'unknown', display_name=channel or None),
            text=title,
            post_url=video_url,
            videos=[video_url],
            hashtags=extract_hashtags(title),
            engagement=Engagement(views=parse_count(views_elem.get_text()) if views_elem else None),
        )
