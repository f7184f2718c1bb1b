"""Twitter/X source adapter."""
import logging
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
    TwitterCredentials,
)
from scraper.base import (
    DEFAULT_TIMEOUT,
    ScrapeError,
    add_unique,
    build_result,
    clean_text,
    collect,
    extract_hashtags,
    extract_mentions,
    extract_urls,
    generate_post_id,
    open_client,
    parse_count,
    parse_timestamp,
    send_request,
)

logger = logging.getLogger(__name__)


class TwitterAdapter:
    """Fetches posts from the X API v2, falling back to the public search page."""

    platform = Platform.TWITTER

    API_URL = 'https://api.x.com/2/tweets/search/recent'
    SEARCH_URL = 'https://x.com/search'

    # Tried in order; the first selector yielding posts wins
    SCRAPE_SELECTORS = [
        'article[data-testid="tweet"]',
        'div[data-testid="tweet"]',
        '[data-testid="tweetText"]',
        'div[role="article"]',
    ]

    def __init__(
        self,
        credentials: Optional[TwitterCredentials] = None,
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
        if not (query.search_terms or query.hashtags or query.usernames):
            raise ConfigurationError(
                'Invalid configuration: At least one search term, hashtag, or username is required'
            )

    async def fetch(self, query: CrawlQuery) -> PlatformResult:
        """
        Fetch tweets matching the query.

        Args:
            query: Search terms, hashtags and usernames to look for

        Returns:
            PlatformResult with up to ``max_posts`` posts and any error strings

        Raises:
            ConfigurationError: If the query has nothing to search for
        """
        self.validate_config(query)
        search_query = self.build_search_query(query)
        posts: List[Post] = []
        errors: List[str] = []

        async with open_client(self.client, self.timeout) as client:
            api_ok = False
            if self.credentials and self.credentials.bearer_token:
                logger.info("Using Twitter API with bearer token")
                api_ok = await collect(
                    'Twitter API request',
                    lambda found: self._fetch_api(client, query, search_query, found),
                    posts,
                    errors,
                )

            if not api_ok:
                logger.info("Falling back to Twitter web scraping")
                await collect(
                    'Twitter scraping',
                    lambda found: self._scrape(client, search_query, found),
                    posts,
                    errors,
                )

        logger.info(f"Twitter fetch complete: {len(posts)} posts, {len(errors)} errors")
        return build_result(self.platform, posts, errors, query, search_query)

    def build_search_query(self, query: CrawlQuery) -> str:
        parts = list(query.search_terms)
        parts.extend(f"#{tag}" for tag in query.hashtags)
        parts.extend(f"from:{user}" for user in query.usernames)
        return ' OR '.join(parts)

    async def _fetch_api(
        self,
        client: httpx.AsyncClient,
        query: CrawlQuery,
        search_query: str,
        posts: List[Post],
    ) -> None:
        max_results = min(max(query.max_posts or 10, 10), 100)
        params = {
            'query': search_query,
            'max_results': str(max_results),
            'tweet.fields': 'created_at,author_id,public_metrics,attachments,lang',
            'expansions': 'author_id,attachments.media_keys',
            'user.fields': 'username,name,verified,profile_image_url',
            'media.fields': 'type,url,preview_image_url',
        }
        response = await send_request(
            client,
            'GET',
            self.API_URL,
            max_retries=self.max_retries,
            base_delay=self.retry_delay,
            params=params,
            headers={'Authorization': f"Bearer {self.credentials.bearer_token}"},
        )
        data = response.json()

        includes = data.get('includes') or {}
        users = {user['id']: user for user in includes.get('users', []) if 'id' in user}
        media = {item['media_key']: item for item in includes.get('media', []) if 'media_key' in item}

        tweets = data.get('data') or []
        if not tweets:
            logger.info("No tweets found in API response")

        add_unique(posts, [self._parse_api_tweet(tweet, users, media) for tweet in tweets])

    def _parse_api_tweet(self, tweet: dict, users: Dict[str, dict], media: Dict[str, dict]) -> Post:
        text = tweet.get('text', '')
        author = users.get(tweet.get('author_id'), {})
        username = author.get('username') or 'unknown'
        metrics = tweet.get('public_metrics') or {}

        images, videos = [], []
        for key in (tweet.get('attachments') or {}).get('media_keys', []):
            item = media.get(key)
            if not item:
                continue
            if item.get('type') == 'photo' and item.get('url'):
                images.append(item['url'])
            elif item.get('type') in ('video', 'animated_gif'):
                videos.append(item.get('url') or item.get('preview_image_url') or '')

        return Post(
            id=generate_post_id(self.platform, tweet.get('id')),
            platform=self.platform,
            author=Author(
                username=username,
                display_name=author.get('name'),
                profile_url=f"https://x.com/{username}" if author.get('username') else None,
                avatar_url=author.get('profile_image_url'),
                verified=bool(author.get('verified', False)),
            ),
            text=text,
            post_url=f"https://x.com/{username}/status/{tweet.get('id')}",
            timestamp=parse_timestamp(tweet.get('created_at')),
            images=images,
            videos=videos,
            links=extract_urls(text),
            hashtags=extract_hashtags(text),
            mentions=extract_mentions(text),
            engagement=Engagement(
                likes=metrics.get('like_count', 0),
                shares=metrics.get('retweet_count', 0),
                comments=metrics.get('reply_count', 0),
                views=metrics.get('impression_count'),
            ),
        )

    async def _scrape(self, client: httpx.AsyncClient, search_query: str, posts: List[Post]) -> None:
        logger.warning("Twitter web scraping is very limited due to anti-bot measures")
        response = await send_request(
            client,
            'GET',
            self.SEARCH_URL,
            max_retries=self.max_retries,
            base_delay=self.retry_delay,
            params={'q': search_query, 'src': 'typed_query', 'f': 'live'},
            follow_redirects=True,
        )

        final_url = str(response.url)
        if 'login' in final_url or 'i/flow' in final_url:
            raise ScrapeError('X/Twitter requires authentication for search results')

        soup = BeautifulSoup(response.text, 'html.parser')
        for selector in self.SCRAPE_SELECTORS:
            elements = soup.select(selector)
            scraped = []
            for element in elements:
                post = self._parse_scraped_tweet(element, final_url)
                if post:
                    scraped.append(post)

            if scraped:
                logger.info(f"Found {len(scraped)} tweets using selector: {selector}")
                add_unique(posts, scraped)
                break

    def _parse_scraped_tweet(self, element, page_url: str) -> Optional[Post]:
        text_elem = element.select_one('[data-testid="tweetText"]')
        text = clean_text(text_elem.get_text(' ') if text_elem else element.get_text(' '))
        if len(text) < 20:
            return None

        username = 'unknown'
        user_link = element.select_one('[data-testid="User-Name"] a[href]')
        if user_link:
            username = user_link['href'].strip('/') or 'unknown'
        name_elem = element.select_one('[data-testid="User-Name"] span')

        status_link = element.select_one('a[href*="/status/"]')
        post_url = f"https://x.com{status_link['href']}" if status_link else page_url
        native_id = status_link['href'].rsplit('/', 1)[-1] if status_link else None

        time_elem = element.find('time')
        images = [img['src'] for img in element.select('[data-testid="tweetPhoto"] img[src]')]

        def count(test_id: str) -> Optional[int]:
            found = element.select_one(f'[data-testid="{test_id}"]')
            return parse_count(found.get_text()) if found else None

        return Post(
            id=generate_post_id(self.platform, native_id, post_url, text),
            platform=self.platform,
            author=Author(
                username=username,
                display_name=name_elem.get_text(strip=True) if name_elem else None,
                profile_url=f"https://x.com/{username}" if username != 'unknown' else None,
            ),
            text=text,
            post_url=post_url,
            timestamp=parse_timestamp(time_elem.get('datetime') if time_elem else None),
            images=images,
            links=extract_urls(text),
            hashtags=extract_hashtags(text),
            mentions=extract_mentions(text),
            engagement=Engagement(
                likes=count('like'),
                shares=count('retweet'),
                comments=count('reply'),
            ),
        )
