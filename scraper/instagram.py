"""Instagram source adapter."""
import logging
from typing import List, Optional

import httpx
from bs4 import BeautifulSoup

from processor.models import (
    Author,
    ConfigurationError,
    CrawlQuery,
    Engagement,
    InstagramCredentials,
    Platform,
    PlatformResult,
    Post,
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
    generate_post_id,
    open_client,
    parse_timestamp,
    send_request,
)

logger = logging.getLogger(__name__)


class InstagramAdapter:
    """
    Fetches media through the Instagram Basic Display API.

    The API only returns the token owner's own media. Without a token the
    public hashtag and profile pages are scraped, which yields post links
    with little more than the image alt text.
    """

    platform = Platform.INSTAGRAM

    API_URL = 'https://graph.instagram.com/me/media'
    BASE_URL = 'https://www.instagram.com'
    API_FIELDS = 'id,caption,media_type,media_url,thumbnail_url,permalink,timestamp,username'

    def __init__(
        self,
        credentials: Optional[InstagramCredentials] = None,
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
        if not (query.hashtags or query.usernames):
            raise ConfigurationError(
                'Invalid configuration: At least one hashtag or username is required'
            )

    async def fetch(self, query: CrawlQuery) -> PlatformResult:
        """
        Raises:
            ConfigurationError: If the query has no hashtags or usernames
        """
        self.validate_config(query)
        posts: List[Post] = []
        errors: List[str] = []

        async with open_client(self.client, self.timeout) as client:
            api_ok = False
            if self.credentials and self.credentials.access_token:
                api_ok = await collect(
                    'Instagram API request',
                    lambda found: self._fetch_api(client, found),
                    posts,
                    errors,
                )

            if not api_ok:
                logger.info("Falling back to Instagram web scraping")
                for hashtag in query.hashtags:
                    await collect(
                        f"Instagram scraping of #{hashtag}",
                        lambda found, tag=hashtag: self._scrape_page(
                            client, f"{self.BASE_URL}/explore/tags/{tag}/", found, hashtag=tag),
                        posts,
                        errors,
                    )
                for username in query.usernames:
                    await collect(
                        f"Instagram scraping of @{username}",
                        lambda found, user=username: self._scrape_page(
                            client, f"{self.BASE_URL}/{user}/", found, username=user),
                        posts,
                        errors,
                    )

        logger.info(f"Instagram fetch complete: {len(posts)} posts, {len(errors)} errors")
        return build_result(self.platform, posts, errors, query, self.build_search_query(query))

    def build_search_query(self, query: CrawlQuery) -> str:
        parts = [f"#{tag}" for tag in query.hashtags]
        parts.extend(f"@{user}" for user in query.usernames)
        return ' '.join(parts)

    async def _fetch_api(self, client: httpx.AsyncClient, posts: List[Post]) -> None:
        response = await send_request(
            client,
            'GET',
            self.API_URL,
            max_retries=self.max_retries,
            base_delay=self.retry_delay,
            params={'fields': self.API_FIELDS, 'access_token': self.credentials.access_token},
        )
        media_items = (response.json() or {}).get('data') or []
        add_unique(posts, [self._parse_api_media(media) for media in media_items])

    def _parse_api_media(self, media: dict) -> Post:
        caption = media.get('caption') or ''
        media_type = media.get('media_type')
        media_url = media.get('media_url')
        username = media.get('username') or 'me'

        images = []
        if media_url and media_type in ('IMAGE', 'CAROUSEL_ALBUM'):
            images.append(media_url)
        elif media.get('thumbnail_url'):
            images.append(media['thumbnail_url'])

        return Post(
            id=generate_post_id(self.platform, media.get('id'), media.get('permalink', '')),
            platform=self.platform,
            author=Author(username=username, profile_url=f"{self.BASE_URL}/{username}/"),
            text=caption,
            post_url=media.get('permalink', ''),
            timestamp=parse_timestamp(media.get('timestamp')),
            images=images,
            videos=[media_url] if media_url and media_type == 'VIDEO' else [],
            hashtags=extract_hashtags(caption),
            mentions=extract_mentions(caption),
            engagement=Engagement(),
        )

    async def _scrape_page(
        self,
        client: httpx.AsyncClient,
        url: str,
        posts: List[Post],
        hashtag: Optional[str] = None,
        username: Optional[str] = None,
    ) -> None:
        response = await send_request(
            client,
            'GET',
            url,
            max_retries=self.max_retries,
            base_delay=self.retry_delay,
            follow_redirects=True,
        )
        if '/accounts/login' in str(response.url):
            raise ScrapeError('Instagram requires login to view this page')

        soup = BeautifulSoup(response.text, 'html.parser')
        scraped = []
        for link in soup.select('a[href*="/p/"]'):
            href = link['href']
            post_url = href if href.startswith('http') else f"{self.BASE_URL}{href}"
            image = link.find('img')
            alt_text = clean_text(image.get('alt', '')) if image else ''

            if alt_text:
                text = alt_text
            elif username:
                text = f"Post by @{username}"
            else:
                text = f"Post from hashtag #{hashtag}"

            scraped.append(Post(
                id=generate_post_id(self.platform, None, post_url),
                platform=self.platform,
                author=Author(
                    username=username or 'unknown',
                    profile_url=f"{self.BASE_URL}/{username}/" if username else None,
                ),
                text=text,
                post_url=post_url,
                images=[image['src']] if image and image.get('src') else [],
                hashtags=[hashtag] if hashtag else extract_hashtags(alt_text),
                mentions=extract_mentions(alt_text),
            ))

        add_unique(posts, scraped)
