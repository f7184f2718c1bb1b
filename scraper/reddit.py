"""Reddit source adapter."""
import logging
from typing import List, Optional

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
    RedditCredentials,
)
from scraper.base import (
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    add_unique,
    build_result,
    clean_text,
    collect,
    extract_mentions,
    generate_post_id,
    is_image_url,
    is_video_url,
    open_client,
    parse_count,
    parse_timestamp,
    send_request,
)

logger = logging.getLogger(__name__)


class RedditAdapter:
    """
    Fetches posts through Reddit's JSON listing endpoints.

    The public JSON API works without credentials; when an OAuth client id
    and secret are configured, requests are upgraded to an app-only token.
    If the JSON path fails, the static old.reddit.com search page is scraped.
    """

    platform = Platform.REDDIT

    PUBLIC_BASE_URL = 'https://www.reddit.com'
    OAUTH_BASE_URL = 'https://oauth.reddit.com'
    TOKEN_URL = 'https://www.reddit.com/api/v1/access_token'
    SCRAPE_URL = 'https://old.reddit.com/search'

    def __init__(
        self,
        credentials: Optional[RedditCredentials] = None,
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

    @property
    def user_agent(self) -> str:
        if self.credentials and self.credentials.user_agent:
            return self.credentials.user_agent
        return DEFAULT_USER_AGENT

    def validate_config(self, query: CrawlQuery) -> None:
        if not (query.search_terms or query.usernames):
            raise ConfigurationError(
                'Invalid configuration: At least one search term or username is required'
            )

    async def fetch(self, query: CrawlQuery) -> PlatformResult:
        """
        Fetch Reddit posts for every search term and username in the query.

        Raises:
            ConfigurationError: If the query has no search terms or usernames
        """
        self.validate_config(query)
        posts: List[Post] = []
        errors: List[str] = []

        async with open_client(self.client, self.timeout) as client:
            access_token = await self._authenticate(client, errors)
            api_ok = await collect(
                'Reddit API request',
                lambda found: self._fetch_api(client, query, access_token, found),
                posts,
                errors,
            )

            if not api_ok:
                logger.info("Falling back to Reddit web scraping")
                await collect(
                    'Reddit scraping',
                    lambda found: self._scrape(client, query, found),
                    posts,
                    errors,
                )

        logger.info(f"Reddit fetch complete: {len(posts)} posts, {len(errors)} errors")
        return build_result(self.platform, posts, errors, query, self.build_search_query(query))

    def build_search_query(self, query: CrawlQuery) -> str:
        parts = list(query.search_terms)
        parts.extend(f"author:{user}" for user in query.usernames)
        return ' OR '.join(parts)

    @staticmethod
    def query_variants(term: str) -> List[str]:
        """Original term, then unquoted, then OR-joined words, without repeats."""
        variants = []
        for variant in (term, term.replace('"', '').replace("'", ''), ' OR '.join(term.split())):
            if variant and variant not in variants:
                variants.append(variant)
        return variants

    async def _authenticate(self, client: httpx.AsyncClient, errors: List[str]) -> Optional[str]:
        if not (self.credentials and self.credentials.client_id and self.credentials.client_secret):
            return None

        try:
            response = await send_request(
                client,
                'POST',
                self.TOKEN_URL,
                max_retries=self.max_retries,
                base_delay=self.retry_delay,
                auth=(self.credentials.client_id, self.credentials.client_secret),
                data={'grant_type': 'client_credentials'},
                headers={'User-Agent': self.user_agent},
            )
            return response.json()['access_token']
        except (httpx.HTTPError, KeyError, ValueError) as e:
            message = f"Reddit authentication failed, continuing unauthenticated: {e}"
            logger.warning(message)
            errors.append(message)
            return None

    async def _get_listing(self, client: httpx.AsyncClient, path: str, params: dict,
                           access_token: Optional[str]) -> List[Post]:
        headers = {'User-Agent': self.user_agent}
        base_url = self.PUBLIC_BASE_URL
        if access_token:
            headers['Authorization'] = f"Bearer {access_token}"
            base_url = self.OAUTH_BASE_URL
            path = path.replace('.json', '')

        response = await send_request(
            client,
            'GET',
            f"{base_url}{path}",
            max_retries=self.max_retries,
            base_delay=self.retry_delay,
            params=params,
            headers=headers,
        )
        children = ((response.json() or {}).get('data') or {}).get('children') or []
        return [self._parse_listing_post(child.get('data') or {}) for child in children]

    async def _fetch_api(self, client: httpx.AsyncClient, query: CrawlQuery,
                         access_token: Optional[str], posts: List[Post]) -> None:
        limit = str(min(query.max_posts or 25, 100))

        for term in query.search_terms:
            term_posts: List[Post] = []
            for variant in self.query_variants(term):
                logger.debug(f"Searching Reddit for: {variant}")
                found = await self._get_listing(
                    client,
                    '/search.json',
                    {'q': variant, 'limit': limit, 'sort': 'new', 'type': 'link'},
                    access_token,
                )
                add_unique(term_posts, found)
                if term_posts:
                    break
            add_unique(posts, term_posts)

        for username in query.usernames:
            found = await self._get_listing(
                client,
                f"/user/{username}/submitted.json",
                {'limit': limit, 'sort': 'new'},
                access_token,
            )
            add_unique(posts, found)

    def _parse_listing_post(self, data: dict) -> Post:
        title = data.get('title', '')
        selftext = data.get('selftext') or ''
        author = data.get('author') or 'unknown'
        url = data.get('url') or ''

        return Post(
            id=generate_post_id(self.platform, data.get('id'), data.get('permalink', ''), title),
            platform=self.platform,
            author=Author(
                username=author,
                profile_url=f"https://www.reddit.com/user/{author}",
            ),
            text=clean_text(f"{title}\n\n{selftext}" if selftext else title),
            post_url=f"https://www.reddit.com{data.get('permalink', '')}",
            timestamp=parse_timestamp(data.get('created_utc')),
            images=[url] if url and is_image_url(url) else [],
            videos=[url] if url and (is_video_url(url) or data.get('is_video')) else [],
            links=[url] if url else [],
            hashtags=[],
            mentions=extract_mentions(selftext),
            engagement=Engagement(
                likes=data.get('ups', 0),
                comments=data.get('num_comments', 0),
            ),
        )

    async def _scrape(self, client: httpx.AsyncClient, query: CrawlQuery, posts: List[Post]) -> None:
        for term in query.search_terms:
            response = await send_request(
                client,
                'GET',
                self.SCRAPE_URL,
                max_retries=self.max_retries,
                base_delay=self.retry_delay,
                params={'q': term, 'sort': 'new'},
                headers={'User-Agent': self.user_agent},
                follow_redirects=True,
            )
            soup = BeautifulSoup(response.text, 'html.parser')
            scraped = [self._parse_scraped_post(element) for element in soup.select('div.search-result-link')]
            add_unique(posts, [post for post in scraped if post])

    def _parse_scraped_post(self, element) -> Optional[Post]:
        title_elem = element.select_one('a.search-title')
        if not title_elem:
            return None

        title = clean_text(title_elem.get_text())
        href = title_elem.get('href', '')
        post_url = href if href.startswith('http') else f"https://www.reddit.com{href}"
        author_elem = element.select_one('a.author')
        author = author_elem.get_text(strip=True) if author_elem else 'unknown'
        time_elem = element.find('time')
        score_elem = element.select_one('span.search-score')
        comments_elem = element.select_one('a.search-comments')

        return Post(
            id=generate_post_id(self.platform, element.get('data-fullname'), post_url, title),
            platform=self.platform,
            author=Author(username=author, profile_url=f"https://www.reddit.com/user/{author}"),
            text=title,
            post_url=post_url,
            timestamp=parse_timestamp(time_elem.get('datetime') if time_elem else None),
            engagement=Engagement(
                likes=parse_count(score_elem.get_text()) if score_elem else None,
                comments=parse_count(comments_elem.get_text()) if comments_elem else None,
            ),
        )
