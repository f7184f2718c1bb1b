"""Shared helpers for the platform source adapters."""
import asyncio
import hashlib
import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Protocol

import httpx

from processor.models import CrawlQuery, Platform, PlatformResult, Post

logger = logging.getLogger(__name__)

DEFAULT_MAX_POSTS = 50
DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/124.0 Safari/537.36'
)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

HASHTAG_RE = re.compile(r'#(\w+)')
MENTION_RE = re.compile(r'(?<![\w.])@(\w+)')
URL_RE = re.compile(r'https?://[^\s]+')
IMAGE_URL_RE = re.compile(r'\.(jpg|jpeg|png|gif|webp)$', re.IGNORECASE)
VIDEO_URL_RE = re.compile(r'\.(mp4|webm|mov|avi)$', re.IGNORECASE)


class ScrapeError(Exception):
    """Raised when a scraped page cannot be used at all (login wall, block page)."""


class SourceAdapter(Protocol):
    """Capability contract shared by every platform adapter."""

    platform: Platform

    def validate_config(self, query: CrawlQuery) -> None:
        ...

    async def fetch(self, query: CrawlQuery) -> PlatformResult:
        ...


@asynccontextmanager
async def open_client(
    client: Optional[httpx.AsyncClient],
    timeout: float = DEFAULT_TIMEOUT,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the injected client, or a short-lived one owned by this call."""
    if client is not None:
        yield client
        return

    async with httpx.AsyncClient(
        timeout=timeout,
        headers={'User-Agent': DEFAULT_USER_AGENT},
        follow_redirects=True,
    ) as owned_client:
        yield owned_client


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    max_retries: int = 3,
    base_delay: float = 1.0,
    **kwargs,
) -> httpx.Response:
    """
    Send an HTTP request with retry logic.

    Transport errors, 429 and 5xx responses are retried with exponential
    backoff; other 4xx responses fail immediately.

    Args:
        client: HTTP client to send with
        method: HTTP method
        url: Target URL
        max_retries: Total number of attempts
        base_delay: Delay before the second attempt, doubled after each failure
        **kwargs: Passed through to ``client.request``

    Returns:
        The successful response

    Raises:
        httpx.HTTPError: If all retry attempts fail or the request is rejected
    """
    for attempt in range(max_retries):
        try:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response

        except httpx.HTTPError as e:
            retryable = (
                not isinstance(e, httpx.HTTPStatusError)
                or e.response.status_code in RETRYABLE_STATUS_CODES
            )
            if retryable and attempt < max_retries - 1:
                delay = base_delay * (2 ** attempt)
                logger.warning(
                    f"Request to {url} failed (attempt {attempt + 1}/{max_retries}): {e}. "
                    f"Retrying in {delay} seconds..."
                )
                await asyncio.sleep(delay)
            else:
                if retryable:
                    logger.error(f"All {max_retries} attempts to {url} failed. Last error: {e}")
                raise

    raise httpx.RequestError(f"No attempts made for {url}")


async def collect(
    label: str,
    step: Callable[[List[Post]], Awaitable[None]],
    posts: List[Post],
    errors: List[str],
) -> bool:
    """
    Run one fetch path, keeping whatever it collected even if it fails.

    ``step`` appends into ``posts`` as it goes, so posts gathered before an
    error survive. Failures are recorded in ``errors`` instead of raised.

    Returns:
        True if the step finished without error
    """
    try:
        await step(posts)
        return True
    except (httpx.HTTPError, ScrapeError, ValueError) as e:
        message = f"{label} failed: {e}"
        logger.warning(message)
        errors.append(message)
        return False


def add_unique(posts: List[Post], new_posts: List[Post]) -> int:
    """Append posts whose id is not already present; return how many were added."""
    seen = {post.id for post in posts}
    added = 0
    for post in new_posts:
        if post.id not in seen:
            seen.add(post.id)
            posts.append(post)
            added += 1
    return added


def build_result(
    platform: Platform,
    posts: List[Post],
    errors: List[str],
    query: CrawlQuery,
    search_query: str,
    default_max_posts: int = DEFAULT_MAX_POSTS,
) -> PlatformResult:
    """Cap the post list and wrap it into a PlatformResult."""
    max_posts = query.max_posts or default_max_posts
    return PlatformResult(
        platform=platform,
        posts=posts[:max_posts],
        errors=errors,
        search_query=search_query,
        total_found=len(posts),
    )


def generate_post_id(platform: Platform, original_id: Optional[str] = None, *parts: str) -> str:
    """
    Return the native post id, or a deterministic id derived from ``parts``.

    Args:
        platform: Platform the post came from
        original_id: Platform-native id when the source exposes one
        *parts: Stable values (URL, text) identifying a scraped post

    Returns:
        Post identifier unique per platform and post
    """
    if original_id:
        return str(original_id)

    composite = '|'.join([platform.value, *parts])
    digest = hashlib.sha256(composite.encode('utf-8')).hexdigest()
    return f"{platform.value}_{digest[:16]}"


def clean_text(text: str) -> str:
    return re.sub(r'\s+', ' ', text or '').strip()


def extract_hashtags(text: str) -> List[str]:
    return HASHTAG_RE.findall(text or '')


def extract_mentions(text: str) -> List[str]:
    return MENTION_RE.findall(text or '')


def extract_urls(text: str) -> List[str]:
    return URL_RE.findall(text or '')


def is_image_url(url: str) -> bool:
    return bool(IMAGE_URL_RE.search(url))


def is_video_url(url: str) -> bool:
    return bool(VIDEO_URL_RE.search(url)) or 'v.redd.it' in url


def parse_count(text: Optional[str]) -> int:
    """Parse display counts such as ``1.2K`` or ``3,400``."""
    if not text:
        return 0

    match = re.search(r'(\d+(?:\.\d+)?)\s*([KMB])?\b', text.upper().replace(',', ''))
    if not match:
        return 0

    number = float(match.group(1))
    multiplier = {'K': 1_000, 'M': 1_000_000, 'B': 1_000_000_000}.get(match.group(2), 1)
    return int(number * multiplier)


def parse_timestamp(value) -> datetime:
    """
    Parse an ISO 8601 string or Unix epoch into an aware datetime.

    Falls back to the current time when the value is missing or unreadable.
    """
    if value is None or value == '':
        return datetime.now(timezone.utc)

    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except (ValueError, OverflowError, OSError):
        logger.debug(f"Unreadable timestamp {value!r}, using crawl time")
        return datetime.now(timezone.utc)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
