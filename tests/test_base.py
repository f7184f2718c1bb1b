"""Unit tests for shared adapter helpers."""
from datetime import datetime, timezone

import httpx
import pytest

from processor.models import CrawlQuery, Platform
from scraper.base import (
    ScrapeError,
    add_unique,
    build_result,
    collect,
    extract_hashtags,
    extract_mentions,
    generate_post_id,
    parse_count,
    parse_timestamp,
    send_request,
)


class TestSendRequest:
    """Test cases for HTTP retry logic."""

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, mock_client):
        """Test that a 503 is retried and the next success returned."""
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503)
            return httpx.Response(200, json={'ok': True})

        async with mock_client(handler) as client:
            response = await send_request(client, 'GET', 'https://example.com/api', base_delay=0)

        assert response.json() == {'ok': True}
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_client_errors_fail_immediately(self, mock_client):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        async with mock_client(handler) as client:
            with pytest.raises(httpx.HTTPStatusError):
                await send_request(client, 'GET', 'https://example.com/missing', base_delay=0)

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, mock_client):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError('connection refused', request=request)

        async with mock_client(handler) as client:
            with pytest.raises(httpx.ConnectError):
                await send_request(client, 'GET', 'https://example.com/api', max_retries=3, base_delay=0)

        assert len(calls) == 3


class TestCollect:
    """Test cases for partial-result collection."""

    @pytest.mark.asyncio
    async def test_keeps_partial_posts_on_failure(self, make_post):
        posts, errors = [], []

        async def step(found):
            found.append(make_post('first', post_id='1'))
            raise ScrapeError('login wall')

        ok = await collect('Example scraping', step, posts, errors)

        assert ok is False
        assert [post.id for post in posts] == ['1']
        assert errors == ['Example scraping failed: login wall']

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self):
        async def step(found):
            raise RuntimeError('bug')

        with pytest.raises(RuntimeError):
            await collect('Example', step, [], [])


class TestPostHelpers:
    """Test cases for post id, dedupe and result helpers."""

    def test_generate_post_id_prefers_native_id(self):
        assert generate_post_id(Platform.TWITTER, '12345', 'https://x.com/a') == '12345'

    def test_generate_post_id_is_deterministic(self):
        first = generate_post_id(Platform.INSTAGRAM, None, 'https://instagram.com/p/abc/')
        second = generate_post_id(Platform.INSTAGRAM, None, 'https://instagram.com/p/abc/')
        other = generate_post_id(Platform.INSTAGRAM, None, 'https://instagram.com/p/xyz/')

        assert first == second
        assert first != other
        assert first.startswith('instagram_')
        assert len(first) == len('instagram_') + 16

    def test_add_unique(self, make_post):
        posts = [make_post(post_id='1')]
        added = add_unique(posts, [make_post(post_id='1'), make_post(post_id='2')])

        assert added == 1
        assert [post.id for post in posts] == ['1', '2']

    def test_build_result_caps_posts(self, make_post):
        posts = [make_post(post_id=str(i)) for i in range(5)]

        result = build_result(Platform.REDDIT, posts, [], CrawlQuery(max_posts=3), 'tacos')

        assert len(result.posts) == 3
        assert result.total_found == 5
        assert result.search_query == 'tacos'

    def test_build_result_default_cap(self, make_post):
        posts = [make_post(post_id=str(i)) for i in range(60)]

        result = build_result(Platform.REDDIT, posts, [], CrawlQuery(), '')

        assert len(result.posts) == 50


class TestTextHelpers:
    """Test cases for text parsing helpers."""

    def test_hashtags_and_mentions(self):
        text = 'Tacos with @chef_maria #foodtruck #tacotuesday, email me@example.com'

        assert extract_hashtags(text) == ['foodtruck', 'tacotuesday']
        assert extract_mentions(text) == ['chef_maria']

    @pytest.mark.parametrize('text,expected', [
        ('1.2K', 1200),
        ('3,400', 3400),
        ('2M views', 2000000),
        ('12 comments', 12),
        ('', 0),
        ('none', 0),
    ])
    def test_parse_count(self, text, expected):
        assert parse_count(text) == expected

    def test_parse_timestamp(self):
        assert parse_timestamp('2025-09-01T12:00:00Z') == datetime(2025, 9, 1, 12, tzinfo=timezone.utc)
        assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_parse_timestamp_falls_back_to_now(self):
        before = datetime.now(timezone.utc)
        assert parse_timestamp('not a date') >= before
        assert parse_timestamp(None) >= before
