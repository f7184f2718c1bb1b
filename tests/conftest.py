"""Shared fixtures for crawler tests."""
from datetime import datetime, timezone

import httpx
import pytest

from processor.models import Author, Engagement, Platform, Post


@pytest.fixture
def make_post():
    """Factory for Post objects with sensible defaults."""
    def _make_post(
        text='',
        post_id='1',
        platform=Platform.TWITTER,
        verified=False,
        images=None,
        timestamp=None,
        username='tacotruck',
        likes=None,
        hashtags=None,
    ):
        return Post(
            id=post_id,
            platform=platform,
            author=Author(username=username, verified=verified),
            text=text,
            post_url=f"https://example.com/{post_id}",
            timestamp=timestamp or datetime(2025, 9, 1, 12, 0, tzinfo=timezone.utc),
            images=images or [],
            hashtags=hashtags or [],
            engagement=Engagement(likes=likes),
        )

    return _make_post


@pytest.fixture
def mock_client():
    """Factory for an httpx.AsyncClient served by a handler function."""
    def _mock_client(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _mock_client
