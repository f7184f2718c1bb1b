"""Confidence scoring for extracted schedules."""
import re
from typing import Optional

from processor.models import Post

FOOD_VENDOR_KEYWORDS = [
    'food truck',
    'food van',
    'mobile kitchen',
    'food trailer',
    'serving',
    'open',
    'available',
    'selling',
    'menu',
]

# Signal-rich points, on a 0-100 scale
VERIFIED_POINTS = 40
IMAGE_POINTS = 10
DATE_POINTS = 15
TIME_POINTS = 15
LOCATION_POINTS = 20


def calculate_confidence(
    author_verified: bool,
    has_image: bool,
    date: Optional[str],
    time_range: Optional[str],
    location: Optional[str],
) -> int:
    """
    Score an extraction from social signals on a 0-100 scale.

    Args:
        author_verified: Whether the post author is verified
        has_image: Whether the post carries at least one image
        date: Extracted raw date expression
        time_range: Extracted raw time range
        location: Extracted location phrase

    Returns:
        Points between 0 and 100
    """
    score = 0

    if author_verified:
        score += VERIFIED_POINTS
    if has_image:
        score += IMAGE_POINTS
    if date:
        score += DATE_POINTS
    if time_range:
        score += TIME_POINTS
    if location:
        score += LOCATION_POINTS

    return min(score, 100)


def score_post(
    post: Post,
    date: Optional[str],
    time_range: Optional[str],
    location: Optional[str],
) -> float:
    """Signal-rich confidence on a 0-1 scale, used when post metadata is available."""
    points = calculate_confidence(
        author_verified=bool(post.author.verified),
        has_image=bool(post.images),
        date=date,
        time_range=time_range,
        location=location,
    )
    return points / 100


def score_text(
    text: str,
    date: Optional[str],
    start_time: Optional[str],
    end_time: Optional[str],
    time_range: Optional[str],
    location: Optional[str],
) -> float:
    """
    Text-only confidence on a 0-1 scale.

    Specific dates (containing a digit) and fully decomposed time ranges earn
    a bonus over relative dates and single times. The food-vendor keyword
    bonus is applied once no matter how many keywords appear.
    """
    confidence = 0.0

    if date:
        confidence += 0.4
        if re.search(r'\d', date):
            confidence += 0.1

    if time_range:
        confidence += 0.3
        if start_time and end_time:
            confidence += 0.1

    if location:
        confidence += 0.2

    lower_text = text.lower()
    if any(keyword in lower_text for keyword in FOOD_VENDOR_KEYWORDS):
        confidence += 0.05

    return round(min(confidence, 1.0), 2)
