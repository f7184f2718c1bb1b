"""Schedule extraction from free-text social media posts."""
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Pattern, Sequence, Tuple

from processor.confidence import score_post, score_text
from processor.models import ParsedScheduleData, Post, Schedule, ScheduleCandidate

logger = logging.getLogger(__name__)

WEEKDAYS = ['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday']
MONTHS = [
    'january', 'february', 'march', 'april', 'may', 'june',
    'july', 'august', 'september', 'october', 'november', 'december',
]
PLACE_WORDS = [
    'Park', 'Market', 'Square', 'Plaza', 'Street', 'St', 'Ave', 'Avenue', 'Blvd',
    'Boulevard', 'Center', 'Centre', 'Mall', 'Road', 'Rd', 'Lot', 'Brewery', 'Pier',
]

_WEEKDAY = '|'.join(WEEKDAYS)
_MONTH = '|'.join(MONTHS)
_PLACE = '|'.join(PLACE_WORDS)
_RANGE_SEP = r'\s*(?:[-–]|to)\s*'


@dataclass(frozen=True)
class ExtractionRule:
    """One pattern in an ordered rule list; the first rule that extracts wins."""
    name: str
    pattern: Pattern
    extract: Callable[[re.Match], Any]

    def apply(self, text: str) -> Any:
        match = self.pattern.search(text)
        if not match:
            return None
        return self.extract(match)


def first_match(rules: Sequence[ExtractionRule], text: str) -> Any:
    for rule in rules:
        value = rule.apply(text)
        if value:
            return value
    return None


def format_time(hour: str, minute: Optional[str] = None, period: Optional[str] = None) -> str:
    """Format as ``H:MM AM`` when a period is known, else 24-hour ``HH:MM``."""
    h = int(hour)
    m = int(minute) if minute else 0
    if period:
        return f"{h}:{m:02d} {period.upper()}"
    return f"{h:02d}:{m:02d}"


def _full_range(match: re.Match) -> Tuple[str, str, str]:
    h1, m1, p1, h2, m2, p2 = match.groups()
    return match.group(0).strip(), format_time(h1, m1, p1), format_time(h2, m2, p2)


def _mixed_range(match: re.Match) -> Tuple[str, str, str]:
    # Only the end time carries a marker, so it applies to the start as well
    h1, m1, h2, m2, period = match.groups()
    return match.group(0).strip(), format_time(h1, m1, period), format_time(h2, m2, period)


def _single_point(match: re.Match) -> Tuple[str, str, None]:
    hour, minute, period = match.groups()
    return match.group(0).strip(), format_time(hour, minute, period), None


def _24_hour_range(match: re.Match) -> Tuple[str, str, str]:
    h1, m1, h2, m2 = match.groups()
    return match.group(0).strip(), format_time(h1, m1), format_time(h2, m2)


_LOCATION_STOP = re.compile(
    r',?\s+(?:from|on|today|tomorrow|tonight)\b|,?\s+\d{1,2}(?:[:.]\d{2})?\s*(?:am\b|pm\b|[-–]\s*\d)',
    re.IGNORECASE,
)


def _location_phrase(match: re.Match) -> Optional[str]:
    phrase = _LOCATION_STOP.split(match.group(1))[0]
    phrase = phrase.strip(' ,;:-–')
    return phrase or None


DATE_RULES: List[ExtractionRule] = [
    ExtractionRule(
        'relative',
        re.compile(r'\b(?:today|tomorrow)\b', re.IGNORECASE),
        lambda m: m.group(0),
    ),
    ExtractionRule(
        'weekday',
        re.compile(rf'(?<!next\s)\b(?:this\s+)?(?:{_WEEKDAY})\b', re.IGNORECASE),
        lambda m: m.group(0),
    ),
    ExtractionRule(
        'next_weekday',
        re.compile(rf'\bnext\s+(?:{_WEEKDAY})\b', re.IGNORECASE),
        lambda m: m.group(0),
    ),
    ExtractionRule(
        'slash_date',
        re.compile(r'\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b'),
        lambda m: m.group(0),
    ),
    ExtractionRule(
        'dash_date',
        re.compile(r'\b\d{1,2}-\d{1,2}(?:-\d{2,4})?\b(?!\s*(?:am|pm)\b)(?!:)', re.IGNORECASE),
        lambda m: m.group(0),
    ),
    ExtractionRule(
        'month_day',
        re.compile(rf'\b(?:{_MONTH})\s+\d{{1,2}}(?:st|nd|rd|th)?\b', re.IGNORECASE),
        lambda m: m.group(0),
    ),
]

TIME_RULES: List[ExtractionRule] = [
    ExtractionRule(
        'full_range',
        re.compile(
            rf'\b(\d{{1,2}})(?:[:.](\d{{2}}))?\s*(am|pm){_RANGE_SEP}(\d{{1,2}})(?:[:.](\d{{2}}))?\s*(am|pm)\b',
            re.IGNORECASE,
        ),
        _full_range,
    ),
    ExtractionRule(
        'mixed_range',
        re.compile(
            rf'\b(\d{{1,2}})(?:[:.](\d{{2}}))?{_RANGE_SEP}(\d{{1,2}})(?:[:.](\d{{2}}))?\s*(am|pm)\b',
            re.IGNORECASE,
        ),
        _mixed_range,
    ),
    ExtractionRule(
        'single_point',
        re.compile(r'\b(\d{1,2})(?:[:.](\d{2}))?\s*(am|pm)\b', re.IGNORECASE),
        _single_point,
    ),
    ExtractionRule(
        '24_hour_range',
        re.compile(r'\b(\d{1,2})[:.](\d{2})\s*[-–]\s*(\d{1,2})[:.](\d{2})\b'),
        _24_hour_range,
    ),
]

LOCATION_RULES: List[ExtractionRule] = [
    ExtractionRule(
        'at_place',
        re.compile(
            rf"(?:\b(?i:at)|@)\s+(?:the\s+)?((?:[A-Z0-9][\w'&.-]*\s+){{0,5}}?(?:{_PLACE})\b)"
        ),
        lambda m: m.group(1).strip(),
    ),
    ExtractionRule(
        'label',
        re.compile(r'\b(?:location|venue|where)\s*:\s*([^.!?|]+)', re.IGNORECASE),
        _location_phrase,
    ),
    ExtractionRule(
        'emoji',
        re.compile('(?:\U0001F4CD|\U0001F3EA|\U0001F374|\U0001F37D\uFE0F?)\\s*([^.!?|]+)'),
        _location_phrase,
    ),
]


def clean_text(text: str) -> str:
    return re.sub(r'\s+', ' ', text or '').strip()


def extract_date(text: str) -> Optional[str]:
    value = first_match(DATE_RULES, text)
    return value.strip() if value else None


def extract_time(text: str) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """
    Returns:
        Tuple of (time_range, start_time, end_time)
    """
    value = first_match(TIME_RULES, text)
    if not value:
        return None, None, None
    return value


def extract_location(text: str) -> Optional[str]:
    return first_match(LOCATION_RULES, text)


def _build_date(year: int, month: int, day: int) -> Optional[str]:
    if year < 100:
        year += 2000
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def normalize_date(raw_date: str, today: Optional[date] = None) -> Optional[str]:
    """
    Normalize a raw date expression to ISO 8601 (YYYY-MM-DD).

    A bare weekday naming today's weekday means one week out unless the
    phrase says "this".

    Args:
        raw_date: Date expression as extracted from the text
        today: Reference date (default: current UTC date)

    Returns:
        ISO 8601 date string or None if the expression is not recognized
    """
    today = today or datetime.now(timezone.utc).date()
    lower = raw_date.lower().strip()

    if 'today' in lower:
        return today.isoformat()

    if 'tomorrow' in lower:
        return (today + timedelta(days=1)).isoformat()

    for index, weekday in enumerate(WEEKDAYS):
        if weekday in lower:
            days_until = (index - today.weekday()) % 7
            if days_until == 0 and 'this' not in lower:
                days_until = 7
            return (today + timedelta(days=days_until)).isoformat()

    numeric = re.search(r'(\d{1,2})([/-])(\d{1,2})(?:\2(\d{2,4}))?', lower)
    if numeric:
        year = int(numeric.group(4)) if numeric.group(4) else today.year
        return _build_date(year, int(numeric.group(1)), int(numeric.group(3)))

    month_day = re.search(rf'({_MONTH})\s+(\d{{1,2}})', lower)
    if month_day:
        month = MONTHS.index(month_day.group(1)) + 1
        return _build_date(today.year, month, int(month_day.group(2)))

    return None


class ScheduleParser:
    """Extracts schedule fragments from post text and scores them."""

    def parse(self, text: str, post: Optional[Post] = None) -> ParsedScheduleData:
        """
        Parse schedule information from text.

        Never fails: text without any recognizable fragment yields a record
        of nulls with a low confidence.

        Args:
            text: Free text to parse
            post: Source post; enables signal-rich confidence scoring

        Returns:
            ParsedScheduleData with raw (un-normalized) date
        """
        clean = clean_text(text)

        raw_date = extract_date(clean)
        time_range, start_time, end_time = extract_time(clean)
        location = extract_location(clean)

        if post is not None:
            confidence = score_post(post, raw_date, time_range, location)
        else:
            confidence = score_text(clean, raw_date, start_time, end_time, time_range, location)

        return ParsedScheduleData(
            date=raw_date,
            start_time=start_time,
            end_time=end_time,
            time_range=time_range,
            location=location,
            confidence=confidence,
            raw_text=text,
        )

    def parse_post(self, post: Post, vendor_id: str) -> ScheduleCandidate:
        return ScheduleCandidate(
            vendor_id=vendor_id,
            parsed=self.parse(post.text or '', post),
            source=post.source_tag,
            platform=post.platform.value,
            post_id=post.id,
        )

    def to_schedule(self, candidate: ScheduleCandidate, today: Optional[date] = None) -> Optional[Schedule]:
        """
        Convert a candidate into a Schedule.

        Returns:
            Schedule, or None if the candidate is invalid or its date cannot
            be normalized
        """
        parsed = candidate.parsed
        if not candidate.is_valid or not parsed.date:
            return None

        normalized_date = normalize_date(parsed.date, today)
        if not normalized_date:
            logger.debug(f"Unrecognized date expression: {parsed.date!r}")
            return None

        now = datetime.now(timezone.utc)
        return Schedule(
            vendor_id=candidate.vendor_id,
            date=normalized_date,
            start_time=parsed.start_time or 'TBD',
            end_time=parsed.end_time or 'TBD',
            location=parsed.location or 'TBD',
            source=candidate.source,
            confidence=parsed.confidence,
            created_at=now,
            updated_at=now,
        )

    def extract_schedules_from_posts(
        self,
        posts: List[Post],
        vendor_id: str,
        today: Optional[date] = None,
    ) -> List[Schedule]:
        """Convert every valid post into a Schedule, one per identity key, sorted by date."""
        schedules = {}
        for post in posts:
            schedule = self.to_schedule(self.parse_post(post, vendor_id), today)
            if schedule and schedule.identity_key not in schedules:
                schedules[schedule.identity_key] = schedule

        return sorted(schedules.values(), key=lambda schedule: schedule.date)
