"""Unit tests for ScheduleParser."""
from datetime import date

import pytest

from processor.models import ParsedScheduleData, Platform, ScheduleCandidate
from processor.schedule_parser import (
    DATE_RULES,
    LOCATION_RULES,
    TIME_RULES,
    ScheduleParser,
    extract_date,
    extract_location,
    extract_time,
    format_time,
    normalize_date,
)

SCENARIO_TEXT = "We'll be at Central Park tomorrow from 11:30am-2:30pm serving our famous tacos!"

# 2025-09-01 is a Monday
MONDAY = date(2025, 9, 1)


class TestParse:
    """Test cases for ScheduleParser.parse."""

    def test_parse_text_without_post(self):
        """Test the full extraction on a typical announcement."""
        parsed = ScheduleParser().parse(SCENARIO_TEXT)

        assert parsed.date == 'tomorrow'
        assert parsed.time_range == '11:30am-2:30pm'
        assert parsed.start_time == '11:30 AM'
        assert parsed.end_time == '2:30 PM'
        assert parsed.location == 'Central Park'
        assert parsed.confidence == 1.0
        assert parsed.raw_text == SCENARIO_TEXT
        assert parsed.is_valid

    def test_parse_with_verified_post_uses_signal_scoring(self, make_post):
        """Test that a verified post with an image scores the full 1.0."""
        post = make_post(SCENARIO_TEXT, verified=True, images=['https://example.com/a.jpg'])

        parsed = ScheduleParser().parse(post.text, post)

        assert parsed.confidence == 1.0

    def test_parse_with_plain_post(self, make_post):
        """Test signal scoring without verification or images."""
        post = make_post(SCENARIO_TEXT)

        parsed = ScheduleParser().parse(post.text, post)

        assert parsed.confidence == 0.5

    def test_parse_nothing_recognizable(self):
        """Test that text without fragments yields nulls, not an error."""
        parsed = ScheduleParser().parse('Thanks everyone for the support')

        assert parsed.date is None
        assert parsed.time_range is None
        assert parsed.start_time is None
        assert parsed.end_time is None
        assert parsed.location is None
        assert parsed.confidence == 0.0
        assert not parsed.is_valid

    def test_parse_normalizes_whitespace(self):
        """Test that newlines and repeated spaces do not break patterns."""
        parsed = ScheduleParser().parse("Find us\n\nat   Downtown\nMarket   this Friday")

        assert parsed.location == 'Downtown Market'
        assert parsed.date == 'this Friday'

    def test_parse_post_builds_candidate(self, make_post):
        """Test that parse_post tags the candidate with its source."""
        post = make_post(SCENARIO_TEXT, post_id='abc', platform=Platform.REDDIT)

        candidate = ScheduleParser().parse_post(post, 'vendor-1')

        assert candidate.vendor_id == 'vendor-1'
        assert candidate.source == 'reddit:abc'
        assert candidate.platform == 'reddit'
        assert candidate.post_id == 'abc'
        assert candidate.parsed.location == 'Central Park'


class TestDateExtraction:
    """Test cases for the ordered date rules."""

    def test_rule_order(self):
        """Test that the date rules are tried in their documented order."""
        assert [rule.name for rule in DATE_RULES] == [
            'relative', 'weekday', 'next_weekday', 'slash_date', 'dash_date', 'month_day',
        ]

    @pytest.mark.parametrize('text,expected', [
        ('Open today at noon', 'today'),
        ('Catch us Tomorrow downtown', 'Tomorrow'),
        ('See you Friday!', 'Friday'),
        ('See you this saturday', 'this saturday'),
        ('Back next Tuesday', 'next Tuesday'),
        ('Serving 9/5 downtown', '9/5'),
        ('Serving 12/25/25 downtown', '12/25/25'),
        ('Serving 10-3 downtown', '10-3'),
        ('See you October 3rd', 'October 3rd'),
    ])
    def test_extract_date(self, text, expected):
        assert extract_date(text) == expected

    def test_relative_date_wins_over_weekday(self):
        """Test first-match-wins between date families."""
        assert extract_date('Friday plans changed, we are out today') == 'today'

    def test_dash_range_before_am_pm_is_not_a_date(self):
        assert extract_date('Open 5-8pm tonight') is None

    def test_24_hour_range_is_not_a_date(self):
        assert extract_date('Open 17:00-21:00') is None


class TestTimeExtraction:
    """Test cases for the ordered time rules."""

    def test_rule_order(self):
        assert [rule.name for rule in TIME_RULES] == [
            'full_range', 'mixed_range', 'single_point', '24_hour_range',
        ]

    def test_full_range(self):
        assert extract_time('Open 11am-2pm') == ('11am-2pm', '11:00 AM', '2:00 PM')

    def test_full_range_with_to(self):
        assert extract_time('Open 11:30 am to 1:45 pm') == ('11:30 am to 1:45 pm', '11:30 AM', '1:45 PM')

    def test_mixed_range_applies_end_marker_to_start(self):
        """Test that a lone trailing AM/PM marker applies to both times."""
        assert extract_time('Open 5-8pm') == ('5-8pm', '5:00 PM', '8:00 PM')

    def test_single_point(self):
        assert extract_time('Doors at 6pm') == ('6pm', '6:00 PM', None)

    def test_24_hour_range(self):
        assert extract_time('Open 17:00-21:00') == ('17:00-21:00', '17:00', '21:00')

    def test_no_time(self):
        assert extract_time('See you soon') == (None, None, None)

    def test_format_time(self):
        assert format_time('9', None, 'am') == '9:00 AM'
        assert format_time('9', '05') == '09:05'


class TestLocationExtraction:
    """Test cases for the ordered location rules."""

    def test_rule_order(self):
        assert [rule.name for rule in LOCATION_RULES] == ['at_place', 'label', 'emoji']

    @pytest.mark.parametrize('text,expected', [
        ('Parked at Central Park all day', 'Central Park'),
        ('Come by @ Harbor Pier', 'Harbor Pier'),
        ('Lunch at the Riverside Market', 'Riverside Market'),
        ('Tacos at 5th Street', '5th Street'),
        ('Location: Union Square. Come hungry', 'Union Square'),
        ('Venue: Old Mill Brewery, 5-8pm', 'Old Mill Brewery'),
        ('where: the old depot from 11am', 'the old depot'),
        ('\U0001F4CD Pioneer Courthouse today 11am-3pm', 'Pioneer Courthouse'),
    ])
    def test_extract_location(self, text, expected):
        assert extract_location(text) == expected

    def test_lowercase_place_is_not_a_location(self):
        """Test that the at/@ cue requires a capitalized place name."""
        assert extract_location('we are at the park') is None


class TestNormalizeDate:
    """Test cases for date normalization."""

    @pytest.mark.parametrize('raw,expected', [
        ('today', '2025-09-01'),
        ('Tomorrow', '2025-09-02'),
        ('Friday', '2025-09-05'),
        ('this Friday', '2025-09-05'),
        ('next Friday', '2025-09-05'),
        ('Sunday', '2025-09-07'),
        ('9/5', '2025-09-05'),
        ('12/25/25', '2025-12-25'),
        ('1/2/2026', '2026-01-02'),
        ('10-3', '2025-10-03'),
        ('October 3rd', '2025-10-03'),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_date(raw, MONDAY) == expected

    def test_same_weekday_without_this_is_next_week(self):
        """Test that naming today's weekday means one week out."""
        assert normalize_date('Monday', MONDAY) == '2025-09-08'

    def test_same_weekday_with_this_is_today(self):
        assert normalize_date('this Monday', MONDAY) == '2025-09-01'

    def test_impossible_date(self):
        assert normalize_date('2/30', MONDAY) is None

    def test_unrecognized(self):
        assert normalize_date('someday', MONDAY) is None


class TestToSchedule:
    """Test cases for candidate to Schedule conversion."""

    def _candidate(self, **overrides):
        values = dict(
            date='9/5',
            start_time=None,
            end_time=None,
            time_range=None,
            location=None,
            confidence=0.6,
            raw_text='Serving 9/5',
        )
        values.update(overrides)
        return ScheduleCandidate(
            vendor_id='vendor-1',
            parsed=ParsedScheduleData(**values),
            source='twitter:1',
        )

    def test_missing_fields_become_tbd(self):
        schedule = ScheduleParser().to_schedule(self._candidate(), MONDAY)

        assert schedule.date == '2025-09-05'
        assert schedule.start_time == 'TBD'
        assert schedule.end_time == 'TBD'
        assert schedule.location == 'TBD'
        assert schedule.source == 'twitter:1'
        assert schedule.confidence == 0.6
        assert schedule.schedule_id == 'vendor-1_2025-09-05_TBD'

    def test_invalid_candidate(self):
        assert ScheduleParser().to_schedule(self._candidate(confidence=0.4), MONDAY) is None

    def test_unnormalizable_date(self):
        assert ScheduleParser().to_schedule(self._candidate(date='someday'), MONDAY) is None

    def test_extract_schedules_from_posts_dedupes_and_sorts(self, make_post):
        """Test that two posts for the same appointment produce one schedule."""
        posts = [
            make_post('Serving 9/9 at Central Park 11am-2pm', post_id='1'),
            make_post('Serving 9/5 at Harbor Pier 11am-2pm', post_id='2'),
            make_post('Reminder: 9/9 at Central Park 11am-2pm', post_id='3'),
            make_post('Thanks for coming out', post_id='4'),
        ]

        schedules = ScheduleParser().extract_schedules_from_posts(posts, 'vendor-1', MONDAY)

        assert [(s.date, s.location) for s in schedules] == [
            ('2025-09-05', 'Harbor Pier'),
            ('2025-09-09', 'Central Park'),
        ]
        assert schedules[1].source == 'twitter:1'
