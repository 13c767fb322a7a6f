"""Tests for the opening-hours helpers."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from sophie.services.store import DEMO_OPENING_HOURS
from sophie.utils.business_hours import (
    format_opening_hours,
    get_day_opening_hours,
    is_day_open,
    is_within_business_hours,
    parse_opening_hours,
    to_minutes,
)

PARIS = "Europe/Paris"

LEGACY = "Lundi-Vendredi: 08:00-12:00 & 14:00-18:00, Samedi: 09:00-12:00, Dimanche: fermé"


class TestParsing:
    def test_to_minutes(self):
        assert to_minutes("08:30") == 510

    def test_to_minutes_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_minutes("8h30")

    def test_dict_is_returned_as_is(self):
        assert parse_opening_hours(DEMO_OPENING_HOURS) is DEMO_OPENING_HOURS

    def test_json_string_is_decoded(self):
        parsed = parse_opening_hours('{"monday": {"open": "08:00", "close": "12:00"}}')
        assert parsed == {"monday": {"open": "08:00", "close": "12:00"}}

    def test_free_text_is_kept(self):
        assert parse_opening_hours(LEGACY) == LEGACY

    @pytest.mark.parametrize("raw", [None, "", {}, 42])
    def test_missing_or_unusable(self, raw):
        assert parse_opening_hours(raw) is None


class TestIsWithinBusinessHours:
    @pytest.mark.parametrize(
        "moment, expected",
        [
            # Monday 2 March 2026, Paris is UTC+1
            (datetime(2026, 3, 2, 7, 0, tzinfo=UTC), True),     # 08:00 opening
            (datetime(2026, 3, 2, 6, 59, tzinfo=UTC), False),   # 07:59
            (datetime(2026, 3, 2, 16, 59, tzinfo=UTC), True),   # 17:59
            (datetime(2026, 3, 2, 17, 0, tzinfo=UTC), False),   # 18:00 closing is exclusive
            (datetime(2026, 3, 6, 16, 30, tzinfo=UTC), False),  # Friday 17:30
            (datetime(2026, 3, 8, 10, 0, tzinfo=UTC), False),   # Sunday
        ],
    )
    def test_weekday_map(self, moment, expected):
        assert is_within_business_hours(moment, DEMO_OPENING_HOURS, PARIS) is expected

    def test_evaluated_in_clinic_timezone(self):
        # 23:30 UTC on Monday is already Tuesday 00:30 in Paris
        moment = datetime(2026, 3, 2, 23, 30, tzinfo=UTC)
        assert is_within_business_hours(moment, DEMO_OPENING_HOURS, PARIS) is False

    def test_lunch_break_ranges(self):
        hours = {"monday": [{"open": "08:00", "close": "12:00"}, {"open": "14:00", "close": "18:00"}]}
        assert is_within_business_hours(datetime(2026, 3, 2, 10, 0, tzinfo=UTC), hours, PARIS)
        assert not is_within_business_hours(datetime(2026, 3, 2, 12, 0, tzinfo=UTC), hours, PARIS)

    def test_legacy_string(self):
        assert is_within_business_hours(datetime(2026, 3, 2, 14, 0, tzinfo=UTC), LEGACY, PARIS)
        assert not is_within_business_hours(datetime(2026, 3, 2, 12, 0, tzinfo=UTC), LEGACY, PARIS)

    def test_unknown_hours_fail_open(self):
        assert is_within_business_hours(datetime(2026, 3, 8, 3, 0, tzinfo=UTC), None, PARIS)

    def test_malformed_hours_fail_open(self):
        hours = {"monday": {"open": "8h", "close": "18h"}}
        assert is_within_business_hours(datetime(2026, 3, 2, 10, 0, tzinfo=UTC), hours, PARIS)


class TestDays:
    def test_sunday_closed(self):
        assert is_day_open(date(2026, 3, 8), DEMO_OPENING_HOURS, PARIS) is False

    def test_saturday_open(self):
        assert is_day_open(date(2026, 3, 7), DEMO_OPENING_HOURS, PARIS) is True

    def test_legacy_closed_day(self):
        assert is_day_open(date(2026, 3, 8), LEGACY, PARIS) is False

    def test_legacy_day_not_mentioned_is_open(self):
        assert is_day_open(date(2026, 3, 8), "Lundi: 08:00-12:00", PARIS) is True

    def test_day_hours(self):
        assert get_day_opening_hours(date(2026, 3, 6), DEMO_OPENING_HOURS, PARIS) == {
            "open": "08:00", "close": "17:00",
        }

    def test_day_hours_closed(self):
        assert get_day_opening_hours(date(2026, 3, 8), DEMO_OPENING_HOURS, PARIS) is None


class TestFormatting:
    def test_french(self):
        text = format_opening_hours(DEMO_OPENING_HOURS, "fr")
        assert text.startswith("Lundi: 08:00-18:00")
        assert text.endswith("Dimanche: Fermé")

    def test_english(self):
        text = format_opening_hours(DEMO_OPENING_HOURS, "en")
        assert "Saturday: 09:00-12:00" in text
        assert text.endswith("Sunday: Closed")

    def test_not_specified(self):
        assert format_opening_hours(None, "fr") == "Non spécifié"
        assert format_opening_hours(None, "en") == "Not specified"
