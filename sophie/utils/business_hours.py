"""Clinic opening-hours helpers.

Opening hours are stored per clinic as a weekday map::

    {"monday": {"open": "08:00", "close": "18:00"}, ..., "sunday": None}

A day may also hold a list of ranges (lunch break), ``None`` marks a closed
day. Older clinic records carry a free-text French string instead
(``"Lundi-Vendredi: 08:00-18:00, Samedi: fermé"``); the checks below accept
both, plus the JSON map serialised as a string.

Every check is evaluated in the clinic's own timezone. Any malformed input
fails open (the clinic is considered open) so a typo in a clinic record
never blocks bookings.
"""

from __future__ import annotations

import json
import logging
import re
import unicodedata
from datetime import date, datetime
from typing import Any, Union
from zoneinfo import ZoneInfo

from typing_extensions import TypedDict

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DAY_LABELS = {
    "fr": {
        "monday": "Lundi", "tuesday": "Mardi", "wednesday": "Mercredi", "thursday": "Jeudi",
        "friday": "Vendredi", "saturday": "Samedi", "sunday": "Dimanche",
    },
    "en": {
        "monday": "Monday", "tuesday": "Tuesday", "wednesday": "Wednesday", "thursday": "Thursday",
        "friday": "Friday", "saturday": "Saturday", "sunday": "Sunday",
    },
}

# Legacy strings use French day names (accents stripped)
_LEGACY_DAY_INDEX = {
    "lundi": 0, "mardi": 1, "mercredi": 2, "jeudi": 3, "vendredi": 4, "samedi": 5, "dimanche": 6,
}

_HHMM = re.compile(r"(\d{1,2})[^\d](\d{2})")


class DayHours(TypedDict):
    open: str
    close: str


DaySchedule = Union[DayHours, list, None]
OpeningHours = dict[str, DaySchedule]


# ── Parsing helpers ──────────────────────────────────────────────────


def _strip_accents(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def to_minutes(hhmm: str) -> int:
    """``"08:30"`` → ``510``. Raises ``ValueError`` on malformed input."""
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def parse_opening_hours(raw: Any) -> OpeningHours | str | None:
    """Normalise a stored value into a weekday map, a legacy string, or ``None``."""
    if not raw:
        return None
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            return raw
        return parsed if isinstance(parsed, dict) else raw
    return None


def _ranges(day_schedule: DaySchedule) -> list[DayHours]:
    if not day_schedule:
        return []
    ranges = day_schedule if isinstance(day_schedule, list) else [day_schedule]
    return [r for r in ranges if r.get("open") and r.get("close")]


def _local_day_and_minutes(moment: datetime, timezone: str) -> tuple[int, int]:
    local = moment.astimezone(ZoneInfo(timezone))
    return local.weekday(), local.hour * 60 + local.minute


def _weekday_of(day: date | datetime, timezone: str) -> int:
    if isinstance(day, datetime):
        return day.astimezone(ZoneInfo(timezone)).weekday()
    return day.weekday()


def _legacy_day_matches(weekday: int, day_part: str) -> bool:
    day_part = _strip_accents(day_part.strip().lower())
    bounds = [d.strip() for d in re.split(r"[–-]", day_part)]
    if len(bounds) == 2:
        start, end = _LEGACY_DAY_INDEX.get(bounds[0]), _LEGACY_DAY_INDEX.get(bounds[1])
        if start is None or end is None:
            return False
        if start <= end:
            return start <= weekday <= end
        return weekday >= start or weekday <= end
    return _LEGACY_DAY_INDEX.get(day_part) == weekday


def _legacy_ranges(weekday: int, text: str) -> list[tuple[int, int]] | None:
    """Ranges in minutes for *weekday*; ``[]`` when closed, ``None`` when not mentioned."""
    for part in (p.strip() for p in text.split(",")):
        day_part, sep, time_part = part.partition(":")
        if not sep or not _legacy_day_matches(weekday, day_part):
            continue
        if "ferm" in time_part.lower():
            return []
        found: list[tuple[int, int]] = []
        for chunk in re.split(r"&|\set\s", time_part):
            bounds = re.split(r"[–-]", chunk.strip())
            if len(bounds) != 2:
                continue
            start, end = _HHMM.search(bounds[0]), _HHMM.search(bounds[1])
            if start and end:
                found.append((
                    int(start.group(1)) * 60 + int(start.group(2)),
                    int(end.group(1)) * 60 + int(end.group(2)),
                ))
        return found
    return None


# ── Public checks ────────────────────────────────────────────────────


def is_within_business_hours(moment: datetime, opening_hours: Any, timezone: str) -> bool:
    """True when *moment* falls inside one of the day's ranges (``open <= t < close``)."""
    schedule = parse_opening_hours(opening_hours)
    if schedule is None:
        return True

    weekday, minutes = _local_day_and_minutes(moment, timezone)

    if isinstance(schedule, str):
        ranges = _legacy_ranges(weekday, schedule)
        return any(start <= minutes < end for start, end in ranges or [])

    try:
        for day_range in _ranges(schedule.get(WEEKDAYS[weekday])):
            if to_minutes(day_range["open"]) <= minutes < to_minutes(day_range["close"]):
                return True
    except ValueError:
        logger.warning("Malformed opening hours %r, assuming open", schedule)
        return True
    return False


def is_day_open(day: date | datetime, opening_hours: Any, timezone: str) -> bool:
    """True unless the clinic marks that weekday as closed."""
    schedule = parse_opening_hours(opening_hours)
    if schedule is None:
        return True

    weekday = _weekday_of(day, timezone)
    if isinstance(schedule, str):
        ranges = _legacy_ranges(weekday, schedule)
        return ranges is None or bool(ranges)
    return bool(schedule.get(WEEKDAYS[weekday]))


def get_day_opening_hours(day: date | datetime, opening_hours: Any, timezone: str) -> DayHours | None:
    """First opening range of the day, or ``None`` when closed or unknown."""
    schedule = parse_opening_hours(opening_hours)
    if not isinstance(schedule, dict):
        return None
    ranges = _ranges(schedule.get(WEEKDAYS[_weekday_of(day, timezone)]))
    if not ranges:
        return None
    return DayHours(open=ranges[0]["open"], close=ranges[0]["close"])


def format_opening_hours(opening_hours: Any, language: str = "fr") -> str:
    """Human-readable hours, e.g. ``"Lundi: 08:00-18:00, Dimanche: Fermé"``."""
    schedule = parse_opening_hours(opening_hours)
    if schedule is None:
        return "Non spécifié" if language == "fr" else "Not specified"
    if isinstance(schedule, str):
        return schedule

    labels = DAY_LABELS["fr" if language == "fr" else "en"]
    closed = "Fermé" if language == "fr" else "Closed"
    parts = []
    for day, day_schedule in schedule.items():
        label = labels.get(day, day)
        ranges = _ranges(day_schedule)
        if not ranges:
            parts.append(f"{label}: {closed}")
        else:
            parts.append(f"{label}: " + " & ".join(f"{r['open']}-{r['close']}" for r in ranges))
    return ", ".join(parts)
