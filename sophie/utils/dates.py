"""Date parsing and natural-language formatting (fr / en).

Formatting is done with explicit day/month tables rather than the process
locale so replies read the same on every host.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from sophie.utils.business_hours import WEEKDAYS

DAY_NAMES = {
    "fr": ("lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche"),
    "en": ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"),
}

MONTH_NAMES = {
    "fr": (
        "janvier", "février", "mars", "avril", "mai", "juin",
        "juillet", "août", "septembre", "octobre", "novembre", "décembre",
    ),
    "en": (
        "January", "February", "March", "April", "May", "June",
        "July", "August", "September", "October", "November", "December",
    ),
}

# Month lookup for birth dates typed in words ("12 mars 1985", "March 12 1985")
_MONTH_LOOKUP = {
    **{name: i + 1 for i, name in enumerate(MONTH_NAMES["fr"])},
    **{name.lower(): i + 1 for i, name in enumerate(MONTH_NAMES["en"])},
    "fevrier": 2, "aout": 8, "decembre": 12,
}

_DMY = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def _lang(language: str) -> str:
    return "en" if language == "en" else "fr"


def parse_in_timezone(date_str: str, time_str: str, timezone: str) -> datetime:
    """Interpret ``YYYY-MM-DD`` + ``HH:MM`` as wall-clock time in *timezone*.

    Returns an aware datetime. Raises ``ValueError`` on malformed input.
    """
    day = date.fromisoformat(date_str)
    hours, minutes = (int(part) for part in time_str.split(":"))
    return datetime.combine(day, time(hours, minutes), tzinfo=ZoneInfo(timezone))


def format_date(day: date, language: str) -> str:
    """``lundi 10 mars 2025`` / ``Monday, March 10, 2025``."""
    lang = _lang(language)
    weekday = DAY_NAMES[lang][day.weekday()]
    month = MONTH_NAMES[lang][day.month - 1]
    if lang == "fr":
        return f"{weekday} {day.day} {month} {day.year}"
    return f"{weekday}, {month} {day.day}, {day.year}"


def format_time(hhmm: str, language: str) -> str:
    """``14:00`` → ``14h00`` in French, unchanged in English."""
    return hhmm.replace(":", "h") if _lang(language) == "fr" else hhmm


def format_date_for_user(iso_date: str, time_str: str, language: str) -> str:
    """``lundi 10 mars 2025 à 14h00`` / ``Monday, March 10, 2025 at 14:00``.

    Falls back to the raw values when the date cannot be parsed.
    """
    lang = _lang(language)
    connector = "à" if lang == "fr" else "at"
    try:
        day = date.fromisoformat(iso_date.split("T")[0])
    except ValueError:
        return f"{iso_date} {connector} {time_str}"
    return f"{format_date(day, lang)} {connector} {format_time(time_str, lang)}"


def format_datetime(moment: datetime, language: str, timezone: str) -> str:
    """Format an aware datetime as seen on the clinic's wall clock."""
    local = moment.astimezone(ZoneInfo(timezone))
    return format_date_for_user(local.date().isoformat(), local.strftime("%H:%M"), language)


def weekday_name(day: date, language: str) -> str:
    """``lundi`` / ``Monday``."""
    return DAY_NAMES[_lang(language)][day.weekday()]


def weekday_key(day: date) -> str:
    """Key used in opening-hours maps (``"monday"``)."""
    return WEEKDAYS[day.weekday()]


def normalize_dmy(value: str) -> str:
    """``15/03/2026`` → ``2026-03-15``; other values are returned unchanged."""
    match = _DMY.match(value.strip())
    if not match:
        return value
    day, month, year = match.groups()
    return f"{year}-{int(month):02d}-{int(day):02d}"


def parse_birth_date(value: str | None) -> date | None:
    """Parse a birth date as patients type it.

    Accepts ``YYYY-MM-DD``, ``DD/MM/YYYY``, ``YYYY/MM/DD`` (any of ``-/.`` or
    spaces as separators) and month names (``12 mars 1985``,
    ``March 12, 1985``). Returns ``None`` when nothing sensible comes out.
    """
    if not value:
        return None
    text = value.strip().lower()

    parts = [p for p in re.split(r"[-/.\s]+", text) if p]
    if len(parts) == 3 and all(p.isdigit() for p in parts):
        if len(parts[0]) == 4:
            year, month, day = (int(p) for p in parts)
        else:
            day, month, year = (int(p) for p in parts)
        try:
            return date(year, month, day)
        except ValueError:
            return None

    year_match = re.search(r"\b(\d{4})\b", text)
    day_match = re.search(r"\b(\d{1,2})\b", text)
    month = next((num for name, num in _MONTH_LOOKUP.items() if name in text), None)
    if year_match and day_match and month:
        try:
            return date(int(year_match.group(1)), month, int(day_match.group(1)))
        except ValueError:
            return None
    return None
