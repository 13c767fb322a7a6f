"""Which slots to offer a patient, and how soon they may book.

New patients need a 48h gap before their first visit unless the motif
sounds urgent. Returning patients (anyone with a confirmed or completed
appointment) can book from today.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from sophie.dialogue.heuristics import is_urgent_motif
from sophie.dialogue.types import TimePreference
from sophie.services.calendar_client import CalendarProvider, Slot
from sophie.utils.business_hours import get_day_opening_hours, is_day_open
from sophie.utils.dates import format_datetime, format_time

logger = logging.getLogger(__name__)

NOON_HOUR = 12


@dataclass(frozen=True)
class SuggestedSlot:
    date: str  # YYYY-MM-DD, clinic time
    time: str  # HH:MM, clinic time
    display: str


def minimum_booking_delay(motif: str | None, has_history: bool, first_visit_delay_days: int = 2) -> int:
    """Days to wait before the earliest bookable slot."""
    if is_urgent_motif(motif) or has_history:
        return 0
    return first_visit_delay_days


def matches_preference(slot: Slot, preference: TimePreference | None, timezone: str) -> bool:
    if preference is None:
        return True
    hour = slot.start.astimezone(ZoneInfo(timezone)).hour
    if preference is TimePreference.MORNING:
        return hour < NOON_HOUR
    return hour >= NOON_HOUR


def filter_by_preference(slots: list[Slot], preference: TimePreference | None, timezone: str) -> list[Slot]:
    """Keep slots in the preferred half of the day; all of them if none match."""
    filtered = [slot for slot in slots if matches_preference(slot, preference, timezone)]
    return filtered or slots


def format_slot_time(slot: Slot, language: str, timezone: str) -> str:
    return format_time(slot.start.astimezone(ZoneInfo(timezone)).strftime("%H:%M"), language)


def _to_suggestion(slot: Slot, language: str, timezone: str) -> SuggestedSlot:
    local = slot.start.astimezone(ZoneInfo(timezone))
    return SuggestedSlot(
        date=local.date().isoformat(),
        time=local.strftime("%H:%M"),
        display=format_datetime(slot.start, language, timezone),
    )


def future_slots_on(
    calendar: CalendarProvider,
    practitioner_id: str,
    day: date,
    *,
    now: datetime,
    opening_hours,
    timezone: str,
    slot_minutes: int = 30,
) -> list[Slot]:
    """Free slots of *day* within its opening hours, minus those already past."""
    day_hours = get_day_opening_hours(day, opening_hours, timezone)
    slots = calendar.get_available_slots(
        practitioner_id, day, slot_minutes=slot_minutes, day_hours=day_hours, timezone=timezone,
    )
    return [slot for slot in slots if slot.start > now]


def suggest_slots(
    calendar: CalendarProvider,
    practitioner_id: str,
    *,
    now: datetime,
    opening_hours,
    timezone: str,
    language: str,
    min_delay: int = 0,
    preference: TimePreference | None = None,
    search_days: int = 21,
    per_day: int = 2,
    limit: int = 6,
    slot_minutes: int = 30,
) -> list[SuggestedSlot]:
    """Walk forward from ``min_delay`` days and collect the first free slots.

    Closed weekdays are skipped, at most ``per_day`` slots are taken from a
    given day and the scan stops at ``limit`` suggestions or after
    ``search_days`` days.
    """
    today = now.astimezone(ZoneInfo(timezone)).date()
    suggestions: list[SuggestedSlot] = []

    for offset in range(min_delay, search_days + 1):
        if len(suggestions) >= limit:
            break
        day = today + timedelta(days=offset)
        if not is_day_open(day, opening_hours, timezone):
            logger.debug("Skipping closed day %s", day)
            continue

        slots = future_slots_on(
            calendar, practitioner_id, day,
            now=now, opening_hours=opening_hours, timezone=timezone, slot_minutes=slot_minutes,
        )
        wanted = [slot for slot in slots if matches_preference(slot, preference, timezone)]
        for slot in wanted[:per_day]:
            suggestions.append(_to_suggestion(slot, language, timezone))
            if len(suggestions) >= limit:
                break

    logger.info(
        "Suggested %d slots for practitioner %s (min_delay=%d, preference=%s)",
        len(suggestions), practitioner_id, min_delay, preference.value if preference else None,
    )
    return suggestions
