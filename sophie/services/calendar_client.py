"""Practitioner calendars: availability checks and event management.

``CalendarProvider`` is what the engine talks to. Its contract is forgiving
on purpose: any failure reads as "unavailable" (``False``, ``[]`` or
``None``), never as an exception, so a calendar outage degrades into "please
pick another slot" instead of a crash.

Two implementations:

* :class:`GoogleCalendarClient`: Google Calendar API v3 over ``httpx``
  (``freeBusy`` query plus events insert / patch / delete) with
  exponential-backoff retries. Each practitioner carries its own calendar id
  and OAuth bearer token.
* :class:`InMemoryCalendar`: process-local events for the CLI and tests.

API docs: https://developers.google.com/calendar/api/v3/reference
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Protocol
from zoneinfo import ZoneInfo

import httpx

from sophie.config import (
    CALENDAR_BACKEND,
    CALENDAR_TIMEOUT_SECONDS,
    DEFAULT_TIMEZONE,
    GOOGLE_CALENDAR_BASE_URL,
    SLOT_MINUTES,
)
from sophie.services.metrics import metrics
from sophie.services.store import Practitioner
from sophie.utils.business_hours import DayHours

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0

# Used when the clinic has no hours for the day
DEFAULT_DAY_HOURS = DayHours(open="09:00", close="18:00")


class CalendarAPIError(Exception):
    """Raised when a Google Calendar call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime


class CalendarProvider(Protocol):
    def check_availability(self, practitioner_id: str, start: datetime, end: datetime) -> bool: ...

    def get_available_slots(
        self,
        practitioner_id: str,
        day: date,
        *,
        slot_minutes: int = SLOT_MINUTES,
        day_hours: DayHours | None = None,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> list[Slot]: ...

    def create_event(
        self,
        practitioner_id: str,
        *,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> str | None: ...

    def update_event(self, practitioner_id: str, event_id: str, start: datetime, end: datetime) -> bool: ...

    def delete_event(self, practitioner_id: str, event_id: str) -> bool: ...


# ── Shared slot arithmetic ───────────────────────────────────────────


def day_window(day: date, day_hours: DayHours | None, timezone: str) -> tuple[datetime, datetime]:
    """Opening and closing instants of *day* on the clinic's wall clock."""
    hours = day_hours or DEFAULT_DAY_HOURS
    tz = ZoneInfo(timezone)
    open_h, open_m = (int(x) for x in hours["open"].split(":"))
    close_h, close_m = (int(x) for x in hours["close"].split(":"))
    start = datetime(day.year, day.month, day.day, open_h, open_m, tzinfo=tz)
    end = datetime(day.year, day.month, day.day, close_h, close_m, tzinfo=tz)
    return start, end


def overlaps(start: datetime, end: datetime, busy: list[tuple[datetime, datetime]]) -> bool:
    return any(start < busy_end and end > busy_start for busy_start, busy_end in busy)


def free_slots(
    window_start: datetime,
    window_end: datetime,
    slot_minutes: int,
    busy: list[tuple[datetime, datetime]],
) -> list[Slot]:
    """Cut the window into ``slot_minutes`` slots that do not touch *busy*."""
    step = timedelta(minutes=slot_minutes)
    slots: list[Slot] = []
    current = window_start
    while current + step <= window_end:
        if not overlaps(current, current + step, busy):
            slots.append(Slot(start=current, end=current + step))
        current += step
    return slots


# ── Google Calendar ──────────────────────────────────────────────────


def _parse_rfc3339(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GoogleCalendarClient:
    """Google Calendar v3 REST client with automatic retries."""

    def __init__(
        self,
        practitioner_lookup: Callable[[str], Practitioner | None],
        base_url: str | None = None,
        *,
        http_client: httpx.Client | None = None,
    ):
        self._lookup = practitioner_lookup
        self._client = http_client or httpx.Client(
            base_url=base_url or GOOGLE_CALENDAR_BASE_URL,
            headers={"Content-Type": "application/json"},
            timeout=CALENDAR_TIMEOUT_SECONDS,
        )

    # ── Internal helpers ─────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        token: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute an HTTP request with exponential-backoff retries."""
        last_error: Exception | None = None
        operation = f"{method} {path.split('/')[1] if '/' in path else path}"
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = self._client.request(
                    method,
                    path,
                    params=params,
                    json=json_body,
                    headers={"Authorization": f"Bearer {token}"},
                )
                if response.status_code >= 500:
                    raise CalendarAPIError(
                        f"Server error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                if response.status_code >= 400:
                    raise CalendarAPIError(
                        f"Client error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                metrics.record_success(
                    "google_calendar", operation, latency_ms=(time.perf_counter() - t0) * 1000,
                )
                if response.status_code == 204 or not response.content:
                    return {}
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                metrics.record_failure(
                    "google_calendar", operation,
                    error_type=type(exc).__name__, latency_ms=(time.perf_counter() - t0) * 1000,
                )
                logger.warning(
                    "Google Calendar attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt,
                    MAX_RETRIES,
                    type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except CalendarAPIError as exc:
                metrics.record_failure(
                    "google_calendar", operation,
                    error_type=f"{exc.status_code // 100}xx" if exc.status_code else "unknown",
                    latency_ms=(time.perf_counter() - t0) * 1000,
                )
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "Google Calendar server error on attempt %d/%d. Retrying…",
                        attempt,
                        MAX_RETRIES,
                    )
                else:
                    raise  # 4xx errors are not retried

            backoff = INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1))
            time.sleep(backoff)

        raise CalendarAPIError(
            f"Google Calendar request failed after {MAX_RETRIES} retries: {last_error}"
        )

    def _credentials(self, practitioner_id: str) -> tuple[str, str]:
        practitioner = self._lookup(practitioner_id)
        if practitioner is None or not practitioner.calendar_id or not practitioner.calendar_token:
            raise CalendarAPIError(f"No calendar integration for practitioner {practitioner_id}")
        return practitioner.calendar_id, practitioner.calendar_token

    def _busy_periods(self, practitioner_id: str, start: datetime, end: datetime) -> list[tuple[datetime, datetime]]:
        calendar_id, token = self._credentials(practitioner_id)
        data = self._request(
            "POST",
            "/freeBusy",
            token,
            json_body={
                "timeMin": start.isoformat(),
                "timeMax": end.isoformat(),
                "items": [{"id": calendar_id}],
            },
        )
        busy = data.get("calendars", {}).get(calendar_id, {}).get("busy", [])
        return [(_parse_rfc3339(b["start"]), _parse_rfc3339(b["end"])) for b in busy]

    # ── CalendarProvider ─────────────────────────────────────────────

    def check_availability(self, practitioner_id: str, start: datetime, end: datetime) -> bool:
        try:
            busy = self._busy_periods(practitioner_id, start, end)
        except CalendarAPIError:
            logger.exception("Availability check failed for practitioner %s", practitioner_id)
            return False
        return not overlaps(start, end, busy)

    def get_available_slots(
        self,
        practitioner_id: str,
        day: date,
        *,
        slot_minutes: int = SLOT_MINUTES,
        day_hours: DayHours | None = None,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> list[Slot]:
        window_start, window_end = day_window(day, day_hours, timezone)
        try:
            busy = self._busy_periods(practitioner_id, window_start, window_end)
        except CalendarAPIError:
            logger.exception("Fetching slots failed for practitioner %s on %s", practitioner_id, day)
            return []
        return free_slots(window_start, window_end, slot_minutes, busy)

    def create_event(
        self,
        practitioner_id: str,
        *,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> str | None:
        try:
            calendar_id, token = self._credentials(practitioner_id)
            data = self._request(
                "POST",
                f"/calendars/{calendar_id}/events",
                token,
                json_body={
                    "summary": summary,
                    "description": description,
                    "start": {"dateTime": start.isoformat(), "timeZone": timezone},
                    "end": {"dateTime": end.isoformat(), "timeZone": timezone},
                },
            )
        except CalendarAPIError:
            logger.exception("Event creation failed for practitioner %s", practitioner_id)
            return None
        return data.get("id")

    def update_event(self, practitioner_id: str, event_id: str, start: datetime, end: datetime) -> bool:
        try:
            calendar_id, token = self._credentials(practitioner_id)
            self._request(
                "PATCH",
                f"/calendars/{calendar_id}/events/{event_id}",
                token,
                json_body={
                    "start": {"dateTime": start.isoformat()},
                    "end": {"dateTime": end.isoformat()},
                },
            )
        except CalendarAPIError:
            logger.exception("Event update failed for %s", event_id)
            return False
        return True

    def delete_event(self, practitioner_id: str, event_id: str) -> bool:
        try:
            calendar_id, token = self._credentials(practitioner_id)
            self._request("DELETE", f"/calendars/{calendar_id}/events/{event_id}", token)
        except CalendarAPIError:
            logger.exception("Event deletion failed for %s", event_id)
            return False
        return True


# ── In-memory calendar ───────────────────────────────────────────────


@dataclass
class _Event:
    practitioner_id: str
    start: datetime
    end: datetime
    summary: str = ""


class InMemoryCalendar:
    """Process-local :class:`CalendarProvider` for development and tests."""

    def __init__(self) -> None:
        self._events: dict[str, _Event] = {}
        self._lock = threading.Lock()

    def _busy(self, practitioner_id: str) -> list[tuple[datetime, datetime]]:
        return [(e.start, e.end) for e in self._events.values() if e.practitioner_id == practitioner_id]

    def check_availability(self, practitioner_id: str, start: datetime, end: datetime) -> bool:
        with self._lock:
            return not overlaps(start, end, self._busy(practitioner_id))

    def get_available_slots(
        self,
        practitioner_id: str,
        day: date,
        *,
        slot_minutes: int = SLOT_MINUTES,
        day_hours: DayHours | None = None,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> list[Slot]:
        window_start, window_end = day_window(day, day_hours, timezone)
        with self._lock:
            return free_slots(window_start, window_end, slot_minutes, self._busy(practitioner_id))

    def create_event(
        self,
        practitioner_id: str,
        *,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> str | None:
        event_id = uuid.uuid4().hex
        with self._lock:
            self._events[event_id] = _Event(practitioner_id, start, end, summary)
        logger.debug("In-memory event %s created: %s", event_id, summary)
        return event_id

    def update_event(self, practitioner_id: str, event_id: str, start: datetime, end: datetime) -> bool:
        with self._lock:
            event = self._events.get(event_id)
            if event is None:
                return False
            event.start, event.end = start, end
            return True

    def delete_event(self, practitioner_id: str, event_id: str) -> bool:
        with self._lock:
            return self._events.pop(event_id, None) is not None


def build_calendar_provider(practitioner_lookup: Callable[[str], Practitioner | None]) -> CalendarProvider:
    """Pick the calendar backend configured by ``CALENDAR_BACKEND``."""
    if CALENDAR_BACKEND == "google":
        logger.info("Using Google Calendar backend")
        return GoogleCalendarClient(practitioner_lookup)
    logger.info("Using in-memory calendar backend")
    return InMemoryCalendar()
