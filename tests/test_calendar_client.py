"""Tests for the calendar providers."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from unittest.mock import MagicMock, patch

import httpx
import pytest

from sophie.services.calendar_client import (
    INITIAL_BACKOFF_SECONDS,
    MAX_RETRIES,
    CalendarAPIError,
    GoogleCalendarClient,
    InMemoryCalendar,
    day_window,
    free_slots,
)
from sophie.services.store import Practitioner

PARIS = "Europe/Paris"
DAY = date(2026, 3, 3)
TEN = datetime(2026, 3, 3, 9, 0, tzinfo=UTC)  # 10:00 in Paris

PRACTITIONER = Practitioner(
    id="p1",
    clinic_id="c1",
    first_name="Claire",
    last_name="Martin",
    calendar_id="claire@clinic.test",
    calendar_token="token-123",
)


# ── Helpers ──────────────────────────────────────────────────────────


def _mock_response(data: dict, status_code: int = 200) -> MagicMock:
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = data
    mock.text = str(data)
    return mock


def _client(http: MagicMock | None = None) -> GoogleCalendarClient:
    lookup = {"p1": PRACTITIONER}.get
    return GoogleCalendarClient(lookup, http_client=http or MagicMock())


def _free_busy(*busy: tuple[str, str]) -> dict:
    return {
        "calendars": {
            "claire@clinic.test": {"busy": [{"start": start, "end": end} for start, end in busy]},
        },
    }


# ── Tests: slot arithmetic ───────────────────────────────────────────


class TestSlotArithmetic:
    def test_day_window_uses_clinic_wall_clock(self):
        start, end = day_window(DAY, {"open": "08:00", "close": "12:00"}, PARIS)
        assert start.astimezone(UTC) == datetime(2026, 3, 3, 7, 0, tzinfo=UTC)
        assert end.astimezone(UTC) == datetime(2026, 3, 3, 11, 0, tzinfo=UTC)

    def test_day_window_defaults(self):
        start, end = day_window(DAY, None, PARIS)
        assert (start.hour, end.hour) == (9, 18)

    def test_free_slots_skip_busy(self):
        start = TEN
        busy = [(start + timedelta(minutes=30), start + timedelta(minutes=60))]
        slots = free_slots(start, start + timedelta(hours=2), 30, busy)
        assert [s.start - start for s in slots] == [
            timedelta(0), timedelta(minutes=60), timedelta(minutes=90),
        ]


# ── Tests: Google Calendar ───────────────────────────────────────────


class TestGoogleAvailability:
    def test_free_when_no_busy_period(self):
        http = MagicMock()
        http.request.return_value = _mock_response(_free_busy())
        assert _client(http).check_availability("p1", TEN, TEN + timedelta(minutes=30)) is True

        method, path = http.request.call_args.args
        assert (method, path) == ("POST", "/freeBusy")
        assert http.request.call_args.kwargs["headers"] == {"Authorization": "Bearer token-123"}
        assert http.request.call_args.kwargs["json"]["items"] == [{"id": "claire@clinic.test"}]

    def test_busy_overlap(self):
        http = MagicMock()
        http.request.return_value = _mock_response(
            _free_busy(("2026-03-03T09:15:00Z", "2026-03-03T09:45:00Z")),
        )
        assert _client(http).check_availability("p1", TEN, TEN + timedelta(minutes=30)) is False

    def test_practitioner_without_calendar_is_unavailable(self):
        http = MagicMock()
        assert _client(http).check_availability("unknown", TEN, TEN + timedelta(minutes=30)) is False
        http.request.assert_not_called()

    def test_slots_for_a_day(self):
        http = MagicMock()
        http.request.return_value = _mock_response(
            _free_busy(("2026-03-03T07:00:00Z", "2026-03-03T08:00:00Z")),
        )
        slots = _client(http).get_available_slots(
            "p1", DAY, slot_minutes=30, day_hours={"open": "08:00", "close": "10:00"}, timezone=PARIS,
        )
        assert [s.start.strftime("%H:%M") for s in slots] == ["09:00", "09:30"]


class TestGoogleEvents:
    def test_create_event_returns_id(self):
        http = MagicMock()
        http.request.return_value = _mock_response({"id": "evt-1"})
        event_id = _client(http).create_event(
            "p1", summary="Consultation - Jean Dupont", description="", start=TEN,
            end=TEN + timedelta(minutes=30), timezone=PARIS,
        )
        assert event_id == "evt-1"
        assert http.request.call_args.args[1] == "/calendars/claire@clinic.test/events"

    def test_delete_event_with_empty_body(self):
        http = MagicMock()
        response = _mock_response({}, status_code=204)
        http.request.return_value = response
        assert _client(http).delete_event("p1", "evt-1") is True
        response.json.assert_not_called()

    def test_update_event_failure_reads_as_false(self):
        http = MagicMock()
        http.request.return_value = _mock_response({"error": "not found"}, status_code=404)
        assert _client(http).update_event("p1", "evt-1", TEN, TEN + timedelta(minutes=30)) is False


class TestRetryLogic:
    @patch("sophie.services.calendar_client.time.sleep")
    def test_retries_on_timeout(self, mock_sleep):
        http = MagicMock()
        http.request.side_effect = [httpx.TimeoutException("timeout"), _mock_response(_free_busy())]
        assert _client(http).check_availability("p1", TEN, TEN + timedelta(minutes=30)) is True
        mock_sleep.assert_called_once_with(INITIAL_BACKOFF_SECONDS)

    @patch("sophie.services.calendar_client.time.sleep")
    def test_retries_on_500_error(self, mock_sleep):
        http = MagicMock()
        http.request.side_effect = [_mock_response({}, status_code=503), _mock_response({"id": "evt-2"})]
        event_id = _client(http).create_event(
            "p1", summary="s", description="", start=TEN, end=TEN + timedelta(minutes=30),
        )
        assert event_id == "evt-2"
        assert http.request.call_count == 2

    @patch("sophie.services.calendar_client.time.sleep")
    def test_does_not_retry_on_4xx(self, mock_sleep):
        http = MagicMock()
        http.request.return_value = _mock_response({"error": "forbidden"}, status_code=403)
        with pytest.raises(CalendarAPIError) as exc_info:
            _client(http)._request("GET", "/calendars/x/events", "token")
        assert exc_info.value.status_code == 403
        assert http.request.call_count == 1
        mock_sleep.assert_not_called()

    @patch("sophie.services.calendar_client.time.sleep")
    def test_gives_up_after_max_retries(self, mock_sleep):
        http = MagicMock()
        http.request.side_effect = httpx.ConnectError("refused")
        assert _client(http).get_available_slots("p1", DAY, timezone=PARIS) == []
        assert http.request.call_count == MAX_RETRIES
        assert mock_sleep.call_count == MAX_RETRIES


# ── Tests: in-memory calendar ────────────────────────────────────────


class TestInMemoryCalendar:
    def test_event_lifecycle(self):
        calendar = InMemoryCalendar()
        end = TEN + timedelta(minutes=30)
        assert calendar.check_availability("p1", TEN, end) is True

        event_id = calendar.create_event("p1", summary="s", description="", start=TEN, end=end)
        assert calendar.check_availability("p1", TEN, end) is False
        assert calendar.check_availability("p2", TEN, end) is True

        later = TEN + timedelta(hours=2)
        assert calendar.update_event("p1", event_id, later, later + timedelta(minutes=30)) is True
        assert calendar.check_availability("p1", TEN, end) is True

        assert calendar.delete_event("p1", event_id) is True
        assert calendar.delete_event("p1", event_id) is False

    def test_slots_exclude_events(self):
        calendar = InMemoryCalendar()
        calendar.create_event("p1", summary="s", description="", start=TEN, end=TEN + timedelta(minutes=30))
        slots = calendar.get_available_slots(
            "p1", DAY, slot_minutes=30, day_hours={"open": "09:00", "close": "11:00"}, timezone=PARIS,
        )
        assert [s.start.strftime("%H:%M") for s in slots] == ["09:00", "09:30", "10:30"]
