"""Sanity checks on what the extraction model pulled out of a message.

The model is good at reading "mardi prochain à 14h" and bad at knowing that
the date it produced is in the past. Every extracted entity goes through
:class:`EntityValidator` before it can touch the conversation context:
malformed or impossible values are dropped so the engine asks again instead
of silently booking something wrong.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, NamedTuple

from sophie.dialogue.types import ExtractedEntities
from sophie.utils.business_hours import WEEKDAYS, parse_opening_hours, to_minutes

logger = logging.getLogger(__name__)

_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE = re.compile(r"^(\+)?[0-9]{8,15}$")
_PHONE_NOISE = re.compile(r"[\s\-.]")

MIN_AGE_YEARS = 1
MAX_AGE_YEARS = 120


class _Check(NamedTuple):
    valid: bool
    error: str | None = None
    corrected: str | None = None


@dataclass(frozen=True)
class ValidationContext:
    """Clinic facts the checks need."""

    opening_hours: Any = None
    practitioner_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class EntityValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)
    # Sanitised entities, always usable
    entities: ExtractedEntities = field(default_factory=ExtractedEntities)
    # Same as ``entities`` but only set when something was wrong
    corrected_entities: ExtractedEntities | None = None
    rejected_fields: tuple[str, ...] = ()


class EntityValidator:
    """Validate and normalise :class:`ExtractedEntities`."""

    def validate(
        self,
        entities: ExtractedEntities,
        context: ValidationContext | None = None,
        today: date | None = None,
    ) -> EntityValidation:
        context = context or ValidationContext()
        today = today or date.today()

        if entities.is_empty():
            return EntityValidation(valid=True, entities=entities)

        errors: list[str] = []
        rejected: list[str] = []
        updates: dict[str, Any] = {}

        def apply(name: str, label: str, check: _Check) -> None:
            if not check.valid:
                errors.append(f"Invalid {label}: {check.error}")
                rejected.append(name)
                updates[name] = None
            elif check.corrected:
                updates[name] = check.corrected

        if entities.date:
            apply("date", "date", self._validate_date(entities.date, today))
        if entities.time:
            apply("time", "time", self._validate_time(entities.time))

        final_date = updates.get("date", entities.date)
        final_time = updates.get("time", entities.time)
        if final_date and final_time and context.opening_hours:
            schedule = self._validate_against_schedule(final_date, final_time, context.opening_hours)
            if not schedule.valid:
                errors.append(f"Schedule conflict: {schedule.error}")

        if entities.email:
            apply("email", "email", self._validate_email(entities.email))
        if entities.phone:
            apply("phone", "phone", self._validate_phone(entities.phone))
        if entities.birth_date:
            apply("birth_date", "birth date", self._validate_birth_date(entities.birth_date, today))

        if entities.practitioner and context.practitioner_names:
            practitioner = self._validate_practitioner(entities.practitioner, context.practitioner_names)
            if not practitioner.valid:
                # Kept: the engine resolves names against the roster itself
                errors.append(f"Invalid practitioner: {practitioner.error}")

        sanitized = entities.model_copy(update=updates)
        if errors:
            logger.warning(
                "Entity validation errors: %s (original=%s, corrected=%s)",
                errors,
                entities.model_dump(exclude_none=True),
                sanitized.model_dump(exclude_none=True),
            )

        return EntityValidation(
            valid=not errors,
            errors=errors,
            entities=sanitized,
            corrected_entities=sanitized if errors else None,
            rejected_fields=tuple(rejected),
        )

    # ── Individual checks ────────────────────────────────────────────

    @staticmethod
    def _parse_iso(value: str) -> date | None:
        if not _DATE.match(value):
            return None
        try:
            return date.fromisoformat(value)
        except ValueError:
            return None

    def _validate_date(self, value: str, today: date) -> _Check:
        parsed = self._parse_iso(value)
        if parsed is None:
            return _Check(False, f"Invalid format: {value} (expected YYYY-MM-DD)")
        if parsed < today:
            return _Check(False, f"Date is in the past: {value}")
        try:
            horizon = today.replace(year=today.year + 1)
        except ValueError:  # 29 February
            horizon = today.replace(year=today.year + 1, day=28)
        if parsed > horizon:
            return _Check(False, f"Date is too far in the future: {value}")
        return _Check(True)

    @staticmethod
    def _validate_time(value: str) -> _Check:
        match = _TIME.match(value)
        if not match:
            return _Check(False, f"Invalid format: {value} (expected HH:MM)")
        normalized = f"{int(match.group(1)):02d}:{match.group(2)}"
        return _Check(True, corrected=normalized if normalized != value else None)

    def _validate_against_schedule(self, date_str: str, time_str: str, opening_hours: Any) -> _Check:
        schedule = parse_opening_hours(opening_hours)
        if not isinstance(schedule, dict):
            return _Check(True)

        parsed = self._parse_iso(date_str)
        if parsed is None:
            return _Check(True)
        day_name = WEEKDAYS[parsed.weekday()]
        day_schedule = schedule.get(day_name)
        if not day_schedule:
            return _Check(False, f"Clinic is closed on {day_name}")

        ranges = day_schedule if isinstance(day_schedule, list) else [day_schedule]
        try:
            minutes = to_minutes(time_str)
            inside = any(
                to_minutes(r["open"]) <= minutes < to_minutes(r["close"])
                for r in ranges
                if r.get("open") and r.get("close")
            )
        except (KeyError, ValueError):
            return _Check(True)
        if not inside:
            hours = " & ".join(f"{r.get('open')}-{r.get('close')}" for r in ranges)
            return _Check(False, f"Time {time_str} is outside business hours ({hours})")
        return _Check(True)

    @staticmethod
    def _validate_email(value: str) -> _Check:
        if not _EMAIL.match(value):
            return _Check(False, f"Invalid email format: {value}")
        return _Check(True)

    @staticmethod
    def _validate_phone(value: str) -> _Check:
        cleaned = _PHONE_NOISE.sub("", value)
        if not _PHONE.match(cleaned):
            return _Check(False, f"Invalid phone format: {value}")
        return _Check(True, corrected=cleaned if cleaned != value else None)

    def _validate_birth_date(self, value: str, today: date) -> _Check:
        parsed = self._parse_iso(value)
        if parsed is None:
            return _Check(False, f"Invalid format: {value} (expected YYYY-MM-DD)")
        age = (today - parsed).days / 365.25
        if age < MIN_AGE_YEARS:
            return _Check(False, f"Birth date is too recent: {value}")
        if age > MAX_AGE_YEARS:
            return _Check(False, f"Birth date is too old: {value}")
        return _Check(True)

    @staticmethod
    def _validate_practitioner(value: str, names: tuple[str, ...]) -> _Check:
        needle = value.lower().strip()
        for name in names:
            candidate = name.lower()
            if needle in candidate or candidate in needle:
                return _Check(True)
        return _Check(False, f'Practitioner "{value}" not found. Available: {", ".join(names)}')
