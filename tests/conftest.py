"""Shared test fixtures for the Sophie test suite."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

CLINIC_ID = "clinic-test"
PATIENT_PHONE = "+33612345678"

# Monday 2 March 2026, 09:00 in Paris (UTC+1 before the DST switch)
MONDAY_9AM = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any test module is imported, so config.py won't fail
    on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("CALENDAR_BACKEND", "memory")
    os.environ.setdefault("METRICS_ENABLED", "false")


class FakeClock:
    """Callable clock the store and the engine share."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def clock():
    return FakeClock(MONDAY_9AM)


@pytest.fixture
def store(clock):
    """In-memory store seeded with the demo clinic (Dr Martin, Dr Bernard)."""
    from sophie.services.store import InMemoryConversationStore, seed_demo_clinic

    store = InMemoryConversationStore(clock=clock)
    seed_demo_clinic(store, CLINIC_ID)
    return store


@pytest.fixture
def calendar():
    from sophie.services.calendar_client import InMemoryCalendar

    return InMemoryCalendar()


@pytest.fixture
def extractor():
    """Model stand-in: no extraction and no generated reply unless a test says so."""
    mock = MagicMock()
    mock.extract_entities.return_value = None
    mock.generate_reply.return_value = None
    return mock


@pytest.fixture
def engine(store, calendar, extractor, clock):
    from sophie.dialogue.engine import ConversationManager

    return ConversationManager(store, calendar, extractor, clock=clock)


@pytest.fixture
def conversation(engine):
    return engine.get_or_create_conversation(CLINIC_ID, PATIENT_PHONE)


@pytest.fixture
def make_extraction():
    """Factory fixture for ExtractionResult objects."""
    from sophie.dialogue.types import ExtractedEntities, ExtractionResult, Intent

    def _make(intent: str = "UNKNOWN", *, response_message: str | None = None, **entities):
        return ExtractionResult(
            detected_language="fr",
            intent=Intent(intent),
            confidence=0.9,
            entities=ExtractedEntities(**entities),
            response_message=response_message,
        )

    return _make
