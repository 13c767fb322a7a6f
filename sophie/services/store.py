"""Conversation store: conversations, messages, patients, appointments.

``ConversationStore`` is the persistence surface the engine depends on.
``InMemoryConversationStore`` implements it behind a single lock and hands
out copies, so callers can never mutate stored rows by accident. It backs
the CLI, the default server wiring and the test suite.

Patient identity fields are **write-once**: the first non-empty value wins
and later upserts cannot overwrite it. Insurance details always update.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any, Protocol

from sophie.dialogue.context import ConversationContext
from sophie.dialogue.decisions import DecisionRecord, trim_decisions
from sophie.dialogue.types import (
    AppointmentStatus,
    ConversationState,
    MediaKind,
    MessageRole,
)

logger = logging.getLogger(__name__)

WRITE_ONCE_FIELDS = ("first_name", "last_name", "email", "insurance_card_url", "birth_date")
INSURANCE_FIELDS = (
    "has_social_insurance",
    "social_insurance_type",
    "beneficiary_number",
    "guarantee_number",
    "guarantee_document_path",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


# ── Records ──────────────────────────────────────────────────────────


@dataclass
class Clinic:
    id: str
    name: str
    timezone: str = "Europe/Paris"
    phone: str | None = None
    address: str | None = None
    email: str | None = None
    website: str | None = None
    opening_hours: Any = None
    emergency_message: str | None = None
    onboarding_form_url: str | None = None


@dataclass
class Practitioner:
    id: str
    clinic_id: str
    first_name: str
    last_name: str
    specialty: str | None = None
    is_active: bool = True
    calendar_id: str | None = None
    calendar_token: str | None = None

    @property
    def display_name(self) -> str:
        return f"Dr {self.last_name}"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass
class Conversation:
    id: str
    clinic_id: str
    channel_id: str
    display_phone: str | None = None
    current_state: ConversationState = ConversationState.IDLE
    detected_language: str | None = None
    context: ConversationContext = field(default_factory=ConversationContext)
    decisions: list[DecisionRecord] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class Message:
    id: str
    conversation_id: str
    role: MessageRole
    content: str
    media_kind: MediaKind | None = None
    media_path: str | None = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class Patient:
    id: str
    clinic_id: str
    phone: str
    first_name: str | None = None
    last_name: str | None = None
    birth_date: date | None = None
    email: str | None = None
    insurance_card_url: str | None = None
    preferred_language: str | None = None
    has_social_insurance: bool | None = None
    social_insurance_type: str | None = None
    beneficiary_number: str | None = None
    guarantee_number: str | None = None
    guarantee_document_path: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


@dataclass
class Appointment:
    id: str
    clinic_id: str
    patient_id: str
    practitioner_id: str
    start: datetime
    end: datetime
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    external_event_id: str | None = None
    type: str | None = None


# ── Protocol ─────────────────────────────────────────────────────────


class ConversationStore(Protocol):
    """Persistence the dialogue engine relies on."""

    # Conversations and messages
    def get_or_create_conversation(
        self, clinic_id: str, channel_id: str, display_phone: str | None = None,
    ) -> Conversation: ...
    def get_conversation(self, conversation_id: str) -> Conversation | None: ...
    def update_context(self, conversation_id: str, context: ConversationContext) -> None: ...
    def transition_state(self, conversation_id: str, state: ConversationState) -> None: ...
    def set_detected_language(self, conversation_id: str, language: str) -> None: ...
    def append_decision(self, conversation_id: str, record: DecisionRecord) -> None: ...
    def save_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        media_kind: MediaKind | None = None,
        media_path: str | None = None,
    ) -> Message: ...
    def list_messages(self, conversation_id: str, limit: int | None = None) -> list[Message]: ...
    def last_message_at(self, conversation_id: str) -> datetime | None: ...

    # Clinic
    def get_clinic(self, clinic_id: str) -> Clinic | None: ...
    def list_practitioners(self, clinic_id: str) -> list[Practitioner]: ...
    def get_practitioner(self, practitioner_id: str) -> Practitioner | None: ...

    # Patients
    def get_patient(self, clinic_id: str, phone: str) -> Patient | None: ...
    def upsert_patient(self, clinic_id: str, phone: str, **fields: Any) -> Patient: ...
    def set_preferred_language(self, clinic_id: str, phone: str, language: str) -> Patient: ...

    # Appointments
    def create_appointment(
        self,
        *,
        clinic_id: str,
        patient_id: str,
        practitioner_id: str,
        start: datetime,
        end: datetime,
        external_event_id: str | None = None,
        type: str | None = None,
    ) -> Appointment: ...
    def get_appointment(self, appointment_id: str) -> Appointment | None: ...
    def list_upcoming_appointments(self, clinic_id: str, phone: str, now: datetime) -> list[Appointment]: ...
    def count_appointments(self, patient_id: str, statuses: Iterable[AppointmentStatus] | None = None) -> int: ...
    def update_appointment_times(self, appointment_id: str, start: datetime, end: datetime) -> None: ...
    def set_appointment_status(self, appointment_id: str, status: AppointmentStatus) -> None: ...


# ── In-memory implementation ─────────────────────────────────────────


class InMemoryConversationStore:
    """Thread-safe in-memory :class:`ConversationStore`."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or _utcnow
        self._lock = threading.RLock()
        self._clinics: dict[str, Clinic] = {}
        self._practitioners: dict[str, Practitioner] = {}
        self._conversations: dict[str, Conversation] = {}
        self._conversation_keys: dict[tuple[str, str], str] = {}
        self._messages: dict[str, list[Message]] = {}
        self._patients: dict[tuple[str, str], Patient] = {}
        self._appointments: dict[str, Appointment] = {}

    # ── Clinic setup (not part of the protocol) ──────────────────────

    def add_clinic(self, clinic: Clinic) -> Clinic:
        with self._lock:
            self._clinics[clinic.id] = copy.deepcopy(clinic)
        return clinic

    def add_practitioner(self, practitioner: Practitioner) -> Practitioner:
        with self._lock:
            self._practitioners[practitioner.id] = copy.deepcopy(practitioner)
        return practitioner

    # ── Conversations ────────────────────────────────────────────────

    def _conversation(self, conversation_id: str) -> Conversation:
        try:
            return self._conversations[conversation_id]
        except KeyError:
            raise KeyError(f"Unknown conversation {conversation_id}") from None

    def get_or_create_conversation(
        self, clinic_id: str, channel_id: str, display_phone: str | None = None,
    ) -> Conversation:
        with self._lock:
            key = (clinic_id, channel_id)
            conversation_id = self._conversation_keys.get(key)
            if conversation_id is None:
                now = self._clock()
                conversation = Conversation(
                    id=_new_id(),
                    clinic_id=clinic_id,
                    channel_id=channel_id,
                    display_phone=display_phone,
                    created_at=now,
                    updated_at=now,
                )
                self._conversations[conversation.id] = conversation
                self._conversation_keys[key] = conversation.id
                self._messages[conversation.id] = []
                logger.info("Created conversation %s for clinic %s", conversation.id, clinic_id)
                conversation_id = conversation.id
            return copy.deepcopy(self._conversations[conversation_id])

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with self._lock:
            conversation = self._conversations.get(conversation_id)
            return copy.deepcopy(conversation) if conversation else None

    def update_context(self, conversation_id: str, context: ConversationContext) -> None:
        with self._lock:
            conversation = self._conversation(conversation_id)
            conversation.context = context
            conversation.updated_at = self._clock()

    def transition_state(self, conversation_id: str, state: ConversationState) -> None:
        with self._lock:
            conversation = self._conversation(conversation_id)
            if conversation.current_state is not state:
                logger.info(
                    "Conversation %s: %s -> %s",
                    conversation_id, conversation.current_state.value, state.value,
                )
            conversation.current_state = state
            conversation.updated_at = self._clock()

    def set_detected_language(self, conversation_id: str, language: str) -> None:
        with self._lock:
            self._conversation(conversation_id).detected_language = language

    def append_decision(self, conversation_id: str, record: DecisionRecord) -> None:
        with self._lock:
            conversation = self._conversation(conversation_id)
            conversation.decisions = trim_decisions(conversation.decisions + [record])

    # ── Messages ─────────────────────────────────────────────────────

    def save_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        media_kind: MediaKind | None = None,
        media_path: str | None = None,
    ) -> Message:
        with self._lock:
            self._conversation(conversation_id)
            message = Message(
                id=_new_id(),
                conversation_id=conversation_id,
                role=role,
                content=content,
                media_kind=media_kind,
                media_path=media_path,
                created_at=self._clock(),
            )
            self._messages[conversation_id].append(message)
            return copy.deepcopy(message)

    def list_messages(self, conversation_id: str, limit: int | None = None) -> list[Message]:
        with self._lock:
            messages = self._messages.get(conversation_id, [])
            selected = messages[-limit:] if limit else messages
            return copy.deepcopy(selected)

    def last_message_at(self, conversation_id: str) -> datetime | None:
        with self._lock:
            messages = self._messages.get(conversation_id)
            return messages[-1].created_at if messages else None

    # ── Clinic ───────────────────────────────────────────────────────

    def get_clinic(self, clinic_id: str) -> Clinic | None:
        with self._lock:
            clinic = self._clinics.get(clinic_id)
            return copy.deepcopy(clinic) if clinic else None

    def list_practitioners(self, clinic_id: str) -> list[Practitioner]:
        with self._lock:
            return [
                copy.deepcopy(p)
                for p in self._practitioners.values()
                if p.clinic_id == clinic_id and p.is_active
            ]

    def get_practitioner(self, practitioner_id: str) -> Practitioner | None:
        with self._lock:
            practitioner = self._practitioners.get(practitioner_id)
            return copy.deepcopy(practitioner) if practitioner else None

    # ── Patients ─────────────────────────────────────────────────────

    def get_patient(self, clinic_id: str, phone: str) -> Patient | None:
        with self._lock:
            patient = self._patients.get((clinic_id, phone))
            return copy.deepcopy(patient) if patient else None

    def _get_or_create_patient(self, clinic_id: str, phone: str) -> Patient:
        key = (clinic_id, phone)
        patient = self._patients.get(key)
        if patient is None:
            patient = Patient(id=_new_id(), clinic_id=clinic_id, phone=phone)
            self._patients[key] = patient
            logger.info("Created patient %s for clinic %s", patient.id, clinic_id)
        return patient

    def upsert_patient(self, clinic_id: str, phone: str, **fields: Any) -> Patient:
        unknown = set(fields) - set(WRITE_ONCE_FIELDS) - set(INSURANCE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported patient fields: {sorted(unknown)}")

        with self._lock:
            patient = self._get_or_create_patient(clinic_id, phone)
            for name in WRITE_ONCE_FIELDS:
                value = fields.get(name)
                if value not in (None, "") and getattr(patient, name) in (None, ""):
                    setattr(patient, name, value)
            for name in INSURANCE_FIELDS:
                value = fields.get(name)
                if value is not None:
                    setattr(patient, name, value)
            return copy.deepcopy(patient)

    def set_preferred_language(self, clinic_id: str, phone: str, language: str) -> Patient:
        with self._lock:
            patient = self._get_or_create_patient(clinic_id, phone)
            patient.preferred_language = language
            return copy.deepcopy(patient)

    # ── Appointments ─────────────────────────────────────────────────

    def create_appointment(
        self,
        *,
        clinic_id: str,
        patient_id: str,
        practitioner_id: str,
        start: datetime,
        end: datetime,
        external_event_id: str | None = None,
        type: str | None = None,
    ) -> Appointment:
        appointment = Appointment(
            id=_new_id(),
            clinic_id=clinic_id,
            patient_id=patient_id,
            practitioner_id=practitioner_id,
            start=start,
            end=end,
            external_event_id=external_event_id,
            type=type,
        )
        with self._lock:
            self._appointments[appointment.id] = appointment
            return copy.deepcopy(appointment)

    def get_appointment(self, appointment_id: str) -> Appointment | None:
        with self._lock:
            appointment = self._appointments.get(appointment_id)
            return copy.deepcopy(appointment) if appointment else None

    def list_upcoming_appointments(self, clinic_id: str, phone: str, now: datetime) -> list[Appointment]:
        with self._lock:
            patient = self._patients.get((clinic_id, phone))
            if patient is None:
                return []
            upcoming = [
                a for a in self._appointments.values()
                if a.patient_id == patient.id
                and a.status is AppointmentStatus.CONFIRMED
                and a.start >= now
            ]
            return copy.deepcopy(sorted(upcoming, key=lambda a: a.start))

    def count_appointments(self, patient_id: str, statuses: Iterable[AppointmentStatus] | None = None) -> int:
        wanted = set(statuses) if statuses is not None else set(AppointmentStatus)
        with self._lock:
            return sum(
                1 for a in self._appointments.values()
                if a.patient_id == patient_id and a.status in wanted
            )

    def update_appointment_times(self, appointment_id: str, start: datetime, end: datetime) -> None:
        with self._lock:
            appointment = self._appointments[appointment_id]
            appointment.start, appointment.end = start, end

    def set_appointment_status(self, appointment_id: str, status: AppointmentStatus) -> None:
        with self._lock:
            self._appointments[appointment_id].status = status


# ── Demo data ────────────────────────────────────────────────────────

DEMO_OPENING_HOURS = {
    "monday": {"open": "08:00", "close": "18:00"},
    "tuesday": {"open": "08:00", "close": "18:00"},
    "wednesday": {"open": "08:00", "close": "18:00"},
    "thursday": {"open": "08:00", "close": "18:00"},
    "friday": {"open": "08:00", "close": "17:00"},
    "saturday": {"open": "09:00", "close": "12:00"},
    "sunday": None,
}


def seed_demo_clinic(store: InMemoryConversationStore, clinic_id: str) -> Clinic:
    """Register a small clinic with two practitioners for local use."""
    clinic = store.add_clinic(Clinic(
        id=clinic_id,
        name="Cabinet Médical des Tilleuls",
        timezone="Europe/Paris",
        phone="+33 1 23 45 67 89",
        address="12 rue des Tilleuls, 75011 Paris",
        email="contact@cabinet-tilleuls.fr",
        website="https://cabinet-tilleuls.fr",
        opening_hours=DEMO_OPENING_HOURS,
    ))
    store.add_practitioner(Practitioner(
        id=f"{clinic_id}-martin", clinic_id=clinic_id,
        first_name="Claire", last_name="Martin", specialty="Médecine générale",
    ))
    store.add_practitioner(Practitioner(
        id=f"{clinic_id}-bernard", clinic_id=clinic_id,
        first_name="Hugo", last_name="Bernard", specialty="Pédiatrie",
    ))
    logger.info("Seeded demo clinic %s", clinic_id)
    return clinic
