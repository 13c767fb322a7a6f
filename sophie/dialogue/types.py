"""Enumerations and the extraction contract shared across the dialogue engine."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ConversationState(str, Enum):
    IDLE = "IDLE"
    COLLECTING_PATIENT_DATA = "COLLECTING_PATIENT_DATA"
    COLLECTING_APPOINTMENT_DATA = "COLLECTING_APPOINTMENT_DATA"
    CONFIRMATION = "CONFIRMATION"
    COMPLETED = "COMPLETED"
    EMERGENCY = "EMERGENCY"


COLLECTING_STATES = frozenset({
    ConversationState.COLLECTING_PATIENT_DATA,
    ConversationState.COLLECTING_APPOINTMENT_DATA,
})

# States that only last one turn: the next inbound message starts over
RESTING_STATES = frozenset({ConversationState.COMPLETED, ConversationState.EMERGENCY})


class Intent(str, Enum):
    BOOK_APPOINTMENT = "BOOK_APPOINTMENT"
    MODIFY_APPOINTMENT = "MODIFY_APPOINTMENT"
    CANCEL_APPOINTMENT = "CANCEL_APPOINTMENT"
    INFORMATION = "INFORMATION"
    LIST_APPOINTMENTS = "LIST_APPOINTMENTS"
    LIST_PRACTITIONERS = "LIST_PRACTITIONERS"
    EMERGENCY = "EMERGENCY"
    GREETING = "GREETING"
    AFFIRMATIVE = "AFFIRMATIVE"
    NEGATIVE = "NEGATIVE"
    UNKNOWN = "UNKNOWN"


# Intents that may switch the stored reply language mid-conversation
STRONG_INTENTS = frozenset({
    Intent.GREETING,
    Intent.BOOK_APPOINTMENT,
    Intent.CANCEL_APPOINTMENT,
    Intent.MODIFY_APPOINTMENT,
})

FLOW_INTENTS = frozenset({
    Intent.BOOK_APPOINTMENT,
    Intent.CANCEL_APPOINTMENT,
    Intent.MODIFY_APPOINTMENT,
    Intent.LIST_APPOINTMENTS,
    Intent.LIST_PRACTITIONERS,
})


class PendingActionType(str, Enum):
    BOOK = "BOOK"
    CANCEL = "CANCEL"
    MODIFY = "MODIFY"


class TimePreference(str, Enum):
    MORNING = "MORNING"
    AFTERNOON = "AFTERNOON"


class InsuranceCollectionState(str, Enum):
    """Where the patient stands in the social-insurance sub-dialogue."""

    IDLE = "IDLE"
    AWAITING_SOCIAL_INSURANCE = "AWAITING_SOCIAL_INSURANCE"
    AWAITING_INSURANCE_TYPE = "AWAITING_INSURANCE_TYPE"
    AWAITING_INSURANCE_NUMBERS = "AWAITING_INSURANCE_NUMBERS"

    @property
    def is_awaiting(self) -> bool:
        return self is not InsuranceCollectionState.IDLE


class MediaKind(str, Enum):
    IMAGE = "image"
    DOCUMENT = "document"


class AppointmentStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


# ── Extraction contract ──────────────────────────────────────────────


class ExtractedEntities(BaseModel):
    """Entities the model may pull out of one message. ``None`` = not mentioned."""

    model_config = ConfigDict(extra="ignore")

    first_name: str | None = None
    last_name: str | None = None
    birth_date: str | None = None
    email: str | None = None
    phone: str | None = None
    appointment_type: str | None = None
    date: str | None = Field(None, description="YYYY-MM-DD")
    time: str | None = Field(None, description="HH:MM, 24h")
    time_preference: TimePreference | None = None
    practitioner: str | None = None

    def is_empty(self) -> bool:
        return not any(value for value in self.model_dump().values())

    def has_scheduling_change(self) -> bool:
        return bool(self.date or self.time or self.practitioner)


class ExtractionResult(BaseModel):
    """Strict JSON contract returned by the extraction model."""

    model_config = ConfigDict(extra="ignore")

    detected_language: str = "fr"
    intent: Intent = Intent.UNKNOWN
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    entities: ExtractedEntities = Field(default_factory=ExtractedEntities)
    needs_backend_action: bool = False
    is_ambiguous: bool = False
    response_message: str | None = None
