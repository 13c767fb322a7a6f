"""Sophie's dialogue engine: one patient message in, one reply out.

:class:`ConversationManager` drives a finite-state machine over
:class:`~sophie.dialogue.types.ConversationState`. The model is consulted
twice at most per turn: once to turn the message into an intent plus
entities, and once more only when no deterministic branch has anything to
say. Every question Sophie asks while collecting data, every confirmation
and every booking outcome comes from the fixed templates in
:mod:`sophie.dialogue.replies`.

Turns of the same conversation are serialised with a :class:`KeyedLock`;
different conversations run in parallel.

Per-turn pipeline
-----------------
emergency → expiry / latch → greeting or reset → language → extraction →
insurance sub-dialogue → practitioner fallback → fresh booking → merge →
confirmation → flow intents and data collection → insurance re-ask →
generated reply.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from sophie.config import DEMO_CLINIC_ID, DialogueSettings
from sophie.dialogue.context import (
    AppointmentDraft,
    ConversationContext,
    PendingAction,
    merge_context,
    missing_appointment_fields,
)
from sophie.dialogue.decisions import DecisionRecord, DecisionType, format_decisions_for_prompt
from sophie.dialogue.entity_validator import EntityValidator, ValidationContext
from sophie.dialogue.heuristics import (
    asks_for_slots,
    has_correction_signal,
    has_modify_keyword,
    is_greeting,
    is_reset_command,
    is_urgent_motif,
    match_practitioner_mention,
    needs_entity_extraction,
    parse_insurance_number,
    social_insurance_answer,
    social_insurance_type,
    word_count,
)
from sophie.dialogue.locks import KeyedLock
from sophie.dialogue.replies import reply
from sophie.dialogue.response_validator import ResponseValidator
from sophie.dialogue.slots import (
    filter_by_preference,
    format_slot_time,
    future_slots_on,
    minimum_booking_delay,
    suggest_slots,
)
from sophie.dialogue.types import (
    COLLECTING_STATES,
    FLOW_INTENTS,
    RESTING_STATES,
    STRONG_INTENTS,
    AppointmentStatus,
    ConversationState,
    ExtractedEntities,
    InsuranceCollectionState,
    Intent,
    MediaKind,
    MessageRole,
    PendingActionType,
    TimePreference,
)
from sophie.prompts import get_contextual_prompt
from sophie.services.calendar_client import CalendarProvider, build_calendar_provider
from sophie.services.llm_client import EntityExtractionClient, get_extraction_client
from sophie.services.metrics import metrics
from sophie.services.store import (
    Clinic,
    Conversation,
    ConversationStore,
    InMemoryConversationStore,
    Patient,
    Practitioner,
    seed_demo_clinic,
)
from sophie.utils.business_hours import format_opening_hours, is_day_open, is_within_business_hours
from sophie.utils.dates import (
    format_date,
    format_date_for_user,
    format_datetime,
    format_time,
    normalize_dmy,
    parse_birth_date,
    parse_in_timezone,
    weekday_name,
)
from sophie.utils.emergency import is_emergency_message
from sophie.utils.language import detect_language

logger = logging.getLogger(__name__)

PATIENT_ENTITY_FIELDS = ("first_name", "last_name", "birth_date", "email")
LANGUAGE_SWITCH_MIN_WORDS = 5
SAME_DAY_ALTERNATIVES = 3

S = ConversationState
Insurance = InsuranceCollectionState


@dataclass
class _Turn:
    """Working state of one ``process_message`` call."""

    conversation: Conversation
    clinic: Clinic | None
    clinic_name: str
    text: str
    media_kind: MediaKind | None
    media_path: str | None
    now: datetime
    timezone: str
    state: ConversationState
    context: ConversationContext
    language: str
    patient: Patient | None = None
    intent: Intent = Intent.UNKNOWN
    entities: ExtractedEntities = field(default_factory=ExtractedEntities)
    is_ambiguous: bool = False
    model_reply: str | None = None
    rejected_fields: tuple[str, ...] = ()

    @property
    def conversation_id(self) -> str:
        return self.conversation.id

    @property
    def clinic_id(self) -> str:
        return self.conversation.clinic_id

    @property
    def phone(self) -> str:
        return self.conversation.channel_id

    @property
    def opening_hours(self) -> Any:
        return self.clinic.opening_hours if self.clinic else None

    @property
    def today(self) -> date:
        return self.now.astimezone(ZoneInfo(self.timezone)).date()


class ConversationManager:
    """The dialogue engine channel adapters talk to."""

    def __init__(
        self,
        store: ConversationStore,
        calendar: CalendarProvider,
        extractor: EntityExtractionClient,
        *,
        settings: DialogueSettings | None = None,
        clock: Callable[[], datetime] | None = None,
        entity_validator: EntityValidator | None = None,
        response_validator: ResponseValidator | None = None,
    ):
        self._store = store
        self._calendar = calendar
        self._extractor = extractor
        self._settings = settings or DialogueSettings()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._entity_validator = entity_validator or EntityValidator()
        self._response_validator = response_validator or ResponseValidator()
        self._locks = KeyedLock()

    @property
    def store(self) -> ConversationStore:
        return self._store

    def get_or_create_conversation(
        self, clinic_id: str, channel_id: str, display_phone: str | None = None,
    ) -> Conversation:
        return self._store.get_or_create_conversation(clinic_id, channel_id, display_phone)

    def process_message(
        self,
        conversation_id: str,
        text: str,
        clinic_name: str = "",
        media_kind: MediaKind | None = None,
        media_path: str | None = None,
    ) -> str:
        """Run one turn and return the reply to send back.

        Never raises: an unknown conversation or any failure inside the turn
        is logged and answered with the generic error reply.
        """
        with self._locks.hold(conversation_id):
            conversation = self._store.get_conversation(conversation_id)
            if conversation is None:
                logger.error("Unknown conversation %s, nothing processed", conversation_id)
                return reply("error", detect_language(text or "", default=self._settings.default_language))
            try:
                return self._process(conversation, text or "", clinic_name, media_kind, media_path)
            except Exception:
                logger.exception("Turn failed for conversation %s", conversation_id)
                metrics.record_dialogue_event("TurnFailed")
                return reply("error", conversation.detected_language or self._settings.default_language)

    # ── Turn pipeline ────────────────────────────────────────────────

    def _process(
        self,
        conversation: Conversation,
        text: str,
        clinic_name: str,
        media_kind: MediaKind | None,
        media_path: str | None,
    ) -> str:
        clinic = self._store.get_clinic(conversation.clinic_id)
        turn = _Turn(
            conversation=conversation,
            clinic=clinic,
            clinic_name=clinic_name or (clinic.name if clinic else ""),
            text=text.strip(),
            media_kind=media_kind,
            media_path=media_path,
            now=self._clock(),
            timezone=clinic.timezone if clinic else self._settings.default_timezone,
            state=conversation.current_state,
            context=conversation.context,
            language=conversation.detected_language or self._settings.default_language,
        )
        metrics.record_dialogue_event("Turn", State=turn.state.value)
        logger.info(
            "Conversation %s: message in %s (%d chars, media=%s)",
            turn.conversation_id, turn.state.value, len(turn.text), media_kind.value if media_kind else None,
        )

        if is_emergency_message(turn.text):
            return self._handle_emergency(turn)

        self._expire_or_latch(turn)
        self._store.save_message(turn.conversation_id, MessageRole.USER, turn.text, media_kind, media_path)

        if is_greeting(turn.text) or (is_reset_command(turn.text) and turn.state is not S.IDLE):
            return self._greet(turn)

        self._resolve_language(turn)
        self._extract(turn)
        if turn.language != conversation.detected_language:
            self._store.set_detected_language(turn.conversation_id, turn.language)

        answer = self._intercept_insurance(turn)
        if answer:
            return answer

        if self._may_infer_practitioner(turn):
            self._infer_practitioner(turn)

        if turn.intent is Intent.BOOK_APPOINTMENT and turn.context.pending_type is not PendingActionType.BOOK:
            logger.info("Conversation %s: starting a fresh booking", turn.conversation_id)
            self._save_context(turn, replace(
                turn.context,
                appointment=AppointmentDraft(),
                pending_action=PendingAction(type=PendingActionType.BOOK),
                rejected_times=(),
            ))

        before = turn.context
        self._save_context(turn, merge_context(turn.context, turn.entities, turn.is_ambiguous))
        if any(getattr(turn.entities, name) for name in PATIENT_ENTITY_FIELDS):
            self._upsert_patient(turn)
        if "email" in turn.rejected_fields:
            return self._say(turn, reply("email_invalid", turn.language))

        if turn.state is S.CONFIRMATION:
            answer = self._handle_confirmation(turn, before)
            if answer:
                return answer

        if turn.intent in FLOW_INTENTS or turn.state in COLLECTING_STATES:
            answer = self._handle_flow(turn, before)
            if answer:
                return answer

        answer = self._reask_insurance(turn)
        if answer:
            return answer

        answer = self._fallback_reply(turn)
        if turn.intent is Intent.INFORMATION:
            self._store.append_decision(turn.conversation_id, DecisionRecord(
                type=DecisionType.INFORMATION_PROVIDED, timestamp=turn.now,
            ))
        return self._say(turn, answer)

    # ── Turn helpers ─────────────────────────────────────────────────

    def _say(self, turn: _Turn, text: str) -> str:
        self._store.save_message(turn.conversation_id, MessageRole.ASSISTANT, text)
        return text

    def _transition(self, turn: _Turn, state: ConversationState) -> None:
        self._store.transition_state(turn.conversation_id, state)
        turn.state = state

    def _save_context(self, turn: _Turn, context: ConversationContext) -> None:
        self._store.update_context(turn.conversation_id, context)
        turn.context = context

    def _complete(self, turn: _Turn, record: DecisionRecord) -> None:
        self._save_context(turn, ConversationContext())
        self._transition(turn, S.COMPLETED)
        self._store.append_decision(turn.conversation_id, record)
        metrics.record_dialogue_event("Decision", Type=record.type.value)

    def _known(self, turn: _Turn, name: str) -> Any:
        """A patient field from the stored record, else from the draft."""
        stored = getattr(turn.patient, name, None) if turn.patient else None
        return stored or getattr(turn.context.patient, name)

    def _upsert_patient(self, turn: _Turn) -> Patient:
        draft = turn.context.patient
        turn.patient = self._store.upsert_patient(
            turn.clinic_id,
            turn.phone,
            first_name=draft.first_name,
            last_name=draft.last_name,
            email=draft.email,
            birth_date=parse_birth_date(draft.birth_date),
            insurance_card_url=draft.insurance_card_url,
            has_social_insurance=draft.has_social_insurance,
            social_insurance_type=draft.social_insurance_type,
            beneficiary_number=draft.beneficiary_number,
            guarantee_number=draft.guarantee_number,
            guarantee_document_path=draft.guarantee_document_path,
        )
        return turn.patient

    def _roster(self, turn: _Turn) -> list[Practitioner]:
        return self._store.list_practitioners(turn.clinic_id)

    def _roster_lines(self, turn: _Turn) -> str:
        general = reply("general_practitioner", turn.language)
        return "\n".join(f"- {p.display_name} ({p.specialty or general})" for p in self._roster(turn))

    # ── Emergency, expiry, greeting, language ───────────────────────

    def _handle_emergency(self, turn: _Turn) -> str:
        language = detect_language(turn.text, default=turn.language)
        logger.warning("Conversation %s: emergency detected, handing over", turn.conversation_id)
        metrics.record_dialogue_event("EmergencyDetected")

        self._store.save_message(
            turn.conversation_id, MessageRole.USER, turn.text, turn.media_kind, turn.media_path,
        )
        self._transition(turn, S.EMERGENCY)
        self._store.append_decision(turn.conversation_id, DecisionRecord(
            type=DecisionType.EMERGENCY_HANDOVER, outcome="handover", timestamp=turn.now,
        ))
        if language != "en" and turn.clinic and turn.clinic.emergency_message:
            return self._say(turn, turn.clinic.emergency_message)
        return self._say(turn, reply("emergency", language))

    def _expire_or_latch(self, turn: _Turn) -> None:
        last_at = self._store.last_message_at(turn.conversation_id)
        ttl = timedelta(minutes=self._settings.context_ttl_minutes)

        if last_at is None or turn.now - last_at <= ttl:
            if turn.state in RESTING_STATES:
                self._transition(turn, S.IDLE)
            return

        awaiting = turn.context.patient.insurance_state.is_awaiting
        card_photo = turn.media_kind is MediaKind.IMAGE and turn.state is S.COLLECTING_PATIENT_DATA
        if awaiting or card_photo:
            logger.info("Conversation %s: context expired but insurance dialogue kept", turn.conversation_id)
            if awaiting and (turn.state is S.IDLE or turn.state in RESTING_STATES):
                self._transition(turn, S.COLLECTING_PATIENT_DATA)
            return

        logger.info(
            "Conversation %s: idle for more than %d min, context reset",
            turn.conversation_id, self._settings.context_ttl_minutes,
        )
        metrics.record_dialogue_event("ContextExpired")
        self._save_context(turn, ConversationContext())
        self._transition(turn, S.IDLE)

    def _greet(self, turn: _Turn) -> str:
        if turn.state is not S.IDLE:
            logger.info("Conversation %s: reset from %s", turn.conversation_id, turn.state.value)
            metrics.record_dialogue_event("ResetTriggered", State=turn.state.value)
            self._save_context(turn, ConversationContext())
            self._transition(turn, S.IDLE)

        patient = self._store.get_patient(turn.clinic_id, turn.phone)
        language = (patient.preferred_language if patient else None) or detect_language(
            turn.text, default=self._settings.default_language,
        )
        if patient and patient.first_name:
            return self._say(turn, reply("greeting_named", language, name=patient.first_name))
        return self._say(turn, reply("greeting", language))

    def _resolve_language(self, turn: _Turn) -> None:
        turn.patient = self._store.get_patient(turn.clinic_id, turn.phone)
        preferred = turn.patient.preferred_language if turn.patient else None
        if preferred:
            turn.language = preferred
        elif turn.text:
            turn.language = detect_language(turn.text, default=self._settings.default_language)
            turn.patient = self._store.set_preferred_language(turn.clinic_id, turn.phone, turn.language)
            logger.info("Conversation %s: language set to %s", turn.conversation_id, turn.language)

    def _maybe_switch_language(self, turn: _Turn) -> None:
        detected = detect_language(turn.text, default=turn.language)
        if (
            detected != turn.language
            and turn.intent in STRONG_INTENTS
            and word_count(turn.text) >= LANGUAGE_SWITCH_MIN_WORDS
            and turn.state not in COLLECTING_STATES
        ):
            logger.info("Conversation %s: language switched %s -> %s", turn.conversation_id, turn.language, detected)
            metrics.record_dialogue_event("LanguageSwitched", Language=detected)
            turn.patient = self._store.set_preferred_language(turn.clinic_id, turn.phone, detected)
            turn.language = detected

    # ── Extraction ───────────────────────────────────────────────────

    def _extract(self, turn: _Turn) -> None:
        if not turn.text:
            return
        if turn.state is S.IDLE and not needs_entity_extraction(turn.text):
            logger.debug("Conversation %s: small talk, extraction skipped", turn.conversation_id)
            return

        result = self._extractor.extract_entities(turn.text, turn.language, self._structured_context(turn))
        if result is None:
            logger.warning("Conversation %s: no extraction, continuing without entities", turn.conversation_id)
            return

        turn.intent = result.intent
        turn.is_ambiguous = result.is_ambiguous
        turn.model_reply = result.response_message or None
        self._maybe_switch_language(turn)

        roster = self._roster(turn)
        names = tuple(p.full_name for p in roster) + tuple(p.display_name for p in roster)
        validation = self._entity_validator.validate(
            self._prepare_entities(turn, result.entities),
            ValidationContext(opening_hours=turn.opening_hours, practitioner_names=names),
            today=turn.today,
        )
        turn.entities = validation.entities
        turn.rejected_fields = validation.rejected_fields

    def _prepare_entities(self, turn: _Turn, entities: ExtractedEntities) -> ExtractedEntities:
        """Fix up what the model commonly gets almost right."""
        updates: dict[str, Any] = {}

        first, last = (entities.first_name or "").strip(), (entities.last_name or "").strip()
        names_unknown = not self._known(turn, "first_name") and not self._known(turn, "last_name")
        if names_unknown and " " in first and not last:
            updates["first_name"], updates["last_name"] = first.split(" ", 1)
        elif names_unknown and " " in last and not first:
            updates["first_name"], updates["last_name"] = last.split(" ", 1)

        if (
            turn.state is S.COLLECTING_PATIENT_DATA
            and entities.date
            and not entities.birth_date
            and not self._known(turn, "birth_date")
        ):
            updates["birth_date"], updates["date"] = entities.date, None

        birth_date = updates.get("birth_date", entities.birth_date)
        if birth_date:
            parsed = parse_birth_date(birth_date)
            if parsed:
                updates["birth_date"] = parsed.isoformat()
        if entities.date and "date" not in updates:
            updates["date"] = normalize_dmy(entities.date)

        return entities.model_copy(update=updates) if updates else entities

    # ── Insurance sub-dialogue ───────────────────────────────────────

    def _consume_message(self, turn: _Turn) -> None:
        """The insurance dialogue used the message; the rest of the turn sees none."""
        turn.text = ""
        turn.entities = ExtractedEntities()
        turn.intent = Intent.UNKNOWN
        turn.model_reply = None
        turn.rejected_fields = ()

    def _ensure_collecting_patient(self, turn: _Turn) -> None:
        if turn.state is not S.COLLECTING_PATIENT_DATA:
            self._transition(turn, S.COLLECTING_PATIENT_DATA)

    def _intercept_insurance(self, turn: _Turn) -> str | None:
        if turn.media_kind is MediaKind.IMAGE and turn.media_path and not self._known(turn, "insurance_card_url"):
            logger.info("Conversation %s: insurance card received", turn.conversation_id)
            self._save_context(turn, turn.context.with_patient(insurance_card_url=turn.media_path))
            self._upsert_patient(turn)
            if turn.state is S.IDLE:
                self._transition(turn, S.COLLECTING_PATIENT_DATA)
            if turn.state is S.COLLECTING_PATIENT_DATA:
                self._save_context(turn, turn.context.with_patient(
                    insurance_state=Insurance.AWAITING_SOCIAL_INSURANCE,
                ))
                return self._say(turn, reply("insurance_card_received", turn.language))
            return None

        patient = turn.context.patient
        if patient.insurance_state is Insurance.AWAITING_SOCIAL_INSURANCE:
            answer = social_insurance_answer(turn.text)
            if answer is None:
                return None
            self._ensure_collecting_patient(turn)
            if answer:
                self._save_context(turn, turn.context.with_patient(
                    has_social_insurance=True, insurance_state=Insurance.AWAITING_INSURANCE_TYPE,
                ))
                self._upsert_patient(turn)
                return self._say(turn, reply("ask_social_insurance_type", turn.language))
            self._save_context(turn, turn.context.with_patient(
                has_social_insurance=False, insurance_state=Insurance.IDLE,
            ))
            self._upsert_patient(turn)
            self._consume_message(turn)
            return None

        if patient.insurance_state is Insurance.AWAITING_INSURANCE_TYPE:
            self._save_context(turn, turn.context.with_patient(
                social_insurance_type=social_insurance_type(turn.text) or patient.social_insurance_type,
                insurance_state=Insurance.AWAITING_INSURANCE_NUMBERS,
            ))
            self._upsert_patient(turn)
            return self._say(turn, reply("ask_insurance_numbers", turn.language))

        if patient.insurance_state is Insurance.AWAITING_INSURANCE_NUMBERS:
            if turn.media_kind is MediaKind.DOCUMENT and turn.media_path and not patient.guarantee_document_path:
                context = turn.context.with_patient(
                    guarantee_document_path=turn.media_path, insurance_state=Insurance.IDLE,
                )
                confirmation = "document"
            else:
                parsed = parse_insurance_number(turn.text)
                if parsed is None:
                    return None
                number_field, value = parsed
                context = turn.context.with_patient(**{number_field: value}, insurance_state=Insurance.IDLE)
                confirmation = "number"

            logger.info("Conversation %s: insurance %s saved", turn.conversation_id, confirmation)
            self._save_context(turn, replace(context, insurance_confirmation=confirmation))
            self._upsert_patient(turn)
            self._ensure_collecting_patient(turn)
            self._consume_message(turn)
        return None

    def _reask_insurance(self, turn: _Turn) -> str | None:
        state = turn.context.patient.insurance_state
        if state is Insurance.AWAITING_SOCIAL_INSURANCE:
            return self._say(turn, reply("reask_social_insurance", turn.language))
        if state is Insurance.AWAITING_INSURANCE_NUMBERS:
            return self._say(turn, reply("reask_insurance_numbers", turn.language))
        return None

    def _pop_insurance_confirmation(self, turn: _Turn) -> str:
        """One-shot prefix acknowledging a saved insurance document or number."""
        confirmation = turn.context.insurance_confirmation
        if not confirmation:
            return ""
        self._save_context(turn, replace(turn.context, insurance_confirmation=None))
        key = "insurance_document_saved" if confirmation == "document" else "insurance_number_saved"
        return reply(key, turn.language)

    # ── Practitioners ────────────────────────────────────────────────

    def _may_infer_practitioner(self, turn: _Turn) -> bool:
        appointment = turn.context.appointment
        return (
            bool(turn.text)
            and not turn.entities.practitioner
            and not appointment.practitioner_name
            and not appointment.practitioner_id
            and (turn.state is S.COLLECTING_APPOINTMENT_DATA or turn.intent is Intent.BOOK_APPOINTMENT)
        )

    def _infer_practitioner(self, turn: _Turn) -> None:
        match = match_practitioner_mention(turn.text, self._roster(turn))
        if match:
            logger.info("Conversation %s: practitioner %s picked from message", turn.conversation_id, match.id)
            turn.entities = turn.entities.model_copy(update={"practitioner": match.display_name})

    def _resolve_practitioner(
        self, turn: _Turn, name: str | None, practitioner_id: str | None = None,
    ) -> Practitioner | None:
        if practitioner_id:
            practitioner = self._store.get_practitioner(practitioner_id)
            if practitioner and practitioner.is_active:
                return practitioner
        if not name:
            return None

        search = name.lower().strip()
        bare = search.removeprefix("dr.").removeprefix("dr ").strip()
        for practitioner in self._roster(turn):
            last_name = practitioner.last_name.lower()
            full_name = practitioner.full_name.lower()
            if last_name in search or (bare and bare in full_name):
                return practitioner
        return None

    def _practitioner_for_draft(self, turn: _Turn) -> Practitioner | None:
        """Resolve the draft's practitioner and pin its id and display name."""
        appointment = turn.context.appointment
        practitioner = self._resolve_practitioner(turn, appointment.practitioner_name, appointment.practitioner_id)
        if practitioner is None:
            return None
        if appointment.practitioner_id != practitioner.id or appointment.practitioner_name != practitioner.display_name:
            self._save_context(turn, turn.context.with_appointment(
                practitioner_id=practitioner.id, practitioner_name=practitioner.display_name,
            ))
        return practitioner

    def _practitioner_not_found(self, turn: _Turn) -> str:
        name = turn.context.appointment.practitioner_name or ""
        logger.info("Conversation %s: unknown practitioner %r", turn.conversation_id, name)
        self._save_context(turn, turn.context.with_appointment(practitioner_name=None, practitioner_id=None))
        roster = ", ".join(p.display_name for p in self._roster(turn))
        return self._say(turn, reply("practitioner_not_found", turn.language, name=name, roster=roster))

    # ── Confirmation ─────────────────────────────────────────────────

    def _handle_confirmation(self, turn: _Turn, before: ConversationContext) -> str | None:
        pending = turn.context.pending_type or PendingActionType.BOOK
        has_change = turn.entities.has_scheduling_change()

        if turn.intent is Intent.AFFIRMATIVE:
            if pending is PendingActionType.CANCEL:
                return self._finalize_cancellation(turn)
            if pending is PendingActionType.MODIFY:
                return self._finalize_modification(turn)
            return self._finalize_booking(turn)

        if turn.intent is Intent.NEGATIVE and not has_change:
            logger.info("Conversation %s: %s declined", turn.conversation_id, pending.value)
            self._save_context(turn, replace(turn.context, pending_action=None))
            self._transition(turn, S.IDLE)
            return self._say(turn, reply("confirmation_declined", turn.language))

        if has_change and pending is not PendingActionType.CANCEL:
            correcting = (
                turn.intent in (Intent.MODIFY_APPOINTMENT, Intent.NEGATIVE)
                or has_correction_signal(turn.text)
            )
            if correcting:
                logger.info("Conversation %s: correction during confirmation", turn.conversation_id)
                self._transition(turn, S.COLLECTING_APPOINTMENT_DATA)
                turn.intent = Intent.BOOK_APPOINTMENT if pending is PendingActionType.BOOK else Intent.UNKNOWN
                return None
            return self._clarify_confirmation(turn, before)

        if turn.intent in FLOW_INTENTS:
            return None
        return self._clarify_confirmation(turn, before)

    def _clarify_confirmation(self, turn: _Turn, before: ConversationContext) -> str:
        # Only the slot already shown can be confirmed
        if turn.context.appointment != before.appointment:
            logger.info("Conversation %s: ignoring unconfirmed slot change", turn.conversation_id)
            self._save_context(turn, replace(turn.context, appointment=before.appointment))
        return self._say(turn, reply("confirmation_clarify", turn.language))

    # ── Flow intents and collection ──────────────────────────────────

    def _handle_flow(self, turn: _Turn, before: ConversationContext) -> str | None:
        pending = turn.context.pending_type
        intent = turn.intent

        mid_flow = pending is PendingActionType.BOOK or turn.state is S.COLLECTING_PATIENT_DATA
        if intent is Intent.MODIFY_APPOINTMENT and mid_flow and not has_modify_keyword(turn.text):
            intent = Intent.BOOK_APPOINTMENT if pending is PendingActionType.BOOK else Intent.INFORMATION
            logger.info("Conversation %s: MODIFY mid-flow read as %s", turn.conversation_id, intent.value)

        upcoming = self._store.list_upcoming_appointments(turn.clinic_id, turn.phone, turn.now)

        if intent is Intent.CANCEL_APPOINTMENT:
            return self._initiate_cancellation(turn, upcoming)
        if intent is Intent.MODIFY_APPOINTMENT:
            if upcoming:
                return self._initiate_modification(turn, upcoming)
            if pending is not PendingActionType.BOOK:
                return self._say(turn, reply("nothing_to_modify", turn.language))
            intent = Intent.BOOK_APPOINTMENT
        if intent is Intent.LIST_APPOINTMENTS:
            return self._list_appointments(turn, upcoming)
        if intent is Intent.LIST_PRACTITIONERS:
            return self._list_practitioners(turn)

        if intent in (Intent.BOOK_APPOINTMENT, Intent.INFORMATION) or turn.state is S.COLLECTING_PATIENT_DATA:
            question = self._next_patient_question(turn)
            if question:
                self._transition(turn, S.COLLECTING_PATIENT_DATA)
                return self._say(turn, question)
            if turn.state is S.COLLECTING_PATIENT_DATA:
                next_state = S.COLLECTING_APPOINTMENT_DATA if pending is PendingActionType.BOOK else S.IDLE
                self._transition(turn, next_state)

        if intent is Intent.BOOK_APPOINTMENT or turn.state is S.COLLECTING_APPOINTMENT_DATA:
            return self._collect_appointment(turn, before)
        return None

    def _next_patient_question(self, turn: _Turn) -> str | None:
        first_name = self._known(turn, "first_name")
        last_name = self._known(turn, "last_name")
        if not first_name and not last_name:
            return reply("ask_full_name", turn.language)
        if not first_name:
            return reply("ask_first_name", turn.language)
        if not last_name:
            return reply("ask_last_name", turn.language)
        if not self._known(turn, "birth_date"):
            return reply("ask_birth_date", turn.language, name=first_name)
        if not self._known(turn, "email"):
            return reply("ask_email", turn.language)
        if not self._known(turn, "insurance_card_url"):
            return reply("ask_insurance_card", turn.language)
        return None

    def _collect_appointment(self, turn: _Turn, before: ConversationContext) -> str:
        modification = turn.context.pending_type is PendingActionType.MODIFY
        missing = missing_appointment_fields(turn.context, modification=modification)
        if not missing:
            return self._confirm_or_reject(turn)

        self._transition(turn, S.COLLECTING_APPOINTMENT_DATA)
        appointment = turn.context.appointment
        just_named = bool(turn.entities.practitioner) or (
            bool(appointment.practitioner_name) and not before.appointment.practitioner_name
        )

        if not modification and appointment.practitioner_name and just_named and "time" in missing:
            answer = self._propose_slots(turn)
            if answer:
                return answer
        elif appointment.date and "time" in missing and asks_for_slots(turn.text):
            answer = self._list_day_slots(turn)
            if answer:
                return answer
        return self._ask_field(turn, missing_appointment_fields(turn.context, modification=modification))

    def _ask_field(self, turn: _Turn, missing: list[str]) -> str:
        if not missing:
            return self._confirm_or_reject(turn)
        questions = {
            "type": lambda: reply("ask_type", turn.language),
            "practitioner": lambda: reply("ask_practitioner", turn.language, roster=self._roster_lines(turn)),
            "date": lambda: reply("ask_date", turn.language),
            "time": lambda: reply("ask_time", turn.language),
        }
        prefix = self._pop_insurance_confirmation(turn)
        return self._say(turn, prefix + questions[missing[0]]())

    def _propose_slots(self, turn: _Turn) -> str | None:
        practitioner = self._practitioner_for_draft(turn)
        if practitioner is None:
            return self._practitioner_not_found(turn)
        if turn.context.appointment.date:
            return self._list_day_slots(turn, practitioner)

        motif = turn.context.appointment.type
        has_history = bool(turn.patient) and self._store.count_appointments(
            turn.patient.id, (AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED),
        ) > 0
        delay = minimum_booking_delay(motif, has_history, self._settings.first_visit_delay_days)
        suggestions = [
            slot for slot in suggest_slots(
                self._calendar,
                practitioner.id,
                now=turn.now,
                opening_hours=turn.opening_hours,
                timezone=turn.timezone,
                language=turn.language,
                min_delay=delay,
                preference=turn.context.appointment.time_preference,
                search_days=self._settings.slot_search_days,
                per_day=self._settings.slots_per_day,
                limit=self._settings.max_slot_suggestions,
                slot_minutes=self._settings.slot_minutes,
            )
            if not turn.context.is_rejected(slot.date, slot.time)
        ]
        if not suggestions:
            return None

        if is_urgent_motif(motif):
            prefix = reply("slots_urgent_prefix", turn.language)
        elif delay > 0:
            prefix = reply("slots_first_visit_prefix", turn.language)
        else:
            prefix = ""
        return self._say(turn, reply(
            "slots_proposal",
            turn.language,
            prefix=prefix,
            practitioner=practitioner.display_name,
            slots="\n".join(f"- {slot.display}" for slot in suggestions),
        ))

    def _list_day_slots(self, turn: _Turn, practitioner: Practitioner | None = None) -> str | None:
        """Free times on the date the patient already chose."""
        appointment = turn.context.appointment
        if practitioner is None:
            if not appointment.practitioner_name and not appointment.practitioner_id:
                return None
            practitioner = self._practitioner_for_draft(turn)
            if practitioner is None:
                return self._practitioner_not_found(turn)
        try:
            day = date.fromisoformat(appointment.date or "")
        except ValueError:
            return None

        if not is_day_open(day, turn.opening_hours, turn.timezone):
            self._save_context(turn, turn.context.with_appointment(date=None, time=None))
            return self._say(turn, reply("closed_day", turn.language, day=weekday_name(day, turn.language)))

        tz = ZoneInfo(turn.timezone)
        slots = [
            slot for slot in future_slots_on(
                self._calendar, practitioner.id, day,
                now=turn.now, opening_hours=turn.opening_hours, timezone=turn.timezone,
                slot_minutes=self._settings.slot_minutes,
            )
            if not turn.context.is_rejected(day.isoformat(), slot.start.astimezone(tz).strftime("%H:%M"))
        ]
        label = format_date(day, turn.language)
        if not slots:
            return self._say(turn, reply(
                "no_day_slots", turn.language, date=label, practitioner=practitioner.display_name,
            ))
        return self._say(turn, reply(
            "day_slots",
            turn.language,
            date=label,
            practitioner=practitioner.display_name,
            slots="\n".join(f"- {format_slot_time(slot, turn.language, turn.timezone)}" for slot in slots),
        ))

    def _confirm_or_reject(self, turn: _Turn, confirm_key: str | None = None) -> str:
        """All fields known: check the clinic is open, then ask for confirmation."""
        context = turn.context
        appointment = context.appointment
        hours = turn.opening_hours

        try:
            day = date.fromisoformat(normalize_dmy(appointment.date or ""))
        except ValueError:
            self._save_context(turn, context.with_appointment(date=None))
            self._transition(turn, S.COLLECTING_APPOINTMENT_DATA)
            return self._say(turn, reply("ask_date", turn.language))

        if not is_day_open(day, hours, turn.timezone):
            self._save_context(turn, context.with_rejected(appointment.date, appointment.time).with_appointment(
                date=None, time=None,
            ))
            self._transition(turn, S.COLLECTING_APPOINTMENT_DATA)
            return self._say(turn, reply("closed_day", turn.language, day=weekday_name(day, turn.language)))

        try:
            start = parse_in_timezone(day.isoformat(), appointment.time or "", turn.timezone)
        except ValueError:
            self._save_context(turn, context.with_appointment(time=None))
            self._transition(turn, S.COLLECTING_APPOINTMENT_DATA)
            return self._say(turn, reply("ask_time", turn.language))

        if not is_within_business_hours(start, hours, turn.timezone):
            self._save_context(turn, context.with_rejected(appointment.date, appointment.time).with_appointment(
                time=None,
            ))
            self._transition(turn, S.COLLECTING_APPOINTMENT_DATA)
            return self._say(turn, reply(
                "out_of_hours",
                turn.language,
                time=format_time(appointment.time or "", turn.language),
                hours=format_opening_hours(hours, turn.language),
            ))

        pending = context.pending_action
        moving = pending is not None and pending.type is PendingActionType.MODIFY
        if moving:
            pending = replace(pending, new_date=day.isoformat(), new_time=appointment.time)
        elif pending is None or pending.type is not PendingActionType.BOOK:
            pending = PendingAction(type=PendingActionType.BOOK)

        self._save_context(turn, replace(
            context, pending_action=pending, appointment=replace(appointment, date=day.isoformat()),
        ))
        self._transition(turn, S.CONFIRMATION)

        when = format_date_for_user(day.isoformat(), appointment.time or "", turn.language)
        if moving:
            return self._say(turn, reply(confirm_key or "confirm_modification", turn.language, when=when))
        return self._say(turn, reply(
            "confirm_booking",
            turn.language,
            when=when,
            practitioner=appointment.practitioner_name or reply("the_doctor", turn.language),
        ))

    def _list_appointments(self, turn: _Turn, upcoming: list) -> str:
        if not upcoming:
            return self._say(turn, reply("no_upcoming", turn.language))
        lines = []
        for appointment in upcoming:
            practitioner = self._store.get_practitioner(appointment.practitioner_id)
            lines.append(reply(
                "upcoming_line",
                turn.language,
                when=format_datetime(appointment.start, turn.language, turn.timezone),
                practitioner=practitioner.display_name if practitioner else reply("the_doctor", turn.language),
            ))
        return self._say(turn, reply("upcoming_header", turn.language) + "".join(lines))

    def _list_practitioners(self, turn: _Turn) -> str:
        if not self._roster(turn):
            return self._say(turn, reply("no_practitioners", turn.language))
        return self._say(turn, reply("practitioner_roster", turn.language, roster=self._roster_lines(turn)))

    # ── Cancellation and modification ────────────────────────────────

    def _initiate_cancellation(self, turn: _Turn, upcoming: list) -> str:
        if not upcoming:
            return self._say(turn, reply("no_upcoming_to_cancel", turn.language))

        target = upcoming[0]
        practitioner = self._store.get_practitioner(target.practitioner_id)
        self._save_context(turn, replace(
            turn.context, pending_action=PendingAction(type=PendingActionType.CANCEL, appointment_id=target.id),
        ))
        self._transition(turn, S.CONFIRMATION)
        return self._say(turn, reply(
            "confirm_cancel",
            turn.language,
            date=format_datetime(target.start, turn.language, turn.timezone),
            last_name=practitioner.last_name if practitioner else "",
        ))

    def _initiate_modification(self, turn: _Turn, upcoming: list) -> str:
        if not upcoming:
            return self._say(turn, reply("nothing_to_modify", turn.language))

        target = upcoming[0]
        if turn.context.pending_type is not PendingActionType.MODIFY:
            practitioner = self._store.get_practitioner(target.practitioner_id)
            self._save_context(turn, replace(
                turn.context,
                appointment=AppointmentDraft(
                    type=target.type,
                    date=turn.entities.date,
                    time=turn.entities.time,
                    practitioner_id=target.practitioner_id,
                    practitioner_name=practitioner.display_name if practitioner else None,
                ),
                pending_action=PendingAction(type=PendingActionType.MODIFY, appointment_id=target.id),
            ))

        missing = missing_appointment_fields(turn.context, modification=True)
        if not missing:
            return self._confirm_or_reject(turn, confirm_key="confirm_move")
        self._transition(turn, S.COLLECTING_APPOINTMENT_DATA)
        if turn.context.appointment.date:
            return self._say(turn, reply("ask_time", turn.language))
        return self._say(turn, reply("ask_new_slot", turn.language))

    def _finalize_cancellation(self, turn: _Turn) -> str:
        pending = turn.context.pending_action
        if pending is None or not pending.appointment_id:
            return self._say(turn, reply("error_retry", turn.language))

        appointment = self._store.get_appointment(pending.appointment_id)
        if appointment is None:
            self._save_context(turn, replace(turn.context, pending_action=None))
            self._transition(turn, S.IDLE)
            return self._say(turn, reply("appointment_not_found", turn.language))

        if appointment.external_event_id and not self._calendar.delete_event(
            appointment.practitioner_id, appointment.external_event_id,
        ):
            logger.warning("Calendar event %s not deleted; cancelling locally", appointment.external_event_id)
        self._store.set_appointment_status(appointment.id, AppointmentStatus.CANCELLED)

        practitioner = self._store.get_practitioner(appointment.practitioner_id)
        self._complete(turn, DecisionRecord(
            type=DecisionType.APPOINTMENT_CANCELLED,
            outcome="cancelled",
            details={"appointment_id": appointment.id},
            timestamp=turn.now,
        ))
        return self._say(turn, reply(
            "cancellation_done",
            turn.language,
            date=format_datetime(appointment.start, turn.language, turn.timezone),
            practitioner=practitioner.display_name if practitioner else reply("the_doctor", turn.language),
        ))

    def _finalize_modification(self, turn: _Turn) -> str:
        pending = turn.context.pending_action
        if pending is None or not pending.appointment_id or not pending.new_date or not pending.new_time:
            return self._say(turn, reply("error_retry", turn.language))

        appointment = self._store.get_appointment(pending.appointment_id)
        if appointment is None:
            self._save_context(turn, replace(turn.context, pending_action=None))
            self._transition(turn, S.IDLE)
            return self._say(turn, reply("appointment_not_found", turn.language))

        try:
            start = parse_in_timezone(pending.new_date, pending.new_time, turn.timezone)
        except ValueError:
            return self._say(turn, reply("error_retry", turn.language))
        end = start + timedelta(minutes=self._settings.slot_minutes)

        if not self._calendar.check_availability(appointment.practitioner_id, start, end):
            logger.info("Conversation %s: new slot %s unavailable", turn.conversation_id, start.isoformat())
            context = turn.context.with_rejected(pending.new_date, pending.new_time).with_appointment(time=None)
            self._save_context(turn, replace(context, pending_action=replace(pending, new_time=None)))
            self._transition(turn, S.COLLECTING_APPOINTMENT_DATA)
            return self._say(turn, reply("modify_unavailable", turn.language))

        if appointment.external_event_id and not self._calendar.update_event(
            appointment.practitioner_id, appointment.external_event_id, start, end,
        ):
            logger.warning("Calendar event %s not moved; updating locally", appointment.external_event_id)
        self._store.update_appointment_times(appointment.id, start, end)

        self._complete(turn, DecisionRecord(
            type=DecisionType.APPOINTMENT_MODIFIED,
            outcome="moved",
            details={"appointment_id": appointment.id, "date": pending.new_date, "time": pending.new_time},
            timestamp=turn.now,
        ))
        return self._say(turn, reply(
            "modification_done", turn.language, when=format_datetime(start, turn.language, turn.timezone),
        ))

    # ── Booking ──────────────────────────────────────────────────────

    def _finalize_booking(self, turn: _Turn) -> str:
        appointment = turn.context.appointment
        language = turn.language

        if not appointment.practitioner_name and not appointment.practitioner_id:
            return self._say(turn, reply("ask_practitioner_short", language))
        practitioner = self._practitioner_for_draft(turn)
        if practitioner is None:
            return self._practitioner_not_found(turn)
        appointment = turn.context.appointment

        if not appointment.date or not appointment.time:
            if not appointment.date and not appointment.time:
                question = reply("ask_date_and_time_with", language, last_name=practitioner.last_name)
            elif not appointment.date:
                question = reply("ask_date_with", language, last_name=practitioner.last_name)
            else:
                question = reply(
                    "ask_time_with",
                    language,
                    date=self._display_date(appointment.date, language),
                    last_name=practitioner.last_name,
                )
            return self._say(turn, question)

        if not appointment.type:
            return self._say(turn, reply("ask_type_examples", language))

        if "[" in appointment.date or "[" in appointment.time:
            self._save_context(turn, turn.context.with_appointment(date=None, time=None))
            return self._say(turn, reply("placeholder_datetime", language))

        day = normalize_dmy(appointment.date)
        try:
            start = parse_in_timezone(day, appointment.time, turn.timezone)
        except ValueError:
            return self._say(turn, reply("invalid_datetime", language, date=appointment.date, time=appointment.time))
        if start < turn.now:
            return self._say(turn, reply("date_in_past", language))
        hours = turn.opening_hours
        if not is_day_open(date.fromisoformat(day), hours, turn.timezone) or not is_within_business_hours(
            start, hours, turn.timezone,
        ):
            logger.warning("Conversation %s: draft slot %s outside opening hours", turn.conversation_id, start)
            return self._confirm_or_reject(turn)
        end = start + timedelta(minutes=self._settings.slot_minutes)

        event_id = None
        if self._calendar.check_availability(practitioner.id, start, end):
            patient = self._upsert_patient(turn)
            event_id = self._calendar.create_event(
                practitioner.id,
                summary=f"{appointment.type} - {patient.full_name or turn.phone}",
                description=f"Patient: {patient.full_name}\nTéléphone: {turn.phone}\nMotif: {appointment.type}",
                start=start,
                end=end,
                timezone=turn.timezone,
            )
        if not event_id:
            return self._slot_unavailable(turn, practitioner, start)

        booked = self._store.create_appointment(
            clinic_id=turn.clinic_id,
            patient_id=patient.id,
            practitioner_id=practitioner.id,
            start=start,
            end=end,
            external_event_id=event_id,
            type=appointment.type,
        )
        logger.info("Conversation %s: appointment %s booked", turn.conversation_id, booked.id)
        self._complete(turn, DecisionRecord(
            type=DecisionType.APPOINTMENT_BOOKED,
            outcome="confirmed",
            details={"appointment_id": booked.id, "date": day, "time": appointment.time,
                     "practitioner": practitioner.display_name},
            timestamp=turn.now,
        ))

        message = reply(
            "booking_confirmed",
            language,
            last_name=practitioner.last_name,
            when=format_datetime(start, language, turn.timezone),
        )
        form_url = turn.clinic.onboarding_form_url if turn.clinic else None
        if form_url and self._store.count_appointments(patient.id) <= 1:
            message += reply("onboarding_form", language, url=form_url)
        return self._say(turn, message)

    def _slot_unavailable(self, turn: _Turn, practitioner: Practitioner, start: datetime) -> str:
        """Reject the slot, stay in collection and offer a few times that day."""
        appointment = turn.context.appointment
        logger.info("Conversation %s: slot %s unavailable", turn.conversation_id, start.isoformat())
        metrics.record_dialogue_event("SlotUnavailable")

        self._save_context(turn, turn.context.with_rejected(appointment.date, appointment.time).with_appointment(
            time=None,
        ))
        self._transition(turn, S.COLLECTING_APPOINTMENT_DATA)

        day = start.astimezone(ZoneInfo(turn.timezone)).date()
        slots = future_slots_on(
            self._calendar, practitioner.id, day,
            now=turn.now, opening_hours=turn.opening_hours, timezone=turn.timezone,
            slot_minutes=self._settings.slot_minutes,
        )
        slots = [slot for slot in slots if slot.start != start]
        if not slots:
            return self._say(turn, reply("slot_unavailable", turn.language))

        preference = appointment.time_preference
        alternatives = filter_by_preference(slots, preference, turn.timezone)[:SAME_DAY_ALTERNATIVES]
        period = ""
        if preference is TimePreference.MORNING:
            period = reply("period_morning", turn.language)
        elif preference is TimePreference.AFTERNOON:
            period = reply("period_afternoon", turn.language)
        return self._say(turn, reply(
            "slot_unavailable_suggestions",
            turn.language,
            period=period,
            slots=", ".join(format_slot_time(slot, turn.language, turn.timezone) for slot in alternatives),
        ))

    @staticmethod
    def _display_date(value: str, language: str) -> str:
        try:
            return format_date(date.fromisoformat(normalize_dmy(value)), language)
        except ValueError:
            return value

    # ── Generated replies ────────────────────────────────────────────

    def _structured_context(self, turn: _Turn) -> dict[str, Any]:
        """Facts the model may use, and the only ones a reply may state."""
        clinic = turn.clinic
        hours = turn.opening_hours
        messages = self._store.list_messages(turn.conversation_id, limit=self._settings.history_messages)
        last_assistant = next((m.content for m in reversed(messages) if m.role is MessageRole.ASSISTANT), "")

        details: dict[str, Any] = {}
        if clinic:
            details = {
                "address": clinic.address,
                "phone": clinic.phone,
                "email": clinic.email,
                "website": clinic.website,
                "opening_hours": hours,
                "emergency_message": clinic.emergency_message,
                "practitioners": [
                    f"{p.display_name} ({p.specialty})" if p.specialty else p.display_name
                    for p in self._roster(turn)
                ],
            }

        return {
            "current_date_time": format_datetime(turn.now, turn.language, turn.timezone),
            "timezone": turn.timezone,
            "clinic_name": turn.clinic_name,
            "clinic_details": details,
            "is_open_now": bool(hours) and is_within_business_hours(turn.now, hours, turn.timezone),
            "language": turn.language,
            "state": turn.state.value,
            "last_assistant_message": last_assistant,
            "patient": {
                "first_name": self._known(turn, "first_name"),
                "last_name": self._known(turn, "last_name"),
                "is_known": bool(turn.patient and turn.patient.first_name),
            },
            "appointment": turn.context.to_dict()["appointment"],
            "rejected_times": list(turn.context.rejected_times),
        }

    def _fallback_reply(self, turn: _Turn) -> str:
        if not turn.text:
            return self._pop_insurance_confirmation(turn) + reply("default_help", turn.language)

        context = self._structured_context(turn)
        if turn.model_reply:
            validation = self._response_validator.validate(turn.model_reply, context, turn.text)
            if validation.valid:
                return turn.model_reply
            metrics.record_dialogue_event("ReplyRejected", Source="extraction")
            if validation.suggested_response:
                return validation.suggested_response
        return self._generate_reply(turn, context)

    def _generate_reply(self, turn: _Turn, context: dict[str, Any]) -> str:
        messages = self._store.list_messages(turn.conversation_id, limit=self._settings.history_messages + 1)
        # The last stored message is the one being answered
        history = [{"role": m.role.value, "content": m.content} for m in messages[:-1]]
        upcoming = [
            format_datetime(a.start, turn.language, turn.timezone)
            for a in self._store.list_upcoming_appointments(turn.clinic_id, turn.phone, turn.now)
        ]
        prompt = get_contextual_prompt(
            context,
            language=turn.language,
            message=turn.text,
            decisions_summary=format_decisions_for_prompt(turn.conversation.decisions, turn.language, turn.now),
            upcoming=upcoming,
        )

        safe = None
        attempts = self._settings.max_generation_attempts
        for attempt in range(1, attempts + 1):
            candidate = self._extractor.generate_reply(turn.text, prompt, history, turn.language)
            if candidate is None:
                break
            validation = self._response_validator.validate(candidate, context, turn.text)
            if validation.valid:
                return candidate
            metrics.record_dialogue_event("ReplyRejected", Source="generation")
            logger.warning(
                "Conversation %s: generated reply rejected (%d/%d): %s",
                turn.conversation_id, attempt, attempts, validation.reason,
            )
            safe = validation.suggested_response or safe

        if safe:
            return safe
        unavailable, topic = self._response_validator.detect_unavailable_info_request(turn.text)
        if unavailable:
            return self._response_validator.safe_response(context, topic)
        return reply("fallback", turn.language)


# ── Factory ──────────────────────────────────────────────────────────


def build_engine(clinic_id: str = DEMO_CLINIC_ID) -> ConversationManager:
    """Engine over the in-memory store, seeded with the demo clinic."""
    store = InMemoryConversationStore()
    seed_demo_clinic(store, clinic_id)
    calendar = build_calendar_provider(store.get_practitioner)
    logger.info("Dialogue engine ready for clinic %s", clinic_id)
    return ConversationManager(store, calendar, get_extraction_client())
