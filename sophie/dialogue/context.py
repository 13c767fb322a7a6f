"""Conversation context: immutable drafts plus the merge that folds new
entities into them.

Every value here is a frozen dataclass. The engine never edits a context in
place; it builds a new one (``merge_context``, ``dataclasses.replace`` or the
``with_*`` helpers) and persists it after each step.

In a merge ``None`` (or an empty string) always means "the user said nothing
about this field", so a merge can fill or overwrite a field but never clear
it. Clearing is explicit: ``replace(context.appointment, time=None)``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any

from sophie.dialogue.types import (
    ExtractedEntities,
    InsuranceCollectionState,
    PendingActionType,
    TimePreference,
)


@dataclass(frozen=True)
class PatientDraft:
    first_name: str | None = None
    last_name: str | None = None
    birth_date: str | None = None
    email: str | None = None
    phone: str | None = None
    insurance_card_url: str | None = None
    insurance_state: InsuranceCollectionState = InsuranceCollectionState.IDLE
    has_social_insurance: bool | None = None
    social_insurance_type: str | None = None
    beneficiary_number: str | None = None
    guarantee_number: str | None = None
    guarantee_document_path: str | None = None


@dataclass(frozen=True)
class AppointmentDraft:
    type: str | None = None
    date: str | None = None
    time: str | None = None
    time_preference: TimePreference | None = None
    practitioner_id: str | None = None
    practitioner_name: str | None = None


@dataclass(frozen=True)
class PendingAction:
    type: PendingActionType
    appointment_id: str | None = None
    new_date: str | None = None
    new_time: str | None = None


@dataclass(frozen=True)
class ConversationContext:
    patient: PatientDraft = field(default_factory=PatientDraft)
    appointment: AppointmentDraft = field(default_factory=AppointmentDraft)
    pending_action: PendingAction | None = None
    # "YYYY-MM-DD HH:MM" pairs the patient may not be offered again
    rejected_times: tuple[str, ...] = ()
    ambiguity_count: int = 0
    # One-shot prefix for the next question: "document" | "number"
    insurance_confirmation: str | None = None

    # ── Convenience constructors ─────────────────────────────────────

    def with_patient(self, **changes: Any) -> ConversationContext:
        return replace(self, patient=replace(self.patient, **changes))

    def with_appointment(self, **changes: Any) -> ConversationContext:
        return replace(self, appointment=replace(self.appointment, **changes))

    def with_rejected(self, date: str | None, time: str | None) -> ConversationContext:
        """Record ``date time`` as declined; a no-op when either part is missing."""
        if not date or not time:
            return self
        slot = f"{date} {time}"
        if slot in self.rejected_times:
            return self
        return replace(self, rejected_times=self.rejected_times + (slot,))

    def is_rejected(self, date: str | None, time: str | None) -> bool:
        return bool(date and time) and f"{date} {time}" in self.rejected_times

    @property
    def pending_type(self) -> PendingActionType | None:
        return self.pending_action.type if self.pending_action else None

    # ── Serialization ────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["rejected_times"] = list(self.rejected_times)
        data["patient"]["insurance_state"] = self.patient.insurance_state.value
        if self.appointment.time_preference:
            data["appointment"]["time_preference"] = self.appointment.time_preference.value
        if self.pending_action:
            data["pending_action"]["type"] = self.pending_action.type.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ConversationContext:
        """Rebuild a context from :meth:`to_dict` output; unknown keys are ignored."""
        if not data:
            return cls()

        patient_data = _known_fields(PatientDraft, data.get("patient"))
        if "insurance_state" in patient_data:
            patient_data["insurance_state"] = InsuranceCollectionState(patient_data["insurance_state"])

        appointment_data = _known_fields(AppointmentDraft, data.get("appointment"))
        if appointment_data.get("time_preference"):
            appointment_data["time_preference"] = TimePreference(appointment_data["time_preference"])

        pending = None
        pending_data = _known_fields(PendingAction, data.get("pending_action"))
        if pending_data.get("type"):
            pending_data["type"] = PendingActionType(pending_data["type"])
            pending = PendingAction(**pending_data)

        return cls(
            patient=PatientDraft(**patient_data),
            appointment=AppointmentDraft(**appointment_data),
            pending_action=pending,
            rejected_times=tuple(data.get("rejected_times") or ()),
            ambiguity_count=int(data.get("ambiguity_count") or 0),
            insurance_confirmation=data.get("insurance_confirmation"),
        )


def _known_fields(cls: type, raw: dict[str, Any] | None) -> dict[str, Any]:
    if not raw:
        return {}
    names = cls.__dataclass_fields__.keys()
    return {key: value for key, value in raw.items() if key in names}


def _pick(new: Any, old: Any) -> Any:
    return new if new not in (None, "") else old


# ── Merge ────────────────────────────────────────────────────────────


def merge_context(
    existing: ConversationContext,
    entities: ExtractedEntities,
    is_ambiguous: bool = False,
) -> ConversationContext:
    """Fold freshly extracted *entities* into *existing*.

    - new values win, absent ones keep the previous value
    - a ``(date, time)`` pair already in ``rejected_times`` is ignored as a whole
    - ``pending_action``, ``rejected_times`` and the insurance sub-dialogue
      are carried over untouched
    - ``practitioner_id`` survives unless a different practitioner is named
    - ``ambiguity_count`` grows while the model flags ambiguity, resets otherwise
    """
    patient = replace(
        existing.patient,
        first_name=_pick(entities.first_name, existing.patient.first_name),
        last_name=_pick(entities.last_name, existing.patient.last_name),
        birth_date=_pick(entities.birth_date, existing.patient.birth_date),
        email=_pick(entities.email, existing.patient.email),
        phone=_pick(entities.phone, existing.patient.phone),
    )

    old = existing.appointment
    if existing.is_rejected(entities.date, entities.time):
        date, time = old.date, old.time
    else:
        date, time = _pick(entities.date, old.date), _pick(entities.time, old.time)

    practitioner_name = _pick(entities.practitioner, old.practitioner_name)
    practitioner_id = old.practitioner_id
    if entities.practitioner and entities.practitioner != old.practitioner_name:
        practitioner_id = None

    appointment = replace(
        old,
        type=_pick(entities.appointment_type, old.type),
        date=date,
        time=time,
        time_preference=_pick(entities.time_preference, old.time_preference),
        practitioner_name=practitioner_name,
        practitioner_id=practitioner_id,
    )

    return replace(
        existing,
        patient=patient,
        appointment=appointment,
        ambiguity_count=existing.ambiguity_count + 1 if is_ambiguous else 0,
    )


def missing_appointment_fields(context: ConversationContext, *, modification: bool = False) -> list[str]:
    """Appointment fields still to ask for, in asking order.

    A move only needs a new date and time: the motif and practitioner come
    from the appointment being moved.
    """
    appointment = context.appointment
    missing = []
    if not modification:
        if not appointment.type:
            missing.append("type")
        if not appointment.practitioner_name and not appointment.practitioner_id:
            missing.append("practitioner")
    if not appointment.date:
        missing.append("date")
    if not appointment.time:
        missing.append("time")
    return missing
