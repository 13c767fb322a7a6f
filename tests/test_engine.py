"""Conversation-level tests for the dialogue engine.

The extraction model is a MagicMock: each turn sets what it "understood"
and the engine's deterministic branches are checked end to end against the
in-memory store and calendar.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, date, datetime, timedelta

import pytest

from sophie.dialogue.context import AppointmentDraft, ConversationContext, PatientDraft, PendingAction
from sophie.dialogue.decisions import DecisionType
from sophie.dialogue.types import (
    AppointmentStatus,
    ConversationState,
    InsuranceCollectionState,
    MediaKind,
    MessageRole,
    PendingActionType,
)

from conftest import CLINIC_ID, PATIENT_PHONE

MARTIN = f"{CLINIC_ID}-martin"
BERNARD = f"{CLINIC_ID}-bernard"
TUESDAY_10AM = datetime(2026, 3, 3, 9, 0, tzinfo=UTC)  # 10:00 Paris


# ── Helpers ──────────────────────────────────────────────────────────


def _send(engine, conversation, extractor, text, extraction=None, **kwargs) -> str:
    extractor.extract_entities.return_value = extraction
    return engine.process_message(conversation.id, text, **kwargs)


def _state(store, conversation) -> ConversationState:
    return store.get_conversation(conversation.id).current_state


def _context(store, conversation) -> ConversationContext:
    return store.get_conversation(conversation.id).context


def _put(store, conversation, state, context) -> None:
    """Place the conversation mid-dialogue, as if earlier turns happened."""
    store.save_message(conversation.id, MessageRole.ASSISTANT, "…")
    store.update_context(conversation.id, context)
    store.transition_state(conversation.id, state)


def _existing_appointment(store, calendar, patient, start=TUESDAY_10AM):
    end = start + timedelta(minutes=30)
    event_id = calendar.create_event(BERNARD, summary="Suivi", description="", start=start, end=end)
    return store.create_appointment(
        clinic_id=CLINIC_ID,
        patient_id=patient.id,
        practitioner_id=BERNARD,
        start=start,
        end=end,
        external_event_id=event_id,
        type="Suivi",
    )


@pytest.fixture
def known_patient(store):
    """Returning patient with a complete file, French speaking."""
    store.upsert_patient(
        CLINIC_ID,
        PATIENT_PHONE,
        first_name="Jean",
        last_name="Dupont",
        email="jean.dupont@example.fr",
        birth_date=date(1985, 6, 14),
        insurance_card_url="cards/jean.jpg",
    )
    return store.set_preferred_language(CLINIC_ID, PATIENT_PHONE, "fr")


# ── Tests: greeting, emergency, reset, expiry ────────────────────────


class TestGreeting:
    def test_plain_greeting(self, engine, conversation, extractor):
        reply = _send(engine, conversation, extractor, "Bonjour")
        assert reply == "Bonjour ! Comment puis-je vous aider aujourd'hui ?"
        extractor.extract_entities.assert_not_called()

    def test_greets_known_patient_by_name(self, engine, conversation, extractor, store):
        store.upsert_patient(CLINIC_ID, PATIENT_PHONE, first_name="Jean")
        assert _send(engine, conversation, extractor, "hello") == "Hello Jean! How can I help you today?"

    def test_unknown_conversation(self, engine, extractor):
        assert engine.process_message("no-such-conversation", "Hello") == "Sorry, an error occurred."
        extractor.extract_entities.assert_not_called()

    def test_failure_answers_with_error_reply(self, engine, conversation, extractor):
        extractor.extract_entities.side_effect = RuntimeError("boom")
        reply = engine.process_message(conversation.id, "Je voudrais un rendez-vous")
        assert reply == "Désolé, une erreur s'est produite."


class TestEmergency:
    def test_french_emergency(self, engine, conversation, extractor, store):
        reply = _send(engine, conversation, extractor, "J'ai une douleur intense à la poitrine")
        assert reply.startswith("🚨 URGENCE DÉTECTÉE")
        assert _state(store, conversation) is ConversationState.EMERGENCY
        decisions = store.get_conversation(conversation.id).decisions
        assert decisions[-1].type is DecisionType.EMERGENCY_HANDOVER
        extractor.extract_entities.assert_not_called()

    def test_english_emergency(self, engine, conversation, extractor):
        reply = _send(engine, conversation, extractor, "I have chest pain and I feel dizzy")
        assert reply.startswith("🚨 EMERGENCY DETECTED")

    def test_next_message_starts_over(self, engine, conversation, extractor, store):
        _send(engine, conversation, extractor, "Appelez le 15 !")
        assert _state(store, conversation) is ConversationState.EMERGENCY

        reply = _send(engine, conversation, extractor, "merci")
        assert reply.startswith("Je suis là pour vous aider avec les rendez-vous")
        assert _state(store, conversation) is ConversationState.IDLE

    def test_date_with_fifteen_is_not_an_emergency(self, engine, conversation, extractor, store):
        _send(engine, conversation, extractor, "le 15 mars à 15:00")
        assert _state(store, conversation) is not ConversationState.EMERGENCY


class TestResetAndExpiry:
    def test_reset_keyword_mid_flow(self, engine, conversation, extractor, store):
        _put(store, conversation, ConversationState.COLLECTING_APPOINTMENT_DATA,
             ConversationContext(appointment=AppointmentDraft(date="2026-03-04")))

        reply = _send(engine, conversation, extractor, "recommencer")
        assert reply == "Bonjour ! Comment puis-je vous aider aujourd'hui ?"
        assert _state(store, conversation) is ConversationState.IDLE
        assert _context(store, conversation) == ConversationContext()

    def test_context_expires_after_inactivity(self, engine, conversation, extractor, store, clock):
        _put(store, conversation, ConversationState.COLLECTING_APPOINTMENT_DATA,
             ConversationContext(appointment=AppointmentDraft(date="2026-03-04")))
        clock.advance(minutes=16)

        _send(engine, conversation, extractor, "merci")
        assert _state(store, conversation) is ConversationState.IDLE
        assert _context(store, conversation) == ConversationContext()

    def test_context_kept_within_ttl(self, engine, conversation, extractor, store, clock):
        _put(store, conversation, ConversationState.COLLECTING_APPOINTMENT_DATA,
             ConversationContext(appointment=AppointmentDraft(date="2026-03-04")))
        clock.advance(minutes=10)

        reply = _send(engine, conversation, extractor, "merci")
        assert reply == "Pourriez-vous m'indiquer le motif de votre consultation ?"
        assert _context(store, conversation).appointment.date == "2026-03-04"

    def test_card_photo_keeps_context_after_ttl(self, engine, conversation, extractor, store, clock):
        _put(store, conversation, ConversationState.COLLECTING_PATIENT_DATA, ConversationContext(
            patient=PatientDraft(first_name="Jean", last_name="Dupont", birth_date="1985-06-14",
                                 email="jean.dupont@example.fr"),
            appointment=AppointmentDraft(date="2026-03-04"),
            pending_action=PendingAction(type=PendingActionType.BOOK),
        ))
        clock.advance(minutes=16)

        reply = _send(engine, conversation, extractor, "", media_kind=MediaKind.IMAGE, media_path="cards/jean.jpg")
        assert reply.startswith("Bien reçu ! Votre carte d'assurance a été enregistrée.")
        context = _context(store, conversation)
        assert context.appointment.date == "2026-03-04"
        assert context.patient.first_name == "Jean"
        assert context.patient.insurance_card_url == "cards/jean.jpg"
        assert _state(store, conversation) is ConversationState.COLLECTING_PATIENT_DATA


# ── Tests: booking ───────────────────────────────────────────────────


class TestNewPatientBooking:
    def test_full_booking_flow(self, engine, conversation, extractor, store, calendar, make_extraction):
        def send(text, extraction=None, **kwargs):
            return _send(engine, conversation, extractor, text, extraction, **kwargs)

        reply = send("Je voudrais prendre rendez-vous", make_extraction("BOOK_APPOINTMENT"))
        assert reply.startswith("C'est entendu. Pour créer votre fiche patient")
        assert _state(store, conversation) is ConversationState.COLLECTING_PATIENT_DATA

        reply = send("Jean Dupont", make_extraction(first_name="Jean", last_name="Dupont"))
        assert reply == "Ravie de faire votre connaissance, Jean. Quelle est votre date de naissance (JJ/MM/AAAA) ?"

        # A date given while registering is the birth date
        reply = send("14/06/1985", make_extraction(date="1985-06-14"))
        assert reply == "Merci. Quelle est votre adresse email ?"
        assert store.get_patient(CLINIC_ID, PATIENT_PHONE).birth_date == date(1985, 6, 14)

        reply = send("jean.dupont@example.fr", make_extraction(email="jean.dupont@example.fr"))
        assert reply.startswith("Presque fini !")

        reply = send("", media_kind=MediaKind.IMAGE, media_path="cards/jean.jpg")
        assert reply.startswith("Bien reçu ! Votre carte d'assurance a été enregistrée.")

        reply = send("non", make_extraction("NEGATIVE"))
        assert reply == "Pourriez-vous m'indiquer le motif de votre consultation ?"
        assert _state(store, conversation) is ConversationState.COLLECTING_APPOINTMENT_DATA
        assert store.get_patient(CLINIC_ID, PATIENT_PHONE).has_social_insurance is False

        reply = send("Un contrôle annuel", make_extraction(appointment_type="Contrôle annuel"))
        assert reply == (
            "C'est entendu. Avec quel médecin souhaitez-vous prendre rendez-vous ? Voici nos praticiens :\n"
            "- Dr Martin (Médecine générale)\n- Dr Bernard (Pédiatrie)"
        )

        reply = send("Avec le Dr Martin", make_extraction(practitioner="Dr Martin"))
        assert reply.startswith(
            "Pour une première visite, un délai de 48h est nécessaire. "
            "Voici les prochains créneaux disponibles avec Dr Martin :"
        )
        assert "- mercredi 4 mars 2026 à 08h00" in reply
        assert "lundi 2 mars" not in reply

        reply = send("mercredi 4 mars à 8h30", make_extraction(date="2026-03-04", time="08:30"))
        assert reply == "Confirmez-vous le rendez-vous le mercredi 4 mars 2026 à 08h30 avec Dr Martin ?"
        assert _state(store, conversation) is ConversationState.CONFIRMATION

        reply = send("oui", make_extraction("AFFIRMATIVE"))
        assert reply == "Parfait ! Votre rendez-vous avec le Dr Martin est confirmé pour le mercredi 4 mars 2026 à 08h30."

        (appointment,) = store.list_upcoming_appointments(CLINIC_ID, PATIENT_PHONE, datetime(2026, 3, 2, tzinfo=UTC))
        assert appointment.practitioner_id == MARTIN
        assert appointment.start == datetime(2026, 3, 4, 7, 30, tzinfo=UTC)
        assert appointment.type == "Contrôle annuel"
        assert calendar.check_availability(MARTIN, appointment.start, appointment.end) is False

        stored = store.get_conversation(conversation.id)
        assert stored.current_state is ConversationState.COMPLETED
        assert stored.context == ConversationContext()
        assert stored.decisions[-1].type is DecisionType.APPOINTMENT_BOOKED
        assert stored.decisions[-1].details["time"] == "08:30"

    def test_full_name_in_one_field_is_split(self, engine, conversation, extractor, store, make_extraction):
        _put(store, conversation, ConversationState.COLLECTING_PATIENT_DATA,
             ConversationContext(pending_action=PendingAction(type=PendingActionType.BOOK)))

        reply = _send(engine, conversation, extractor, "Jean Dupont", make_extraction(first_name="Jean Dupont"))
        patient = store.get_patient(CLINIC_ID, PATIENT_PHONE)
        assert (patient.first_name, patient.last_name) == ("Jean", "Dupont")
        assert "Jean" in reply

    def test_invalid_email_is_asked_again(self, engine, conversation, extractor, store, make_extraction):
        store.upsert_patient(CLINIC_ID, PATIENT_PHONE, first_name="Jean", last_name="Dupont",
                             birth_date=date(1985, 6, 14))
        _put(store, conversation, ConversationState.COLLECTING_PATIENT_DATA,
             ConversationContext(pending_action=PendingAction(type=PendingActionType.BOOK)))

        reply = _send(engine, conversation, extractor, "jean@", make_extraction(email="jean@"))
        assert reply.startswith("L'adresse email semble invalide.")
        assert store.get_patient(CLINIC_ID, PATIENT_PHONE).email is None

    def test_english_speaker(self, engine, conversation, extractor, make_extraction):
        assert _send(engine, conversation, extractor, "Hi") == "Hello! How can I help you today?"
        reply = _send(
            engine, conversation, extractor,
            "I would like to book an appointment please", make_extraction("BOOK_APPOINTMENT"),
        )
        assert reply == "Understood. To create your patient file, could you please tell me your First and Last name?"

    def test_language_switch_on_long_booking_request(
        self, engine, conversation, extractor, store, make_extraction,
    ):
        store.set_preferred_language(CLINIC_ID, PATIENT_PHONE, "fr")
        reply = _send(
            engine, conversation, extractor,
            "I would like to book an appointment with Dr Martin",
            make_extraction("BOOK_APPOINTMENT", practitioner="Dr Martin"),
        )
        assert reply.startswith("Understood.")
        assert store.get_patient(CLINIC_ID, PATIENT_PHONE).preferred_language == "en"


class TestReturningPatientBooking:
    BOOK_REQUEST = "Je voudrais un rendez-vous avec le Dr Bernard pour un suivi mardi à 10h"

    def _request(self, make_extraction, **overrides):
        entities = {"appointment_type": "Suivi", "practitioner": "Dr Bernard", "date": "2026-03-03", "time": "10:00"}
        entities.update(overrides)
        return make_extraction("BOOK_APPOINTMENT", **entities)

    def test_correction_then_booking(self, engine, conversation, extractor, store, known_patient, make_extraction):
        clinic = store.get_clinic(CLINIC_ID)
        store.add_clinic(replace(clinic, onboarding_form_url="https://forms.test/onboarding"))

        reply = _send(engine, conversation, extractor, self.BOOK_REQUEST, self._request(make_extraction))
        assert reply == "Confirmez-vous le rendez-vous le mardi 3 mars 2026 à 10h00 avec Dr Bernard ?"

        reply = _send(engine, conversation, extractor, "non, plutôt à 11h", make_extraction("NEGATIVE", time="11:00"))
        assert reply == "Confirmez-vous le rendez-vous le mardi 3 mars 2026 à 11h00 avec Dr Bernard ?"

        reply = _send(engine, conversation, extractor, "oui", make_extraction("AFFIRMATIVE"))
        assert reply.startswith(
            "Parfait ! Votre rendez-vous avec le Dr Bernard est confirmé pour le mardi 3 mars 2026 à 11h00."
        )
        assert reply.endswith("https://forms.test/onboarding")

    def test_declined_confirmation(self, engine, conversation, extractor, store, known_patient, make_extraction):
        _send(engine, conversation, extractor, self.BOOK_REQUEST, self._request(make_extraction))
        reply = _send(engine, conversation, extractor, "non", make_extraction("NEGATIVE"))
        assert reply == "C'est entendu. Comment puis-je vous aider désormais ?"
        assert _state(store, conversation) is ConversationState.IDLE
        assert _context(store, conversation).pending_action is None

    def test_unclear_answer_during_confirmation(self, engine, conversation, extractor, known_patient, make_extraction):
        _send(engine, conversation, extractor, self.BOOK_REQUEST, self._request(make_extraction))
        reply = _send(engine, conversation, extractor, "peut-être", make_extraction())
        assert reply.startswith("Désolé, je n'ai pas bien compris.")

    def test_stray_slot_during_confirmation_is_not_booked(
        self, engine, conversation, extractor, store, known_patient, make_extraction,
    ):
        _send(engine, conversation, extractor, self.BOOK_REQUEST, self._request(make_extraction))

        reply = _send(engine, conversation, extractor, "et dimanche 10h ?",
                      make_extraction(date="2026-03-08", time="10:00"))
        assert reply.startswith("Désolé, je n'ai pas bien compris.")
        assert _context(store, conversation).appointment.date == "2026-03-03"
        assert _state(store, conversation) is ConversationState.CONFIRMATION

        reply = _send(engine, conversation, extractor, "oui", make_extraction("AFFIRMATIVE"))
        assert reply.startswith(
            "Parfait ! Votre rendez-vous avec le Dr Bernard est confirmé pour le mardi 3 mars 2026 à 10h00."
        )

    def test_closed_day_draft_is_not_booked_on_yes(
        self, engine, conversation, extractor, store, calendar, known_patient, make_extraction,
    ):
        _put(store, conversation, ConversationState.CONFIRMATION, ConversationContext(
            appointment=AppointmentDraft(
                type="Suivi", practitioner_name="Dr Bernard", date="2026-03-08", time="10:00",
            ),
            pending_action=PendingAction(type=PendingActionType.BOOK),
        ))

        reply = _send(engine, conversation, extractor, "oui", make_extraction("AFFIRMATIVE"))
        assert reply == "Le cabinet est fermé le dimanche. Pourriez-vous choisir un autre jour de la semaine ?"
        assert _state(store, conversation) is ConversationState.COLLECTING_APPOINTMENT_DATA
        assert _context(store, conversation).appointment.date is None
        assert calendar.check_availability(
            BERNARD, datetime(2026, 3, 8, 9, 0, tzinfo=UTC), datetime(2026, 3, 8, 9, 30, tzinfo=UTC),
        )

    def test_taken_slot_offers_same_day_alternatives(
        self, engine, conversation, extractor, store, calendar, known_patient, make_extraction,
    ):
        calendar.create_event(BERNARD, summary="busy", description="", start=TUESDAY_10AM,
                              end=TUESDAY_10AM + timedelta(minutes=30))
        _send(engine, conversation, extractor, self.BOOK_REQUEST, self._request(make_extraction))

        reply = _send(engine, conversation, extractor, "oui", make_extraction("AFFIRMATIVE"))
        assert reply == (
            "Malheureusement, ce créneau n'est plus disponible. Voici les prochaines disponibilités pour ce "
            "jour-là : 08h00, 08h30, 09h00. Est-ce qu'un de ces créneaux vous convient ?"
        )
        context = _context(store, conversation)
        assert _state(store, conversation) is ConversationState.COLLECTING_APPOINTMENT_DATA
        assert context.appointment.time is None
        assert "2026-03-03 10:00" in context.rejected_times

    def test_closed_day(self, engine, conversation, extractor, store, known_patient, make_extraction):
        reply = _send(engine, conversation, extractor, self.BOOK_REQUEST,
                      self._request(make_extraction, date="2026-03-08"))
        assert reply == "Le cabinet est fermé le dimanche. Pourriez-vous choisir un autre jour de la semaine ?"
        context = _context(store, conversation)
        assert context.appointment.date is None
        assert context.rejected_times == ("2026-03-08 10:00",)

    def test_outside_opening_hours(self, engine, conversation, extractor, store, known_patient, make_extraction):
        reply = _send(engine, conversation, extractor, self.BOOK_REQUEST,
                      self._request(make_extraction, time="19:00"))
        assert reply.startswith("Désolé, le cabinet est fermé à cette heure-là (19h00).")
        assert _context(store, conversation).appointment.time is None

    def test_unknown_practitioner(self, engine, conversation, extractor, store, known_patient, make_extraction):
        reply = _send(engine, conversation, extractor, self.BOOK_REQUEST,
                      self._request(make_extraction, practitioner="Dr Dupont", date=None, time=None))
        assert reply == 'Désolé, je ne trouve pas de "Dr Dupont". Voici nos médecins : Dr Martin, Dr Bernard.'
        assert _context(store, conversation).appointment.practitioner_name is None

    def test_urgent_motif_skips_first_visit_delay(self, engine, conversation, extractor, known_patient, make_extraction):
        reply = _send(
            engine, conversation, extractor, "J'ai mal à la gorge, je voudrais voir le Dr Martin",
            make_extraction("BOOK_APPOINTMENT", appointment_type="Mal de gorge", practitioner="Dr Martin"),
        )
        assert reply.startswith(
            "Je comprends que c'est urgent. Voici les prochains créneaux disponibles avec Dr Martin :\n\n"
            "- lundi 2 mars 2026 à 09h30\n- lundi 2 mars 2026 à 10h00"
        )

    def test_lists_slots_of_a_known_date(self, engine, conversation, extractor, known_patient, make_extraction):
        reply = _send(
            engine, conversation, extractor, "Un suivi avec le Dr Martin vendredi",
            make_extraction("BOOK_APPOINTMENT", appointment_type="Suivi", practitioner="Dr Martin", date="2026-03-06"),
        )
        assert reply.startswith("Voici les créneaux disponibles le vendredi 6 mars 2026 avec Dr Martin :\n\n- 08h00\n- 08h30")
        assert "- 16h30" in reply
        assert "- 17h00" not in reply

    def test_practitioner_picked_by_ordinal(self, engine, conversation, extractor, store, known_patient):
        _put(store, conversation, ConversationState.COLLECTING_APPOINTMENT_DATA, ConversationContext(
            appointment=AppointmentDraft(type="Suivi"),
            pending_action=PendingAction(type=PendingActionType.BOOK),
        ))
        reply = _send(engine, conversation, extractor, "le premier")
        assert reply.startswith("Pour une première visite")
        appointment = _context(store, conversation).appointment
        assert appointment.practitioner_id == MARTIN
        assert appointment.practitioner_name == "Dr Martin"


# ── Tests: insurance sub-dialogue ────────────────────────────────────


class TestInsurance:
    def test_social_insurance_numbers(self, engine, conversation, extractor, store, clock, known_patient):
        _put(store, conversation, ConversationState.COLLECTING_PATIENT_DATA, ConversationContext(
            patient=PatientDraft(insurance_state=InsuranceCollectionState.AWAITING_SOCIAL_INSURANCE),
            pending_action=PendingAction(type=PendingActionType.BOOK),
        ))
        # The pending insurance question survives a long pause
        clock.advance(minutes=30)

        reply = _send(engine, conversation, extractor, "oui")
        assert reply == "De quel type d'assurance sociale s'agit-il ? (Hospice générale ou SPC)"

        reply = _send(engine, conversation, extractor, "Hospice")
        assert reply.startswith("Pouvez-vous me fournir votre numéro de bénéficiaire")

        reply = _send(engine, conversation, extractor, "bénéficiaire 123456")
        assert reply == (
            "Parfait ! Votre numéro a été enregistré. Passons maintenant à votre rendez-vous.\n\n"
            "Pourriez-vous m'indiquer le motif de votre consultation ?"
        )

        patient = store.get_patient(CLINIC_ID, PATIENT_PHONE)
        assert patient.has_social_insurance is True
        assert patient.social_insurance_type == "Hospice générale"
        assert patient.beneficiary_number == "123456"
        assert _state(store, conversation) is ConversationState.COLLECTING_APPOINTMENT_DATA

    def test_unclear_answer_is_asked_again(self, engine, conversation, extractor, store, known_patient):
        _put(store, conversation, ConversationState.COLLECTING_PATIENT_DATA, ConversationContext(
            patient=PatientDraft(insurance_state=InsuranceCollectionState.AWAITING_SOCIAL_INSURANCE),
        ))
        reply = _send(engine, conversation, extractor, "je ne sais pas")
        assert reply.startswith("Bénéficiez-vous d'une assurance sociale")


# ── Tests: cancellation, modification, listings ─────────────────────


class TestCancellation:
    def test_cancel_upcoming_appointment(
        self, engine, conversation, extractor, store, calendar, known_patient, make_extraction,
    ):
        appointment = _existing_appointment(store, calendar, known_patient)

        reply = _send(engine, conversation, extractor, "Je veux annuler mon rendez-vous",
                      make_extraction("CANCEL_APPOINTMENT"))
        assert reply == "Voulez-vous vraiment annuler votre rendez-vous du mardi 3 mars 2026 à 10h00 avec le Dr Bernard ?"
        assert _context(store, conversation).pending_action.appointment_id == appointment.id

        reply = _send(engine, conversation, extractor, "oui", make_extraction("AFFIRMATIVE"))
        assert reply.startswith("Votre rendez-vous du mardi 3 mars 2026 à 10h00 avec le Dr Bernard a bien été annulé.")
        assert store.get_appointment(appointment.id).status is AppointmentStatus.CANCELLED
        assert calendar.check_availability(BERNARD, appointment.start, appointment.end) is True
        assert store.get_conversation(conversation.id).decisions[-1].type is DecisionType.APPOINTMENT_CANCELLED

    def test_nothing_to_cancel(self, engine, conversation, extractor, known_patient, make_extraction):
        reply = _send(engine, conversation, extractor, "Je veux annuler mon rendez-vous",
                      make_extraction("CANCEL_APPOINTMENT"))
        assert reply == "Je n'ai pas trouvé de rendez-vous à venir pour vous."


class TestModification:
    MOVE_REQUEST = "Je voudrais déplacer mon rendez-vous à jeudi 14h"

    def test_move_in_one_message(self, engine, conversation, extractor, store, calendar, known_patient, make_extraction):
        appointment = _existing_appointment(store, calendar, known_patient)

        reply = _send(engine, conversation, extractor, self.MOVE_REQUEST,
                      make_extraction("MODIFY_APPOINTMENT", date="2026-03-05", time="14:00"))
        assert reply == "Voulez-vous déplacer votre rendez-vous au jeudi 5 mars 2026 à 14h00 ?"

        reply = _send(engine, conversation, extractor, "oui", make_extraction("AFFIRMATIVE"))
        assert reply == "C'est fait ! Votre rendez-vous est maintenant prévu pour le jeudi 5 mars 2026 à 14h00."
        assert store.get_appointment(appointment.id).start == datetime(2026, 3, 5, 13, 0, tzinfo=UTC)
        assert store.get_conversation(conversation.id).decisions[-1].type is DecisionType.APPOINTMENT_MODIFIED

    def test_move_asks_for_new_slot(self, engine, conversation, extractor, store, calendar, known_patient, make_extraction):
        _existing_appointment(store, calendar, known_patient)

        reply = _send(engine, conversation, extractor, "Je voudrais déplacer mon rendez-vous",
                      make_extraction("MODIFY_APPOINTMENT"))
        assert reply == "Pour quelle nouvelle date et heure souhaitez-vous déplacer votre rendez-vous ?"

        reply = _send(engine, conversation, extractor, "jeudi à 14h", make_extraction(date="2026-03-05", time="14:00"))
        assert reply == "Voulez-vous déplacer le rendez-vous au jeudi 5 mars 2026 à 14h00 ?"

    def test_new_slot_taken(self, engine, conversation, extractor, store, calendar, known_patient, make_extraction):
        _existing_appointment(store, calendar, known_patient)
        thursday_2pm = datetime(2026, 3, 5, 13, 0, tzinfo=UTC)
        calendar.create_event(BERNARD, summary="busy", description="", start=thursday_2pm,
                              end=thursday_2pm + timedelta(minutes=30))

        _send(engine, conversation, extractor, self.MOVE_REQUEST,
              make_extraction("MODIFY_APPOINTMENT", date="2026-03-05", time="14:00"))
        reply = _send(engine, conversation, extractor, "oui", make_extraction("AFFIRMATIVE"))
        assert reply == "Désolé, ce créneau n'est pas disponible. Veuillez en choisir un autre."
        assert _state(store, conversation) is ConversationState.COLLECTING_APPOINTMENT_DATA
        assert "2026-03-05 14:00" in _context(store, conversation).rejected_times

    def test_nothing_to_modify(self, engine, conversation, extractor, known_patient, make_extraction):
        reply = _send(engine, conversation, extractor, self.MOVE_REQUEST, make_extraction("MODIFY_APPOINTMENT"))
        assert reply == "Je n'ai pas trouvé de rendez-vous à modifier."


class TestListings:
    def test_practitioners(self, engine, conversation, extractor, make_extraction):
        reply = _send(engine, conversation, extractor, "Quels médecins consultent chez vous ?",
                      make_extraction("LIST_PRACTITIONERS"))
        assert reply == (
            "Voici nos médecins disponibles :\n- Dr Martin (Médecine générale)\n- Dr Bernard (Pédiatrie)"
            "\n\nAvec qui souhaitez-vous prendre rendez-vous ?"
        )

    def test_upcoming_appointments(self, engine, conversation, extractor, store, calendar, known_patient, make_extraction):
        _existing_appointment(store, calendar, known_patient)
        reply = _send(engine, conversation, extractor, "Quels sont mes rendez-vous ?",
                      make_extraction("LIST_APPOINTMENTS"))
        assert reply == "Vos prochains rendez-vous :\n- mardi 3 mars 2026 à 10h00 avec Dr Bernard"

    def test_no_upcoming_appointments(self, engine, conversation, extractor, known_patient, make_extraction):
        reply = _send(engine, conversation, extractor, "Quels sont mes rendez-vous ?",
                      make_extraction("LIST_APPOINTMENTS"))
        assert reply == "Vous n'avez pas de rendez-vous à venir."


# ── Tests: generated replies ─────────────────────────────────────────


class TestGeneratedReplies:
    def test_hallucinated_extraction_reply_is_replaced(
        self, engine, conversation, extractor, store, make_extraction,
    ):
        reply = _send(
            engine, conversation, extractor, "Est-ce qu'il y a un parking près du cabinet ?",
            make_extraction("INFORMATION", response_message="Oui, nous avons un parking gratuit derrière le cabinet."),
        )
        assert reply == (
            "Je ne dispose pas d'information précise sur le parking. Pour connaître les détails de "
            "stationnement, veuillez contacter le cabinet au +33 1 23 45 67 89."
        )
        assert store.get_conversation(conversation.id).decisions[-1].type is DecisionType.INFORMATION_PROVIDED

    def test_valid_generated_reply(self, engine, conversation, extractor, make_extraction):
        extractor.generate_reply.return_value = "Le cabinet est ouvert du lundi au vendredi de 8h à 18h."
        reply = _send(engine, conversation, extractor, "Quels sont vos horaires d'ouverture ?",
                      make_extraction("INFORMATION"))
        assert reply == "Le cabinet est ouvert du lundi au vendredi de 8h à 18h."

        user_message, _prompt, history, language = extractor.generate_reply.call_args.args
        assert user_message == "Quels sont vos horaires d'ouverture ?"
        assert history == []
        assert language == "fr"

    def test_rejected_generations_fall_back_to_safe_answer(self, engine, conversation, extractor, make_extraction):
        extractor.generate_reply.return_value = "Le cabinet est au premier étage."
        reply = _send(engine, conversation, extractor, "Le cabinet est à quel étage ?",
                      make_extraction("INFORMATION"))
        assert reply == (
            "Je n'ai pas cette information sur l'emplacement exact. Vous pouvez contacter le cabinet au "
            "+33 1 23 45 67 89 pour ces détails."
        )
        assert extractor.generate_reply.call_count == 3

    def test_unavailable_topic_without_model(self, engine, conversation, extractor):
        reply = _send(engine, conversation, extractor, "Où est-ce que je peux me garer ?")
        assert reply.startswith("Je ne dispose pas de cette information sur le stationnement.")
        assert "+33 1 23 45 67 89" in reply
