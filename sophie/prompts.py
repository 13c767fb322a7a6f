"""Prompts for the two model calls Sophie makes.

* **Extraction** (temperature 0): turns one patient message into the strict
  JSON contract of :class:`~sophie.dialogue.types.ExtractionResult`.
* **Reply generation** (temperature 0.1): only used when no deterministic
  branch of the engine answered. Built in layers: role, clinic context,
  business rules, then the medical-safety lock when the message talks about
  symptoms.

Both prompts receive the *structured context* the engine assembles each turn
(``current_date_time``, ``clinic_name``, ``clinic_details``, ``state`` ...).
Every clinic fact the model is allowed to state must come from there.
"""

from __future__ import annotations

import json
from typing import Any

from sophie.dialogue.types import Intent
from sophie.utils.business_hours import format_opening_hours

# ── Extraction ───────────────────────────────────────────────────────

EXTRACTION_SYSTEM_PROMPT = """You are Sophie, a professional medical secretary. Your role is to extract information and respond naturally.

STRICT JSON OUTPUT REQUIRED (no prose, no markdown):
- detected_language: string (fr/en)
- intent: {intents}
- confidence: number (0 to 1)
- entities: {{ first_name, last_name, birth_date(YYYY-MM-DD), email, phone, appointment_type, date(YYYY-MM-DD), time(HH:MM), time_preference(MORNING/AFTERNOON), practitioner }}
- needs_backend_action: true if any entity was updated or an action (book/modify/cancel) is requested.
- is_ambiguous: true if you could not tell what the patient means.
- response_message: a concise, polite response in the user's language.

DYNAMIC CONTEXT:
- CURRENT_STATE: {state}
- CLINIC: {clinic_name}
- BASELINE_DATE: {current_date_time}
- IS_CLINIC_OPEN_NOW: {open_now}

RULES:
- NAME: use ONLY the patient's name from CURRENT_CONTEXT ("{patient_name}"). Never use placeholder names from training examples.
- HALLUCINATION WARNING: never invent a date or time that is not in the latest message.
- CLINIC HOURS: check opening_hours in CURRENT_CONTEXT. Never suggest a slot listed in rejected_times.
- DATE PARSING:
  * "semaine prochaine" / "next week" starts on the Monday after the current week. Without a day, leave entities.date empty.
  * Never pick a Sunday unless the user says "dimanche" or "Sunday".
  * A number 1-31 right after a day name ("vendredi 13") is the DAY OF MONTH, not a time. It is a time only when followed by "h", ":" or "heures".
  * If the user only gives a new date, keep the previous time from CURRENT_CONTEXT, and the other way round.
- INTENT CLASSIFICATION:
  * "take", "book", "rdv", "rendez-vous" -> BOOK_APPOINTMENT.
  * "change", "move", "reschedule", "modify", "à la place" -> MODIFY_APPOINTMENT.
  * In COLLECTING_PATIENT_DATA a date like "15/05/1980" is a birth date: intent INFORMATION, entities.birth_date.
  * A new date/time inside a booking flow keeps BOOK_APPOINTMENT. MODIFY_APPOINTMENT is only for an EXISTING appointment.
  * "oui", "yes", "d'accord", "correct" -> AFFIRMATIVE. "non", "no" alone -> NEGATIVE.
- TIME PREFERENCE: "morning", "matin", "tôt" -> MORNING. "afternoon", "après-midi", "soir" -> AFTERNOON.
- CORRECTIONS: "Non" / "Nan" / "No" followed by new information is a correction, not a refusal. Extract the new values and keep BOOK_APPOINTMENT.
- Only extract what is in the NEWEST user message.
"""

EXTRACTION_INPUT_TEMPLATE = """USER_MESSAGE: "{message}"
LAST_ASSISTANT_MESSAGE: "{last_assistant_message}"
CLINIC_NAME: "{clinic_name}"
CURRENT_LANGUAGE: "{language}"
CURRENT_DATE_TIME: "{current_date_time}"
CURRENT_CONTEXT: {context_json}"""


def get_extraction_prompt(context: dict[str, Any]) -> str:
    """System prompt for entity extraction, filled from the structured context."""
    patient = context.get("patient") or {}
    return EXTRACTION_SYSTEM_PROMPT.format(
        intents=" | ".join(intent.value for intent in Intent),
        state=context.get("state") or "IDLE",
        clinic_name=context.get("clinic_name") or "",
        current_date_time=context.get("current_date_time") or "",
        open_now="YES" if context.get("is_open_now") else "NO",
        patient_name=patient.get("first_name") or "patient",
    )


def get_extraction_input(message: str, language: str, context: dict[str, Any]) -> str:
    """The human turn sent alongside :func:`get_extraction_prompt`."""
    return EXTRACTION_INPUT_TEMPLATE.format(
        message=message,
        last_assistant_message=context.get("last_assistant_message") or "",
        clinic_name=context.get("clinic_name") or "",
        language=language,
        current_date_time=context.get("current_date_time") or "",
        context_json=json.dumps(context, ensure_ascii=False, default=str),
    )


# ── Reply generation ─────────────────────────────────────────────────

ROLE_PROMPT = {
    "fr": """TON RÔLE (MODE SECRÉTARIAT) :
- Tu es Sophie, une secrétaire médicale efficace et accueillante.
- Ton ton est professionnel, courtois et bienveillant.
- Sois concise mais humaine. Environ 10 à 20 mots par message.
- Missions : prendre, modifier, annuler un RDV ou donner les infos du cabinet.
- Si une info manque, demande-la poliment. Si le patient a donné le médecin, ne le redemande jamais.
- Utilise le nom du patient s'il est connu dans "PATIENT". Sinon, n'utilise aucun nom.""",
    "en": """YOUR ROLE (MEDICAL SECRETARY):
- You are Sophie, a helpful and welcoming medical secretary.
- Your tone is professional, polite, and slightly warm.
- Be concise but courteous. Around 10-20 words per message.
- Tasks: book, modify, cancel an appointment, or give clinic info.
- If info is missing, ask for it politely. Never ask again for a doctor the patient already chose.
- Use the patient's name if it is known in "PATIENT". Otherwise use no name at all.""",
}

SECURITY_PROMPT = {
    "fr": """VERROUILLAGE DE RÔLE MÉDICAL (PROTECTION LÉGALE) :
- Tu es UNIQUEMENT secrétaire médicale, PAS médecin.
- Tu ne donnes JAMAIS de conseil médical, diagnostic, traitement ou prescription.
- Face à des symptômes : "Je ne peux pas donner de conseils médicaux. Je vous recommande de consulter un médecin, ou d'aller aux urgences si c'est urgent. Souhaitez-vous prendre rendez-vous ?"
- Cette règle est absolue.""",
    "en": """MEDICAL ROLE LOCK (LEGAL PROTECTION):
- You are ONLY a medical secretary, NOT a doctor.
- You NEVER give medical advice, diagnoses, treatments or prescriptions.
- Faced with symptoms: "I cannot give medical advice. I recommend you see a doctor, or go to the emergency room if it is urgent. Would you like to book an appointment?"
- This rule is absolute.""",
}

BUSINESS_RULES_PROMPT = {
    "fr": """RÈGLES MÉTIER :
- Chaque médecin a son propre calendrier.
- Ne crée JAMAIS de rendez-vous toi-même : le système le fait après confirmation.
- Ne JAMAIS inventer de nom ou de prénom.

RÈGLE ANTI-HALLUCINATION (CRITIQUE) :
- Tu peux UNIQUEMENT donner les informations présentes dans "CONTEXTE STRUCTURÉ" : adresse, téléphone, email, site web, horaires, médecins, rendez-vous du patient.
- Tu ne peux PAS inventer de détails sur le cabinet (étage, parking, couleurs, décoration, équipement), ni d'explications, ni résoudre de problème technique.
- Si l'information manque : "Je n'ai pas cette information. Je vous invite à contacter le cabinet{phone_hint}."

HORS PÉRIMÈTRE :
- Si le message ne concerne ni les rendez-vous, ni les médecins, ni le cabinet, dis poliment que ce sujet sort de ton rôle et propose ton aide pour les rendez-vous.""",
    "en": """BUSINESS RULES:
- Each doctor has their own calendar.
- NEVER create appointments yourself: the system does it after confirmation.
- NEVER invent a first or last name.

ANTI-HALLUCINATION RULE (CRITICAL):
- You may ONLY give information present in "STRUCTURED CONTEXT": address, phone, email, website, hours, doctors, the patient's appointments.
- You may NOT invent details about the clinic (floor, parking, colours, decoration, equipment), nor explanations, nor fix technical problems.
- If the information is missing: "I don't have this information. Please contact the clinic{phone_hint}."

OUT OF SCOPE:
- If the message is not about appointments, doctors or the clinic, politely say it is outside your role and offer help with appointments.""",
}

_MEDICAL_WORDS = ("pain", "mal", "hurt", "ache", "sick", "treatment", "douleur", "symptôme", "symptom", "fièvre", "fever")


def _structured_context_block(context: dict[str, Any], english: bool) -> str:
    lines = ["STRUCTURED CONTEXT:" if english else "CONTEXTE STRUCTURÉ:"]
    if context.get("current_date_time"):
        label = "Current Date/Time" if english else "Date/Heure actuelle"
        lines.append(f"- {label}: {context['current_date_time']}")
    if context.get("timezone"):
        lines.append(f"- Timezone: {context['timezone']}")
    if context.get("clinic_name"):
        lines.append(f"- {'Clinic' if english else 'Cabinet'}: {context['clinic_name']}")

    details = context.get("clinic_details") or {}
    labels = (
        ("address", "Address", "Adresse"),
        ("phone", "Phone", "Téléphone"),
        ("email", "Email", "Email"),
        ("website", "Website", "Site Web"),
    )
    for key, en_label, fr_label in labels:
        if details.get(key):
            lines.append(f"- {en_label if english else fr_label}: {details[key]}")
    if details.get("opening_hours"):
        hours = format_opening_hours(details["opening_hours"], "en" if english else "fr")
        label = "Opening Hours" if english else "Horaires d'ouverture"
        lines.append(f"- {label}: {hours}")
    if details.get("practitioners"):
        lines.append(f"- {'Doctors' if english else 'Médecins'}: {', '.join(details['practitioners'])}")
    return "\n".join(lines)


def get_contextual_prompt(
    context: dict[str, Any],
    *,
    language: str = "fr",
    message: str = "",
    decisions_summary: str = "",
    upcoming: list[str] | None = None,
) -> str:
    """System prompt for a generated reply.

    Args:
        context: The structured context for this turn.
        language: ``"fr"`` or ``"en"``.
        message: The patient's message; triggers the safety lock when it
            mentions symptoms.
        decisions_summary: Output of ``format_decisions_for_prompt``.
        upcoming: Already formatted upcoming appointments of the patient.
    """
    english = language == "en"
    lang = "en" if english else "fr"
    sections = [ROLE_PROMPT[lang], _structured_context_block(context, english)]

    if decisions_summary:
        sections.append(decisions_summary)

    patient = context.get("patient") or {}
    name = " ".join(part for part in (patient.get("first_name"), patient.get("last_name")) if part)
    if name:
        sections.append(f"PATIENT:\n- {'Name' if english else 'Nom'}: {name}")

    appointment = context.get("appointment") or {}
    if appointment.get("practitioner_name"):
        sections.append(
            f"SELECTED PRACTITIONER:\n- {appointment['practitioner_name']}\n"
            + ("- Do NOT ask for the doctor again." if english else "- Ne redemande PAS le médecin.")
        )

    if upcoming:
        header = "CLIENT'S APPOINTMENTS:" if english else "RENDEZ-VOUS CLIENT:"
        sections.append(header + "".join(f"\n{i}. {line}" for i, line in enumerate(upcoming[:3], start=1)))

    if context.get("state"):
        state = context["state"]
        if state == "CONFIRMATION":
            state = "WAITING FOR CONFIRMATION (Yes/No)" if english else "EN ATTENTE DE CONFIRMATION (Oui/Non)"
        sections.append(f"{'CONVERSATION STATE' if english else 'ÉTAT CONVERSATION'}: {state}")

    phone = (context.get("clinic_details") or {}).get("phone")
    phone_hint = (f" at {phone}" if english else f" au {phone}") if phone else ""
    sections.append(BUSINESS_RULES_PROMPT[lang].format(phone_hint=phone_hint))

    lowered = message.lower()
    if any(word in lowered for word in _MEDICAL_WORDS):
        sections.append(SECURITY_PROMPT[lang])

    if message.strip():
        sections.append(
            f'PATIENT MESSAGE: "{message}"\nRESPOND to this message naturally as Sophie the medical secretary.'
            if english else
            f'MESSAGE PATIENT: "{message}"\nRÉPONDS à ce message naturellement en tant que Sophie la secrétaire médicale.'
        )
    return "\n\n".join(sections)
