"""Deterministic patient-facing replies, French first, English second.

Every reply the engine produces on its own (i.e. without the language
model) comes from this table, so wording changes never touch control flow.
"""

from __future__ import annotations

REPLIES: dict[str, tuple[str, str]] = {
    # ── Generic ──────────────────────────────────────────────────────
    "error": (
        "Désolé, une erreur s'est produite.",
        "Sorry, an error occurred.",
    ),
    "error_retry": (
        "Désolé, une erreur s'est produite. Veuillez réessayer.",
        "Sorry, an error occurred. Please try again.",
    ),
    "fallback": (
        "Je suis là pour vous aider avec les rendez-vous et les questions sur le cabinet. "
        "Comment puis-je vous assister aujourd'hui ?",
        "I'm here to help you with appointments and questions about the clinic. "
        "How can I assist you today?",
    ),
    "default_help": (
        "Comment puis-je vous aider ?",
        "How can I help you?",
    ),
    "emergency": (
        "🚨 URGENCE DÉTECTÉE\n\nVeuillez appeler immédiatement le 15 (SAMU) ou vous rendre aux "
        "urgences les plus proches.\n\nSi vous souhaitez parler à un membre de notre équipe, tapez 'HUMAIN'.",
        "🚨 EMERGENCY DETECTED\n\nPlease call 15 (SAMU) or 112 immediately, or go to the nearest "
        "emergency room.\n\nIf you would like to speak to a member of our team, type 'HUMAN'.",
    ),
    "greeting_named": (
        "Bonjour {name} ! Comment puis-je vous aider aujourd'hui ?",
        "Hello {name}! How can I help you today?",
    ),
    "greeting": (
        "Bonjour ! Comment puis-je vous aider aujourd'hui ?",
        "Hello! How can I help you today?",
    ),
    # ── Insurance sub-dialogue ───────────────────────────────────────
    "insurance_card_received": (
        "Bien reçu ! Votre carte d'assurance a été enregistrée. Bénéficiez-vous d'une assurance "
        "sociale (Hospice générale ou SPC) ?",
        "Received! Your insurance card has been saved. Do you have social insurance "
        "(Hospice générale or SPC)?",
    ),
    "ask_social_insurance_type": (
        "De quel type d'assurance sociale s'agit-il ? (Hospice générale ou SPC)",
        "What type of social insurance do you have? (Hospice générale or SPC)",
    ),
    "ask_insurance_numbers": (
        "Pouvez-vous me fournir votre numéro de bénéficiaire ou votre numéro de garanti ? Si vous ne "
        "les trouvez pas, vous pouvez envoyer le document de garantie de prise en charge en PDF.",
        "Can you provide your beneficiary number or guarantee number? If you can't find them, you can "
        "send the guarantee document in PDF format.",
    ),
    "reask_social_insurance": (
        "Bénéficiez-vous d'une assurance sociale (Hospice générale ou SPC) ? Répondez par Oui ou Non.",
        "Do you have social insurance (Hospice générale or SPC)? Please answer Yes or No.",
    ),
    "reask_insurance_numbers": (
        "Pouvez-vous me fournir votre numéro de bénéficiaire ou votre numéro de garanti ? Vous pouvez "
        "aussi envoyer le document de garantie en PDF.",
        "Can you provide your beneficiary number or guarantee number? You can also send the guarantee "
        "document in PDF format.",
    ),
    "insurance_document_saved": (
        "Bien reçu ! Votre document de garantie a été enregistré. Passons maintenant à votre rendez-vous.\n\n",
        "Received! Your guarantee document has been saved. Let's now move on to your appointment.\n\n",
    ),
    "insurance_number_saved": (
        "Parfait ! Votre numéro a été enregistré. Passons maintenant à votre rendez-vous.\n\n",
        "Perfect! Your number has been saved. Let's now move on to your appointment.\n\n",
    ),
    # ── Patient registration ─────────────────────────────────────────
    "email_invalid": (
        "L'adresse email semble invalide. Pourriez-vous vérifier le format (exemple@domaine.com) ?",
        "The email address seems invalid. Could you check the format (example@domain.com)?",
    ),
    "ask_full_name": (
        "C'est entendu. Pour créer votre fiche patient, pourriez-vous m'indiquer votre Prénom et votre Nom ?",
        "Understood. To create your patient file, could you please tell me your First and Last name?",
    ),
    "ask_first_name": (
        "Bien, et quel est votre prénom ?",
        "Great, and what is your first name?",
    ),
    "ask_last_name": (
        "C'est noté. Quel est votre nom de famille ?",
        "Noted. What is your last name?",
    ),
    "ask_birth_date": (
        "Ravie de faire votre connaissance, {name}. Quelle est votre date de naissance (JJ/MM/AAAA) ?",
        "Nice to meet you, {name}. What is your date of birth (DD/MM/YYYY)?",
    ),
    "ask_email": (
        "Merci. Quelle est votre adresse email ?",
        "Thanks. What is your email address?",
    ),
    "ask_insurance_card": (
        "Presque fini ! Pourriez-vous m'envoyer une photo de votre carte d'assurance maladie ?",
        "Almost done! Could you please send me a photo of your health insurance card?",
    ),
    # ── Confirmation ─────────────────────────────────────────────────
    "confirmation_declined": (
        "C'est entendu. Comment puis-je vous aider désormais ?",
        "Understood. How can I help you now?",
    ),
    "confirmation_clarify": (
        "Désolé, je n'ai pas bien compris. Souhaitez-vous confirmer ce rendez-vous ? (Oui/Non)",
        "Sorry, I didn't understand. Do you want to confirm this appointment? (Yes/No)",
    ),
    "confirm_booking": (
        "Confirmez-vous le rendez-vous le {when} avec {practitioner} ?",
        "Confirm appointment on {when} with {practitioner}?",
    ),
    "confirm_modification": (
        "Voulez-vous déplacer le rendez-vous au {when} ?",
        "Confirm moving to {when}?",
    ),
    "the_doctor": (
        "le médecin",
        "the doctor",
    ),
    # ── Cancellation / modification / listings ───────────────────────
    "no_upcoming_to_cancel": (
        "Je n'ai pas trouvé de rendez-vous à venir pour vous.",
        "I couldn't find any upcoming appointments for you.",
    ),
    "confirm_cancel": (
        "Voulez-vous vraiment annuler votre rendez-vous du {date} avec le Dr {last_name} ?",
        "Are you sure you want to cancel your appointment on {date} with Dr {last_name}?",
    ),
    "confirm_move": (
        "Voulez-vous déplacer votre rendez-vous au {when} ?",
        "Do you want to move your appointment to {when}?",
    ),
    "ask_new_slot": (
        "Pour quelle nouvelle date et heure souhaitez-vous déplacer votre rendez-vous ?",
        "For what new date and time would you like to move your appointment?",
    ),
    "nothing_to_modify": (
        "Je n'ai pas trouvé de rendez-vous à modifier.",
        "I couldn't find any appointment to modify.",
    ),
    "no_upcoming": (
        "Vous n'avez pas de rendez-vous à venir.",
        "You have no upcoming appointments.",
    ),
    "upcoming_header": (
        "Vos prochains rendez-vous :",
        "Your upcoming appointments:",
    ),
    "upcoming_line": (
        "\n- {when} avec {practitioner}",
        "\n- {when} with {practitioner}",
    ),
    "no_practitioners": (
        "Aucun médecin n'est disponible pour le moment.",
        "No doctors are available at the moment.",
    ),
    "practitioner_roster": (
        "Voici nos médecins disponibles :\n{roster}\n\nAvec qui souhaitez-vous prendre rendez-vous ?",
        "Here are our available doctors:\n{roster}\n\nWho would you like to see?",
    ),
    "general_practitioner": (
        "Généraliste",
        "General Practitioner",
    ),
    # ── Appointment collection ───────────────────────────────────────
    "ask_type": (
        "Pourriez-vous m'indiquer le motif de votre consultation ?",
        "Could you please tell me the reason for your visit?",
    ),
    "ask_practitioner": (
        "C'est entendu. Avec quel médecin souhaitez-vous prendre rendez-vous ? Voici nos praticiens :\n{roster}",
        "Understood. Which doctor would you like to see? Here are our practitioners:\n{roster}",
    ),
    "ask_date": (
        "C'est noté. Pour quelle date souhaiteriez-vous ce rendez-vous ?",
        "Noted. For what date would you like this appointment?",
    ),
    "ask_time": (
        "Très bien. À quelle heure préféreriez-vous ?",
        "Very well. At what time would you prefer?",
    ),
    "closed_day": (
        "Le cabinet est fermé le {day}. Pourriez-vous choisir un autre jour de la semaine ?",
        "The clinic is closed on {day}. Could you choose another day of the week?",
    ),
    "out_of_hours": (
        "Désolé, le cabinet est fermé à cette heure-là ({time}). Nos horaires sont : {hours}. "
        "Quelle autre heure vous conviendrait ?",
        "Sorry, the clinic is closed at that time ({time}). Our hours are: {hours}. "
        "What other time would work for you?",
    ),
    "practitioner_not_found": (
        'Désolé, je ne trouve pas de "{name}". Voici nos médecins : {roster}.',
        'Sorry, I can\'t find "{name}". Here are our doctors: {roster}.',
    ),
    "slots_urgent_prefix": (
        "Je comprends que c'est urgent. ",
        "I understand this is urgent. ",
    ),
    "slots_first_visit_prefix": (
        "Pour une première visite, un délai de 48h est nécessaire. ",
        "For a first visit, a 48-hour delay is required. ",
    ),
    "slots_proposal": (
        "{prefix}Voici les prochains créneaux disponibles avec {practitioner} :\n\n{slots}\n\n"
        "Quel créneau vous conviendrait le mieux ?",
        "{prefix}Here are the next available slots with {practitioner}:\n\n{slots}\n\n"
        "Which slot would work best for you?",
    ),
    "day_slots": (
        "Voici les créneaux disponibles le {date} avec {practitioner} :\n\n{slots}\n\n"
        "Lequel vous conviendrait ?",
        "Here are the available slots on {date} with {practitioner}:\n\n{slots}\n\n"
        "Which one would suit you?",
    ),
    "no_day_slots": (
        "Il n'y a plus de créneau disponible le {date} avec {practitioner}. "
        "Souhaitez-vous choisir une autre date ?",
        "There are no more available slots on {date} with {practitioner}. "
        "Would you like to choose another date?",
    ),
    # ── Booking finalisation ─────────────────────────────────────────
    "ask_practitioner_short": (
        "Quel praticien souhaitez-vous consulter ? (Dr ...)",
        "Which practitioner would you like to see? (Dr ...)",
    ),
    "ask_date_and_time_with": (
        "À quelle date et quelle heure souhaitez-vous voir le Dr {last_name} ?",
        "What date and time would you like to see Dr {last_name}?",
    ),
    "ask_date_with": (
        "Pour quelle date souhaitez-vous votre rendez-vous avec le Dr {last_name} ?",
        "What date would you like for your appointment with Dr {last_name}?",
    ),
    "ask_time_with": (
        "À quelle heure souhaitez-vous venir le {date} avec le Dr {last_name} ?",
        "What time would you like to come on {date} with Dr {last_name}?",
    ),
    "ask_type_examples": (
        "Quel est le motif de la consultation ? (Ex: Suivi, Urgence, Contrôle...)",
        "What is the reason for the visit? (Ex: Follow-up, Emergency, Check-up...)",
    ),
    "placeholder_datetime": (
        "Désolé, je n'ai pas compris la date ou l'heure. Pourriez-vous me les préciser ?",
        "Sorry, I didn't catch the date or time. Could you please specify them?",
    ),
    "invalid_datetime": (
        "Désolé, je n'ai pas pu valider la date ({date}) ou l'heure ({time}).",
        "Sorry, I couldn't validate the date ({date}) or time ({time}).",
    ),
    "date_in_past": (
        "Désolé, cette date est déjà passée. Veuillez choisir un créneau futur.",
        "Sorry, this date is in the past. Please choose a future slot.",
    ),
    "booking_confirmed": (
        "Parfait ! Votre rendez-vous avec le Dr {last_name} est confirmé pour le {when}.",
        "Perfect! Your appointment with Dr {last_name} is confirmed for {when}.",
    ),
    "onboarding_form": (
        "\n\nComme il s'agit de votre premier rendez-vous, nous avons besoin d'un complément "
        "d'information. Merci de remplir obligatoirement ce formulaire avant votre venue : {url}",
        "\n\nAs this is your first appointment, we need some additional information. Please complete "
        "this mandatory form before your visit: {url}",
    ),
    "slot_unavailable_suggestions": (
        "Malheureusement, ce créneau n'est plus disponible. Voici les prochaines disponibilités pour ce "
        "jour-là{period} : {slots}. Est-ce qu'un de ces créneaux vous convient ?",
        "Unfortunately, this slot is no longer available. Here are the next availabilities for that "
        "day{period}: {slots}. Does one of these work for you?",
    ),
    "slot_unavailable": (
        "Malheureusement, ce créneau n'est plus disponible. Pourriez-vous proposer une autre date ou heure ?",
        "Unfortunately, this slot is no longer available. Could you suggest another date or time?",
    ),
    "period_morning": (
        " le matin",
        " in the morning",
    ),
    "period_afternoon": (
        " l'après-midi",
        " in the afternoon",
    ),
    # ── Cancellation / modification finalisation ─────────────────────
    "cancellation_done": (
        "Votre rendez-vous du {date} avec le {practitioner} a bien été annulé. "
        "Souhaitez-vous faire autre chose ?",
        "Your appointment on {date} with {practitioner} has been cancelled. "
        "Is there anything else I can help you with?",
    ),
    "appointment_not_found": (
        "Désolé, je n'ai pas trouvé ce rendez-vous.",
        "Sorry, I couldn't find that appointment.",
    ),
    "modify_unavailable": (
        "Désolé, ce créneau n'est pas disponible. Veuillez en choisir un autre.",
        "Sorry, this slot is not available. Please choose another one.",
    ),
    "modification_done": (
        "C'est fait ! Votre rendez-vous est maintenant prévu pour le {when}.",
        "All set! Your appointment is now scheduled for {when}.",
    ),
}


def reply(key: str, language: str, **values: str) -> str:
    """Render reply *key* in *language* (anything but ``"en"`` reads French)."""
    french, english = REPLIES[key]
    template = english if language == "en" else french
    return template.format(**values) if values else template
