"""Keyword heuristics that keep the model out of the loop when it is not needed.

All matching is done on lower-cased text. These are deliberately simple:
they decide *whether* to call the model or which deterministic branch to
take, never what to book.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Protocol

TRANSACTIONAL_KEYWORDS = (
    "rendez-vous", "rdv", "appointment", "booking", "prendre", "réserver", "book", "schedule",
    "annuler", "cancel", "modifier", "change",
    "demain", "lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche",
    "matin", "après-midi", "soir", "morning", "afternoon", "evening",
    "bonjour", "salut", "hello", "hi", "hey",
    "oui", "non", "ok", "d'accord", "correct", "yes", "no",
    "liste", "list", "médecin", "doctor", "docteur", "praticien", "dr",
)
TRANSACTIONAL_MIN_LENGTH = 20

GREETING_RE = re.compile(r"^(bonjour|salut|hello|hi|hey|bonsoir|good morning|good evening|coucou)$")
RESET_RE = re.compile(r"^(reset|recommencer|annuler|restart|new|nouveau|start over)$")

CORRECTION_RE = re.compile(r"\b(non|plutôt|changer|modifier|no|rather|change|modify|instead)\b")

MODIFY_KEYWORDS = (
    "modifier", "changer", "déplacer", "report", "à la place",
    "modify", "change", "move", "reschedule", "instead",
)

SLOT_REQUEST_KEYWORDS = (
    "créneau", "créneaux", "disponibilité", "disponibilités", "dispo", "libre",
    "slot", "slots", "availability", "available", "free",
)

URGENT_KEYWORDS = (
    "urgence", "urgent", "douleur", "mal", "souffre", "saigne", "sang", "cassé", "fracture",
    "emergency", "pain", "hurt", "bleeding", "broken", "severe", "intense",
)

_SOCIAL_YES = re.compile(r"\b(oui|yes)\b|hospice|spc")
_SOCIAL_NO = re.compile(r"\b(non|no)\b")
_DIGITS = re.compile(r"\d+")

_FIRST_ORDINALS = ("premier", "1er", "first", "1st")
_SECOND_ORDINALS = ("deuxième", "2eme", "second", "2nd")


class _NamedPractitioner(Protocol):
    first_name: str
    last_name: str


def _normalize(message: str) -> str:
    return message.strip().lower()


def needs_entity_extraction(message: str) -> bool:
    """Is the message worth a model call when the conversation is idle?"""
    lowered = _normalize(message)
    if len(lowered) > TRANSACTIONAL_MIN_LENGTH:
        return True
    return any(keyword in lowered for keyword in TRANSACTIONAL_KEYWORDS)


def is_greeting(message: str) -> bool:
    return bool(GREETING_RE.match(_normalize(message)))


def is_reset_command(message: str) -> bool:
    return bool(RESET_RE.match(_normalize(message)))


def has_correction_signal(message: str) -> bool:
    return bool(CORRECTION_RE.search(message.lower()))


def has_modify_keyword(message: str) -> bool:
    lowered = message.lower()
    return any(keyword in lowered for keyword in MODIFY_KEYWORDS)


def asks_for_slots(message: str) -> bool:
    lowered = message.lower()
    return any(keyword in lowered for keyword in SLOT_REQUEST_KEYWORDS)


def is_urgent_motif(motif: str | None) -> bool:
    if not motif:
        return False
    lowered = motif.lower()
    return any(keyword in lowered for keyword in URGENT_KEYWORDS)


def word_count(message: str) -> int:
    return len(message.split())


# ── Insurance answers ────────────────────────────────────────────────


def social_insurance_answer(message: str) -> bool | None:
    """``True`` for yes / Hospice / SPC, ``False`` for no, ``None`` otherwise."""
    lowered = message.lower()
    if _SOCIAL_YES.search(lowered):
        return True
    if _SOCIAL_NO.search(lowered):
        return False
    return None


def social_insurance_type(message: str) -> str | None:
    lowered = message.lower()
    if "hospice" in lowered:
        return "Hospice générale"
    if "spc" in lowered:
        return "SPC"
    return None


def parse_insurance_number(message: str) -> tuple[str, str] | None:
    """Split a typed insurance number into ``(field, value)``.

    Returns ``None`` when the message holds no digits or looks like a
    template placeholder (``[numéro]``). Only the digits are kept, and an
    unlabelled number goes to the beneficiary field.
    """
    if not _DIGITS.search(message) or "[" in message or "]" in message:
        return None
    lowered = message.lower()
    digits = "".join(_DIGITS.findall(message))
    if "bénéficiaire" in lowered or "beneficiary" in lowered:
        return "beneficiary_number", digits
    if "garanti" in lowered or "guarantee" in lowered:
        return "guarantee_number", digits
    return "beneficiary_number", digits


# ── Practitioner mentions ────────────────────────────────────────────


def match_practitioner_mention(
    message: str,
    roster: Sequence[_NamedPractitioner],
) -> _NamedPractitioner | None:
    """Find which practitioner the patient picked when the model did not say.

    Understands ordinals against the listed order ("le premier", "the
    second one") and otherwise any name part longer than two letters.
    """
    if not roster or not message:
        return None
    lowered = message.lower()

    if any(word in lowered for word in _FIRST_ORDINALS):
        return roster[0]
    if len(roster) > 1 and any(word in lowered for word in _SECOND_ORDINALS):
        return roster[1]

    for practitioner in roster:
        full_name = f"{practitioner.first_name} {practitioner.last_name}".lower().replace("dr ", "")
        parts = [part for part in full_name.split() if len(part) > 2]
        if any(part in lowered for part in parts):
            return practitioner
    return None
