"""French / English language detection for short chat messages.

Very short messages are matched against exact lists; longer ones are scored
by function-word frequency. Anything undecided falls back to French, the
clinic's default language.
"""

from __future__ import annotations

import re

_EXACT_EN = frozenset({
    "hi", "hello", "hey", "good morning", "good afternoon", "good evening",
    "thank you", "thanks", "yes", "no", "ok", "okay", "tomorrow", "today", "yesterday",
})
_EXACT_FR = frozenset({
    "bonjour", "bonsoir", "salut", "merci", "oui", "non", "d'accord", "demain",
    "aujourd'hui", "hier",
})

_FR_WORDS = frozenset({
    "le", "la", "les", "un", "une", "des", "du", "de", "et", "est", "je", "vous", "nous",
    "il", "elle", "pour", "avec", "dans", "sur", "pas", "ne", "mon", "ma", "mes", "votre",
    "vos", "ce", "cette", "qui", "que", "quoi", "quel", "quelle", "au", "aux", "suis",
    "voudrais", "veux", "rendez-vous", "rdv", "demain", "merci", "bonjour", "oui", "non",
    "prendre", "annuler", "modifier", "médecin", "docteur", "matin", "soir", "heure",
    "lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche", "semaine",
    "s'il", "plaît", "j'ai", "c'est", "mais", "ou", "où", "comment", "pourquoi",
})
_EN_WORDS = frozenset({
    "the", "a", "an", "and", "is", "are", "i", "you", "we", "it", "for", "with", "in",
    "on", "not", "my", "your", "this", "that", "what", "which", "who", "to", "of", "am",
    "would", "like", "want", "need", "appointment", "book", "cancel", "change", "doctor",
    "tomorrow", "morning", "afternoon", "evening", "please", "thanks", "thank", "hello",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday", "week",
    "i'm", "i'd", "can", "could", "have", "do", "does", "but", "or", "where", "how", "why",
    "yes", "no", "next", "at", "time", "see",
})

_TOKEN = re.compile(r"[a-zàâäçéèêëîïôöùûüÿœ'-]+")
_FRENCH_CHARS = re.compile(r"[àâçéèêëîïôùûœ]")


def detect_language(text: str, default: str = "fr") -> str:
    """Return ``"fr"`` or ``"en"`` for *text*."""
    clean = text.strip().lower()
    if clean in _EXACT_EN:
        return "en"
    if clean in _EXACT_FR:
        return "fr"

    if len(text) > 10:
        tokens = _TOKEN.findall(clean)
        fr_score = sum(1 for token in tokens if token in _FR_WORDS)
        en_score = sum(1 for token in tokens if token in _EN_WORDS)
        fr_score += len(_FRENCH_CHARS.findall(clean)) * 0.5
        if en_score > fr_score:
            return "en"
        if fr_score > en_score:
            return "fr"

    return default
