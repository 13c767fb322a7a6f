"""Emergency keyword filter.

Runs on the raw message before any model call. A match short-circuits the
whole turn to a fixed safety message, so the list favours recall.
"""

from __future__ import annotations

import re

EMERGENCY_KEYWORDS = (
    # French
    "urgence",
    "douleur intense",
    "saigne",
    "je souffre",
    "mal au coeur",
    "respirer",
    "étouffe",
    "accident",
    "grave",
    "vomit sang",
    "perte connaissance",
    "samu",
    "pompiers",
    # English
    "emergency",
    "severe pain",
    "bleeding",
    "can't breathe",
    "heart pain",
    "chest pain",
    "suffocating",
    "serious",
    "vomiting blood",
    "unconscious",
    "ambulance",
)

# Hotline numbers only count when they are the whole message or follow a
# call verb: "le 15 mars à 15:00" is a booking, not an emergency.
_HOTLINE = r"(15|18|112|911)"
_HOTLINE_ALONE = re.compile(rf"^\s*{_HOTLINE}\s*[!.]*\s*$")
_HOTLINE_CALL = re.compile(
    rf"\b(appeler|appelle|appelez|composer|compose|call|calling|dial)\s+(le\s+|the\s+)?{_HOTLINE}\b"
)


def is_emergency_message(message: str) -> bool:
    """True when *message* describes a medical emergency."""
    normalized = message.lower()
    if any(keyword in normalized for keyword in EMERGENCY_KEYWORDS):
        return True
    return bool(_HOTLINE_ALONE.match(normalized) or _HOTLINE_CALL.search(normalized))
