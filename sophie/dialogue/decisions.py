"""Decision memory: what the assistant has recently done for a conversation.

Records live on the conversation row (see ``ConversationStore.append_decision``)
as a bounded ring buffer, and the last few are summarised into the reply
prompt so the model does not contradict what was just booked or cancelled.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

MAX_DECISIONS = 10
RECENT_DECISIONS = 5
PROMPT_DECISIONS = 3


class DecisionType(str, Enum):
    APPOINTMENT_BOOKED = "appointment_booked"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    APPOINTMENT_MODIFIED = "appointment_modified"
    EMERGENCY_HANDOVER = "emergency_handover"
    INFORMATION_PROVIDED = "information_provided"


@dataclass(frozen=True)
class DecisionRecord:
    type: DecisionType
    outcome: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


def trim_decisions(decisions: list[DecisionRecord]) -> list[DecisionRecord]:
    """Keep only the newest ``MAX_DECISIONS`` records."""
    return decisions[-MAX_DECISIONS:]


def recent_decisions(decisions: list[DecisionRecord], limit: int = RECENT_DECISIONS) -> list[DecisionRecord]:
    return decisions[-limit:]


def _time_ago(timestamp: datetime, now: datetime, language: str) -> str:
    english = language == "en"
    minutes = int((now - timestamp).total_seconds() // 60)
    hours, days = minutes // 60, minutes // (60 * 24)
    if minutes < 1:
        return "just now" if english else "à l'instant"
    if minutes < 60:
        return f"{minutes} min ago" if english else f"il y a {minutes} min"
    if hours < 24:
        return f"{hours} hours ago" if english else f"il y a {hours}h"
    if days < 7:
        return f"{days} days ago" if english else f"il y a {days} jours"
    return "over a week ago" if english else "il y a plus d'une semaine"


def _describe(record: DecisionRecord, language: str) -> str:
    english = language == "en"
    if record.type is DecisionType.APPOINTMENT_BOOKED:
        unknown = "Unknown" if english else "Inconnu"
        day = record.details.get("date") or unknown
        hour = record.details.get("time") or unknown
        return f"Booked appointment: {day} at {hour}" if english else f"RDV pris: {day} à {hour}"
    labels = {
        DecisionType.APPOINTMENT_CANCELLED: ("Cancelled appointment", "RDV annulé"),
        DecisionType.APPOINTMENT_MODIFIED: ("Modified appointment", "RDV modifié"),
        DecisionType.EMERGENCY_HANDOVER: ("Emergency handover initiated", "Transfert urgence initié"),
        DecisionType.INFORMATION_PROVIDED: ("Information provided", "Information fournie"),
    }
    en_label, fr_label = labels[record.type]
    return en_label if english else fr_label


def format_decisions_for_prompt(
    decisions: list[DecisionRecord],
    language: str = "fr",
    now: datetime | None = None,
) -> str:
    """Numbered summary of the last few decisions for prompt injection."""
    selected = recent_decisions(decisions, PROMPT_DECISIONS)
    english = language == "en"
    if not selected:
        return "No recent decisions." if english else "Aucune décision récente."

    now = now or datetime.now(UTC)
    lines = ["RECENT DECISIONS:" if english else "DÉCISIONS RÉCENTES:"]
    for index, record in enumerate(selected, start=1):
        line = f"{index}. {_time_ago(record.timestamp, now, language)}: {_describe(record, language)}"
        if record.outcome:
            line += f" - {record.outcome}"
        lines.append(line)
    return "\n".join(lines)
