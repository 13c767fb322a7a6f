"""Hallucination guard for generated replies.

Language models love to reassure patients with invented practical details:
"free parking behind the building", "second floor, take the lift", "pink
walls to calm you down". None of that is in the clinic record, so none of it
may reach a patient. :class:`ResponseValidator` rejects such replies and
offers a topic-specific safe answer that points to the clinic phone line.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

_NOT_NEGATED = r"(?!.*je ne|n'ai pas|ne dispose pas|contacter|contactez)"
_NOT_NEGATED_EN = r"(?!.*(?:i don't|i do not|don't have|contact))"
_ORDINAL_EN = r"(ground|first|second|third|fourth|fifth|top|[0-9]+(st|nd|rd|th))"

_FRENCH_CLAIMS = (
    # Parking
    (r"parking (gratuit|payant|souterrain|extérieur|derrière|devant|privatif|public|limité|disponible)",
     "parking_details"),
    (r"(nous|on|il y a|il existe|vous trouverez|dispose|disposons) (un|d'un|du|de) (petit |grand )?parking",
     "parking_mention"),
    (rf"parking{_NOT_NEGATED}{_NOT_NEGATED_EN}", "parking"),
    (rf"stationn(ement|er){_NOT_NEGATED}", "parking"),
    # Floor and physical location
    (r"(rez-de-chaussée|premier étage|deuxième étage|troisième étage|[0-9]ème? étage|[0-9]er étage)", "floor"),
    (r"(située?|situé|se trouve|est situé|est située) (au|à l'|dans le) (rez-de-chaussée|étage|[0-9])",
     "location_detail"),
    (r"au (rez|premier|deuxième|troisième)", "floor"),
    # Colours and decoration
    (r"(rose|vert|bleu|jaune|rouge|orange|violet|couleur) (pour|car|afin|vise|permet|crée)",
     "color_explanation"),
    (r"(décor|décoré|ambiance|atmosphère|apaiser|calmer)", "decoration"),
    # Facilities
    (r"salle d'attente", "waiting_room"),
    (r"ascenseur", "elevator"),
    (r"(équipement|matériel|technologie|moderne|récent)", "equipment"),
    # Invented explanations
    (r"(c'est (pour|afin de|car)|vise à|permet de) (créer|apaiser|calmer|rassurer|mettre à l'aise)",
     "invented_explanation"),
    (r"choix de (design|décoration|couleur)", "design_choice"),
    # Technical problems the assistant cannot fix
    (r"(anamnèse|formulaire|site web|page) (ne (fonctionne|marche)|bloque|bug|problème)", "technical_issue"),
    (r"pouvez-vous me donner plus de détails sur (l'erreur|le problème|ce qui)", "technical_troubleshoot"),
)

_ENGLISH_CLAIMS = (
    # Parking
    (r"\b(free|paid|underground|outdoor|private|public|limited|on-site) (parking|car park)\b", "parking_details"),
    (r"\bparking (is )?(available|free|behind|in front|next to|nearby|on site)\b", "parking_details"),
    (r"\b(we have|we offer|there is|there's|you will find|you'll find) (a |an |some )?(small |large |big )?"
     r"(parking|car park)\b", "parking_mention"),
    (rf"\bcar park{_NOT_NEGATED_EN}", "parking"),
    # Floor and physical location
    (rf"\b{_ORDINAL_EN} (floor|level)\b", "floor"),
    (r"\b(located|situated) (in the basement|upstairs|downstairs|on the (upper|lower) (floor|level))",
     "location_detail"),
    # Colours and decoration
    (r"\b(pink|green|blue|yellow|red|orange|purple|colou?rs?) (to|because|so that|helps?|creates?)\b",
     "color_explanation"),
    (r"\b(decor|decorated|decoration|ambiance|ambience|atmosphere|soothing|calming)\b", "decoration"),
    # Facilities
    (r"\bwaiting room\b", "waiting_room"),
    (r"\b(elevator|lift)\b", "elevator"),
    (r"\b(equipment|state-of-the-art|cutting-edge|modern|latest technology)\b", "equipment"),
    # Invented explanations
    (r"\b(this is|it is|it's) (to|meant to|designed to) (create|calm|soothe|reassure|put you at ease)\b",
     "invented_explanation"),
    (r"\b(design|decoration|colou?r) choices?\b", "design_choice"),
    # Technical problems the assistant cannot fix
    (r"\b(form|website|web page|page|link) (is not|isn't|does not|doesn't) (work|load)", "technical_issue"),
    (r"can you (give|tell) me more (details )?about (the error|the problem|what)", "technical_troubleshoot"),
)

# Bare parking mentions are checked last so the detailed topics win
FORBIDDEN_TERMS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), topic)
    for pattern, topic in sorted(_FRENCH_CLAIMS + _ENGLISH_CLAIMS, key=lambda claim: claim[1] == "parking")
)

# Allowed only when the same words appear in the clinic data given to the model.
# French terms match anywhere, English ones as whole words ("feel free" is not a price).
REQUIRES_SOURCE: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (term, re.compile(re.escape(term)))
    for term in (
        "parking",
        "étage",
        "rez-de-chaussée",
        "ascenseur",
        "salle d'attente",
        "gratuit",
        "payant",
        "derrière",
        "devant",
        "à côté",
        "proximité",
    )
) + tuple(
    (term, re.compile(pattern))
    for term, pattern in (
        ("ground floor", r"\bground floor\b"),
        ("floor", r"\bfloor\b"),
        ("elevator", r"\belevator\b"),
        ("lift", r"\blift\b"),
        ("waiting room", r"\bwaiting room\b"),
        ("free", r"(?<!feel )\bfree\b(?! (slots?|time|to)\b)"),
        ("paid", r"\bpaid\b"),
        ("behind", r"\bbehind\b"),
        ("in front of", r"\bin front of\b"),
        ("next to", r"\bnext to\b"),
        ("nearby", r"\bnearby\b"),
    )
)

# topic -> (fr with phone, fr without, en with phone, en without); a single
# pair means the answer never mentions the phone
_SAFE_RESPONSES: dict[str, tuple[str, ...]] = {
    "parking": (
        "Je ne dispose pas de cette information sur le stationnement. Vous pouvez contacter le cabinet "
        "au {phone} pour connaître les possibilités de parking.",
        "Je ne dispose pas de cette information sur le stationnement. Je vous invite à contacter le "
        "cabinet directement pour ces détails pratiques.",
        "I don't have information about parking. You can contact the clinic at {phone} to learn about "
        "parking options.",
        "I don't have information about parking. Please contact the clinic directly for these "
        "practical details.",
    ),
    "parking_details": (
        "Je ne dispose pas d'information précise sur le parking. Pour connaître les détails de "
        "stationnement, veuillez contacter le cabinet au {phone}.",
        "Je ne dispose pas d'information précise sur le parking. Veuillez contacter le cabinet directement.",
        "I don't have specific information about parking. For parking details, please contact the "
        "clinic at {phone}.",
        "I don't have specific information about parking. Please contact the clinic directly.",
    ),
    "parking_mention": (
        "Je ne dispose pas de cette information. Pour les questions de stationnement, contactez le "
        "cabinet au {phone}.",
        "Je ne dispose pas de cette information. Pour les questions de stationnement, contactez le "
        "cabinet directement.",
        "I don't have this information. For parking questions, contact the clinic at {phone}.",
        "I don't have this information. For parking questions, contact the clinic directly.",
    ),
    "floor": (
        "Je n'ai pas cette information sur l'emplacement exact. Vous pouvez contacter le cabinet au "
        "{phone} pour ces détails.",
        "Je n'ai pas cette information sur l'emplacement exact. Veuillez contacter le cabinet directement.",
        "I don't have information about the exact location. You can contact the clinic at {phone} for "
        "these details.",
        "I don't have information about the exact location. Please contact the clinic directly.",
    ),
    "location_detail": (
        "Je ne peux pas vous donner de détails précis sur l'accès. Contactez le cabinet au {phone} pour "
        "ces informations.",
        "Je ne peux pas vous donner de détails précis sur l'accès. Contactez le cabinet directement.",
        "I can't give you specific details about access. Contact the clinic at {phone} for this information.",
        "I can't give you specific details about access. Contact the clinic directly.",
    ),
    "technical_issue": (
        "Je ne peux pas résoudre les problèmes techniques. Veuillez contacter le cabinet directement au "
        "{phone} pour qu'ils puissent vous aider avec ce problème.",
        "Je ne peux pas résoudre les problèmes techniques. Veuillez contacter le cabinet directement "
        "pour qu'ils puissent vous aider.",
        "I cannot resolve technical issues. Please contact the clinic directly at {phone} so they can "
        "help you with this problem.",
        "I cannot resolve technical issues. Please contact the clinic directly so they can help you.",
    ),
    "missing_info": (
        "Je n'ai pas cette information dans mes données. Vous pouvez contacter le cabinet au {phone} "
        "pour plus de détails.",
        "Je n'ai pas cette information dans mes données. Veuillez contacter le cabinet directement.",
        "I don't have this information in my data. You can contact the clinic at {phone} for more details.",
        "I don't have this information in my data. Please contact the clinic directly.",
    ),
    "decoration": (
        "Je n'ai pas d'information sur les aspects de décoration du cabinet. Comment puis-je vous aider "
        "pour vos rendez-vous ?",
        "I don't have information about the clinic's decoration. How can I help you with your appointments?",
    ),
    "color_explanation": (
        "Je n'ai pas d'information sur les choix esthétiques du cabinet. Puis-je vous aider pour prendre "
        "un rendez-vous ?",
        "I don't have information about the clinic's aesthetic choices. Can I help you book an appointment?",
    ),
    "equipment": (
        "Je n'ai pas d'information sur les équipements du cabinet. Pour ces détails, vous pouvez "
        "contacter directement le cabinet.",
        "I don't have information about the clinic's equipment. For these details, you can contact the "
        "clinic directly.",
    ),
    "technical_troubleshoot": (
        "Je ne suis qu'une secrétaire virtuelle et ne peux pas résoudre les problèmes techniques. Le "
        "mieux est de contacter le cabinet directement.",
        "I'm only a virtual secretary and cannot resolve technical issues. It's best to contact the "
        "clinic directly.",
    ),
    "invented_explanation": (
        "Je ne peux pas expliquer les choix du cabinet. Comment puis-je vous aider pour vos rendez-vous ?",
        "I cannot explain the clinic's choices. How can I help you with your appointments?",
    ),
}

UNAVAILABLE_INFO_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("parking", ("parking", "parquer", "stationner", "garer", "car park", "where can i park")),
    ("floor", ("étage", "rez-de-chaussée", "niveau", "quel étage", "floor", "which level")),
    ("decoration", ("couleur", "rose", "vert", "bleu", "pourquoi", "colour", "color")),
    ("technical", ("anamnèse", "formulaire", "bloque", "bug", "ne fonctionne pas", "not working")),
    ("facilities", ("salle d'attente", "ascenseur", "accès", "waiting room", "elevator", "wheelchair")),
)


@dataclass(frozen=True)
class ResponseValidation:
    valid: bool
    reason: str | None = None
    suggested_response: str | None = None


def _clinic_phone(context: dict[str, Any]) -> str | None:
    for holder in (context, context.get("structured_context") or {}):
        details = holder.get("clinic_details") or {}
        if details.get("phone"):
            return details["phone"]
    return None


class ResponseValidator:
    """Reject generated replies that state clinic facts nobody gave the model."""

    def validate(self, response: str, context: dict[str, Any], user_message: str = "") -> ResponseValidation:
        if not response or not response.strip():
            return ResponseValidation(valid=False, reason="Empty response")

        for pattern, topic in FORBIDDEN_TERMS:
            if pattern.search(response):
                logger.warning(
                    "Forbidden term in generated reply (topic=%s, pattern=%s): %r",
                    topic, pattern.pattern, response,
                )
                return ResponseValidation(
                    valid=False,
                    reason=f"Hallucination detected: {topic}",
                    suggested_response=self.safe_response(context, topic),
                )

        lowered = response.lower()
        for term, pattern in REQUIRES_SOURCE:
            if pattern.search(lowered) and not self._in_context(term, context):
                logger.warning("Unsourced term in generated reply: %s (%r)", term, response)
                return ResponseValidation(
                    valid=False,
                    reason=f"Unsourced information: {term}",
                    suggested_response=self.safe_response(context, "missing_info"),
                )

        logger.debug("Generated reply passed validation (%d chars)", len(response))
        return ResponseValidation(valid=True)

    @staticmethod
    def _in_context(term: str, context: dict[str, Any]) -> bool:
        if not context:
            return False
        serialized = json.dumps(context, ensure_ascii=False, default=str).lower()
        return term.lower() in serialized

    @staticmethod
    def safe_response(context: dict[str, Any], topic: str) -> str:
        """Replacement reply for *topic*; unknown topics use ``missing_info``."""
        english = (context or {}).get("language") == "en"
        phone = _clinic_phone(context or {})
        templates = _SAFE_RESPONSES.get(topic, _SAFE_RESPONSES["missing_info"])
        if len(templates) == 2:
            return templates[1] if english else templates[0]
        fr_phone, fr_plain, en_phone, en_plain = templates
        if english:
            return en_phone.format(phone=phone) if phone else en_plain
        return fr_phone.format(phone=phone) if phone else fr_plain

    @staticmethod
    def detect_unavailable_info_request(message: str) -> tuple[bool, str | None]:
        """Does the patient ask about something the clinic record never covers?"""
        lowered = message.lower()
        for topic, keywords in UNAVAILABLE_INFO_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return True, topic
        return False, None
