"""Centralized configuration for the Sophie dialogue engine.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/sophie/<VARIABLE_NAME>``.

Tunables that shape a conversation (timeouts, inactivity window, slot sizes)
are also bundled into :class:`DialogueSettings`, which is what the engine
receives. Tests build their own instance instead of patching module globals.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 cannot reach
    AWS. Errors are logged but never raised so that local-dev fallback
    still works.
    """
    try:
        import boto3  # noqa: PLC0415 (lazy import, only needed on AWS)

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/sophie/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /sophie/{name} (AWS)."
    )


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
EXTRACTION_MODEL_NAME: str = os.getenv("EXTRACTION_MODEL_NAME", "claude-haiku-4-5")
RESPONSE_MODEL_NAME: str = os.getenv("RESPONSE_MODEL_NAME", "claude-haiku-4-5")

EXTRACTION_TIMEOUT_SECONDS: float = float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "90"))
RESPONSE_TIMEOUT_SECONDS: float = float(os.getenv("RESPONSE_TIMEOUT_SECONDS", "30"))
LLM_MAX_RETRIES: int = int(os.getenv("LLM_MAX_RETRIES", "3"))
LLM_INITIAL_BACKOFF_SECONDS: float = float(os.getenv("LLM_INITIAL_BACKOFF_SECONDS", "1.0"))

# ── Calendar ────────────────────────────────────────────────────────
# "memory" (dev / CLI) or "google"
CALENDAR_BACKEND: str = os.getenv("CALENDAR_BACKEND", "memory")
GOOGLE_CALENDAR_BASE_URL: str = "https://www.googleapis.com/calendar/v3"
CALENDAR_TIMEOUT_SECONDS: float = float(os.getenv("CALENDAR_TIMEOUT_SECONDS", "15"))

# ── Dialogue ────────────────────────────────────────────────────────
DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "Europe/Paris")
DEFAULT_LANGUAGE: str = os.getenv("DEFAULT_LANGUAGE", "fr")
CONTEXT_TTL_MINUTES: int = int(os.getenv("CONTEXT_TTL_MINUTES", "15"))
SLOT_MINUTES: int = 30
SLOT_SEARCH_DAYS: int = 21
MAX_SLOT_SUGGESTIONS: int = 6
SLOTS_PER_DAY: int = 2
FIRST_VISIT_DELAY_DAYS: int = 2
MAX_GENERATION_ATTEMPTS: int = 3
HISTORY_MESSAGES: int = 10

# ── Demo clinic (CLI / in-memory server) ────────────────────────────
DEMO_CLINIC_ID: str = os.getenv("DEMO_CLINIC_ID", "clinic-demo")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")


@dataclass(frozen=True)
class DialogueSettings:
    """Conversation tunables injected into the engine."""

    default_timezone: str = DEFAULT_TIMEZONE
    default_language: str = DEFAULT_LANGUAGE
    context_ttl_minutes: int = CONTEXT_TTL_MINUTES
    slot_minutes: int = SLOT_MINUTES
    slot_search_days: int = SLOT_SEARCH_DAYS
    max_slot_suggestions: int = MAX_SLOT_SUGGESTIONS
    slots_per_day: int = SLOTS_PER_DAY
    first_visit_delay_days: int = FIRST_VISIT_DELAY_DAYS
    max_generation_attempts: int = MAX_GENERATION_ATTEMPTS
    history_messages: int = HISTORY_MESSAGES
