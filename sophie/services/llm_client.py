"""Anthropic-backed entity extraction and reply generation.

The engine only sees the :class:`EntityExtractionClient` protocol. Both
operations return ``None`` on any failure so a model outage never turns
into an exception inside a conversation turn: the engine falls back to its
deterministic replies instead.

Transport errors (timeouts, dropped connections, 5xx) are retried with the
same exponential backoff as the calendar client. The SDK's own retries are
disabled so the backoff policy lives in one place.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from collections.abc import Sequence
from typing import Any, Protocol

import anthropic
from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import ValidationError

from sophie.config import (
    ANTHROPIC_API_KEY,
    EXTRACTION_MODEL_NAME,
    EXTRACTION_TIMEOUT_SECONDS,
    LLM_INITIAL_BACKOFF_SECONDS,
    LLM_MAX_RETRIES,
    RESPONSE_MODEL_NAME,
    RESPONSE_TIMEOUT_SECONDS,
)
from sophie.dialogue.types import ExtractionResult, Intent
from sophie.prompts import get_extraction_input, get_extraction_prompt
from sophie.services.metrics import metrics

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\n?")


class LLMClientError(Exception):
    """Raised when a model call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class EntityExtractionClient(Protocol):
    def extract_entities(self, text: str, language: str, context: dict[str, Any]) -> ExtractionResult | None: ...

    def generate_reply(
        self,
        user_message: str,
        system_prompt: str,
        history: Sequence[dict[str, str]],
        language: str,
    ) -> str | None: ...


# ── Parsing helpers ──────────────────────────────────────────────────


def _content_text(message: BaseMessage) -> str:
    """Plain text of a chat response, whatever block shape it came back in."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def strip_json_fences(raw: str) -> str:
    return _FENCE.sub("", raw).strip()


def parse_extraction(raw: str, language: str) -> ExtractionResult:
    """Turn the model's JSON into an :class:`ExtractionResult`.

    Raises ``json.JSONDecodeError`` when the output is not JSON at all. When
    the JSON does not match the contract, the entities are dropped and the
    top-level fields that can be salvaged are kept.
    """
    parsed = json.loads(strip_json_fences(raw))
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("Expected a JSON object", raw, 0)

    if isinstance(parsed.get("entities"), dict):
        parsed["entities"] = {k: v for k, v in parsed["entities"].items() if v is not None}

    try:
        return ExtractionResult.model_validate(parsed)
    except ValidationError as exc:
        logger.warning("Extraction output failed validation, using partial result: %s", exc)

    intent = Intent.UNKNOWN
    try:
        intent = Intent(parsed.get("intent"))
    except ValueError:
        pass
    detected = parsed.get("detected_language")
    return ExtractionResult(
        detected_language=detected if detected in ("fr", "en") else language,
        intent=intent,
        confidence=0.0,
        needs_backend_action=bool(parsed.get("needs_backend_action")),
        response_message=parsed.get("response_message") or "",
    )


def _history_messages(history: Sequence[dict[str, str]]) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    for item in history:
        if item.get("role") == "assistant":
            messages.append(AIMessage(content=item.get("content", "")))
        else:
            messages.append(HumanMessage(content=item.get("content", "")))
    return messages


# ── Anthropic implementation ─────────────────────────────────────────


def _build_extraction_llm() -> ChatAnthropic:
    """Deterministic model for the JSON extraction contract."""
    return ChatAnthropic(
        model=EXTRACTION_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.0,
        max_tokens=1024,
        timeout=EXTRACTION_TIMEOUT_SECONDS,
        max_retries=0,
    )


def _build_response_llm() -> ChatAnthropic:
    """Slightly warmer model for patient-facing replies."""
    return ChatAnthropic(
        model=RESPONSE_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.1,
        max_tokens=512,
        timeout=RESPONSE_TIMEOUT_SECONDS,
        max_retries=0,
    )


class AnthropicExtractionClient:
    """:class:`EntityExtractionClient` on top of ``ChatAnthropic``."""

    def __init__(
        self,
        extraction_llm: Any | None = None,
        response_llm: Any | None = None,
    ):
        self._extraction_llm = extraction_llm or _build_extraction_llm()
        self._response_llm = response_llm or _build_response_llm()

    def _invoke(self, llm: Any, messages: list[BaseMessage], operation: str) -> str:
        """Call the model with exponential-backoff retries on transient errors."""
        last_error: Exception | None = None
        for attempt in range(1, LLM_MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = llm.invoke(messages)
                elapsed = (time.perf_counter() - t0) * 1000
                metrics.record_success("anthropic", operation, latency_ms=elapsed)
                logger.debug("%s answered in %.0fms", operation, elapsed)
                return _content_text(response)

            except anthropic.APIConnectionError as exc:
                # Includes APITimeoutError
                last_error = exc
                metrics.record_failure(
                    "anthropic", operation,
                    error_type=type(exc).__name__, latency_ms=(time.perf_counter() - t0) * 1000,
                )
                logger.warning(
                    "Anthropic %s attempt %d/%d failed (%s). Retrying in %.1fs…",
                    operation,
                    attempt,
                    LLM_MAX_RETRIES,
                    type(exc).__name__,
                    LLM_INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except anthropic.APIStatusError as exc:
                metrics.record_failure(
                    "anthropic", operation,
                    error_type=f"{exc.status_code // 100}xx",
                    latency_ms=(time.perf_counter() - t0) * 1000,
                )
                if exc.status_code < 500:
                    raise LLMClientError(f"Anthropic rejected {operation}: {exc}", exc.status_code) from exc
                last_error = exc
                logger.warning(
                    "Anthropic server error %d on %s attempt %d/%d. Retrying…",
                    exc.status_code,
                    operation,
                    attempt,
                    LLM_MAX_RETRIES,
                )

            if attempt < LLM_MAX_RETRIES:
                time.sleep(LLM_INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise LLMClientError(f"Anthropic {operation} failed after {LLM_MAX_RETRIES} attempts: {last_error}")

    def extract_entities(self, text: str, language: str, context: dict[str, Any]) -> ExtractionResult | None:
        messages = [
            SystemMessage(content=get_extraction_prompt(context)),
            HumanMessage(content=get_extraction_input(text, language, context)),
        ]
        try:
            raw = self._invoke(self._extraction_llm, messages, "extract_entities")
        except LLMClientError:
            logger.exception("Entity extraction failed")
            return None

        if not raw.strip():
            logger.warning("Entity extraction returned an empty answer")
            return None
        try:
            result = parse_extraction(raw, language)
        except json.JSONDecodeError:
            logger.warning("Entity extraction returned non-JSON output: %r", raw[:200])
            return None

        logger.info(
            "Extracted intent=%s confidence=%.2f entities=%s",
            result.intent.value,
            result.confidence,
            result.entities.model_dump(exclude_none=True),
        )
        return result

    def generate_reply(
        self,
        user_message: str,
        system_prompt: str,
        history: Sequence[dict[str, str]],
        language: str,
    ) -> str | None:
        messages = [SystemMessage(content=system_prompt), *_history_messages(history)]
        messages.append(HumanMessage(content=user_message))
        try:
            raw = self._invoke(self._response_llm, messages, "generate_reply")
        except LLMClientError:
            logger.exception("Reply generation failed")
            return None

        text = raw.strip()
        if text.startswith("{"):
            # Some models answer in the extraction format out of habit
            try:
                text = (json.loads(strip_json_fences(text)).get("response_message") or "").strip()
            except (json.JSONDecodeError, AttributeError):
                logger.debug("Generated reply looked like JSON but was not; keeping raw text")
        return text or None


# ── Module-level singleton ──────────────────────────────────────────

_client: AnthropicExtractionClient | None = None
_client_lock = threading.Lock()


def get_extraction_client() -> AnthropicExtractionClient:
    """Return a module-level AnthropicExtractionClient singleton.

    Uses double-checked locking so the lock is only taken while the client
    is first built.
    """
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = AnthropicExtractionClient()
    return _client
