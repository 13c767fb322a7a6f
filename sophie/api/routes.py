"""FastAPI route definitions for the Sophie dialogue API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request

from sophie.api.schemas import HealthResponse, MessageRequest, MessageResponse
from sophie.dialogue.engine import ConversationManager

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_engine(request: Request) -> ConversationManager:
    """Retrieve the dialogue engine built during the FastAPI lifespan."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=503,
            detail="Sophie is still starting up. Please try again in a moment.",
        )
    return engine


def _handle(engine: ConversationManager, request: MessageRequest) -> MessageResponse:
    conversation = engine.get_or_create_conversation(
        request.clinic_id, request.channel_id, request.display_phone,
    )
    reply = engine.process_message(
        conversation.id,
        request.message,
        request.clinic_name or "",
        media_kind=request.media_kind,
        media_path=request.media_path,
    )
    return MessageResponse(reply=reply, conversation_id=conversation.id)


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/messages", response_model=MessageResponse)
async def post_message(request: MessageRequest, http_request: Request):
    """Run one dialogue turn for a patient and return Sophie's reply.

    The engine is synchronous (model and calendar calls block), so the turn
    runs in the default thread pool. Turns of one conversation are still
    serialised by the engine itself.
    """
    engine = _get_engine(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        return await asyncio.to_thread(_handle, engine, request)
    except Exception as e:
        logger.exception("[%s] Error processing message", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e
