"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from sophie.config import DEMO_CLINIC_ID
from sophie.dialogue.types import MediaKind


class MessageRequest(BaseModel):
    """One inbound patient message, as a channel adapter forwards it."""

    clinic_id: str = Field(DEMO_CLINIC_ID, min_length=1, max_length=100)
    channel_id: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Channel-specific patient identifier, e.g. the WhatsApp phone number",
    )
    message: str = Field("", max_length=4000, description="The patient's message")
    clinic_name: str | None = Field(None, max_length=200)
    display_phone: str | None = Field(None, max_length=50)
    media_kind: MediaKind | None = None
    media_path: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def _message_or_media(self) -> MessageRequest:
        if not self.message.strip() and not self.media_path:
            raise ValueError("Either a message or a media attachment is required")
        if self.media_path and self.media_kind is None:
            raise ValueError("media_kind is required with media_path")
        return self


class MessageResponse(BaseModel):
    """Sophie's reply."""

    reply: str = Field(..., description="The reply to send back to the patient")
    conversation_id: str = Field(..., description="The conversation this turn belongs to")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "sophie-dialogue-engine"
