"""Pydantic models for persisted state, configuration and API payloads."""

from __future__ import annotations

import time

from pydantic import BaseModel, Field


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class ProjectProfile(BaseModel):
    """A known project the bot can start sessions against."""
    slug: str
    name: str
    dir: str
    default_model: str | None = None
    permission_mode: str | None = None


class SessionRecord(BaseModel):
    """Metadata written to the session store when a session is created."""
    session_id: str
    project_slug: str
    cwd: str
    model: str
    permission_mode: str
    source: str = "telegram"
    created_at: int = Field(default_factory=now_ms)


class ChatSessionMapping(BaseModel):
    """Binding between a (chat, topic) slot and one agent session."""
    chat_id: int
    topic_id: int = 0
    session_id: str
    project_slug: str
    model: str
    created_at: int = Field(default_factory=now_ms)
    last_activity_at: int = Field(default_factory=now_ms)
    pinned_message_id: int | None = None
    idle_timeout_enabled: bool = True
    # None means the bridge-wide default applies.
    idle_timeout_seconds: float | None = None

    @property
    def slot(self) -> str:
        return f"{self.chat_id}:{self.topic_id}"


class TelegramConfig(BaseModel):
    """Bot credential and chat allow-list."""
    bot_token: str = ""
    allowed_chat_ids: list[int] = []
    enabled: bool = False


class ErrorDetail(BaseModel):
    """Structured error payload for API responses."""
    code: str
    message: str
    details: dict | list | None = None


class ErrorResponse(BaseModel):
    """Envelope for structured API errors."""
    error: ErrorDetail
