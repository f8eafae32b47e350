"""Pydantic request/response models for API endpoints."""

from __future__ import annotations

from pydantic import BaseModel

from switchboard.models import TelegramConfig


class HealthResponse(BaseModel):
    """Health check response."""

    ok: bool
    version: str


class BridgeStatusResponse(BaseModel):
    """Current state of the Telegram bridge."""

    enabled: bool
    running: bool
    active_chats: int
    env_configured: bool
    has_config: bool
    token_set: bool
    allowed_chat_ids: list[int]


class BridgeConfigResponse(BaseModel):
    """Telegram bridge configuration with the bot token masked."""

    bot_token: str
    allowed_chat_ids: list[int]
    enabled: bool
    env_configured: bool

    @classmethod
    def from_config(cls, config: TelegramConfig, *, env_configured: bool) -> "BridgeConfigResponse":
        return cls(
            bot_token=mask_token(config.bot_token),
            allowed_chat_ids=config.allowed_chat_ids,
            enabled=config.enabled,
            env_configured=env_configured,
        )


class BridgeConfigUpdate(BaseModel):
    """Partial update of the file-backed Telegram configuration."""

    bot_token: str | None = None
    allowed_chat_ids: list[int] | None = None
    enabled: bool | None = None


def mask_token(token: str) -> str:
    """Show only the ends of a bot token."""
    if not token:
        return ""
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}...{token[-4:]}"
