"""Telegram bridge: long-poll client, command handlers and session relay."""

from switchboard.bridges.telegram.api import TelegramAPIError, TelegramClient
from switchboard.bridges.telegram.bot import CreateResult, TelegramBridge
from switchboard.bridges.telegram.state import MappingStore

__all__ = [
    "CreateResult",
    "MappingStore",
    "TelegramAPIError",
    "TelegramBridge",
    "TelegramClient",
]
