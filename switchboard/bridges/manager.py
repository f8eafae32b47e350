"""Owns the Telegram bridge instance for the control API and the entrypoint."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import structlog

from switchboard.bridges.telegram.bot import TelegramBridge
from switchboard.bridges.telegram.state import MAPPINGS_FILE, MappingStore
from switchboard.config import is_env_configured, load_file_config, load_telegram_config
from switchboard.errors import BridgeConfigError
from switchboard.models import TelegramConfig
from switchboard.profiles import ProfileStore
from switchboard.runtime.base import AgentRuntime
from switchboard.store import SessionStore

logger = structlog.get_logger(__name__)


class BridgeManager:
    """Builds, starts and stops the bridge from the resolved configuration.

    Args:
        runtime: Agent runtime shared by every bridge instance.
        profiles: Project catalog.
        sessions: Session metadata store.
        data_dir: Directory holding the config and mapping files.
        bridge_factory: Callable building a bridge; tests substitute a fake.
    """

    def __init__(
        self,
        *,
        runtime: AgentRuntime,
        profiles: ProfileStore,
        sessions: SessionStore,
        data_dir: str | Path,
        bridge_factory: Callable[..., TelegramBridge] = TelegramBridge,
    ) -> None:
        self._runtime = runtime
        self._profiles = profiles
        self._sessions = sessions
        self._data_dir = Path(data_dir)
        self._bridge_factory = bridge_factory
        self._bridge: TelegramBridge | None = None

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def bridge(self) -> TelegramBridge | None:
        return self._bridge

    @property
    def running(self) -> bool:
        return self._bridge is not None and self._bridge.running

    def config(self) -> TelegramConfig:
        return load_telegram_config(str(self._data_dir))

    async def start(self, config: TelegramConfig | None = None) -> None:
        """Start the bridge. No-op when it is already running.

        Raises:
            BridgeConfigError: No bot token or no allow-list is configured.
        """
        if self.running:
            return
        config = config or self.config()
        if not config.bot_token:
            raise BridgeConfigError("Telegram bot token is not configured")
        if not config.allowed_chat_ids:
            raise BridgeConfigError("Telegram allow-list is empty")

        bridge = self._bridge_factory(
            config,
            runtime=self._runtime,
            profiles=self._profiles,
            sessions=self._sessions,
            mappings=MappingStore(self._data_dir / MAPPINGS_FILE),
        )
        try:
            await bridge.start()
        except Exception:
            await bridge.stop()
            raise
        self._bridge = bridge

    async def stop(self) -> None:
        if self._bridge is None:
            return
        bridge, self._bridge = self._bridge, None
        await bridge.stop()

    def status(self) -> dict:
        """Snapshot for the control API."""
        config = self.config()
        return {
            "enabled": config.enabled,
            "running": self.running,
            "active_chats": self._bridge.active_chat_count() if self._bridge else 0,
            "env_configured": is_env_configured(),
            "has_config": load_file_config(str(self._data_dir)) is not None,
            "token_set": bool(config.bot_token),
            "allowed_chat_ids": config.allowed_chat_ids,
        }
