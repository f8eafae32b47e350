"""State management for Telegram chat-to-session mappings."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

import structlog
from pydantic import ValidationError

from switchboard.models import ChatSessionMapping

logger = structlog.get_logger(__name__)

MAPPINGS_FILE = "telegram-sessions.json"


class MappingStore:
    """Persists the mapping table as a JSON array.

    The whole table is rewritten on every save so the file always reflects
    the bridge's in-memory state.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self, is_alive: Callable[[str], bool] | None = None) -> list[ChatSessionMapping]:
        """Load mappings from disk.

        Args:
            is_alive: Optional predicate on session ids; mappings whose
                session fails it are dropped.
        """
        if not self._path.exists():
            logger.info("No Telegram mappings file found, starting fresh", path=str(self._path))
            return []

        try:
            with self._path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.exception("Failed to load Telegram mappings", path=str(self._path))
            return []

        mappings: list[ChatSessionMapping] = []
        dropped = 0
        for entry in data if isinstance(data, list) else []:
            try:
                mapping = ChatSessionMapping.model_validate(entry)
            except ValidationError:
                logger.warning("Skipping invalid Telegram mapping", entry=entry)
                continue
            if is_alive is not None and not is_alive(mapping.session_id):
                dropped += 1
                continue
            mappings.append(mapping)

        logger.info("Loaded Telegram mappings", mapping_count=len(mappings), dropped=dropped)
        return mappings

    def save(self, mappings: list[ChatSessionMapping]) -> None:
        """Save mappings to disk. Failures are logged, not raised."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("w", encoding="utf-8") as f:
                json.dump([m.model_dump() for m in mappings], f, indent=2)
        except OSError:
            logger.exception("Failed to save Telegram mappings", path=str(self._path))
