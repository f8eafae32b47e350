"""Durable session metadata, one JSON file per session."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import ValidationError

from switchboard.models import SessionRecord

logger = structlog.get_logger(__name__)


class SessionStore:
    """Persists SessionRecord metadata under ``<data_dir>/sessions``.

    The bridge writes a record before launching a runtime and removes it again
    if the launch fails.
    """

    def __init__(self, directory: str | Path):
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, session_id: str) -> Path:
        return self._dir / f"{session_id}.json"

    def save(self, record: SessionRecord) -> None:
        """Write a session record to disk."""
        self._dir.mkdir(parents=True, exist_ok=True)
        with self._path(record.session_id).open("w", encoding="utf-8") as f:
            json.dump(record.model_dump(), f, indent=2)

    def load(self, session_id: str) -> SessionRecord | None:
        """Read one session record, or None when missing or corrupt."""
        path = self._path(session_id)
        if not path.exists():
            return None
        try:
            with path.open(encoding="utf-8") as f:
                return SessionRecord.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError):
            logger.warning("Skipping unreadable session record", path=str(path))
            return None

    def load_all(self) -> list[SessionRecord]:
        """Read every readable session record."""
        if not self._dir.is_dir():
            return []
        records = []
        for path in sorted(self._dir.glob("*.json")):
            record = self.load(path.stem)
            if record is not None:
                records.append(record)
        return records

    def exists(self, session_id: str) -> bool:
        return self._path(session_id).exists()

    def remove(self, session_id: str) -> None:
        """Delete a session record. Missing files are ignored."""
        self._path(session_id).unlink(missing_ok=True)
