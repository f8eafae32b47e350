"""Read-only catalog of known projects."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import ValidationError

from switchboard.models import ProjectProfile

logger = structlog.get_logger(__name__)


class ProfileStore:
    """Loads project profiles from a JSON array file.

    Example ``profiles.json``::

        [{"slug": "api", "name": "API server", "dir": "/srv/api",
          "default_model": "opus", "permission_mode": "acceptEdits"}]
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._profiles: dict[str, ProjectProfile] = {}

    def load(self) -> None:
        """(Re)load profiles from disk. A missing file means an empty catalog."""
        self._profiles = {}
        if not self._path.exists():
            logger.info("No profiles file found", path=str(self._path))
            return

        try:
            with self._path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.exception("Failed to read profiles", path=str(self._path))
            return

        for entry in data if isinstance(data, list) else []:
            try:
                profile = ProjectProfile.model_validate(entry)
            except ValidationError:
                logger.warning("Skipping invalid profile entry", entry=entry)
                continue
            self._profiles[profile.slug] = profile

        logger.info("Loaded project profiles", count=len(self._profiles))

    def get(self, slug: str) -> ProjectProfile | None:
        return self._profiles.get(slug)

    def all(self) -> list[ProjectProfile]:
        return list(self._profiles.values())

    def add(self, profile: ProjectProfile) -> None:
        """Register a profile in memory (not persisted)."""
        self._profiles[profile.slug] = profile
