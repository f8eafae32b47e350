"""API package for health and bridge control endpoints."""

from __future__ import annotations

from switchboard.api.deps import require_token
from switchboard.api.router import api_router

__all__ = ["api_router", "require_token"]
