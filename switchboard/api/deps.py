"""Dependency helpers for API endpoints."""

from __future__ import annotations

from fastapi import Request

from switchboard.api.errors import raise_http_error
from switchboard.bridges.manager import BridgeManager


async def require_token(request: Request) -> None:
    """Enforce bearer token auth when configured.

    Args:
        request: Incoming request to validate.
    """
    token = getattr(request.app.state, "agent_token", "")
    if not token:
        return
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer ") or auth.split(" ", 1)[1] != token:
        # Drain request body to avoid hanging ASGI clients on early auth failure.
        await request.body()
        raise_http_error("UNAUTHORIZED", "Missing or invalid bearer token", 401)


def get_bridge_manager(request: Request) -> BridgeManager:
    manager = getattr(request.app.state, "bridge_manager", None)
    if manager is None:
        raise_http_error("UNAVAILABLE", "Bridge manager is not initialized", 503)
    return manager
