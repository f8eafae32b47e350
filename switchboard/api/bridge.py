"""Telegram bridge status, configuration and lifecycle endpoints."""

from __future__ import annotations

import httpx
import structlog
from fastapi import APIRouter, Depends

from switchboard.api.deps import get_bridge_manager, require_token
from switchboard.api.errors import raise_http_error
from switchboard.api.schemas import (
    BridgeConfigResponse,
    BridgeConfigUpdate,
    BridgeStatusResponse,
)
from switchboard.bridges.manager import BridgeManager
from switchboard.bridges.telegram.api import TelegramAPIError
from switchboard.config import is_env_configured, save_telegram_config
from switchboard.errors import BridgeConfigError

router = APIRouter(prefix="/telegram-bridge", tags=["telegram-bridge"])
logger = structlog.get_logger(__name__)


@router.get("/status", response_model=BridgeStatusResponse)
async def bridge_status(
    _: None = Depends(require_token),
    manager: BridgeManager = Depends(get_bridge_manager),
) -> BridgeStatusResponse:
    """Report whether the bridge is configured and running."""
    return BridgeStatusResponse(**manager.status())


@router.get("/config", response_model=BridgeConfigResponse)
async def get_bridge_config(
    _: None = Depends(require_token),
    manager: BridgeManager = Depends(get_bridge_manager),
) -> BridgeConfigResponse:
    return BridgeConfigResponse.from_config(manager.config(), env_configured=is_env_configured())


@router.put("/config", response_model=BridgeConfigResponse)
async def update_bridge_config(
    payload: BridgeConfigUpdate,
    _: None = Depends(require_token),
    manager: BridgeManager = Depends(get_bridge_manager),
) -> BridgeConfigResponse:
    """Update the file-backed config. Takes effect on the next start."""
    if is_env_configured():
        raise_http_error(
            "ENV_CONFIGURED",
            "Telegram is configured through environment variables",
            409,
        )
    config = manager.config()
    updates = payload.model_dump(exclude_none=True)
    config = config.model_copy(update=updates)
    save_telegram_config(config, str(manager.data_dir))
    logger.info("Updated Telegram config", fields=sorted(updates))
    return BridgeConfigResponse.from_config(config, env_configured=False)


@router.post("/start", response_model=BridgeStatusResponse)
async def start_bridge(
    _: None = Depends(require_token),
    manager: BridgeManager = Depends(get_bridge_manager),
) -> BridgeStatusResponse:
    try:
        await manager.start()
    except BridgeConfigError as e:
        raise_http_error("NOT_CONFIGURED", str(e), 400)
    except (TelegramAPIError, httpx.HTTPError) as e:
        logger.exception("Failed to start Telegram bridge")
        raise_http_error("BRIDGE_START_FAILED", str(e), 502)
    return BridgeStatusResponse(**manager.status())


@router.post("/stop", response_model=BridgeStatusResponse)
async def stop_bridge(
    _: None = Depends(require_token),
    manager: BridgeManager = Depends(get_bridge_manager),
) -> BridgeStatusResponse:
    await manager.stop()
    return BridgeStatusResponse(**manager.status())
