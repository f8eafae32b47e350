"""FastAPI application entrypoint: control API plus the Telegram bridge."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

import httpx
import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException

# Apply local `.env` and `~/.config/switchboard/config.env` before settings are
# read. Never overwrites already-set env vars.
from switchboard.config import load_config

load_config()

from switchboard.api import api_router
from switchboard.bridges.manager import BridgeManager
from switchboard.bridges.telegram.api import TelegramAPIError
from switchboard.errors import BridgeConfigError
from switchboard.logging import configure_logging
from switchboard.middleware import (
    http_exception_handler,
    request_logging_middleware,
    validation_exception_handler,
)
from switchboard.profiles import ProfileStore
from switchboard.runtime.claude import ClaudeAgentRuntime
from switchboard.settings import settings
from switchboard.store import SessionStore

configure_logging()
logger = structlog.get_logger(__name__)

PROFILES_FILE = "profiles.json"
SESSIONS_DIR = "sessions"


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.agent_token = settings.token()
    data_dir = Path(settings.data_dir())
    profiles = ProfileStore(data_dir / PROFILES_FILE)
    profiles.load()
    runtime = ClaudeAgentRuntime()
    manager = BridgeManager(
        runtime=runtime,
        profiles=profiles,
        sessions=SessionStore(data_dir / SESSIONS_DIR),
        data_dir=data_dir,
    )
    app.state.bridge_manager = manager
    logger.info("Switchboard starting", data_dir=str(data_dir), port=settings.port())

    if settings.autostart():
        await _autostart(manager)
    try:
        yield
    finally:
        await manager.stop()
        await runtime.shutdown()
        logger.info("Switchboard stopped")


async def _autostart(manager: BridgeManager) -> None:
    """Start the bridge when it is configured; failures keep the server up."""
    config = manager.config()
    if not config.enabled or not config.bot_token:
        logger.info("Telegram bridge not configured, skipping autostart")
        return
    try:
        await manager.start(config)
    except (BridgeConfigError, TelegramAPIError, httpx.HTTPError):
        logger.exception("Failed to start Telegram bridge")


app = FastAPI(lifespan=lifespan)

app.middleware("http")(request_logging_middleware)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.include_router(api_router)


def run() -> None:
    """Entry point for the ``switchboard`` console script."""
    uvicorn.run(
        "switchboard.main:app",
        host=settings.host(),
        port=settings.port(),
        reload=False,
        log_config=None,
    )


if __name__ == "__main__":
    run()
