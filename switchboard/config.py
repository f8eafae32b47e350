"""Configuration loading for switchboard.

Loads settings from layered .env files into ``os.environ`` and resolves the
Telegram bridge configuration.

Precedence for environment settings (highest wins):
    1. Already-set environment variables
    2. Local ``.env`` file (cwd)
    3. ``~/.config/switchboard/config.env`` (XDG_CONFIG_HOME respected)
    4. Built-in defaults

The Telegram credential and allow-list come from ``TELEGRAM_BOT_TOKEN`` and
``TELEGRAM_ALLOWED_CHAT_IDS`` when both are set, otherwise from
``<data_dir>/telegram-config.json``.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import structlog
from pydantic import ValidationError

from switchboard.models import TelegramConfig
from switchboard.settings import settings

logger = structlog.get_logger(__name__)

TELEGRAM_CONFIG_FILE = "telegram-config.json"


def config_dir() -> Path:
    """Return the switchboard config directory (XDG_CONFIG_HOME/switchboard)."""
    base = os.environ.get("XDG_CONFIG_HOME", "").strip()
    if not base:
        base = os.path.join(Path.home(), ".config")
    return Path(base) / "switchboard"


def data_dir_default() -> Path:
    """Return the default data directory for installed packages.

    Uses XDG_DATA_HOME/switchboard (defaults to ~/.local/share/switchboard).
    """
    base = os.environ.get("XDG_DATA_HOME", "").strip()
    if not base:
        base = os.path.join(Path.home(), ".local", "share")
    return Path(base) / "switchboard"


def parse_env_file(path: str | Path) -> dict[str, str]:
    """Parse a .env file and return a dict of key-value pairs.

    Supports:
        - KEY=value
        - KEY="value" and KEY='value' (quotes stripped)
        - export KEY=value
        - # comments and blank lines
        - Inline comments after unquoted values
    """
    result: dict[str, str] = {}
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return result

    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        if line.startswith("export "):
            line = line[7:].strip()

        eq = line.find("=")
        if eq < 1:
            continue

        key = line[:eq].strip()
        value = line[eq + 1 :].strip()

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]
        else:
            for i, ch in enumerate(value):
                if ch == "#" and (i == 0 or value[i - 1] == " "):
                    value = value[:i].rstrip()
                    break

        result[key] = value

    return result


def load_config() -> None:
    """Load configuration from .env files into ``os.environ``.

    Already-set environment variables are never overwritten.
    """
    merged: dict[str, str] = {}
    merged.update(parse_env_file(config_dir() / "config.env"))
    merged.update(parse_env_file(Path.cwd() / ".env"))

    for key, value in merged.items():
        if key not in os.environ:
            os.environ[key] = value


def telegram_config_path(data_dir: str | None = None) -> Path:
    """Location of the file-backed Telegram configuration."""
    return Path(data_dir or settings.data_dir()) / TELEGRAM_CONFIG_FILE


def is_env_configured() -> bool:
    """True when both Telegram credentials come from the environment."""
    return bool(
        settings.telegram_bot_token()
        and os.environ.get("TELEGRAM_ALLOWED_CHAT_IDS", "").strip()
    )


def load_file_config(data_dir: str | None = None) -> TelegramConfig | None:
    """Read the Telegram config file, or None when absent or invalid."""
    path = telegram_config_path(data_dir)
    if not path.exists():
        return None
    try:
        with path.open(encoding="utf-8") as f:
            config = TelegramConfig.model_validate(json.load(f))
    except (OSError, ValueError, ValidationError):
        logger.warning("Ignoring unreadable Telegram config", path=str(path))
        return None
    if not config.bot_token:
        return None
    return config


def load_telegram_config(data_dir: str | None = None) -> TelegramConfig:
    """Resolve the Telegram bridge configuration.

    Environment variables win over the config file. The returned config is
    disabled (and has no credential) when neither source is usable.
    """
    if is_env_configured():
        ids = settings.telegram_allowed_chat_ids()
        return TelegramConfig(
            bot_token=settings.telegram_bot_token(),
            allowed_chat_ids=ids,
            enabled=bool(ids),
        )
    return load_file_config(data_dir) or TelegramConfig()


def save_telegram_config(config: TelegramConfig, data_dir: str | None = None) -> None:
    """Write the Telegram config file."""
    path = telegram_config_path(data_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(config.model_dump(), f, indent=2)
    logger.info(
        "Saved Telegram config",
        path=str(path),
        allowed_chat_count=len(config.allowed_chat_ids),
        enabled=config.enabled,
    )
