"""Centralized environment configuration for switchboard.

All environment variables are read through this module using the SWITCHBOARD_
prefix for consistency. External service credentials (the Telegram bot token
and chat allow-list) keep their unprefixed names.

Usage:
    from switchboard.settings import settings

    port = settings.port()
    idle = settings.idle_timeout_minutes()
"""

from __future__ import annotations

import os


def _get(name: str, default: str = "") -> str:
    """Get an environment variable value."""
    return os.environ.get(name, "").strip() or default


def _get_bool(name: str, default: bool = False) -> bool:
    """Get a boolean environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    return value.lower() in ("1", "true", "yes")


def _get_int(name: str, default: int = 0) -> int:
    """Get an integer environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(name: str, default: float = 0.0) -> float:
    """Get a float environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def parse_chat_ids(raw: str) -> list[int]:
    """Parse a comma-separated list of chat IDs, skipping invalid entries."""
    out: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            out.append(int(part))
        except ValueError:
            continue
    return out


class Settings:
    """Centralized settings for switchboard.

    Environment variables use the SWITCHBOARD_ prefix.
    """

    # -------------------------------------------------------------------------
    # Server Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def token() -> str:
        """Bearer token for the control API. Empty disables auth.

        Env: SWITCHBOARD_TOKEN
        """
        return _get("SWITCHBOARD_TOKEN")

    @staticmethod
    def host() -> str:
        """Host to bind the control API to.

        Env: SWITCHBOARD_HOST (default: 127.0.0.1)
        """
        return _get("SWITCHBOARD_HOST", default="127.0.0.1")

    @staticmethod
    def port() -> int:
        """Port to bind the control API to.

        Env: SWITCHBOARD_PORT (default: 8790)
        """
        return _get_int("SWITCHBOARD_PORT", default=8790)

    @staticmethod
    def data_dir() -> str:
        """Directory for persistent data (mappings, sessions, profiles, config).

        Env: SWITCHBOARD_DATA_DIR

        Default depends on context:
            - Source checkout (pyproject.toml exists): ``./data/``
            - Installed package: ``~/.local/share/switchboard/`` (XDG_DATA_HOME)
        """
        value = _get("SWITCHBOARD_DATA_DIR")
        if value:
            return os.path.abspath(value)

        # Detect source checkout: pyproject.toml lives one level above the package
        package_parent = os.path.join(os.path.dirname(__file__), "..")
        if os.path.isfile(os.path.join(package_parent, "pyproject.toml")):
            return os.path.abspath(os.path.join(package_parent, "data"))

        from switchboard.config import data_dir_default

        return str(data_dir_default())

    @staticmethod
    def autostart() -> bool:
        """Start the Telegram bridge with the server when it is configured.

        Env: SWITCHBOARD_AUTOSTART (default: 1)
        """
        return _get_bool("SWITCHBOARD_AUTOSTART", default=True)

    # -------------------------------------------------------------------------
    # Logging Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def log_level() -> str:
        """Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).

        Env: SWITCHBOARD_LOG_LEVEL (default: INFO)
        """
        return _get("SWITCHBOARD_LOG_LEVEL", default="INFO").upper()

    @staticmethod
    def log_format() -> str:
        """Log format: "console" for dev-friendly, "json" for structured.

        Env: SWITCHBOARD_LOG_FORMAT (default: console)
        """
        return _get("SWITCHBOARD_LOG_FORMAT", default="console").lower()

    # -------------------------------------------------------------------------
    # Bridge Timing
    # -------------------------------------------------------------------------

    @staticmethod
    def poll_timeout() -> int:
        """Server-side long-poll wait in seconds.

        Env: SWITCHBOARD_POLL_TIMEOUT (default: 30)
        """
        return _get_int("SWITCHBOARD_POLL_TIMEOUT", default=30)

    @staticmethod
    def poll_backoff() -> float:
        """Seconds to wait after a failed poll before retrying.

        Env: SWITCHBOARD_POLL_BACKOFF (default: 5)
        """
        return _get_float("SWITCHBOARD_POLL_BACKOFF", default=5.0)

    @staticmethod
    def typing_interval() -> float:
        """Seconds between typing pings. Telegram expires the indicator after ~5s.

        Env: SWITCHBOARD_TYPING_INTERVAL (default: 4)
        """
        return _get_float("SWITCHBOARD_TYPING_INTERVAL", default=4.0)

    @staticmethod
    def idle_timeout_minutes() -> int:
        """Minutes without user messages before a session is stopped.

        Env: SWITCHBOARD_IDLE_TIMEOUT_MINUTES (default: 60)
        """
        return _get_int("SWITCHBOARD_IDLE_TIMEOUT_MINUTES", default=60)

    @staticmethod
    def idle_warning_minutes() -> int:
        """Minutes before the idle timeout at which a warning is sent. 0 disables.

        Env: SWITCHBOARD_IDLE_WARNING_MINUTES (default: 5)
        """
        return _get_int("SWITCHBOARD_IDLE_WARNING_MINUTES", default=5)

    # -------------------------------------------------------------------------
    # Telegram Credentials
    # -------------------------------------------------------------------------

    @staticmethod
    def telegram_bot_token() -> str:
        """Telegram bot token.

        Env: TELEGRAM_BOT_TOKEN (no prefix - external service credential)
        """
        return os.environ.get("TELEGRAM_BOT_TOKEN", "").strip()

    @staticmethod
    def telegram_allowed_chat_ids() -> list[int]:
        """Chat IDs allowed to talk to the bot.

        Env: TELEGRAM_ALLOWED_CHAT_IDS (e.g. "123,-100456")
        """
        return parse_chat_ids(os.environ.get("TELEGRAM_ALLOWED_CHAT_IDS", ""))


# Singleton instance for convenient imports
settings = Settings()
