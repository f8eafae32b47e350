"""Structlog configuration used by switchboard and Uvicorn."""

from __future__ import annotations

import logging
import logging.config
import re
import sys

import structlog

from switchboard.settings import settings


_BOT_TOKEN_RE = re.compile(r"/bot[^/\s]+")


def _redact_bot_token(
    logger: logging.Logger | None, name: str, event_dict: dict
) -> dict:
    """Mask the bot token embedded in Telegram API URLs logged by httpx.

    Args:
        logger: Logging.Logger instance (unused by this processor).
        name: Logger name passed by structlog.
        event_dict: Structlog event dict to sanitize.
    """
    event = event_dict.get("event")
    if isinstance(event, str) and "/bot" in event:
        event_dict["event"] = _BOT_TOKEN_RE.sub("/bot<redacted>", event)
    return event_dict


def configure_logging() -> None:
    """Configure structlog + stdlib logging using env-driven settings."""
    log_level_name = settings.log_level()
    log_level = getattr(logging, log_level_name, logging.INFO)
    log_format = settings.log_format()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors
        + [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors + [_redact_bot_token],
    )

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"()": lambda: formatter}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "stream": sys.stdout,
                }
            },
            "root": {"handlers": ["default"], "level": log_level},
            "loggers": {
                "uvicorn": {"handlers": ["default"], "level": log_level, "propagate": False},
                "uvicorn.error": {
                    "handlers": ["default"],
                    "level": log_level,
                    "propagate": False,
                },
                "uvicorn.access": {
                    "handlers": ["default"],
                    "level": log_level,
                    "propagate": False,
                },
                "httpx": {"handlers": ["default"], "level": "WARNING", "propagate": False},
            },
        }
    )
