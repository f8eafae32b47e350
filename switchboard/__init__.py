"""Telegram bridge for long-lived coding-agent sessions."""

__version__ = "0.1.0"
