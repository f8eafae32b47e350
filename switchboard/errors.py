"""Exception types shared across switchboard."""

from __future__ import annotations


class SwitchboardError(Exception):
    """Base class for switchboard failures."""


class BridgeConfigError(SwitchboardError):
    """Raised when the bridge cannot start because configuration is missing."""


class LaunchError(SwitchboardError):
    """Raised by agent runtimes when a session cannot be started."""
