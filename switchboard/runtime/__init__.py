"""Agent runtimes and the event registry the bridge subscribes to."""

from __future__ import annotations

from switchboard.runtime.base import (
    AgentRuntime,
    AssistantEvent,
    DisconnectedEvent,
    LaunchOptions,
    LaunchResult,
    ResultEvent,
    RuntimeEvent,
    RuntimeState,
    StatusChangeEvent,
    ToolProgressEvent,
    ToolResultEvent,
)
from switchboard.runtime.hub import EventHub

__all__ = [
    "AgentRuntime",
    "AssistantEvent",
    "DisconnectedEvent",
    "EventHub",
    "LaunchOptions",
    "LaunchResult",
    "ResultEvent",
    "RuntimeEvent",
    "RuntimeState",
    "StatusChangeEvent",
    "ToolProgressEvent",
    "ToolResultEvent",
]
