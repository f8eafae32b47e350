"""Event types and the protocol every agent runtime implements."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Union

from switchboard.runtime.hub import EventHub


@dataclass(frozen=True)
class AssistantEvent:
    """One assistant message. Blocks keep the agent's wire shape, e.g.
    ``{"type": "text", "text": ...}`` or ``{"type": "tool_use", "name": ..., "input": {...}}``.
    """

    blocks: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class ResultEvent:
    """End of an agent turn with usage summary."""

    cost_usd: float | None = None
    num_turns: int | None = None
    duration_ms: int | None = None
    is_error: bool = False
    subtype: str | None = None
    errors: list[str] = field(default_factory=list)
    lines_added: int | None = None
    lines_removed: int | None = None


@dataclass(frozen=True)
class ToolProgressEvent:
    """The agent is busy running a tool."""

    tool_name: str = ""


@dataclass(frozen=True)
class ToolResultEvent:
    """Output of a finished tool call."""

    tool_name: str
    output: str
    is_error: bool = False


@dataclass(frozen=True)
class StatusChangeEvent:
    """Coarse runtime status: ``running``, ``idle``, ``compacting``..."""

    status: str


@dataclass(frozen=True)
class DisconnectedEvent:
    """The runtime for this session is gone."""

    reason: str = ""


RuntimeEvent = Union[
    AssistantEvent,
    ResultEvent,
    ToolProgressEvent,
    ToolResultEvent,
    StatusChangeEvent,
    DisconnectedEvent,
]


@dataclass(frozen=True)
class LaunchOptions:
    session_id: str
    cwd: str
    model: str
    permission_mode: str


@dataclass(frozen=True)
class LaunchResult:
    ok: bool
    error: str | None = None


@dataclass
class RuntimeState:
    """Snapshot of a live session used for status displays."""

    session_id: str
    cwd: str
    model: str
    status: str = "idle"
    num_turns: int = 0
    total_cost_usd: float = 0.0


class AgentRuntime(Protocol):
    """Adapter interface for agent backends driving one process per session."""

    hub: EventHub
    """Registry that receives every event the runtime emits."""

    async def launch(self, options: LaunchOptions) -> LaunchResult: ...

    async def kill(self, session_id: str) -> bool: ...

    def is_alive(self, session_id: str) -> bool: ...

    async def send_user_message(self, session_id: str, content: str | list[dict]) -> bool: ...

    async def interrupt(self, session_id: str) -> bool: ...

    async def set_model(self, session_id: str, model: str) -> bool: ...

    def session_state(self, session_id: str) -> RuntimeState | None: ...
