"""Agent runtime backed by the Claude Agent SDK.

Each session owns one ``ClaudeSDKClient`` (a long-lived Claude Code process).
A reader task consumes the client's message stream, translates SDK messages
into runtime events and publishes them on the hub.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Callable

import structlog
from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)

from switchboard.errors import LaunchError
from switchboard.runtime.base import (
    AssistantEvent,
    DisconnectedEvent,
    LaunchOptions,
    LaunchResult,
    ResultEvent,
    RuntimeState,
    StatusChangeEvent,
    ToolProgressEvent,
    ToolResultEvent,
)
from switchboard.runtime.hub import EventHub

logger = structlog.get_logger(__name__)

DISCONNECT_TIMEOUT = 5.0


@dataclass
class _Session:
    client: Any
    state: RuntimeState
    reader: asyncio.Task | None = None
    tool_names: dict[str, str] = field(default_factory=dict)


def _block_to_dict(block: Any) -> dict[str, Any] | None:
    """Convert an SDK content block into its wire-shaped dict."""
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    if isinstance(block, ToolResultBlock):
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": block.content,
            "is_error": bool(block.is_error),
        }
    if isinstance(block, ThinkingBlock):
        return {"type": "thinking", "thinking": block.thinking}
    return None


def _tool_output_text(content: Any) -> str:
    """Flatten tool result content (a string or a list of blocks) to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return "\n".join(
        str(b.get("text", "")) for b in content if isinstance(b, dict) and b.get("type") == "text"
    )


async def _single_message(blocks: list[dict]) -> AsyncIterator[dict[str, Any]]:
    yield {
        "type": "user",
        "message": {"role": "user", "content": blocks},
        "parent_tool_use_id": None,
    }


class ClaudeAgentRuntime:
    """Runtime that keeps one Claude Code client alive per session.

    Args:
        hub: Event registry to publish on (created if not provided).
        client_factory: Callable building a client from ``options=``; tests
            substitute a fake here.
    """

    runtime_type: str = "claude-sdk"

    def __init__(
        self,
        hub: EventHub | None = None,
        client_factory: Callable[..., Any] = ClaudeSDKClient,
    ) -> None:
        self.hub = hub or EventHub()
        self._client_factory = client_factory
        self._sessions: dict[str, _Session] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def launch(self, options: LaunchOptions) -> LaunchResult:
        """Start a Claude Code client for a new session."""
        session_id = options.session_id
        try:
            self._check_launch(options)
        except LaunchError as e:
            logger.warning("Refusing to launch Claude session", session_id=session_id, error=str(e))
            return LaunchResult(ok=False, error=str(e))

        def stderr_handler(line: str) -> None:
            logger.debug("Claude stderr", session_id=session_id, line=line)

        sdk_options = ClaudeAgentOptions(
            cwd=options.cwd,
            model=options.model,
            permission_mode=options.permission_mode,
            setting_sources=["user", "project", "local"],
            stderr=stderr_handler,
        )

        logger.info(
            "Launching Claude session",
            session_id=session_id,
            cwd=options.cwd,
            model=options.model,
            permission_mode=options.permission_mode,
        )

        client = self._client_factory(options=sdk_options)
        try:
            await client.connect()
        except Exception as e:
            logger.exception("Claude session failed to start", session_id=session_id)
            return LaunchResult(ok=False, error=str(e) or type(e).__name__)

        session = _Session(
            client=client,
            state=RuntimeState(session_id=session_id, cwd=options.cwd, model=options.model),
        )
        self._sessions[session_id] = session
        session.reader = asyncio.create_task(self._read_messages(session_id, session))
        return LaunchResult(ok=True)

    def _check_launch(self, options: LaunchOptions) -> None:
        if options.session_id in self._sessions:
            raise LaunchError("Session is already running")
        if not Path(options.cwd).is_dir():
            raise LaunchError(f"Project directory not found: {options.cwd}")

    async def kill(self, session_id: str) -> bool:
        """Stop a session's client. Returns False when the session is unknown."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        if session.reader and not session.reader.done():
            session.reader.cancel()
            try:
                await session.reader
            except asyncio.CancelledError:
                pass
        await self._disconnect(session_id, session)
        logger.info("Claude session stopped", session_id=session_id)
        return True

    def is_alive(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return bool(session and session.reader and not session.reader.done())

    def session_state(self, session_id: str) -> RuntimeState | None:
        session = self._sessions.get(session_id)
        return session.state if session else None

    async def shutdown(self) -> None:
        """Stop every running session."""
        for session_id in list(self._sessions):
            await self.kill(session_id)

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    async def send_user_message(self, session_id: str, content: str | list[dict]) -> bool:
        """Inject a user turn. ``content`` is plain text or a list of content
        blocks (used for images)."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.state.status = "running"
        if isinstance(content, str):
            await session.client.query(content)
        else:
            await session.client.query(_single_message(content))
        return True

    async def interrupt(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        await session.client.interrupt()
        logger.info("Interrupted Claude session", session_id=session_id)
        return True

    async def set_model(self, session_id: str, model: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        await session.client.set_model(model)
        session.state.model = model
        logger.info("Switched model", session_id=session_id, model=model)
        return True

    # ------------------------------------------------------------------
    # Internal: message stream
    # ------------------------------------------------------------------

    async def _read_messages(self, session_id: str, session: _Session) -> None:
        """Consume the client's message stream until it ends."""
        reason = "Agent process exited"
        try:
            async for message in session.client.receive_messages():
                self._handle_message(session_id, session, message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Claude message stream failed", session_id=session_id)
            reason = str(e) or type(e).__name__

        # Only reached when the stream ended on its own, not through kill().
        if self._sessions.get(session_id) is session:
            del self._sessions[session_id]
            logger.info("Claude session disconnected", session_id=session_id, reason=reason)
            self.hub.publish(session_id, DisconnectedEvent(reason=reason))
            await self._disconnect(session_id, session)

    def _handle_message(self, session_id: str, session: _Session, message: Any) -> None:
        """Translate one SDK message into runtime events."""
        if isinstance(message, AssistantMessage):
            blocks = [b for b in map(_block_to_dict, message.content) if b is not None]
            if not blocks:
                return
            self.hub.publish(session_id, AssistantEvent(blocks=blocks))
            tool_uses = [b for b in blocks if b["type"] == "tool_use"]
            for b in tool_uses:
                session.tool_names[b["id"]] = b["name"]
            if tool_uses:
                session.state.status = "running"
                self.hub.publish(session_id, ToolProgressEvent(tool_name=tool_uses[-1]["name"]))

        elif isinstance(message, UserMessage):
            if isinstance(message.content, str):
                return
            for block in message.content:
                if not isinstance(block, ToolResultBlock):
                    continue
                name = session.tool_names.pop(block.tool_use_id, "")
                self.hub.publish(
                    session_id,
                    ToolResultEvent(
                        tool_name=name,
                        output=_tool_output_text(block.content),
                        is_error=bool(block.is_error),
                    ),
                )

        elif isinstance(message, ResultMessage):
            session.state.status = "idle"
            session.tool_names.clear()
            session.state.num_turns += message.num_turns or 0
            session.state.total_cost_usd += message.total_cost_usd or 0.0
            errors = [message.result] if message.is_error and message.result else []
            self.hub.publish(
                session_id,
                ResultEvent(
                    cost_usd=message.total_cost_usd,
                    num_turns=message.num_turns,
                    duration_ms=message.duration_ms,
                    is_error=message.is_error,
                    subtype=message.subtype,
                    errors=errors,
                ),
            )
            self.hub.publish(session_id, StatusChangeEvent(status="idle"))

        elif isinstance(message, SystemMessage):
            data = message.data or {}
            if message.subtype == "init":
                logger.info(
                    "Claude session initialized",
                    session_id=session_id,
                    model=data.get("model"),
                )
            elif message.subtype == "status" and data.get("status"):
                session.state.status = str(data["status"])
                self.hub.publish(session_id, StatusChangeEvent(status=session.state.status))

    async def _disconnect(self, session_id: str, session: _Session) -> None:
        try:
            await asyncio.wait_for(session.client.disconnect(), timeout=DISCONNECT_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Claude client did not disconnect in time", session_id=session_id)
        except Exception:
            logger.exception("Failed to disconnect Claude client", session_id=session_id)
