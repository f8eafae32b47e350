"""Telegram bot bridge implementation.

The bridge long-polls the Bot API, maps each (chat, topic) slot to at most one
agent session and relays runtime events back into the chat.
"""

from __future__ import annotations

import asyncio
import base64
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Coroutine

import httpx
import structlog

from switchboard.bridges.telegram import formatting as fmt
from switchboard.bridges.telegram.api import TelegramAPIError, TelegramClient
from switchboard.bridges.telegram.commands import dispatch_callback, dispatch_command
from switchboard.bridges.telegram.state import MAPPINGS_FILE, MappingStore
from switchboard.bridges.telegram.timers import SlotTimers, slot_key
from switchboard.bridges.telegram.types import TelegramMessage, TelegramUpdate
from switchboard.errors import BridgeConfigError
from switchboard.models import (
    ChatSessionMapping,
    ProjectProfile,
    SessionRecord,
    TelegramConfig,
    now_ms,
)
from switchboard.profiles import ProfileStore
from switchboard.runtime.base import (
    AgentRuntime,
    AssistantEvent,
    DisconnectedEvent,
    LaunchOptions,
    ResultEvent,
    RuntimeEvent,
    RuntimeState,
    StatusChangeEvent,
    ToolProgressEvent,
    ToolResultEvent,
)
from switchboard.settings import settings
from switchboard.store import SessionStore

logger = structlog.get_logger(__name__)

# Bash output longer than this is uploaded as a file instead of inlined.
_INLINE_OUTPUT_MAX = 3000
_BEST_EFFORT_ERRORS = (TelegramAPIError, httpx.HTTPError)


@dataclass(frozen=True)
class CreateResult:
    ok: bool
    session_id: str | None = None
    error: str | None = None


def subscriber_id(chat_id: int, topic_id: int) -> str:
    return f"telegram:{chat_id}:{topic_id}"


def _format_minutes(seconds: float) -> str:
    minutes = seconds / 60
    return str(int(minutes)) if minutes == int(minutes) else f"{minutes:.1f}"


class TelegramBridge:
    """Telegram bridge that multiplexes agent sessions over chats and topics.

    Args:
        config: Bot credential and chat allow-list.
        runtime: Agent runtime that launches and drives sessions.
        profiles: Catalog of known projects.
        sessions: Durable session metadata store.
        mappings: Mapping persistence (defaults to ``<data_dir>/telegram-sessions.json``).
        client: Bot API client (created from the config token if not provided).
        poll_timeout: Server-side long-poll wait in seconds.
        poll_backoff: Delay after a failed poll.
        typing_interval: Seconds between typing pings.
        idle_timeout: Seconds without user messages before a session is stopped.
        idle_warning: Seconds before the idle timeout at which a warning is sent.
        chunk_delay: Pause between the chunks of a long reply.
    """

    def __init__(
        self,
        config: TelegramConfig,
        *,
        runtime: AgentRuntime,
        profiles: ProfileStore,
        sessions: SessionStore,
        mappings: MappingStore | None = None,
        client: TelegramClient | None = None,
        poll_timeout: int | None = None,
        poll_backoff: float | None = None,
        typing_interval: float | None = None,
        idle_timeout: float | None = None,
        idle_warning: float | None = None,
        chunk_delay: float = 1.0,
    ) -> None:
        self._allowed = set(config.allowed_chat_ids)
        self._runtime = runtime
        self._profiles = profiles
        self._sessions = sessions
        self._mapping_store = mappings or MappingStore(Path(settings.data_dir()) / MAPPINGS_FILE)
        self._client = client or TelegramClient(config.bot_token)
        self._poll_timeout = poll_timeout if poll_timeout is not None else settings.poll_timeout()
        self._poll_backoff = poll_backoff if poll_backoff is not None else settings.poll_backoff()
        self._idle_timeout = (
            idle_timeout if idle_timeout is not None else settings.idle_timeout_minutes() * 60
        )
        self._idle_warning = (
            idle_warning if idle_warning is not None else settings.idle_warning_minutes() * 60
        )
        self._chunk_delay = chunk_delay

        self._mappings: dict[str, ChatSessionMapping] = {}
        self._pending: set[str] = set()
        self._pending_projects: set[tuple[int, str]] = set()
        self._last_user_msg: dict[str, int] = {}
        self._timers = SlotTimers(
            send_typing=self._send_typing,
            on_idle=self._on_idle,
            on_idle_warning=self._on_idle_warning,
            typing_interval=(
                typing_interval if typing_interval is not None else settings.typing_interval()
            ),
        )

        self._offset = 0
        self._running = False
        self._restored = False
        self._poll_task: asyncio.Task | None = None
        self._update_tasks: set[asyncio.Task] = set()
        self._bot_username: str | None = None
        self._bot_name: str | None = None

    # ------------------------------------------------------------------
    # Public accessors
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    @property
    def client(self) -> TelegramClient:
        return self._client

    @property
    def profiles(self) -> ProfileStore:
        return self._profiles

    @property
    def bot_username(self) -> str | None:
        return self._bot_username

    @property
    def bot_name(self) -> str:
        return self._bot_name or "Switchboard"

    @property
    def timers(self) -> SlotTimers:
        return self._timers

    @property
    def allowed_chat_ids(self) -> list[int]:
        return sorted(self._allowed)

    def get_mapping(self, chat_id: int, topic_id: int = 0) -> ChatSessionMapping | None:
        return self._mappings.get(slot_key(chat_id, topic_id))

    def mappings_for_chat(self, chat_id: int) -> list[ChatSessionMapping]:
        return [m for m in self._mappings.values() if m.chat_id == chat_id]

    def all_mappings(self) -> list[ChatSessionMapping]:
        return list(self._mappings.values())

    def active_chat_count(self) -> int:
        return len({m.chat_id for m in self._mappings.values()})

    def runtime_state(self, session_id: str) -> RuntimeState | None:
        return self._runtime.session_state(session_id)

    def is_creating(self, chat_id: int, topic_id: int = 0) -> bool:
        return slot_key(chat_id, topic_id) in self._pending

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Authenticate, restore mappings and start long polling.

        Raises:
            BridgeConfigError: No allow-list is configured.
            TelegramAPIError / httpx.HTTPError: Authentication failed.
        """
        if self._running:
            return
        if not self._allowed:
            raise BridgeConfigError(
                "Telegram allow-list is empty; set TELEGRAM_ALLOWED_CHAT_IDS"
            )

        try:
            me = await self._client.get_me()
        except _BEST_EFFORT_ERRORS:
            logger.exception("Telegram authentication failed")
            raise
        self._bot_username = me.username
        self._bot_name = me.first_name
        await self._client.delete_webhook()
        await self._register_commands()
        self._restore_mappings()
        self._restored = True

        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(
            "Telegram bridge started",
            bot_username=self._bot_username,
            allowed_chat_count=len(self._allowed),
            restored=len(self._mappings),
        )

    async def stop(self) -> None:
        """Stop polling, clear timers and persist mappings."""
        was_running = self._running
        self._running = False
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        self._timers.clear_all()
        for mapping in self._mappings.values():
            self._runtime.hub.unsubscribe(
                mapping.session_id, subscriber_id(mapping.chat_id, mapping.topic_id)
            )
        # Before a restore the in-memory table is empty and would wipe the file.
        if self._restored:
            self._save()
            self._restored = False
        await self._client.close()
        if was_running:
            logger.info("Telegram bridge stopped")

    async def _register_commands(self) -> None:
        try:
            await self._client.set_my_commands(
                [{"command": c, "description": d} for c, d in fmt.BOT_COMMANDS]
            )
        except _BEST_EFFORT_ERRORS as e:
            logger.warning("Failed to register bot commands", error=str(e))

    def _restore_mappings(self) -> None:
        for mapping in self._mapping_store.load(self._runtime.is_alive):
            self._mappings[mapping.slot] = mapping
            self._subscribe(mapping)
            self._arm_idle(mapping.chat_id, mapping.topic_id)
            logger.info(
                "Restored Telegram mapping",
                chat_id=mapping.chat_id,
                topic_id=mapping.topic_id,
                session_id=mapping.session_id,
            )
        self._save()

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                updates = await self._client.get_updates(self._offset, self._poll_timeout)
            except asyncio.CancelledError:
                raise
            except _BEST_EFFORT_ERRORS as e:
                logger.warning("Telegram poll failed", error=str(e), backoff=self._poll_backoff)
                await asyncio.sleep(self._poll_backoff)
                continue
            except Exception:
                logger.exception("Unexpected error while polling Telegram")
                await asyncio.sleep(self._poll_backoff)
                continue

            for update in updates:
                self._offset = max(self._offset, update.update_id + 1)
                self._spawn(self.process_update(update))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._update_tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._update_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Telegram update processing failed", exc_info=exc)

    # ------------------------------------------------------------------
    # Update dispatch
    # ------------------------------------------------------------------

    async def process_update(self, update: TelegramUpdate) -> None:
        """Route one update. Updates from chats off the allow-list are dropped."""
        chat_id = update.chat_id
        if chat_id is None or chat_id not in self._allowed:
            logger.info(
                "Dropping update from unauthorized chat",
                chat_id=chat_id,
                update_id=update.update_id,
            )
            return

        if update.callback_query is not None:
            await dispatch_callback(self, update.callback_query)
            return
        if update.message is None:
            logger.debug("Ignoring update without message", update_id=update.update_id)
            return
        await self._handle_message(update.message)

    def _mentions_bot(self, text: str) -> bool:
        return bool(self._bot_username) and f"@{self._bot_username.lower()}" in text.lower()

    def _strip_mention(self, text: str) -> str:
        if not self._bot_username:
            return text
        return re.sub(rf"@{re.escape(self._bot_username)}\s*", "", text, flags=re.IGNORECASE)

    async def _handle_message(self, msg: TelegramMessage) -> None:
        text = msg.text or ""
        is_command = text.startswith("/")
        if not msg.chat.is_private and not is_command:
            if not self._mentions_bot(text or msg.caption or ""):
                return

        if is_command:
            head, _, args = text[1:].partition(" ")
            command = head.split("@", 1)[0].lower()
            handled = await dispatch_command(self, msg, command, args.strip())
            if not handled and self._profiles.get(command) is not None:
                await dispatch_command(self, msg, "project", command)
            return

        if msg.photo:
            await self._handle_photo(msg)
            return

        clean = self._strip_mention(text).strip()
        if not clean:
            return
        chat_id, topic_id = msg.chat.id, msg.topic_id
        if not await self.relay_user_text(chat_id, topic_id, clean):
            await self.send_text(chat_id, self._no_session_text(topic_id), topic_id)
            return
        await self._acknowledge(msg)

    @staticmethod
    def _no_session_text(topic_id: int) -> str:
        if topic_id > 0:
            return "No active session in this topic."
        return "No active session. Use /projects to pick one."

    async def _acknowledge(self, msg: TelegramMessage) -> None:
        self._last_user_msg[slot_key(msg.chat.id, msg.topic_id)] = msg.message_id
        await self._client.react(msg.chat.id, msg.message_id, "👀")

    async def _handle_photo(self, msg: TelegramMessage) -> None:
        chat_id, topic_id = msg.chat.id, msg.topic_id
        if self.get_mapping(chat_id, topic_id) is None:
            await self.send_text(chat_id, self._no_session_text(topic_id), topic_id)
            return

        photo = msg.photo[-1]
        try:
            file = await self._client.get_file(photo.file_id)
            data = await self._client.download_file(file.file_path or "")
        except _BEST_EFFORT_ERRORS as e:
            logger.exception("Failed to download photo", chat_id=chat_id, file_id=photo.file_id)
            await self.send_text(chat_id, f"Failed to process image: {e}", topic_id)
            return

        ext = (file.file_path or "").rsplit(".", 1)[-1].lower()
        media_type = {"png": "image/png", "webp": "image/webp"}.get(ext, "image/jpeg")
        caption = self._strip_mention(msg.caption or "").strip()
        blocks = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": media_type,
                    "data": base64.b64encode(data).decode("ascii"),
                },
            },
            {"type": "text", "text": caption or "What do you see in this image?"},
        ]
        if await self._relay(chat_id, topic_id, blocks):
            await self._acknowledge(msg)

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    async def create_session(
        self, chat_id: int, topic_id: int, profile: ProjectProfile
    ) -> CreateResult:
        """Launch a session for ``profile`` and bind it to the slot.

        Never raises; failures come back as ``CreateResult(ok=False, error=...)``.
        """
        key = slot_key(chat_id, topic_id)
        project = (chat_id, profile.slug)
        if key in self._pending:
            return CreateResult(ok=False, error="Session creation already in progress")
        if project in self._pending_projects:
            return CreateResult(
                ok=False,
                error=f"Project {profile.slug} is already being started in this chat",
            )
        self._pending.add(key)
        self._pending_projects.add(project)
        try:
            return await self._create_session(chat_id, topic_id, profile)
        finally:
            self._pending.discard(key)
            self._pending_projects.discard(project)

    async def _create_session(
        self, chat_id: int, topic_id: int, profile: ProjectProfile
    ) -> CreateResult:
        existing = self.get_mapping(chat_id, topic_id)
        if existing is not None:
            return CreateResult(
                ok=False,
                error=f"A session is already active here ({existing.project_slug})",
            )
        for mapping in self.mappings_for_chat(chat_id):
            if mapping.project_slug == profile.slug:
                return CreateResult(
                    ok=False,
                    error=f"Project {profile.slug} is already active in this chat",
                )

        session_id = str(uuid.uuid4())
        model = profile.default_model or fmt.DEFAULT_MODEL
        permission_mode = profile.permission_mode or fmt.DEFAULT_PERMISSION_MODE

        try:
            self._sessions.save(
                SessionRecord(
                    session_id=session_id,
                    project_slug=profile.slug,
                    cwd=profile.dir,
                    model=model,
                    permission_mode=permission_mode,
                )
            )
            result = await self._runtime.launch(
                LaunchOptions(
                    session_id=session_id,
                    cwd=profile.dir,
                    model=model,
                    permission_mode=permission_mode,
                )
            )
        except Exception as e:
            logger.exception("Session creation failed", chat_id=chat_id, project=profile.slug)
            self._sessions.remove(session_id)
            return CreateResult(ok=False, error=str(e) or type(e).__name__)

        if not result.ok:
            self._sessions.remove(session_id)
            logger.warning(
                "Session launch failed",
                chat_id=chat_id,
                topic_id=topic_id,
                project=profile.slug,
                error=result.error,
            )
            return CreateResult(ok=False, error=result.error or "Launch failed")

        mapping = ChatSessionMapping(
            chat_id=chat_id,
            topic_id=topic_id,
            session_id=session_id,
            project_slug=profile.slug,
            model=model,
        )
        self._mappings[mapping.slot] = mapping
        self._subscribe(mapping)
        self._arm_idle(chat_id, topic_id)
        self._save()
        logger.info(
            "Session created",
            chat_id=chat_id,
            topic_id=topic_id,
            session_id=session_id,
            project=profile.slug,
            model=model,
        )
        return CreateResult(ok=True, session_id=session_id)

    async def destroy_session(
        self, chat_id: int, topic_id: int = 0, *, close_topic: bool = True
    ) -> bool:
        """Tear down the slot's session. Returns False when there was none."""
        mapping = self._mappings.pop(slot_key(chat_id, topic_id), None)
        if mapping is None:
            return False

        self._timers.clear(chat_id, topic_id)
        self._last_user_msg.pop(mapping.slot, None)
        self._runtime.hub.unsubscribe(mapping.session_id, subscriber_id(chat_id, topic_id))
        if mapping.pinned_message_id:
            await self._best_effort(
                self._client.unpin_chat_message(chat_id, mapping.pinned_message_id)
            )
        try:
            await self._runtime.kill(mapping.session_id)
        except Exception:
            logger.exception("Failed to kill session", session_id=mapping.session_id)
        if topic_id > 0 and close_topic:
            await self._best_effort(self._client.close_forum_topic(chat_id, topic_id))
        self._save()
        logger.info(
            "Session destroyed",
            chat_id=chat_id,
            topic_id=topic_id,
            session_id=mapping.session_id,
        )
        return True

    async def relay_user_text(self, chat_id: int, topic_id: int, text: str) -> bool:
        """Forward user text to the slot's session. False when there is none."""
        return await self._relay(chat_id, topic_id, text)

    async def _relay(self, chat_id: int, topic_id: int, content: str | list[dict]) -> bool:
        mapping = self.get_mapping(chat_id, topic_id)
        if mapping is None:
            return False
        await self._runtime.send_user_message(mapping.session_id, content)
        mapping.last_activity_at = now_ms()
        self._arm_idle(chat_id, topic_id)
        self._timers.start_typing(chat_id, topic_id)
        self._save()
        return True

    async def interrupt(self, chat_id: int, topic_id: int = 0) -> bool:
        mapping = self.get_mapping(chat_id, topic_id)
        if mapping is None:
            return False
        return await self._runtime.interrupt(mapping.session_id)

    async def set_model(self, chat_id: int, topic_id: int, model: str) -> bool:
        """Switch the slot's model and persist it on the mapping."""
        mapping = self.get_mapping(chat_id, topic_id)
        if mapping is None:
            return False
        await self._runtime.set_model(mapping.session_id, model)
        mapping.model = model
        self._save()
        await self._refresh_pinned(mapping)
        return True

    async def pin_status(self, mapping: ChatSessionMapping, message_id: int) -> None:
        """Use ``message_id`` as the slot's pinned status card."""
        mapping.pinned_message_id = message_id
        self._save()
        await self._best_effort(
            self._client.pin_chat_message(mapping.chat_id, message_id)
        )

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_text(
        self,
        chat_id: int,
        text: str,
        topic_id: int = 0,
        *,
        reply_markup: dict | None = None,
        reply_to: int | None = None,
    ) -> int | None:
        """Send HTML, retrying once as plain text. Returns the message id or None."""
        try:
            msg = await self._client.send_message(
                chat_id, text, topic_id=topic_id, reply_markup=reply_markup, reply_to=reply_to
            )
            return msg.message_id
        except _BEST_EFFORT_ERRORS as e:
            logger.warning("HTML send failed, retrying as plain text", chat_id=chat_id, error=str(e))

        try:
            msg = await self._client.send_message(
                chat_id,
                fmt.strip_html(text),
                parse_mode=None,
                topic_id=topic_id,
                reply_markup=reply_markup,
            )
            return msg.message_id
        except _BEST_EFFORT_ERRORS:
            logger.exception("Failed to send Telegram message", chat_id=chat_id, topic_id=topic_id)
            return None

    async def send_long(
        self, chat_id: int, html: str, topic_id: int = 0, *, reply_to: int | None = None
    ) -> list[int]:
        """Send ``html`` split into paginated chunks."""
        ids: list[int] = []
        for i, chunk in enumerate(fmt.prepare_chunks(html)):
            if i > 0:
                await asyncio.sleep(self._chunk_delay)
            message_id = await self.send_text(
                chat_id, chunk, topic_id, reply_to=reply_to if i == 0 else None
            )
            if message_id is not None:
                ids.append(message_id)
        return ids

    async def edit_text(
        self, chat_id: int, message_id: int, text: str, *, reply_markup: dict | None = None
    ) -> bool:
        try:
            await self._client.edit_message_text(
                chat_id, message_id, text, reply_markup=reply_markup
            )
        except _BEST_EFFORT_ERRORS as e:
            logger.debug("Edit failed", chat_id=chat_id, message_id=message_id, error=str(e))
            return False
        return True

    async def remove_keyboard(self, chat_id: int, message_id: int) -> None:
        await self._best_effort(self._client.edit_message_reply_markup(chat_id, message_id))

    async def answer_callback(self, query_id: str, text: str | None = None) -> None:
        await self._best_effort(self._client.answer_callback_query(query_id, text))

    async def _best_effort(self, call: Coroutine[Any, Any, Any]) -> None:
        try:
            await call
        except _BEST_EFFORT_ERRORS as e:
            logger.debug("Best-effort Telegram call failed", error=str(e))

    async def _refresh_pinned(self, mapping: ChatSessionMapping) -> None:
        if not mapping.pinned_message_id:
            return
        await self.edit_text(
            mapping.chat_id,
            mapping.pinned_message_id,
            fmt.format_pinned_status(mapping, self.runtime_state(mapping.session_id)),
            reply_markup=fmt.session_actions_keyboard(mapping.model),
        )

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def idle_timeout_for(self, chat_id: int, topic_id: int = 0) -> float | None:
        """Effective idle timeout of the slot in seconds, or None when disabled."""
        mapping = self.get_mapping(chat_id, topic_id)
        if mapping is None:
            return self._idle_timeout
        if not mapping.idle_timeout_enabled:
            return None
        return mapping.idle_timeout_seconds or self._idle_timeout

    def set_idle_timeout(
        self, chat_id: int, topic_id: int, enabled: bool, seconds: float | None = None
    ) -> bool:
        """Change the slot's idle timeout and re-arm or cancel its timer.

        ``seconds`` is kept unchanged when omitted. Returns False when the
        slot has no session.
        """
        mapping = self.get_mapping(chat_id, topic_id)
        if mapping is None:
            return False
        if seconds is not None and seconds <= 0:
            raise ValueError("Idle timeout must be positive")
        mapping.idle_timeout_enabled = enabled
        if seconds is not None:
            mapping.idle_timeout_seconds = seconds
        self._save()
        self._arm_idle(chat_id, topic_id)
        logger.info(
            "Idle timeout changed",
            chat_id=chat_id,
            topic_id=topic_id,
            enabled=enabled,
            timeout=self.idle_timeout_for(chat_id, topic_id),
        )
        return True

    def _arm_idle(self, chat_id: int, topic_id: int) -> None:
        timeout = self.idle_timeout_for(chat_id, topic_id)
        if timeout is None:
            self._timers.cancel_idle(chat_id, topic_id)
            return
        self._timers.arm_idle(chat_id, topic_id, timeout, self._idle_warning)

    async def _send_typing(self, chat_id: int, topic_id: int) -> None:
        await self._client.send_chat_action(chat_id, "typing", topic_id=topic_id)

    async def _on_idle_warning(self, chat_id: int, topic_id: int) -> None:
        timeout = self.idle_timeout_for(chat_id, topic_id) or self._idle_timeout
        idle_for = _format_minutes(timeout - self._idle_warning)
        await self.send_text(
            chat_id,
            f"⏰ Session idle for {idle_for}min. Send any message to keep alive.",
            topic_id,
        )

    async def _on_idle(self, chat_id: int, topic_id: int) -> None:
        timeout = self.idle_timeout_for(chat_id, topic_id) or self._idle_timeout
        if not await self.destroy_session(chat_id, topic_id, close_topic=False):
            return
        logger.info("Session evicted after inactivity", chat_id=chat_id, topic_id=topic_id)
        await self.send_text(
            chat_id,
            f"Session ended due to inactivity ({_format_minutes(timeout)} min).",
            topic_id,
        )

    # ------------------------------------------------------------------
    # Runtime events
    # ------------------------------------------------------------------

    def _subscribe(self, mapping: ChatSessionMapping) -> None:
        chat_id, topic_id, session_id = mapping.chat_id, mapping.topic_id, mapping.session_id

        async def _on_event(event: RuntimeEvent) -> None:
            await self._on_runtime_event(chat_id, topic_id, session_id, event)

        self._runtime.hub.subscribe(session_id, subscriber_id(chat_id, topic_id), _on_event)

    async def _on_runtime_event(
        self, chat_id: int, topic_id: int, session_id: str, event: RuntimeEvent
    ) -> None:
        mapping = self.get_mapping(chat_id, topic_id)
        if mapping is None or mapping.session_id != session_id:
            # Stale subscription from a session that no longer owns the slot.
            self._runtime.hub.unsubscribe(session_id, subscriber_id(chat_id, topic_id))
            return

        if not isinstance(event, DisconnectedEvent):
            self._arm_idle(chat_id, topic_id)

        if isinstance(event, AssistantEvent):
            await self._relay_assistant(mapping, event)
        elif isinstance(event, ToolResultEvent):
            await self._relay_tool_result(mapping, event)
        elif isinstance(event, ResultEvent):
            await self._relay_result(mapping, event)
        elif isinstance(event, ToolProgressEvent):
            self._timers.start_typing(chat_id, topic_id)
        elif isinstance(event, StatusChangeEvent):
            if event.status == "idle":
                self._timers.stop_typing(chat_id, topic_id)
            elif event.status == "compacting":
                await self.send_text(
                    chat_id, "Context compacting... this may take a moment.", topic_id
                )
            await self._refresh_pinned(mapping)
        elif isinstance(event, DisconnectedEvent):
            await self._relay_disconnect(mapping, event)

    async def _relay_assistant(self, mapping: ChatSessionMapping, event: AssistantEvent) -> None:
        chat_id, topic_id = mapping.chat_id, mapping.topic_id
        questions = fmt.extract_ask_user_question(event.blocks)
        for line in fmt.extract_tool_actions(event.blocks):
            await self.send_text(chat_id, line, topic_id)

        text = fmt.extract_text(event.blocks)
        if text:
            self._timers.stop_typing(chat_id, topic_id)
            await self.send_long(
                chat_id,
                fmt.to_telegram_html(text),
                topic_id,
                reply_to=self._last_user_msg.get(mapping.slot),
            )
        if questions:
            self._timers.stop_typing(chat_id, topic_id)
            await self.send_text(chat_id, fmt.format_ask_user_question(questions), topic_id)

    async def _relay_tool_result(self, mapping: ChatSessionMapping, event: ToolResultEvent) -> None:
        output = event.output.strip()
        if event.tool_name != "Bash" or not output:
            return
        chat_id, topic_id = mapping.chat_id, mapping.topic_id
        if len(output) > _INLINE_OUTPUT_MAX:
            stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
            name = f"{'error' if event.is_error else 'output'}-{stamp}.txt"
            caption = (
                "⚠️ <b>Error output</b> (full log attached)"
                if event.is_error
                else "📤 <b>Bash output</b> (full log attached)"
            )
            await self._best_effort(
                self._client.send_document(chat_id, name, output, caption=caption, topic_id=topic_id)
            )
            return
        header = "⚠️ <b>Error output:</b>" if event.is_error else "📤 <b>Output:</b>"
        await self.send_text(chat_id, f"{header}\n<pre>{fmt.escape_html(output)}</pre>", topic_id)

    async def _relay_result(self, mapping: ChatSessionMapping, event: ResultEvent) -> None:
        chat_id, topic_id = mapping.chat_id, mapping.topic_id
        self._timers.stop_typing(chat_id, topic_id)
        await self.send_text(chat_id, fmt.format_result(event), topic_id)
        origin = self._last_user_msg.pop(mapping.slot, None)
        if origin is not None:
            await self._client.react(chat_id, origin, "❌" if event.is_error else "✅")
        await self._refresh_pinned(mapping)

    async def _relay_disconnect(self, mapping: ChatSessionMapping, event: DisconnectedEvent) -> None:
        chat_id, topic_id = mapping.chat_id, mapping.topic_id
        logger.info(
            "Session disconnected",
            chat_id=chat_id,
            topic_id=topic_id,
            session_id=mapping.session_id,
            reason=event.reason,
        )
        self._mappings.pop(mapping.slot, None)
        self._timers.clear(chat_id, topic_id)
        self._last_user_msg.pop(mapping.slot, None)
        self._runtime.hub.unsubscribe(mapping.session_id, subscriber_id(chat_id, topic_id))
        if mapping.pinned_message_id:
            await self._best_effort(
                self._client.unpin_chat_message(chat_id, mapping.pinned_message_id)
            )
        await self.send_text(chat_id, "Session ended.", topic_id)
        self._save()

    def _save(self) -> None:
        self._mapping_store.save(self.all_mappings())
