"""Slash-command and inline-button handlers for the Telegram bridge.

Handlers talk to the bridge only through its public methods.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable

import httpx
import structlog

from switchboard.bridges.telegram.api import TelegramAPIError
from switchboard.bridges.telegram.formatting import (
    VALID_MODELS,
    confirm_keyboard,
    escape_html,
    format_all_sessions,
    format_duration,
    format_connected,
    format_help,
    format_pinned_status,
    format_project_list,
    format_status,
    format_welcome,
    model_keyboard,
    project_keyboard,
    session_actions_keyboard,
    timeout_keyboard,
)
from switchboard.bridges.telegram.types import (
    TelegramCallbackQuery,
    TelegramChat,
    TelegramMessage,
)
from switchboard.models import ProjectProfile

if TYPE_CHECKING:
    from switchboard.bridges.telegram.bot import TelegramBridge

logger = structlog.get_logger(__name__)

CommandHandler = Callable[["TelegramBridge", TelegramMessage, str], Awaitable[None]]
CallbackHandler = Callable[
    ["TelegramBridge", TelegramCallbackQuery, TelegramMessage, str], Awaitable[None]
]

NO_SESSION = "No active session. Use <code>/project</code> to start one."
NO_PROJECTS = "No projects configured."


def _active_slugs(bridge: TelegramBridge, chat_id: int) -> list[str]:
    return [m.project_slug for m in bridge.mappings_for_chat(chat_id)]


def _timeout_label(timeout: float | None) -> str:
    return format_duration(timeout) if timeout is not None else "OFF"


def _status_text(bridge: TelegramBridge, chat_id: int, topic_id: int) -> str:
    mapping = bridge.get_mapping(chat_id, topic_id)
    if mapping is None:
        return format_all_sessions(bridge.mappings_for_chat(chat_id), bridge.runtime_state)
    state = bridge.runtime_state(mapping.session_id)
    text = format_status(mapping, state.status if state else "unknown")
    if state:
        text += f"\nCost: <code>${state.total_cost_usd:.4f}</code> | Turns: <code>{state.num_turns}</code>"
    return text


async def _open_project(
    bridge: TelegramBridge, chat: TelegramChat, topic_id: int, profile: ProjectProfile
) -> None:
    """Start ``profile`` in its own forum topic, or in the current thread."""
    chat_id = chat.id
    if profile.slug in _active_slugs(bridge, chat_id):
        await bridge.send_text(
            chat_id,
            f"Project <code>{escape_html(profile.slug)}</code> is already open in another topic.",
            topic_id,
        )
        return
    if topic_id == 0 and not chat.is_private:
        try:
            topic = await bridge.client.create_forum_topic(chat_id, profile.name)
            topic_id = topic.message_thread_id
        except (TelegramAPIError, httpx.HTTPError) as e:
            logger.info("Forum topic unavailable, using main thread", chat_id=chat_id, error=str(e))

    current = bridge.get_mapping(chat_id, topic_id)
    if current is not None and current.project_slug != profile.slug:
        await bridge.send_text(
            chat_id,
            f"Switching from <b>{escape_html(current.project_slug)}</b> → "
            f"<b>{escape_html(profile.slug)}</b>...",
            topic_id,
        )
        await bridge.destroy_session(chat_id, topic_id, close_topic=False)

    progress_id = await bridge.send_text(
        chat_id, f"Connecting to {escape_html(profile.name)}...", topic_id
    )
    result = await bridge.create_session(chat_id, topic_id, profile)
    if not result.ok:
        text = f"Failed to connect: {escape_html(result.error or 'unknown error')}"
        if progress_id is None or not await bridge.edit_text(chat_id, progress_id, text):
            await bridge.send_text(chat_id, text, topic_id)
        return

    mapping = bridge.get_mapping(chat_id, topic_id)
    if mapping is None:
        return
    text = format_connected(profile, mapping.model)
    keyboard = session_actions_keyboard(mapping.model)
    if progress_id is not None and await bridge.edit_text(
        chat_id, progress_id, text, reply_markup=keyboard
    ):
        await bridge.pin_status(mapping, progress_id)
    else:
        await bridge.send_text(chat_id, text, topic_id, reply_markup=keyboard)


async def _restart(bridge: TelegramBridge, chat_id: int, topic_id: int, profile: ProjectProfile) -> None:
    await bridge.destroy_session(chat_id, topic_id, close_topic=False)
    await bridge.send_text(chat_id, "Restarting session...", topic_id)
    result = await bridge.create_session(chat_id, topic_id, profile)
    if not result.ok:
        await bridge.send_text(
            chat_id, f"Failed: {escape_html(result.error or 'unknown error')}", topic_id
        )
        return
    mapping = bridge.get_mapping(chat_id, topic_id)
    model = mapping.model if mapping else ""
    await bridge.send_text(
        chat_id,
        format_connected(profile, model),
        topic_id,
        reply_markup=session_actions_keyboard(model),
    )


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------


async def cmd_start(bridge: TelegramBridge, msg: TelegramMessage, args: str) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    mapping = bridge.get_mapping(chat_id, topic_id)
    if mapping is not None:
        await bridge.send_text(
            chat_id,
            format_pinned_status(mapping, bridge.runtime_state(mapping.session_id)),
            topic_id,
            reply_markup=session_actions_keyboard(mapping.model),
        )
        return
    profiles = bridge.profiles.all()
    await bridge.send_text(
        chat_id,
        format_welcome(bridge.bot_name),
        topic_id,
        reply_markup=project_keyboard(profiles) if profiles else None,
    )


async def cmd_help(bridge: TelegramBridge, msg: TelegramMessage, args: str) -> None:
    await bridge.send_text(msg.chat.id, format_help(), msg.topic_id)


async def cmd_projects(bridge: TelegramBridge, msg: TelegramMessage, args: str) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    profiles = bridge.profiles.all()
    if not profiles:
        await bridge.send_text(chat_id, NO_PROJECTS, topic_id)
        return
    await bridge.send_text(
        chat_id,
        format_project_list(profiles, _active_slugs(bridge, chat_id)),
        topic_id,
        reply_markup=project_keyboard(profiles),
    )


async def cmd_project(bridge: TelegramBridge, msg: TelegramMessage, args: str) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    slug = args.split()[0] if args.split() else ""
    if not slug:
        profiles = bridge.profiles.all()
        if not profiles:
            await bridge.send_text(chat_id, NO_PROJECTS, topic_id)
            return
        await bridge.send_text(
            chat_id, "Select a project:", topic_id, reply_markup=project_keyboard(profiles)
        )
        return

    profile = bridge.profiles.get(slug)
    if profile is None:
        await bridge.send_text(
            chat_id,
            f"Project <code>{escape_html(slug)}</code> not found.\n"
            "Use <code>/projects</code> to see available options.",
            topic_id,
        )
        return

    current = bridge.get_mapping(chat_id, topic_id)
    if current is not None and current.project_slug == profile.slug:
        await bridge.send_text(
            chat_id,
            f"Already connected to <code>{escape_html(profile.slug)}</code>.\n"
            "Use <code>/stop</code> first, or <code>/new</code> to restart.",
            topic_id,
        )
        return
    if current is not None:
        await bridge.destroy_session(chat_id, topic_id, close_topic=False)

    await _open_project(bridge, msg.chat, topic_id, profile)


async def cmd_switch(bridge: TelegramBridge, msg: TelegramMessage, args: str) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    profiles = bridge.profiles.all()
    if not profiles:
        await bridge.send_text(chat_id, NO_PROJECTS, topic_id)
        return
    if not args:
        current = bridge.get_mapping(chat_id, topic_id)
        name = current.project_slug if current else "none"
        await bridge.send_text(
            chat_id,
            f"Switch project (current: <code>{escape_html(name)}</code>):",
            topic_id,
            reply_markup=project_keyboard(profiles),
        )
        return
    await bridge.destroy_session(chat_id, topic_id, close_topic=False)
    await cmd_project(bridge, msg, args)


async def cmd_stop(bridge: TelegramBridge, msg: TelegramMessage, args: str) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    mapping = bridge.get_mapping(chat_id, topic_id)
    if mapping is None:
        await bridge.send_text(chat_id, NO_SESSION, topic_id)
        return
    await bridge.send_text(
        chat_id,
        f"Stop session <code>{escape_html(mapping.project_slug)}</code>?",
        topic_id,
        reply_markup=confirm_keyboard("stop"),
    )


async def cmd_stopall(bridge: TelegramBridge, msg: TelegramMessage, args: str) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    mappings = bridge.mappings_for_chat(chat_id)
    if not mappings:
        await bridge.send_text(chat_id, "No active sessions.", topic_id)
        return
    stopped = 0
    for mapping in mappings:
        if await bridge.destroy_session(chat_id, mapping.topic_id):
            stopped += 1
    await bridge.send_text(
        chat_id, f"Stopped {stopped} session{'' if stopped == 1 else 's'}.", topic_id
    )


async def cmd_cancel(bridge: TelegramBridge, msg: TelegramMessage, args: str) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    if not await bridge.interrupt(chat_id, topic_id):
        await bridge.send_text(chat_id, "No active session.", topic_id)
        return
    await bridge.send_text(chat_id, "Interrupt sent.", topic_id)


async def cmd_status(bridge: TelegramBridge, msg: TelegramMessage, args: str) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    await bridge.send_text(chat_id, _status_text(bridge, chat_id, topic_id), topic_id)


async def cmd_model(bridge: TelegramBridge, msg: TelegramMessage, args: str) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    mapping = bridge.get_mapping(chat_id, topic_id)
    if mapping is None:
        await bridge.send_text(chat_id, "No active session.", topic_id)
        return

    model = args.strip().lower()
    if not model:
        await bridge.send_text(
            chat_id,
            f"Current model: <code>{escape_html(mapping.model)}</code>",
            topic_id,
            reply_markup=model_keyboard(mapping.model),
        )
        return
    if model not in VALID_MODELS:
        await bridge.send_text(
            chat_id,
            f"Invalid model. Current: <code>{escape_html(mapping.model)}</code>\n"
            f"Valid: {', '.join(VALID_MODELS)}",
            topic_id,
            reply_markup=model_keyboard(mapping.model),
        )
        return

    await bridge.set_model(chat_id, topic_id, model)
    await bridge.send_text(chat_id, f"Model switched to <code>{model}</code>", topic_id)


async def cmd_new(bridge: TelegramBridge, msg: TelegramMessage, args: str) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    mapping = bridge.get_mapping(chat_id, topic_id)
    if mapping is None:
        await bridge.send_text(chat_id, NO_SESSION, topic_id)
        return
    await bridge.send_text(
        chat_id,
        f"Restart session <code>{escape_html(mapping.project_slug)}</code>? "
        "Current session will be destroyed.",
        topic_id,
        reply_markup=confirm_keyboard("new"),
    )


COMMANDS: dict[str, CommandHandler] = {
    "start": cmd_start,
    "help": cmd_help,
    "projects": cmd_projects,
    "project": cmd_project,
    "switch": cmd_switch,
    "stop": cmd_stop,
    "stopall": cmd_stopall,
    "cancel": cmd_cancel,
    "status": cmd_status,
    "model": cmd_model,
    "new": cmd_new,
}


async def dispatch_command(
    bridge: TelegramBridge, msg: TelegramMessage, command: str, args: str
) -> bool:
    """Run a slash command. Returns False when ``command`` is unknown.

    Handler failures are logged and reported back into the same thread.
    """
    handler = COMMANDS.get(command)
    if handler is None:
        return False
    try:
        await handler(bridge, msg, args)
    except Exception as e:
        logger.exception("Command failed", command=command, chat_id=msg.chat.id)
        await bridge.send_text(msg.chat.id, f"Error: {escape_html(str(e))}", msg.topic_id)
    return True


# ----------------------------------------------------------------------
# Inline buttons
# ----------------------------------------------------------------------


async def cb_project(
    bridge: TelegramBridge, query: TelegramCallbackQuery, msg: TelegramMessage, value: str
) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    profile = bridge.profiles.get(value)
    if profile is None:
        await bridge.answer_callback(query.id, "Project not found")
        return
    current = bridge.get_mapping(chat_id, topic_id)
    if current is not None and current.project_slug == profile.slug:
        await bridge.answer_callback(query.id, f"Already on {profile.name}")
        return

    await bridge.remove_keyboard(chat_id, msg.message_id)
    await bridge.answer_callback(query.id, f"Connecting to {profile.name}...")
    await _open_project(bridge, msg.chat, topic_id, profile)


async def cb_model(
    bridge: TelegramBridge, query: TelegramCallbackQuery, msg: TelegramMessage, value: str
) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    if value not in VALID_MODELS:
        await bridge.answer_callback(query.id, "Unknown model")
        return
    if not await bridge.set_model(chat_id, topic_id, value):
        await bridge.answer_callback(query.id, "No active session")
        return
    await bridge.remove_keyboard(chat_id, msg.message_id)
    await bridge.answer_callback(query.id, f"Model → {value}")


async def cb_stop(
    bridge: TelegramBridge, query: TelegramCallbackQuery, msg: TelegramMessage, value: str
) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    await bridge.remove_keyboard(chat_id, msg.message_id)
    if value != "confirm":
        await bridge.answer_callback(query.id, "Cancelled")
        return
    mapping = bridge.get_mapping(chat_id, topic_id)
    if mapping is None:
        await bridge.answer_callback(query.id, "No active session")
        return
    await bridge.destroy_session(chat_id, topic_id)
    await bridge.answer_callback(query.id, "Session stopped")
    await bridge.send_text(
        chat_id,
        f"Session stopped. (<code>{escape_html(mapping.project_slug)}</code>)",
        topic_id,
    )


async def cb_new(
    bridge: TelegramBridge, query: TelegramCallbackQuery, msg: TelegramMessage, value: str
) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    await bridge.remove_keyboard(chat_id, msg.message_id)
    if value != "confirm":
        await bridge.answer_callback(query.id, "Cancelled")
        return
    mapping = bridge.get_mapping(chat_id, topic_id)
    if mapping is None:
        await bridge.answer_callback(query.id, "No active session")
        return
    profile = bridge.profiles.get(mapping.project_slug)
    if profile is None:
        await bridge.answer_callback(query.id, "Project not found")
        return
    await bridge.answer_callback(query.id, "Restarting...")
    await _restart(bridge, chat_id, topic_id, profile)


async def cb_action(
    bridge: TelegramBridge, query: TelegramCallbackQuery, msg: TelegramMessage, value: str
) -> None:
    chat_id, topic_id = msg.chat.id, msg.topic_id
    mapping = bridge.get_mapping(chat_id, topic_id)

    if value == "model":
        await bridge.answer_callback(query.id)
        current = mapping.model if mapping else None
        await bridge.edit_text(
            chat_id, msg.message_id, "Select model:", reply_markup=model_keyboard(current)
        )
    elif value == "status":
        await bridge.answer_callback(query.id)
        await bridge.send_text(chat_id, _status_text(bridge, chat_id, topic_id), topic_id)
    elif value == "cancel":
        if await bridge.interrupt(chat_id, topic_id):
            await bridge.answer_callback(query.id, "Interrupt sent")
        else:
            await bridge.answer_callback(query.id, "No active session")
    elif value == "stop":
        await bridge.answer_callback(query.id)
        await bridge.send_text(
            chat_id, "Stop the current session?", topic_id, reply_markup=confirm_keyboard("stop")
        )
    elif value == "timeout":
        await bridge.answer_callback(query.id)
        if mapping is None:
            await bridge.send_text(chat_id, NO_SESSION, topic_id)
            return
        timeout = bridge.idle_timeout_for(chat_id, topic_id)
        await bridge.send_text(
            chat_id,
            f"Idle timeout: <b>{_timeout_label(timeout)}</b>",
            topic_id,
            reply_markup=timeout_keyboard(timeout),
        )
    elif value == "projects":
        await bridge.answer_callback(query.id)
        await bridge.send_text(
            chat_id,
            "Select a project:",
            topic_id,
            reply_markup=project_keyboard(bridge.profiles.all()),
        )
    else:
        await bridge.answer_callback(query.id, "Unknown action")


async def cb_timeout(
    bridge: TelegramBridge, query: TelegramCallbackQuery, msg: TelegramMessage, value: str
) -> None:
    """Handle ``timeout:toggle:<on|off>`` and ``timeout:set:<seconds>``."""
    chat_id, topic_id = msg.chat.id, msg.topic_id
    action, _, arg = value.partition(":")
    if action == "toggle" and arg in ("on", "off"):
        changed = bridge.set_idle_timeout(chat_id, topic_id, arg == "on")
    elif action == "set" and arg.isdigit() and int(arg) > 0:
        changed = bridge.set_idle_timeout(chat_id, topic_id, True, int(arg))
    else:
        await bridge.answer_callback(query.id, "Unknown timeout option")
        return
    if not changed:
        await bridge.answer_callback(query.id, "No active session")
        return

    timeout = bridge.idle_timeout_for(chat_id, topic_id)
    label = _timeout_label(timeout)
    await bridge.answer_callback(query.id, f"Timeout: {label}")
    await bridge.edit_text(
        chat_id,
        msg.message_id,
        f"Idle timeout: <b>{label}</b>",
        reply_markup=timeout_keyboard(timeout),
    )


CALLBACKS: dict[str, CallbackHandler] = {
    "proj": cb_project,
    "model": cb_model,
    "stop": cb_stop,
    "new": cb_new,
    "action": cb_action,
    "timeout": cb_timeout,
}


async def dispatch_callback(bridge: TelegramBridge, query: TelegramCallbackQuery) -> None:
    """Route an inline-button press by the prefix of its callback data."""
    msg = query.message
    if msg is None or not query.data:
        await bridge.answer_callback(query.id)
        return

    prefix, _, value = query.data.partition(":")
    handler = CALLBACKS.get(prefix)
    if handler is None:
        await bridge.answer_callback(query.id, "Unknown action")
        return
    try:
        await handler(bridge, query, msg, value)
    except Exception:
        logger.exception("Callback failed", data=query.data, chat_id=msg.chat.id)
        await bridge.answer_callback(query.id, "Error occurred")
