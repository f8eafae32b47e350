"""Telegram message formatting utilities.

Agent output is markdown; Telegram accepts a small HTML subset. Everything
the bridge sends goes through here: markdown conversion, message chunking,
tool-activity lines, status cards and inline keyboards.
"""

from __future__ import annotations

import html
import re
from typing import Any, Callable, Iterable

from switchboard.models import ChatSessionMapping, ProjectProfile
from switchboard.runtime.base import ResultEvent, RuntimeState

TELEGRAM_MAX_LENGTH = 4096
# Boundaries closer to the chunk start than this fraction are not used.
MIN_SPLIT_RATIO = 0.3
# Room left for an "[i/N]\n" prefix when a reply is paginated.
PAGE_PREFIX_RESERVE = 10

VALID_MODELS = ("sonnet", "opus", "haiku")
DEFAULT_MODEL = "sonnet"
DEFAULT_PERMISSION_MODE = "bypassPermissions"

BOT_COMMANDS = [
    ("start", "Projects & quick start"),
    ("projects", "List projects"),
    ("project", "Open a project session"),
    ("switch", "Open another project"),
    ("model", "Change model"),
    ("status", "Session info"),
    ("cancel", "Interrupt the agent"),
    ("stop", "End session in this topic"),
    ("stopall", "End all sessions in this chat"),
    ("new", "Restart session"),
    ("help", "Show commands"),
]

_TOOL_EMOJI = {
    "Read": "📖",
    "Write": "📝",
    "Edit": "✏️",
    "Bash": "💻",
    "Glob": "🔍",
    "Grep": "🔎",
    "Task": "🤖",
    "WebFetch": "🌐",
    "WebSearch": "🌐",
    "NotebookEdit": "📓",
    "AskUserQuestion": "❓",
    "EnterPlanMode": "📋",
    "ExitPlanMode": "🏁",
}

_STATUS_EMOJI = {
    "busy": "🔵",
    "running": "🔵",
    "idle": "🟢",
    "compacting": "🟡",
    "ended": "⚫",
}

_CODE_BLOCK_RE = re.compile(r"```(\w*)\n(.*?)```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")
_PLACEHOLDER_RE = re.compile(r"\x00(CB|IC)(\d+)\x00")
_TAG_RE = re.compile(r"<[^>]+>")


# ----------------------------------------------------------------------
# Markdown to Telegram HTML
# ----------------------------------------------------------------------


def escape_html(text: str) -> str:
    """Escape the three characters Telegram HTML treats specially."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def strip_html(text: str) -> str:
    """Drop tags and unescape entities, for the plain-text send fallback."""
    return html.unescape(_TAG_RE.sub("", text))


def to_telegram_html(markdown: str) -> str:
    """Convert agent markdown to Telegram-safe HTML.

    Fenced and inline code are pulled out into NUL-delimited placeholders
    before the prose is escaped, so their content is never touched by the
    inline markup rules below.
    """
    code_blocks: list[str] = []
    inline_codes: list[str] = []

    def _block(match: re.Match) -> str:
        lang = match.group(1)
        lang_attr = f' class="language-{lang}"' if lang else ""
        code_blocks.append(
            f"<pre><code{lang_attr}>{escape_html(match.group(2).rstrip())}</code></pre>"
        )
        return f"\x00CB{len(code_blocks) - 1}\x00"

    def _inline(match: re.Match) -> str:
        inline_codes.append(f"<code>{escape_html(match.group(1))}</code>")
        return f"\x00IC{len(inline_codes) - 1}\x00"

    text = _CODE_BLOCK_RE.sub(_block, markdown)
    text = _INLINE_CODE_RE.sub(_inline, text)
    text = escape_html(text)

    text = re.sub(r"\*\*(.+?)\*\*", r"<b>\1</b>", text)
    text = re.sub(r"__(.+?)__", r"<b>\1</b>", text)
    text = re.sub(r"(?<!\*)\*([^*\n]+)\*(?!\*)", r"<i>\1</i>", text)
    text = re.sub(r"(?<!_)_([^_\n]+)_(?!_)", r"<i>\1</i>", text)
    text = re.sub(r"~~(.+?)~~", r"<s>\1</s>", text)
    text = re.sub(r"^#{1,6}\s+(.+)$", r"<b>\1</b>", text, flags=re.MULTILINE)
    text = re.sub(r"\[([^\]]+)\]\(([^)]+)\)", r'<a href="\2">\1</a>', text)
    text = re.sub(r"^&gt;\s?(.*)$", r"| \1", text, flags=re.MULTILINE)

    def _restore(match: re.Match) -> str:
        store = code_blocks if match.group(1) == "CB" else inline_codes
        return store[int(match.group(2))]

    text = _PLACEHOLDER_RE.sub(_restore, text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


# ----------------------------------------------------------------------
# Chunking
# ----------------------------------------------------------------------


def _find_split(text: str, max_len: int) -> int:
    min_pos = max_len * MIN_SPLIT_RATIO

    split_at = -1
    pre_end = text.rfind("</pre>", 0, max_len)
    if pre_end > min_pos:
        split_at = pre_end + len("</pre>")
    if split_at == -1:
        para = text.rfind("\n\n", 0, max_len)
        if para > min_pos:
            split_at = para + 2
    if split_at == -1:
        line = text.rfind("\n", 0, max_len)
        if line > min_pos:
            split_at = line + 1
    if split_at == -1:
        split_at = max_len

    # Never cut inside a tag or an entity, however early it starts.
    candidate = text[:split_at]
    tag_open = candidate.rfind("<")
    if tag_open > candidate.rfind(">") and tag_open > 0:
        return tag_open
    amp = candidate.rfind("&")
    if amp > candidate.rfind(";") and split_at - amp < 10 and amp > 0:
        return amp
    return split_at


def split_message(text: str, max_len: int = TELEGRAM_MAX_LENGTH) -> list[str]:
    """Split text into chunks of at most ``max_len`` characters.

    Chunks are exact slices: joining them reproduces ``text``.

    Args:
        text: Telegram HTML to split.
        max_len: Maximum characters per chunk.
    """
    if len(text) <= max_len:
        return [text]

    chunks: list[str] = []
    remaining = text
    while len(remaining) > max_len:
        split_at = _find_split(remaining, max_len)
        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:]
    if remaining:
        chunks.append(remaining)
    return chunks


def paginate(chunks: list[str]) -> list[str]:
    """Prefix chunks with ``[i/N]`` when there are more than two."""
    if len(chunks) <= 2:
        return chunks
    total = len(chunks)
    return [f"[{i}/{total}]\n{chunk}" for i, chunk in enumerate(chunks, start=1)]


def prepare_chunks(text: str, max_len: int = TELEGRAM_MAX_LENGTH) -> list[str]:
    """Split and paginate ``text`` so no message exceeds ``max_len``."""
    chunks = split_message(text, max_len)
    if len(chunks) > 2:
        chunks = split_message(text, max_len - PAGE_PREFIX_RESERVE)
    return paginate(chunks)


# ----------------------------------------------------------------------
# Content blocks & tool actions
# ----------------------------------------------------------------------


def _shorten_path(path: Any) -> str:
    if not path:
        return "?"
    parts = str(path).replace("\\", "/").split("/")
    return f".../{'/'.join(parts[-3:])}" if len(parts) > 3 else str(path)


def _truncate(text: Any, max_len: int) -> str:
    if not text:
        return ""
    clean = str(text).replace("\n", " ")
    return clean[: max_len - 1] + "…" if len(clean) > max_len else clean


def extract_text(blocks: Iterable[dict]) -> str:
    """Join the non-blank text blocks of an assistant message."""
    parts = [
        b.get("text", "")
        for b in blocks
        if b.get("type") == "text" and (b.get("text") or "").strip()
    ]
    return "\n\n".join(parts)


def format_tool_action(name: str, tool_input: dict | None) -> str:
    """One-line, icon-prefixed description of a tool invocation."""
    tool_input = tool_input or {}
    emoji = _TOOL_EMOJI.get(name, "🔧")

    if name in ("Read", "Write", "Edit"):
        verb = {"Read": "Reading", "Write": "Writing", "Edit": "Editing"}[name]
        return f"{emoji} {verb} <code>{escape_html(_shorten_path(tool_input.get('file_path')))}</code>"
    if name == "Bash":
        return f"{emoji} Running <code>{escape_html(_truncate(tool_input.get('command'), 60))}</code>"
    if name == "Glob":
        return f"{emoji} Searching <code>{escape_html(str(tool_input.get('pattern', '')))}</code>"
    if name == "Grep":
        return f"{emoji} Searching for <code>{escape_html(_truncate(tool_input.get('pattern'), 40))}</code>"
    if name == "Task":
        desc = tool_input.get("description") or tool_input.get("prompt")
        return f"{emoji} Spawning sub-agent: {escape_html(_truncate(desc, 50))}"
    if name == "WebSearch":
        return f"{emoji} Searching web..."
    if name == "WebFetch":
        return f"{emoji} Fetching web..."
    if name == "NotebookEdit":
        return f"{emoji} Editing <code>{escape_html(_shorten_path(tool_input.get('notebook_path')))}</code>"
    if name == "AskUserQuestion":
        return f"{emoji} Asking question..."
    if name == "EnterPlanMode":
        return f"{emoji} Entering plan mode..."
    if name == "ExitPlanMode":
        return f"{emoji} Exiting plan mode..."
    return f"{emoji} {escape_html(name)}"


def extract_tool_actions(blocks: Iterable[dict]) -> list[str]:
    return [
        format_tool_action(b.get("name", ""), b.get("input"))
        for b in blocks
        if b.get("type") == "tool_use"
    ]


def extract_ask_user_question(blocks: Iterable[dict]) -> list[dict] | None:
    """Questions of the first AskUserQuestion tool call, if any."""
    for b in blocks:
        if b.get("type") == "tool_use" and b.get("name") == "AskUserQuestion":
            questions = (b.get("input") or {}).get("questions")
            if isinstance(questions, list) and questions:
                return questions
    return None


def format_ask_user_question(questions: list[dict]) -> str:
    lines = ["<b>❓ Claude is asking:</b>", ""]
    for q in questions:
        lines.append(f"<b>{escape_html(str(q.get('question', '')))}</b>")
        for i, opt in enumerate(q.get("options") or [], start=1):
            desc = opt.get("description")
            suffix = f" - {escape_html(_truncate(desc, 80))}" if desc else ""
            lines.append(f"{i}. <b>{escape_html(str(opt.get('label', '')))}</b>{suffix}")
        lines.append("")
    lines.append("<i>Reply with your choice (number or text).</i>")
    return "\n".join(lines).strip()


# ----------------------------------------------------------------------
# Status texts
# ----------------------------------------------------------------------


def format_result(event: ResultEvent) -> str:
    """One-line completion summary, with error detail on failure."""
    turns = event.num_turns or 0
    parts = [f"${event.cost_usd or 0.0:.3f}", f"{turns} turn{'' if turns == 1 else 's'}"]
    if event.lines_added or event.lines_removed:
        parts.append(f"+{event.lines_added or 0}/-{event.lines_removed or 0} lines")
    parts.append(f"{(event.duration_ms or 0) / 1000:.1f}s")

    label = "⚠️ Error:" if event.is_error else "✅ Done!"
    text = f"{label} {' | '.join(parts)}"
    if event.is_error:
        if event.subtype == "error_max_turns":
            text += "\nMax turns reached. Break into smaller tasks or /new."
        elif event.subtype == "error_max_budget_usd":
            text += "\nBudget limit reached."
        elif event.errors:
            text += f"\n{escape_html(_truncate(event.errors[0], 200))}"
    return text


def format_status(mapping: ChatSessionMapping, status: str) -> str:
    return "\n".join([
        "<b>Session Status</b>",
        f"Project: <code>{escape_html(mapping.project_slug)}</code>",
        f"Model: <code>{escape_html(mapping.model)}</code> | Status: <code>{escape_html(status)}</code>",
        f"Session: <code>{mapping.session_id[:8]}</code>",
    ])


def format_pinned_status(mapping: ChatSessionMapping, state: RuntimeState | None) -> str:
    """Compact status card kept pinned and edited in place."""
    status = state.status if state else "starting"
    emoji = _STATUS_EMOJI.get(status, "⚪")
    lines = [f"<b>{escape_html(mapping.project_slug)}</b> · {escape_html(mapping.model)} · {emoji} {status}"]
    if state:
        lines.append(f"${state.total_cost_usd:.3f} · {state.num_turns} turns")
    return "\n".join(lines)


def format_project_list(profiles: list[ProjectProfile], active: Iterable[str] = ()) -> str:
    if not profiles:
        return "No projects configured."
    active = set(active)
    lines = ["<b>Available Projects</b>", ""]
    for p in profiles:
        marker = " 🟢" if p.slug in active else ""
        lines.append(f"/<code>{escape_html(p.slug)}</code> - {escape_html(p.name)}{marker}")
        lines.append(f"  <code>{escape_html(p.dir)}</code>")
    lines.append("")
    lines.append("Use <code>/project &lt;slug&gt;</code> to connect.")
    return "\n".join(lines)


def format_help() -> str:
    return "\n".join([
        "<b>Commands</b>",
        "",
        "/start - Projects &amp; quick start",
        "/projects - List projects",
        "/project &lt;slug&gt; - Open project (creates topic)",
        "/switch - Open another project",
        "/model - Change model",
        "/status - Session info (all sessions in General)",
        "/cancel - Interrupt the agent",
        "/stop - End session (this topic)",
        "/stopall - End all sessions",
        "/new - Restart session",
        "/help - This message",
        "",
        "Each project runs in its own topic.",
        "Just type to chat. Buttons for everything else.",
    ])


def format_welcome(bot_name: str) -> str:
    models = " · ".join(f"<code>{m}</code>" for m in VALID_MODELS)
    return "\n".join([
        f"<b>{escape_html(bot_name)}</b>",
        "",
        "Control Claude Code from Telegram.",
        "Select a project, then type your request.",
        "",
        f"Models: {models}",
    ])


def format_connected(profile: ProjectProfile, model: str) -> str:
    return "\n".join([
        f"<b>Connected to {escape_html(profile.name)}</b>",
        f"<code>{escape_html(profile.dir)}</code>",
        f"{escape_html(model)} | {profile.permission_mode or DEFAULT_PERMISSION_MODE}",
        "",
        "Send any message to chat with Claude.",
    ])


def format_all_sessions(
    mappings: list[ChatSessionMapping],
    get_state: Callable[[str], RuntimeState | None],
) -> str:
    """Overview of every session in a chat, for /status outside a session topic."""
    if not mappings:
        return "No active sessions."
    lines = [f"<b>Active Sessions ({len(mappings)})</b>", ""]
    for m in mappings:
        state = get_state(m.session_id)
        status = state.status if state else "unknown"
        cost = state.total_cost_usd if state else 0.0
        turns = state.num_turns if state else 0
        label = "topic" if m.topic_id > 0 else "general"
        lines.append(f"{_STATUS_EMOJI.get(status, '⚪')} <b>{escape_html(m.project_slug)}</b> ({label})")
        lines.append(f"  {escape_html(m.model)} · ${cost:.3f} · {turns} turns")
    return "\n".join(lines)


# ----------------------------------------------------------------------
# Inline keyboards
# ----------------------------------------------------------------------


def project_keyboard(profiles: list[ProjectProfile]) -> dict:
    """Project picker, two buttons per row."""
    buttons = [{"text": p.name, "callback_data": f"proj:{p.slug}"} for p in profiles]
    return {"inline_keyboard": [buttons[i:i + 2] for i in range(0, len(buttons), 2)]}


def model_keyboard(current: str | None = None) -> dict:
    row = [
        {"text": f"{m} ✓" if m == current else m, "callback_data": f"model:{m}"}
        for m in VALID_MODELS
    ]
    return {"inline_keyboard": [row]}


def confirm_keyboard(action: str) -> dict:
    """Yes/Cancel keyboard for ``stop`` or ``new``."""
    label = "Yes, restart" if action == "new" else "Yes, stop"
    return {
        "inline_keyboard": [[
            {"text": label, "callback_data": f"{action}:confirm"},
            {"text": "Cancel", "callback_data": f"{action}:cancel"},
        ]]
    }


def session_actions_keyboard(model: str) -> dict:
    return {
        "inline_keyboard": [
            [
                {"text": f"Model: {model}", "callback_data": "action:model"},
                {"text": "Status", "callback_data": "action:status"},
            ],
            [
                {"text": "Cancel", "callback_data": "action:cancel"},
                {"text": "Stop", "callback_data": "action:stop"},
            ],
            [{"text": "⏱ Timeout", "callback_data": "action:timeout"}],
        ]
    }


TIMEOUT_CHOICES = (15 * 60, 30 * 60, 60 * 60, 2 * 60 * 60, 4 * 60 * 60)


def format_duration(seconds: float) -> str:
    """Render a timeout as ``45m``, ``2h`` or ``1h 30m``."""
    minutes = int(round(seconds / 60))
    hours, minutes = divmod(minutes, 60)
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    return f"{minutes}m"


def timeout_keyboard(timeout: float | None) -> dict:
    """Idle timeout picker; ``timeout`` is None when the timeout is off."""
    choices = [
        {
            "text": f"{format_duration(s)} ✓" if s == timeout else format_duration(s),
            "callback_data": f"timeout:set:{s}",
        }
        for s in TIMEOUT_CHOICES
    ]
    toggle = (
        {"text": "Turn on", "callback_data": "timeout:toggle:on"}
        if timeout is None
        else {"text": "Turn off", "callback_data": "timeout:toggle:off"}
    )
    return {"inline_keyboard": [choices[:3], choices[3:], [toggle]]}
