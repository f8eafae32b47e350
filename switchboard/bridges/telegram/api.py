"""Thin async client for the Telegram Bot API.

Every call is a JSON ``POST`` to ``/bot<token>/<method>``; the response
envelope ``{ok, result | description}`` is unwrapped and ``ok: false`` raises
TelegramAPIError. The client holds no state besides the token and its HTTP
connection pool, so one instance is shared by all sessions.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from switchboard.bridges.telegram.types import (
    TelegramFile,
    TelegramForumTopic,
    TelegramMessage,
    TelegramUpdate,
    TelegramUser,
)

logger = structlog.get_logger(__name__)

API_BASE = "https://api.telegram.org"
DEFAULT_TIMEOUT = 30.0
# Extra client-side time on top of the server-side long-poll wait.
POLL_TIMEOUT_MARGIN = 15.0
ALLOWED_UPDATES = ["message", "callback_query", "channel_post"]


class TelegramAPIError(Exception):
    """A Bot API call failed (``ok: false`` or an unreadable response)."""

    def __init__(self, method: str, description: str, error_code: int | None = None):
        super().__init__(f"Telegram API {method}: {description}")
        self.method = method
        self.description = description
        self.error_code = error_code


def _thread(payload: dict[str, Any], topic_id: int) -> dict[str, Any]:
    if topic_id > 0:
        payload["message_thread_id"] = topic_id
    return payload


class TelegramClient:
    """Bot API client over ``httpx.AsyncClient``.

    Args:
        token: Bot token from BotFather.
        client: Optional pre-built HTTP client (tests pass one with a mock transport).
        base_url: API root, overridable for local Bot API servers.
    """

    def __init__(
        self,
        token: str,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = API_BASE,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._http = client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> TelegramClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    def _url(self, method: str) -> str:
        return f"{self._base_url}/bot{self._token}/{method}"

    @staticmethod
    def _unwrap(method: str, response: httpx.Response) -> Any:
        try:
            data = response.json()
        except ValueError:
            raise TelegramAPIError(
                method, f"HTTP {response.status_code}: invalid JSON", response.status_code
            ) from None
        if not isinstance(data, dict) or not data.get("ok"):
            description = "Unknown error"
            error_code = response.status_code
            if isinstance(data, dict):
                description = data.get("description") or description
                error_code = data.get("error_code", error_code)
            raise TelegramAPIError(method, description, error_code)
        return data.get("result")

    async def call(
        self,
        method: str,
        payload: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """POST a Bot API method and return its ``result``."""
        response = await self._http.post(
            self._url(method),
            json=payload or {},
            timeout=timeout if timeout is not None else DEFAULT_TIMEOUT,
        )
        return self._unwrap(method, response)

    # ------------------------------------------------------------------
    # Identity & setup
    # ------------------------------------------------------------------

    async def get_me(self) -> TelegramUser:
        return TelegramUser.model_validate(await self.call("getMe"))

    async def delete_webhook(self, drop_pending_updates: bool = False) -> bool:
        return await self.call(
            "deleteWebhook", {"drop_pending_updates": drop_pending_updates}
        )

    async def set_my_commands(self, commands: list[dict[str, str]]) -> bool:
        """Register the command menu. ``commands`` holds ``{command, description}``."""
        return await self.call("setMyCommands", {"commands": commands})

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def get_updates(
        self,
        offset: int,
        timeout: int,
        allowed_updates: list[str] | None = None,
    ) -> list[TelegramUpdate]:
        """Long-poll for updates.

        The HTTP timeout is always longer than the server-side wait so the
        request terminates even if the server never answers.
        """
        result = await self.call(
            "getUpdates",
            {
                "offset": offset,
                "timeout": timeout,
                "allowed_updates": allowed_updates or ALLOWED_UPDATES,
            },
            timeout=timeout + POLL_TIMEOUT_MARGIN,
        )
        return [TelegramUpdate.model_validate(u) for u in result or []]

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        parse_mode: str | None = "HTML",
        topic_id: int = 0,
        reply_to: int | None = None,
        reply_markup: dict[str, Any] | None = None,
        disable_preview: bool = True,
    ) -> TelegramMessage:
        """Send a text message. ``parse_mode=None`` sends plain text."""
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": disable_preview,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_to:
            payload["reply_to_message_id"] = reply_to
        if reply_markup:
            payload["reply_markup"] = reply_markup
        result = await self.call("sendMessage", _thread(payload, topic_id))
        return TelegramMessage.model_validate(result)

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        *,
        parse_mode: str | None = "HTML",
        reply_markup: dict[str, Any] | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup:
            payload["reply_markup"] = reply_markup
        await self.call("editMessageText", payload)

    async def edit_message_reply_markup(
        self,
        chat_id: int,
        message_id: int,
        reply_markup: dict[str, Any] | None = None,
    ) -> None:
        """Replace (or with None, remove) the inline keyboard of a message."""
        await self.call(
            "editMessageReplyMarkup",
            {
                "chat_id": chat_id,
                "message_id": message_id,
                "reply_markup": reply_markup or {"inline_keyboard": []},
            },
        )

    async def send_chat_action(
        self, chat_id: int, action: str = "typing", *, topic_id: int = 0
    ) -> bool:
        """Best-effort chat action. Failures are logged at debug level only."""
        try:
            await self.call(
                "sendChatAction", _thread({"chat_id": chat_id, "action": action}, topic_id)
            )
        except (httpx.HTTPError, TelegramAPIError) as e:
            logger.debug("Chat action failed", chat_id=chat_id, error=str(e))
            return False
        return True

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    async def set_message_reaction(self, chat_id: int, message_id: int, emoji: str) -> None:
        await self.call(
            "setMessageReaction",
            {
                "chat_id": chat_id,
                "message_id": message_id,
                "reaction": [{"type": "emoji", "emoji": emoji}],
            },
        )

    async def react(self, chat_id: int, message_id: int, emoji: str) -> bool:
        """Best-effort reaction; not every chat type allows them."""
        try:
            await self.set_message_reaction(chat_id, message_id, emoji)
        except (httpx.HTTPError, TelegramAPIError) as e:
            logger.debug("Reaction failed", chat_id=chat_id, error=str(e))
            return False
        return True

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def get_file(self, file_id: str) -> TelegramFile:
        return TelegramFile.model_validate(await self.call("getFile", {"file_id": file_id}))

    async def download_file(self, file_path: str) -> bytes:
        """Download a file previously resolved with get_file()."""
        response = await self._http.get(
            f"{self._base_url}/file/bot{self._token}/{file_path}", timeout=DEFAULT_TIMEOUT
        )
        if response.status_code != 200:
            raise TelegramAPIError(
                "downloadFile", f"HTTP {response.status_code}", response.status_code
            )
        return response.content

    async def send_document(
        self,
        chat_id: int,
        filename: str,
        content: str | bytes,
        *,
        caption: str | None = None,
        topic_id: int = 0,
    ) -> TelegramMessage:
        """Upload ``content`` as a document (multipart form)."""
        data: dict[str, Any] = {"chat_id": str(chat_id)}
        if caption:
            data["caption"] = caption
            data["parse_mode"] = "HTML"
        if topic_id > 0:
            data["message_thread_id"] = str(topic_id)
        body = content.encode("utf-8") if isinstance(content, str) else content
        response = await self._http.post(
            self._url("sendDocument"),
            data=data,
            files={"document": (filename, body, "text/plain")},
            timeout=DEFAULT_TIMEOUT,
        )
        return TelegramMessage.model_validate(self._unwrap("sendDocument", response))

    # ------------------------------------------------------------------
    # Forum topics & chat management
    # ------------------------------------------------------------------

    async def create_forum_topic(self, chat_id: int, name: str) -> TelegramForumTopic:
        result = await self.call("createForumTopic", {"chat_id": chat_id, "name": name})
        return TelegramForumTopic.model_validate(result)

    async def close_forum_topic(self, chat_id: int, topic_id: int) -> bool:
        return await self.call(
            "closeForumTopic", {"chat_id": chat_id, "message_thread_id": topic_id}
        )

    async def pin_chat_message(
        self, chat_id: int, message_id: int, *, disable_notification: bool = True
    ) -> None:
        await self.call(
            "pinChatMessage",
            {
                "chat_id": chat_id,
                "message_id": message_id,
                "disable_notification": disable_notification,
            },
        )

    async def unpin_chat_message(self, chat_id: int, message_id: int) -> None:
        await self.call("unpinChatMessage", {"chat_id": chat_id, "message_id": message_id})

    async def answer_callback_query(self, callback_query_id: str, text: str | None = None) -> None:
        payload: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        await self.call("answerCallbackQuery", payload)
