"""Subset of the Telegram Bot API object model the bridge reads."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: str = ""
    username: str | None = None


class TelegramChat(BaseModel):
    id: int
    type: str = "private"
    title: str | None = None
    is_forum: bool = False

    @property
    def is_private(self) -> bool:
        return self.type == "private"


class TelegramPhotoSize(BaseModel):
    file_id: str
    width: int = 0
    height: int = 0
    file_size: int | None = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: int
    chat: TelegramChat
    from_user: TelegramUser | None = Field(default=None, alias="from")
    date: int = 0
    text: str | None = None
    caption: str | None = None
    photo: list[TelegramPhotoSize] | None = None
    message_thread_id: int | None = None
    is_topic_message: bool = False

    @property
    def topic_id(self) -> int:
        """Forum topic of the message, 0 for the general thread."""
        if self.is_topic_message and self.message_thread_id:
            return self.message_thread_id
        return 0


class TelegramCallbackQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    from_user: TelegramUser | None = Field(default=None, alias="from")
    message: TelegramMessage | None = None
    data: str | None = None


class TelegramUpdate(BaseModel):
    update_id: int
    message: TelegramMessage | None = None
    channel_post: TelegramMessage | None = None
    callback_query: TelegramCallbackQuery | None = None

    @property
    def chat_id(self) -> int | None:
        """Chat the update originates from, if any."""
        msg = self.message or self.channel_post
        if msg is not None:
            return msg.chat.id
        if self.callback_query and self.callback_query.message:
            return self.callback_query.message.chat.id
        return None


class TelegramFile(BaseModel):
    file_id: str
    file_path: str | None = None
    file_size: int | None = None


class TelegramForumTopic(BaseModel):
    message_thread_id: int
    name: str = ""
