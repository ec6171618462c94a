"""Chat provider API shapes (conversations, messages, pagination cursor)."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _ChatModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Cursor(_ChatModel):
    page: int = 1
    pages: int = 1


class ChatContact(_ChatModel):
    original_id: str = Field(default="", alias="originalId")
    full_name: str = Field(default="", alias="fullName")


class Chat(_ChatModel):
    id: str
    contact: ChatContact = Field(default_factory=ChatContact)


class ChatPage(_ChatModel):
    collection: list[Chat] = Field(default_factory=list)
    cursor: Cursor = Field(default_factory=Cursor)


class MessageParameters(_ChatModel):
    content: str = ""


class MessageResource(_ChatModel):
    parameters: MessageParameters = Field(default_factory=MessageParameters)


class MessageContent(_ChatModel):
    type: str = ""
    resource: MessageResource = Field(default_factory=MessageResource)


class MessageSender(_ChatModel):
    full_name: str = Field(default="", alias="fullName")


class Message(_ChatModel):
    id: str
    created_at: datetime = Field(alias="createdAt")
    content: MessageContent = Field(default_factory=MessageContent)
    sender: MessageSender = Field(default_factory=MessageSender)

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    @property
    def text(self) -> str:
        return self.content.resource.parameters.content

    @property
    def is_text(self) -> bool:
        return self.content.type == "text" and bool(self.text.strip())


class MessagePage(_ChatModel):
    collection: list[Message] = Field(default_factory=list)
    cursor: Cursor = Field(default_factory=Cursor)
