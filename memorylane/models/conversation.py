from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatIntent(str, Enum):
    SHOW_VIDEO = "show_video"
    GENERATE = "generate"
    SEARCH = "search"


class AttachedVideo(BaseModel):
    """Display-only view of a video attached to an assistant reply."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    uploaded_at: datetime | None = Field(default=None, alias="uploadedAt")
    url: str = ""
    duration: float | None = None
    emotion_tags: list[str] = Field(default_factory=list, alias="emotionTags")
    intent: ChatIntent = ChatIntent.SEARCH


class Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime | None = None
    attached_videos: list[AttachedVideo] | None = Field(default=None, alias="attachedVideos")

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ConversationRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    messages: list[Message] = Field(default_factory=list)

    def last_attached_videos(self) -> list[AttachedVideo]:
        for message in reversed(self.messages):
            if message.role == "assistant":
                return list(message.attached_videos or [])
        return []
