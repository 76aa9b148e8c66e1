from pydantic import Field, field_validator
from typing import List, Optional

from retriva.domain.report_schema import AttachmentType, ChatType, MessageStatus
from retriva.models.reports import CamelModel


class Attachment(CamelModel):
    type: AttachmentType
    url: str  # remote URL or compressed data URI, both usable as an image source


class Message(CamelModel):
    id: Optional[str] = None  # legacy embedded entries may only carry a timestamp
    sender_id: str = Field(..., alias="senderId")
    sender_name: str = Field("", alias="senderName")
    text: Optional[str] = None
    attachment: Optional[Attachment] = None
    timestamp: int  # epoch millis
    status: MessageStatus = MessageStatus.SENT


class Chat(CamelModel):
    id: str
    type: ChatType = ChatType.DIRECT
    participants: List[str] = Field(default_factory=list)
    messages: List[Message] = Field(default_factory=list)  # legacy embedded list
    unread_count: int = Field(0, alias="unreadCount")
    last_sender_id: Optional[str] = Field(None, alias="lastSenderId")
    last_message: str = Field("", alias="lastMessage")
    last_message_time: Optional[int] = Field(None, alias="lastMessageTime")
    is_blocked: bool = Field(False, alias="isBlocked")
    blocked_by: Optional[str] = Field(None, alias="blockedBy")
    item_title: str = Field("", alias="itemTitle")
    item_image: Optional[str] = Field(None, alias="itemImage")
    deleted_ids: List[str] = Field(default_factory=list, alias="deletedIds")

    @field_validator("unread_count", mode="before")
    @classmethod
    def _non_negative(cls, v):
        try:
            return max(0, int(v or 0))
        except (TypeError, ValueError):
            return 0
