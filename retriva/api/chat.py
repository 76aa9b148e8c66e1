from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from retriva.models.chat import Attachment, Chat, Message
from retriva.scripts.logging_config import get_logger
from retriva.services import chat_store
from retriva.services.chat_sync import block_state
from retriva.services.errors import ChatNotFound, ChatPermissionError, SyncWriteFailure

logger = get_logger("chat")

router = APIRouter(prefix="/chat", tags=["chat"])

# stage -> 사용자에게 보여줄 안내
SEND_FAILURE_MESSAGES = {
    "append": "Message was not sent. Check your connection and try again.",
    "summary": "Message was sent but the chat list may be out of date. Refresh to update it.",
}


class CamelBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SendMessageRequest(CamelBody):
    sender_id: str = Field(..., alias="senderId")
    sender_name: str = Field("", alias="senderName")
    text: Optional[str] = ""  # 첨부만 있는 메시지 허용
    attachment: Optional[Attachment] = None


class ViewerRequest(CamelBody):
    viewer_id: str = Field(..., alias="viewerId")


class ConversationResponse(CamelBody):
    chat_id: str = Field(..., alias="chatId")
    unread_count: int = Field(0, alias="unreadCount")
    is_blocked: bool = Field(False, alias="isBlocked")
    i_blocked_them: bool = Field(False, alias="iBlockedThem")
    they_blocked_me: bool = Field(False, alias="theyBlockedMe")
    messages: List[Message]


class BlockResponse(CamelBody):
    chat_id: str = Field(..., alias="chatId")
    is_blocked: bool = Field(..., alias="isBlocked")
    blocked_by: Optional[str] = Field(None, alias="blockedBy")


def _conversation(chat: Chat, messages: List[Message], viewer_id: str) -> ConversationResponse:
    state = block_state(chat, viewer_id)
    return ConversationResponse(
        chat_id=chat.id,
        unread_count=chat.unread_count,
        is_blocked=state.is_blocked,
        i_blocked_them=state.i_blocked_them,
        they_blocked_me=state.they_blocked_me,
        messages=messages,
    )


def _open(chat_id: str, viewer_id: str) -> ConversationResponse:
    norm = (viewer_id or "").strip()
    if not norm:
        raise HTTPException(status_code=400, detail="missing_viewer_id")
    try:
        chat, messages = chat_store.open_conversation(chat_id, norm)
    except ChatNotFound:
        raise HTTPException(status_code=404, detail="not_found")
    return _conversation(chat, messages, norm)


@router.get("/{chat_id}/messages", response_model=ConversationResponse)
def get_messages(chat_id: str, viewer_id: str):
    return _open(chat_id, viewer_id)


@router.post("/{chat_id}/read", response_model=ConversationResponse)
def mark_read(chat_id: str, req: ViewerRequest):
    return _open(chat_id, req.viewer_id)


@router.post("/{chat_id}/send", response_model=Message)
def send(chat_id: str, req: SendMessageRequest):
    try:
        return chat_store.send_message(chat_id, req.sender_id, req.sender_name, req.text, req.attachment)
    except ChatNotFound:
        raise HTTPException(status_code=404, detail="not_found")
    except ChatPermissionError as e:
        raise HTTPException(status_code=403, detail=e.code)
    except ValueError as e:
        # empty_message | content_too_long
        raise HTTPException(status_code=400, detail=str(e))
    except SyncWriteFailure as e:
        raise HTTPException(status_code=503, detail={
            "code": "send_failed",
            "stage": e.stage,
            "message": SEND_FAILURE_MESSAGES.get(e.stage, "Message could not be saved. Try again."),
        })


@router.post("/{chat_id}/block", response_model=BlockResponse)
def block(chat_id: str, req: ViewerRequest):
    try:
        chat = chat_store.toggle_block(chat_id, req.viewer_id)
    except ChatNotFound:
        raise HTTPException(status_code=404, detail="not_found")
    except ChatPermissionError as e:
        raise HTTPException(status_code=403, detail=e.code)
    except SyncWriteFailure:
        raise HTTPException(status_code=503, detail="write_failed")
    return BlockResponse(chat_id=chat.id, is_blocked=chat.is_blocked, blocked_by=chat.blocked_by)
