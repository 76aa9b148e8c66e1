"""Chat read/unread consistency rules, free of any storage calls.

Messages live in two places: the legacy `messages` array embedded in the
chat document and the append-only `chats/{id}/messages` subcollection. The
functions here merge the two views and derive which writes bring read state
and the unread counter back in line. chat_store turns plans into batches.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
import time

from retriva.domain.report_schema import AttachmentType, ChatType, MessageStatus
from retriva.models.chat import Attachment, Chat, Message
from retriva.services.errors import ChatPermissionError, InvalidTransition

MessageKey = Union[str, int]


def now_ms() -> int:
    return int(time.time() * 1000)


def message_key(m: Message) -> MessageKey:
    # legacy entries may lack an id; two such messages in the same millisecond collide
    return m.id or m.timestamp


def merge_messages(legacy: Iterable[Message], stream: Iterable[Message]) -> List[Message]:
    """Union keyed by id-or-timestamp, stream entries win, ascending by timestamp."""
    by_key: Dict[MessageKey, Message] = {}
    for m in legacy:
        by_key[message_key(m)] = m
    for m in stream:
        by_key[message_key(m)] = m
    return sorted(by_key.values(), key=lambda m: m.timestamp)


def advance_status(current: MessageStatus, target: MessageStatus) -> MessageStatus:
    if current == target:
        return current
    if current == MessageStatus.SENT and target == MessageStatus.READ:
        return target
    raise InvalidTransition(f"message status {current.value} -> {target.value}")


@dataclass
class ReadReceiptPlan:
    message_ids: List[str] = field(default_factory=list)  # subcollection docs to flip to read
    legacy_messages: Optional[List[Message]] = None  # rewritten embedded array, None = untouched
    reset_unread: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.message_ids and self.legacy_messages is None and not self.reset_unread


def _should_mark(m: Message, viewer_id: str, viewed_at: int) -> bool:
    return m.sender_id != viewer_id and m.status != MessageStatus.READ and m.timestamp <= viewed_at


def plan_read_receipts(chat: Chat, stream: Sequence[Message], viewer_id: str,
                       viewed_at: Optional[int] = None) -> ReadReceiptPlan:
    """What the viewer, who has the chat open right now, has read.

    The unread reset fires whenever unreadCount > 0 and the viewer was not the
    last sender, even if some messages are still off screen. unreadCount is
    bumped optimistically on every send, so this is the only correction it gets.
    """
    at = viewed_at if viewed_at is not None else now_ms()
    plan = ReadReceiptPlan()
    plan.message_ids = [m.id for m in stream if m.id and _should_mark(m, viewer_id, at)]
    if any(_should_mark(m, viewer_id, at) for m in chat.messages):
        plan.legacy_messages = [
            m.model_copy(update={"status": advance_status(m.status, MessageStatus.READ)})
            if _should_mark(m, viewer_id, at) else m
            for m in chat.messages
        ]
    plan.reset_unread = chat.unread_count > 0 and chat.last_sender_id != viewer_id
    return plan


def apply_read_receipts(messages: Sequence[Message], plan: ReadReceiptPlan) -> List[Message]:
    """The merged view after a plan is committed."""
    read_keys: set = set(plan.message_ids)
    for m in plan.legacy_messages or []:
        if m.status == MessageStatus.READ:
            read_keys.add(message_key(m))
    out: List[Message] = []
    for m in messages:
        if m.status != MessageStatus.READ and message_key(m) in read_keys:
            m = m.model_copy(update={"status": advance_status(m.status, MessageStatus.READ)})
        out.append(m)
    return out


def apply_plan_to_chat(chat: Chat, plan: ReadReceiptPlan) -> Chat:
    update: Dict[str, Any] = {}
    if plan.legacy_messages is not None:
        update["messages"] = plan.legacy_messages
    if plan.reset_unread:
        update["unread_count"] = 0
    return chat.model_copy(update=update) if update else chat


# ---- blocking ----
@dataclass
class BlockState:
    is_blocked: bool
    i_blocked_them: bool
    they_blocked_me: bool


def block_state(chat: Chat, viewer_id: str) -> BlockState:
    i_blocked = chat.is_blocked and chat.blocked_by == viewer_id
    return BlockState(is_blocked=chat.is_blocked, i_blocked_them=i_blocked,
                      they_blocked_me=chat.is_blocked and not i_blocked)


def ensure_can_send(chat: Chat, sender_id: str) -> None:
    if chat.type == ChatType.DIRECT and sender_id not in chat.participants:
        raise ChatPermissionError("not_a_participant")
    if block_state(chat, sender_id).they_blocked_me:
        raise ChatPermissionError("blocked")


def toggle_block(chat: Chat, actor_id: str) -> Dict[str, Any]:
    """Firestore field update for a block / unblock by actor_id."""
    if chat.type != ChatType.DIRECT:
        raise ChatPermissionError("global_chat_not_blockable")
    if actor_id not in chat.participants:
        raise ChatPermissionError("not_a_participant")
    state = block_state(chat, actor_id)
    if state.they_blocked_me:
        raise ChatPermissionError("blocked_by_other")
    if state.i_blocked_them:
        return {"isBlocked": False, "blockedBy": None}
    return {"isBlocked": True, "blockedBy": actor_id}


# ---- sending ----
def build_message(sender_id: str, sender_name: str, text: Optional[str],
                  attachment: Optional[Attachment], timestamp: Optional[int] = None) -> Message:
    body = (text or "").strip()
    if not body and attachment is None:
        raise ValueError("empty_message")
    return Message(
        sender_id=sender_id,
        sender_name=sender_name,
        text=body,
        attachment=attachment,
        timestamp=timestamp if timestamp is not None else now_ms(),
        status=MessageStatus.SENT,
    )


def summary_text(message: Message) -> str:
    if message.attachment is not None:
        return "Sent a photo" if message.attachment.type == AttachmentType.IMAGE else "Sent a file"
    return message.text or ""
