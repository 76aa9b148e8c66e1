from typing import Callable, List, Optional, Tuple
import threading

from firebase_admin import firestore
from pydantic import ValidationError

from config import settings
from retriva.domain.report_schema import ChatType
from retriva.models.chat import Attachment, Chat, Message
from retriva.scripts.logging_config import get_logger, log_sync_event
from retriva.services import chat_sync
from retriva.services.chat_sync import ReadReceiptPlan
from retriva.services.errors import ChatNotFound, SyncWriteFailure

logger = get_logger("chat_sync")

_db = None

def get_db():
    global _db
    if _db is None:
        _db = firestore.client()
    return _db

# Firestore 구조 (web client 와 공유)
# chats/{chat_id}  { type, participants, messages(legacy), unreadCount, lastSenderId, lastMessage, lastMessageTime, isBlocked, blockedBy, ... }
# chats/{chat_id}/messages/{message_id}  { senderId, senderName, text, attachment, timestamp, status }


def _chat_ref(chat_id: str):
    return get_db().collection("chats").document(chat_id)


def _messages_col(chat_id: str):
    return _chat_ref(chat_id).collection("messages")


def _message_payload(m: Message) -> dict:
    return m.model_dump(by_alias=True, exclude={"id"}, exclude_none=True, mode="json")


def _legacy_payload(m: Message) -> dict:
    return m.model_dump(by_alias=True, exclude_none=True, mode="json")


def parse_messages(raw: List[dict]) -> List[Message]:
    out: List[Message] = []
    for entry in raw or []:
        try:
            out.append(Message.model_validate(entry))
        except ValidationError as e:
            logger.warning("message.skip_invalid err=%s", str(e)[:160])
    return out


def chat_from_snapshot(snap) -> Chat:
    data = snap.to_dict() or {}
    legacy = parse_messages(data.pop("messages", None) or [])
    return Chat.model_validate({**data, "id": snap.id, "messages": legacy})


def get_chat(chat_id: str) -> Chat:
    snap = _chat_ref(chat_id).get()
    if not snap.exists:
        raise ChatNotFound(chat_id)
    return chat_from_snapshot(snap)


def list_stream_messages(chat_id: str) -> List[Message]:
    """Subcollection messages ascending by timestamp. Read failures degrade to []."""
    try:
        docs = _messages_col(chat_id).order_by("timestamp", direction=firestore.Query.ASCENDING).stream()
        return parse_messages([{**(d.to_dict() or {}), "id": d.id} for d in docs])
    except Exception as e:
        logger.error("messages.read_failed chat=%s err=%s", chat_id, e)
        return []


def send_message(chat_id: str, sender_id: str, sender_name: str, text: Optional[str] = None,
                 attachment: Optional[Attachment] = None) -> Message:
    """Append to the stream, then update the chat summary.

    Two writes, no rollback: if the summary update fails the message stays
    delivered and the caller is told (SyncWriteFailure stage="summary").

    Raises ValueError with codes: empty_message | content_too_long
    """
    chat = get_chat(chat_id)
    chat_sync.ensure_can_send(chat, sender_id)
    if text and len(text.strip()) > settings.CHAT_MAX_MESSAGE_CHARS:
        raise ValueError("content_too_long")
    message = chat_sync.build_message(sender_id, sender_name, text, attachment)

    try:
        ref = _messages_col(chat_id).document()
        ref.set(_message_payload(message))
    except Exception as e:
        logger.error("send.append_failed chat=%s sender=%s err=%s", chat_id, sender_id, e)
        raise SyncWriteFailure(chat_id, "append", e) from e
    message = message.model_copy(update={"id": ref.id})

    try:
        _chat_ref(chat_id).update({
            "lastMessage": chat_sync.summary_text(message),
            "lastMessageTime": message.timestamp,
            "lastSenderId": sender_id,
            "deletedIds": [],
            "unreadCount": firestore.Increment(1),
        })
    except Exception as e:
        logger.error("send.summary_failed chat=%s message=%s err=%s", chat_id, message.id, e)
        raise SyncWriteFailure(chat_id, "summary", e) from e
    log_sync_event("send", chat_id, {"message": message.id, "sender": sender_id})
    return message


def commit_read_receipts(chat_id: str, plan: ReadReceiptPlan) -> None:
    """One batch: per-message status flips, legacy array rewrite, unread reset."""
    if plan.is_empty:
        return
    db = get_db()
    batch = db.batch()
    for mid in plan.message_ids:
        batch.update(_messages_col(chat_id).document(mid), {"status": "read"})
    chat_update = {}
    if plan.legacy_messages is not None:
        chat_update["messages"] = [_legacy_payload(m) for m in plan.legacy_messages]
    if plan.reset_unread:
        chat_update["unreadCount"] = 0
    if chat_update:
        batch.update(_chat_ref(chat_id), chat_update)
    try:
        batch.commit()
    except Exception as e:
        raise SyncWriteFailure(chat_id, "read_receipts", e) from e
    log_sync_event("read_receipts", chat_id, {
        "messages": len(plan.message_ids),
        "legacy_rewritten": plan.legacy_messages is not None,
        "reset_unread": plan.reset_unread,
    })


def is_outsider(chat: Chat, viewer_id: str) -> bool:
    return chat.type == ChatType.DIRECT and viewer_id not in chat.participants


def reconcile(chat: Chat, stream: List[Message], viewer_id: str) -> Tuple[Chat, List[Message]]:
    """Merge, mark what the viewer has now seen, return the corrected view.

    Outsiders of a direct chat get the merged view with nothing marked.
    A failed commit is logged and the uncorrected view returned; the next
    trigger retries, since both writes are idempotent.
    """
    merged = chat_sync.merge_messages(chat.messages, stream)
    if is_outsider(chat, viewer_id):
        return chat, merged
    plan = chat_sync.plan_read_receipts(chat, stream, viewer_id)
    if plan.is_empty:
        return chat, merged
    try:
        commit_read_receipts(chat.id, plan)
    except SyncWriteFailure as e:
        logger.warning("reconcile.failed chat=%s viewer=%s err=%s", chat.id, viewer_id, e)
        return chat, merged
    return chat_sync.apply_plan_to_chat(chat, plan), chat_sync.apply_read_receipts(merged, plan)


def open_conversation(chat_id: str, viewer_id: str) -> Tuple[Chat, List[Message]]:
    chat = get_chat(chat_id)
    return reconcile(chat, list_stream_messages(chat_id), viewer_id)


def toggle_block(chat_id: str, actor_id: str) -> Chat:
    chat = get_chat(chat_id)
    update = chat_sync.toggle_block(chat, actor_id)
    try:
        _chat_ref(chat_id).update(update)
    except Exception as e:
        logger.error("block.write_failed chat=%s actor=%s err=%s", chat_id, actor_id, e)
        raise SyncWriteFailure(chat_id, "block", e) from e
    log_sync_event("block" if update["isBlocked"] else "unblock", chat_id, {"actor": actor_id})
    return chat.model_copy(update={"is_blocked": update["isBlocked"], "blocked_by": update["blockedBy"]})


class ChatViewer:
    """Live view of one chat for one viewer.

    Subscribes to the chat document and its ordered message stream; every
    snapshot re-merges and re-runs read reconciliation. Snapshot callbacks come
    from the SDK's watch thread, so handling is serialized per viewer.
    """

    def __init__(self, chat_id: str, viewer_id: str,
                 on_change: Optional[Callable[[Chat, List[Message]], None]] = None):
        self.chat_id = chat_id
        self.viewer_id = viewer_id
        self.chat: Optional[Chat] = None
        self.stream: List[Message] = []
        self.messages: List[Message] = []
        self._on_change = on_change
        self._lock = threading.Lock()
        self._watches: list = []

    def open(self) -> "ChatViewer":
        self._watches.append(_chat_ref(self.chat_id).on_snapshot(self._on_chat_snapshot))
        self._watches.append(
            _messages_col(self.chat_id)
            .order_by("timestamp", direction=firestore.Query.ASCENDING)
            .on_snapshot(self._on_messages_snapshot)
        )
        return self

    def close(self) -> None:
        for w in self._watches:
            w.unsubscribe()
        self._watches = []

    def _on_chat_snapshot(self, snapshots, changes=None, read_time=None):
        for snap in snapshots:
            if snap.exists:
                self.handle_chat(chat_from_snapshot(snap))

    def _on_messages_snapshot(self, snapshots, changes=None, read_time=None):
        self.handle_stream(parse_messages([{**(d.to_dict() or {}), "id": d.id} for d in snapshots]))

    def handle_chat(self, chat: Chat) -> None:
        with self._lock:
            self.chat = chat
            self._refresh()

    def handle_stream(self, stream: List[Message]) -> None:
        with self._lock:
            self.stream = stream
            self._refresh()

    def _refresh(self) -> None:
        if self.chat is None:
            return
        self.chat, self.messages = reconcile(self.chat, self.stream, self.viewer_id)
        if self._on_change is not None:
            self._on_change(self.chat, self.messages)
