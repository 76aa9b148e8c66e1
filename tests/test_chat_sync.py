import pytest

from retriva.domain.report_schema import AttachmentType, MessageStatus
from retriva.models.chat import Attachment, Chat, Message
from retriva.services import chat_sync
from retriva.services.errors import ChatPermissionError, InvalidTransition


def _msg(sender, ts, mid=None, status=MessageStatus.SENT, text="hi"):
    return Message(id=mid, sender_id=sender, sender_name=sender.title(), text=text, timestamp=ts, status=status)


def _chat(**kw):
    data = {"id": "c1", "participants": ["alice", "bob"]}
    data.update(kw)
    return Chat(**data)


def test_merge_prefers_stream_and_sorts_by_timestamp():
    legacy = [_msg("bob", 1, text="old"), _msg("bob", 3, mid="x")]
    stream = [_msg("bob", 3, mid="x", status=MessageStatus.READ), _msg("alice", 2, mid="y")]
    merged = chat_sync.merge_messages(legacy, stream)
    assert [m.timestamp for m in merged] == [1, 2, 3]
    assert merged[2].status == MessageStatus.READ
    assert len(merged) == 3


def test_merge_keys_legacy_messages_by_timestamp():
    merged = chat_sync.merge_messages([_msg("bob", 5, text="a")], [_msg("bob", 5, text="b")])
    assert [m.text for m in merged] == ["b"]


def test_status_only_moves_forward():
    assert chat_sync.advance_status(MessageStatus.SENT, MessageStatus.READ) == MessageStatus.READ
    assert chat_sync.advance_status(MessageStatus.READ, MessageStatus.READ) == MessageStatus.READ
    with pytest.raises(InvalidTransition):
        chat_sync.advance_status(MessageStatus.READ, MessageStatus.SENT)


def test_plan_marks_what_the_viewer_has_seen():
    chat = _chat(unread_count=5, last_sender_id="bob")
    stream = [
        _msg("bob", 100, mid="m1"),
        _msg("alice", 150, mid="m2"),
        _msg("bob", 200, mid="m3"),
        _msg("bob", 250, mid="m4", status=MessageStatus.READ),
        _msg("bob", 10_000, mid="later"),
    ]
    plan = chat_sync.plan_read_receipts(chat, stream, "alice", viewed_at=500)
    assert plan.message_ids == ["m1", "m3"]
    assert plan.legacy_messages is None
    assert plan.reset_unread is True

    merged = chat_sync.apply_read_receipts(chat_sync.merge_messages(chat.messages, stream), plan)
    assert [m.status for m in merged] == [
        MessageStatus.READ, MessageStatus.SENT, MessageStatus.READ, MessageStatus.READ, MessageStatus.SENT,
    ]
    assert chat_sync.apply_plan_to_chat(chat, plan).unread_count == 0


def test_plan_leaves_unread_alone_for_the_last_sender():
    chat = _chat(unread_count=2, last_sender_id="alice")
    plan = chat_sync.plan_read_receipts(chat, [_msg("alice", 1, mid="m1")], "alice", viewed_at=10)
    assert plan.is_empty


def test_plan_rewrites_legacy_messages():
    chat = _chat(messages=[_msg("bob", 1, text="old"), _msg("alice", 2, text="reply")])
    plan = chat_sync.plan_read_receipts(chat, [], "alice", viewed_at=10)
    assert [m.status for m in plan.legacy_messages] == [MessageStatus.READ, MessageStatus.SENT]
    merged = chat_sync.apply_read_receipts(chat.messages, plan)
    assert merged[0].status == MessageStatus.READ
    assert chat_sync.apply_plan_to_chat(chat, plan).messages[0].status == MessageStatus.READ


def test_send_gate():
    chat = _chat()
    chat_sync.ensure_can_send(chat, "alice")
    with pytest.raises(ChatPermissionError) as info:
        chat_sync.ensure_can_send(chat, "mallory")
    assert info.value.code == "not_a_participant"

    blocked = _chat(is_blocked=True, blocked_by="bob")
    chat_sync.ensure_can_send(blocked, "bob")
    with pytest.raises(ChatPermissionError) as info:
        chat_sync.ensure_can_send(blocked, "alice")
    assert info.value.code == "blocked"

    chat_sync.ensure_can_send(_chat(type="global", participants=[]), "anyone")


def test_toggle_block_rules():
    chat = _chat()
    assert chat_sync.toggle_block(chat, "alice") == {"isBlocked": True, "blockedBy": "alice"}

    blocked = _chat(is_blocked=True, blocked_by="alice")
    assert chat_sync.toggle_block(blocked, "alice") == {"isBlocked": False, "blockedBy": None}
    with pytest.raises(ChatPermissionError) as info:
        chat_sync.toggle_block(blocked, "bob")
    assert info.value.code == "blocked_by_other"

    state = chat_sync.block_state(blocked, "bob")
    assert state.they_blocked_me and not state.i_blocked_them

    with pytest.raises(ChatPermissionError):
        chat_sync.toggle_block(_chat(type="global"), "alice")


def test_build_message_and_summary():
    with pytest.raises(ValueError, match="empty_message"):
        chat_sync.build_message("alice", "Alice", "   ", None)

    text = chat_sync.build_message("alice", "Alice", "  see you at 5 ", None, timestamp=42)
    assert text.text == "see you at 5"
    assert text.status == MessageStatus.SENT
    assert chat_sync.summary_text(text) == "see you at 5"

    photo = chat_sync.build_message("alice", "Alice", "", Attachment(type=AttachmentType.IMAGE, url="https://x/p.jpg"))
    assert chat_sync.summary_text(photo) == "Sent a photo"
    doc = chat_sync.build_message("alice", "Alice", None, Attachment(type="file", url="https://x/f.pdf"))
    assert chat_sync.summary_text(doc) == "Sent a file"
