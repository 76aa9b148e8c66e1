import io

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from PIL import Image

from retriva.api import chat, deps, reports
from retriva.services.llm_providers import CascadeRegistry
from retriva.services.match_cache import MatchCache


@pytest.fixture
def client(fake_db, fake_cascade, monkeypatch):
    monkeypatch.setattr(deps, "cascades", CascadeRegistry(lambda: fake_cascade()))
    monkeypatch.setattr(deps, "match_cache", MatchCache(None))
    app = FastAPI()
    app.include_router(reports.router)
    app.include_router(chat.router)
    return TestClient(app)


def _seed_chat(db, **fields):
    doc = {"type": "direct", "participants": ["alice", "bob"], "unreadCount": 0, "messages": []}
    doc.update(fields)
    db.docs["chats/c1"] = doc


def _png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (1600, 800), (200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


def test_send_and_read_roundtrip(client, fake_db):
    _seed_chat(fake_db)
    res = client.post("/chat/c1/send", json={"senderId": "bob", "senderName": "Bob", "text": "found your keys"})
    assert res.status_code == 200
    assert res.json()["status"] == "sent"
    assert fake_db.docs["chats/c1"]["unreadCount"] == 1

    res = client.get("/chat/c1/messages", params={"viewer_id": "alice"})
    body = res.json()
    assert body["unreadCount"] == 0
    assert [m["status"] for m in body["messages"]] == ["read"]
    assert fake_db.docs["chats/c1"]["unreadCount"] == 0


def test_send_error_mapping(client, fake_db):
    _seed_chat(fake_db, isBlocked=True, blockedBy="bob")
    res = client.post("/chat/c1/send", json={"senderId": "alice", "text": "hello?"})
    assert res.status_code == 403
    assert res.json()["detail"] == "blocked"

    res = client.post("/chat/c1/send", json={"senderId": "bob", "text": "   "})
    assert res.status_code == 400
    assert res.json()["detail"] == "empty_message"

    fake_db.fail_ops.add("update")
    res = client.post("/chat/c1/send", json={"senderId": "bob", "text": "hi"})
    assert res.status_code == 503
    detail = res.json()["detail"]
    assert detail["code"] == "send_failed"
    assert detail["stage"] == "summary"

    assert client.post("/chat/missing/send", json={"senderId": "bob", "text": "hi"}).status_code == 404


def test_block_toggle_endpoint(client, fake_db):
    _seed_chat(fake_db)
    res = client.post("/chat/c1/block", json={"viewerId": "alice"})
    assert res.json() == {"chatId": "c1", "isBlocked": True, "blockedBy": "alice"}
    res = client.post("/chat/c1/block", json={"viewerId": "bob"})
    assert res.status_code == 403
    assert res.json()["detail"] == "blocked_by_other"

    view = client.post("/chat/c1/read", json={"viewerId": "bob"}).json()
    assert view["theyBlockedMe"] is True

    fake_db.fail_ops.add("update")
    res = client.post("/chat/c1/block", json={"viewerId": "alice"})
    assert res.status_code == 503
    assert res.json()["detail"] == "write_failed"


def _seed_reports(db):
    db.docs["reports/l1"] = {"type": "LOST", "category": "Electronics", "title": "Black iPhone 13",
                             "location": "Library", "reporterId": "alice", "createdAt": 1}
    db.docs["reports/f1"] = {"type": "FOUND", "category": "Electronics", "title": "Found black iPhone",
                             "location": "Main Library", "reporterId": "bob", "createdAt": 2}


def test_matches_fall_back_offline(client, fake_db):
    _seed_reports(fake_db)
    res = client.get("/reports/l1/matches")
    assert res.status_code == 200
    matches = res.json()
    assert [m["report"]["id"] for m in matches] == ["f1"]
    assert matches[0]["isOffline"] is True

    by_reporter = client.get("/reports/matches", params={"reporter_id": "alice"}).json()
    assert [m["report"]["id"] for m in by_reporter["l1"]] == ["f1"]

    assert client.get("/reports/nope/matches").status_code == 404


def test_resolve_transitions(client, fake_db):
    _seed_reports(fake_db)
    res = client.post("/reports/l1/resolve")
    assert res.status_code == 200
    assert res.json()["status"] == "RESOLVED"
    assert client.post("/reports/l1/resolve").status_code == 409
    assert client.get("/reports/l1/matches").json() == []


def test_compare_endpoint(client, fake_db):
    _seed_reports(fake_db)
    res = client.post("/reports/compare", json={"reportAId": "l1", "reportBId": "f1"})
    assert res.status_code == 200
    assert res.json()["isEstimate"] is True
    assert client.post("/reports/compare", json={"reportAId": "l1", "reportBId": "zz"}).status_code == 404


def test_extract_uses_session_cascade(client):
    session = deps.cascades.for_session("s1")
    session.replies.append('{"title": "Red Notebook", "category": "Stationery", "color": "Red"}')
    res = client.post(
        "/reports/extract",
        files={"file": ("note.png", _png_bytes(), "image/png")},
        headers={"X-Session-ID": "s1"},
    )
    assert res.status_code == 200
    assert res.json()["title"] == "Red Notebook"
    sent = session.requests[0].images[0]
    assert sent.startswith("data:image/jpeg;base64,")

    bad = client.post("/reports/extract", files={"file": ("a.gif", b"GIF89a", "image/gif")})
    assert bad.status_code == 400
    assert bad.json()["detail"] == "unsupported_type"


def test_search_parse_falls_back_to_query(client):
    res = client.post("/reports/search/parse", json={"query": "lost blue umbrella"})
    assert res.json() == {"userStatus": "UNKNOWN", "refinedQuery": "lost blue umbrella"}


def test_requests_without_session_use_user_or_private_cascade(client):
    mine = deps.cascades.for_session("alice")
    mine.replies.append('{"userStatus": "lost", "refinedQuery": "airpods"}')
    res = client.post("/reports/search/parse", json={"query": "lost my airpods"}, headers={"X-User-ID": "alice"})
    assert res.json()["userStatus"] == "LOST"
    assert len(mine.requests) == 1

    assert deps.cascade_for(None) is not deps.cascade_for(None)
    client.post("/reports/search/parse", json={"query": "keys"})
    assert len(mine.requests) == 1
