import copy
import uuid

import pytest
from google.cloud.firestore_v1.transforms import Increment

from retriva.services import chat_store
from retriva.services.errors import AllModelsExhausted


class FakeSnapshot:
    def __init__(self, path, data):
        self.id = path.rsplit("/", 1)[-1]
        self._data = copy.deepcopy(data)
        self.exists = data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None


class FakeWatch:
    def __init__(self, db, entry):
        self._db = db
        self._entry = entry

    def unsubscribe(self):
        if self._entry in self._db.listeners:
            self._db.listeners.remove(self._entry)


class FakeDocument:
    def __init__(self, db, path):
        self._db = db
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def get(self):
        return FakeSnapshot(self.path, self._db.docs.get(self.path))

    def set(self, data):
        self._db.check("set")
        self._db.docs[self.path] = copy.deepcopy(data)

    def update(self, data):
        self._db.check("update")
        self._db.apply_update(self.path, data)

    def collection(self, name):
        return FakeCollection(self._db, f"{self.path}/{name}")

    def on_snapshot(self, callback):
        entry = ("doc", self, callback)
        self._db.listeners.append(entry)
        callback([self.get()], [], None)
        return FakeWatch(self._db, entry)


class FakeQuery:
    def __init__(self, col, order_field=None):
        self._col = col
        self._order_field = order_field

    def stream(self):
        snaps = self._col.stream()
        if self._order_field:
            snaps.sort(key=lambda s: s.to_dict().get(self._order_field, 0))
        return snaps

    def on_snapshot(self, callback):
        entry = ("query", self, callback)
        self._col._db.listeners.append(entry)
        callback(self.stream(), [], None)
        return FakeWatch(self._col._db, entry)


class FakeCollection:
    def __init__(self, db, path):
        self._db = db
        self.path = path

    def document(self, doc_id=None):
        return FakeDocument(self._db, f"{self.path}/{doc_id or uuid.uuid4().hex[:20]}")

    def stream(self):
        self._db.check("stream")
        prefix = self.path + "/"
        return [
            FakeSnapshot(p, d) for p, d in self._db.docs.items()
            if p.startswith(prefix) and "/" not in p[len(prefix):]
        ]

    def order_by(self, field, direction=None):
        return FakeQuery(self, field)


class FakeBatch:
    def __init__(self, db):
        self._db = db
        self.ops = []

    def update(self, ref, data):
        self.ops.append((ref.path, data))

    def commit(self):
        self._db.check("commit")
        for path, data in self.ops:
            self._db.apply_update(path, data)
        self._db.commits.append(self.ops)


class FakeFirestore:
    """Just enough of the firestore client for chat_store / report_store."""

    def __init__(self):
        self.docs = {}
        self.listeners = []
        self.commits = []
        self.fail_ops = set()

    def check(self, op):
        if op in self.fail_ops:
            raise RuntimeError(f"simulated {op} failure")

    def apply_update(self, path, data):
        if path not in self.docs:
            raise KeyError(f"no document {path}")
        doc = self.docs[path]
        for k, v in data.items():
            if isinstance(v, Increment):
                doc[k] = (doc.get(k) or 0) + v.value
            else:
                doc[k] = copy.deepcopy(v)

    def collection(self, name):
        return FakeCollection(self, name)

    def batch(self):
        return FakeBatch(self)

    def emit(self):
        # deliver current state to every live listener, like a watch stream tick
        for kind, target, callback in list(self.listeners):
            if kind == "doc":
                callback([target.get()], [], None)
            else:
                callback(target.stream(), [], None)


@pytest.fixture
def fake_db(monkeypatch):
    db = FakeFirestore()
    monkeypatch.setattr(chat_store, "_db", db)
    return db


@pytest.fixture
def make_report():
    from retriva.models.reports import ItemReport

    def _make(**kw):
        data = {
            "id": "r1",
            "type": "LOST",
            "category": "Electronics",
            "title": "",
            "description": "",
            "reporterId": "u1",
            "createdAt": 1,
        }
        data.update(kw)
        return ItemReport.model_validate(data)

    return _make


class FakeCascade:
    """Hands out canned replies in order; runs dry as exhausted."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests = []

    async def execute(self, request, ordering=None):
        self.requests.append(request)
        reply = self.replies.pop(0) if self.replies else AllModelsExhausted(["no models"])
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def fake_cascade():
    return FakeCascade
