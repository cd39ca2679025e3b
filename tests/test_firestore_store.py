from datetime import datetime, timezone

import pytest
from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions

import errors
from document_store import FirestoreDocumentStore


class FakeSnapshot:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data
        self.exists = data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeWatch:
    def __init__(self, callback):
        self.callback = callback
        self.unsubscribed = False

    def unsubscribe(self):
        self.unsubscribed = True


class FakeDocument:
    def __init__(self, db, path):
        self.db = db
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def _check(self, op):
        error = self.db.errors.get(op)
        if error:
            raise error

    def get(self):
        self._check("get")
        return FakeSnapshot(self.id, self.db.docs.get(self.path))

    def set(self, data, merge=False):
        self._check("set")
        self.db.writes.append(("set", self.path, data, merge))
        self.db.docs[self.path] = dict(data)

    def update(self, fields):
        self._check("update")
        if self.path not in self.db.docs:
            raise google_exceptions.NotFound(f"No document to update: {self.path}")
        self.db.docs[self.path].update(fields)

    def delete(self):
        self._check("delete")
        self.db.docs.pop(self.path, None)


class FakeCollection:
    def __init__(self, db, path):
        self.db = db
        self.path = path
        self.ordering = None

    def document(self, doc_id=None):
        if doc_id is None:
            self.db.auto_ids += 1
            doc_id = f"auto-{self.db.auto_ids}"
        return FakeDocument(self.db, f"{self.path}/{doc_id}")

    def order_by(self, field, direction=None):
        self.ordering = (field, direction)
        self.db.queries.append(self)
        return self

    def on_snapshot(self, callback):
        error = self.db.errors.get("on_snapshot")
        if error:
            raise error
        watch = FakeWatch(callback)
        self.db.watches.append(watch)
        return watch


class FakeFirestore:
    def __init__(self):
        self.docs = {}
        self.errors = {}
        self.writes = []
        self.queries = []
        self.watches = []
        self.auto_ids = 0

    def document(self, path):
        return FakeDocument(self, path)

    def collection(self, path):
        return FakeCollection(self, path)


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def store(db):
    return FirestoreDocumentStore(client=db)


def test_get_missing_document(store):
    assert store.get("users/nobody") is None


def test_get_normalizes_timestamps(store, db):
    db.docs["users/u1"] = {"createdAt": datetime(2026, 1, 1, 12, tzinfo=timezone.utc), "stepGoal": 8000}
    profile = store.get("users/u1")
    assert profile["createdAt"].tzinfo == timezone.utc
    assert profile["stepGoal"] == 8000


def test_set_passes_merge(store, db):
    store.set("users/u1", {"stepGoal": 9000}, merge=True)
    assert db.writes == [("set", "users/u1", {"stepGoal": 9000}, True)]


def test_create_stores_generated_id(store, db):
    doc_id = store.create("users/u1/goals", {"title": "Run 5k"})
    assert doc_id == "auto-1"
    assert db.docs["users/u1/goals/auto-1"] == {"title": "Run 5k", "id": "auto-1"}


@pytest.mark.parametrize("op,raised,expected", [
    ("get", google_exceptions.PermissionDenied("denied"), errors.PermissionDenied),
    ("get", google_exceptions.Unauthenticated("expired"), errors.PermissionDenied),
    ("set", google_exceptions.ServiceUnavailable("down"), errors.RemoteUnavailable),
    ("delete", google_exceptions.DeadlineExceeded("slow"), errors.RemoteUnavailable),
])
def test_backend_errors_are_translated(store, db, op, raised, expected):
    db.errors[op] = raised
    calls = {
        "get": lambda: store.get("users/u1"),
        "set": lambda: store.set("users/u1", {"a": 1}),
        "delete": lambda: store.delete("users/u1/goals/g1"),
    }
    with pytest.raises(expected):
        calls[op]()


def test_update_of_missing_document_is_store_error(store):
    with pytest.raises(errors.StoreError) as exc:
        store.update("users/u1/goals/missing", {"progress": 10})
    assert not isinstance(exc.value, (errors.RemoteUnavailable, errors.PermissionDenied))


def test_subscription_delivers_records_with_ids(store, db):
    snapshots = []
    subscription = store.subscribe("users/u1/goals", snapshots.append, order_by="createdAt", descending=True)
    assert db.queries[0].ordering == ("createdAt", firestore.Query.DESCENDING)

    watch = db.watches[0]
    docs = [
        FakeSnapshot("g2", {"title": "New", "createdAt": datetime(2026, 2, 1)}),
        FakeSnapshot("g1", {"title": "Old", "createdAt": datetime(2026, 1, 1)}),
    ]
    watch.callback(docs, [], None)
    records = snapshots[-1].records
    assert [r["id"] for r in records] == ["g2", "g1"]
    assert records[0]["createdAt"].tzinfo == timezone.utc

    subscription.unsubscribe()
    assert watch.unsubscribed


def test_failing_snapshot_handler_goes_to_on_error(store, db):
    seen = []

    def handler(snapshot):
        raise ValueError("bad record")

    store.subscribe("users/u1/habits", handler, on_error=seen.append)
    db.watches[0].callback([FakeSnapshot("h1", {"name": "Walk"})], [], None)
    assert isinstance(seen[0], ValueError)


def test_subscribe_failure_reported_through_on_error(store, db):
    db.errors["on_snapshot"] = google_exceptions.PermissionDenied("rules")
    seen = []
    subscription = store.subscribe("users/u1/goals", lambda s: None, on_error=seen.append)
    assert isinstance(seen[0], errors.PermissionDenied)
    subscription.unsubscribe()
    assert not subscription.active
