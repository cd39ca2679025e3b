#!/usr/bin/env python3
"""
Document Store Adapter
Create/read/update/delete and live subscriptions over per-user document
collections (users/{uid}, users/{uid}/goals, users/{uid}/habits).

FirestoreDocumentStore talks to Cloud Firestore through firebase_admin;
MemoryDocumentStore keeps everything in process for demo mode.

A subscription always delivers the full current collection, never a diff.
Timestamps are normalized to aware UTC datetimes before records leave the
adapter. Failures raise RemoteUnavailable or PermissionDenied and are never
retried here.
"""

import copy
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions

from errors import PermissionDenied, RemoteUnavailable, StoreError
from models import normalize_timestamp

logger = logging.getLogger(__name__)


@dataclass
class Snapshot:
    """Full contents of a collection at one point in time"""
    records: List[Dict[str, Any]] = field(default_factory=list)
    has_pending_writes: bool = False


SnapshotHandler = Callable[[Snapshot], None]
ErrorHandler = Callable[[Exception], None]


class Subscription:
    """Handle for a live subscription; release it with unsubscribe()"""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self._lock = threading.Lock()
        self.active = True

    def unsubscribe(self):
        with self._lock:
            if not self.active:
                return
            self.active = False
        self._cancel()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.unsubscribe()
        return False


def _parent(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


def _normalize_value(value: Any) -> Any:
    if isinstance(value, datetime) or callable(getattr(value, "ToDatetime", None)):
        return normalize_timestamp(value)
    if isinstance(value, dict):
        return {k: _normalize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize_value(v) for v in value]
    return value


def normalize_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Replace every provider-specific timestamp in a record with a UTC datetime"""
    return {k: _normalize_value(v) for k, v in record.items()}


def _sort_value(value: Any) -> Any:
    if isinstance(value, (datetime, str)):
        try:
            return normalize_timestamp(value)
        except (TypeError, ValueError):
            return value
    return value


class MemoryDocumentStore:
    """In-process document store with synchronous snapshot delivery"""

    def __init__(self):
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._listeners: Dict[int, tuple] = {}
        self._next_listener = 0
        self._lock = threading.RLock()

    def new_id(self) -> str:
        return uuid.uuid4().hex[:20]

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._docs.get(path)
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, path: str, data: Dict[str, Any], merge: bool = False):
        with self._lock:
            data = normalize_record(copy.deepcopy(data))
            if merge and path in self._docs:
                self._docs[path].update(data)
            else:
                self._docs[path] = data
        self._notify(_parent(path))

    def create(self, collection_path: str, record: Dict[str, Any]) -> str:
        doc_id = record.get("id") or self.new_id()
        self.set(f"{collection_path}/{doc_id}", {**record, "id": doc_id})
        return doc_id

    def update(self, path: str, fields: Dict[str, Any]):
        with self._lock:
            if path not in self._docs:
                raise StoreError(f"No document to update at {path}")
            self._docs[path].update(normalize_record(copy.deepcopy(fields)))
        self._notify(_parent(path))

    def delete(self, path: str):
        with self._lock:
            self._docs.pop(path, None)
        self._notify(_parent(path))

    def subscribe(
        self,
        collection_path: str,
        on_snapshot: SnapshotHandler,
        order_by: Optional[str] = None,
        descending: bool = False,
        on_error: Optional[ErrorHandler] = None,
    ) -> Subscription:
        with self._lock:
            listener_id = self._next_listener
            self._next_listener += 1
            self._listeners[listener_id] = (collection_path, order_by, descending, on_snapshot, on_error)

        def cancel():
            with self._lock:
                self._listeners.pop(listener_id, None)

        self._deliver(listener_id)
        return Subscription(cancel)

    def _collection(self, collection_path: str, order_by: Optional[str], descending: bool) -> List[Dict[str, Any]]:
        records = [
            copy.deepcopy(doc) for path, doc in self._docs.items()
            if _parent(path) == collection_path
        ]
        if order_by:
            # Like Firestore, documents without the ordering field are left out
            records = [r for r in records if r.get(order_by) is not None]
            records.sort(key=lambda r: _sort_value(r[order_by]), reverse=descending)
        return records

    def _deliver(self, listener_id: int):
        with self._lock:
            listener = self._listeners.get(listener_id)
            if listener is None:
                return
            collection_path, order_by, descending, on_snapshot, on_error = listener
            snapshot = Snapshot(self._collection(collection_path, order_by, descending))
        try:
            on_snapshot(snapshot)
        except Exception as e:
            logger.error(f"Snapshot handler for {collection_path} failed: {e}")
            if on_error:
                on_error(e)

    def _notify(self, collection_path: str):
        with self._lock:
            targets = [lid for lid, listener in self._listeners.items() if listener[0] == collection_path]
        for listener_id in targets:
            self._deliver(listener_id)


def _translate(fn: Callable, *args, **kwargs):
    """Run a Firestore call, mapping google.api_core errors to store errors"""
    try:
        return fn(*args, **kwargs)
    except (google_exceptions.PermissionDenied, google_exceptions.Unauthenticated) as e:
        raise PermissionDenied(str(e))
    except google_exceptions.NotFound as e:
        raise StoreError(str(e))
    except (google_exceptions.GoogleAPICallError, google_exceptions.RetryError) as e:
        raise RemoteUnavailable(str(e))


class FirestoreDocumentStore:
    """Cloud Firestore backed document store"""

    def __init__(self, client=None):
        self._db = client if client is not None else firestore.client()

    @classmethod
    def from_credentials(cls, credentials_path: str, project_id: str = "") -> "FirestoreDocumentStore":
        try:
            app = firebase_admin.get_app()
            logger.info("Firebase Admin SDK already initialized")
        except ValueError:
            options = {"projectId": project_id} if project_id else None
            app = firebase_admin.initialize_app(credentials.Certificate(credentials_path), options)
            logger.info("Firebase Admin SDK initialized")
        return cls(firestore.client(app))

    def new_id(self) -> str:
        return self._db.collection("_ids").document().id

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        snap = _translate(self._db.document(path).get)
        if not snap.exists:
            return None
        return normalize_record(snap.to_dict() or {})

    def set(self, path: str, data: Dict[str, Any], merge: bool = False):
        _translate(self._db.document(path).set, data, merge=merge)

    def create(self, collection_path: str, record: Dict[str, Any]) -> str:
        ref = self._db.collection(collection_path).document(record.get("id") or None)
        _translate(ref.set, {**record, "id": ref.id})
        return ref.id

    def update(self, path: str, fields: Dict[str, Any]):
        _translate(self._db.document(path).update, fields)

    def delete(self, path: str):
        _translate(self._db.document(path).delete)

    def subscribe(
        self,
        collection_path: str,
        on_snapshot: SnapshotHandler,
        order_by: Optional[str] = None,
        descending: bool = False,
        on_error: Optional[ErrorHandler] = None,
    ) -> Subscription:
        query = self._db.collection(collection_path)
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)

        # Runs on the Firestore watch thread
        def callback(docs, changes, read_time):
            try:
                records = [normalize_record({**(doc.to_dict() or {}), "id": doc.id}) for doc in docs]
                on_snapshot(Snapshot(records))
            except Exception as e:
                logger.error(f"Snapshot handler for {collection_path} failed: {e}")
                if on_error:
                    on_error(e)

        try:
            watch = _translate(query.on_snapshot, callback)
        except StoreError as e:
            logger.error(f"Could not subscribe to {collection_path}: {e}")
            if on_error:
                on_error(e)
            return Subscription(lambda: None)
        return Subscription(watch.unsubscribe)
