"""In-memory stand-ins for Firestore and Algolia used by the test modules.

The Firestore double records a change event for every document write, the way
the platform would fire triggers, and the `settle` fixture replays those events
through the real write/delete handlers until nothing new is written.
"""

import copy
import datetime
import itertools
import threading
import uuid

import pytest
from google.api_core.exceptions import NotFound
from google.cloud.firestore_v1.transforms import Sentinel

from config import build_clients


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data)


class FakeDocumentReference:
    def __init__(self, db, collection, doc_id):
        self._db = db
        self.collection_name = collection
        self.id = doc_id
        self.path = f"{collection}/{doc_id}"

    def get(self):
        return FakeSnapshot(self, self._db._read(self.collection_name, self.id))

    def set(self, data):
        self._db._write(self.collection_name, self.id, copy.deepcopy(data))

    def update(self, fields):
        self._db._update(self.collection_name, self.id, fields)

    def delete(self):
        self._db._write(self.collection_name, self.id, None)


def _matches(data, field, op, value):
    current = data.get(field)
    if op == "==":
        return current == value
    if op == "array_contains":
        return isinstance(current, list) and value in current
    if op == "in":
        return current in value
    raise NotImplementedError(op)


class FakeQuery:
    def __init__(self, db, collection, filters=()):
        self._db = db
        self._collection = collection
        self._filters = list(filters)

    def where(self, field, op, value):
        return FakeQuery(self._db, self._collection, self._filters + [(field, op, value)])

    def stream(self):
        for doc_id, data in self._db._documents(self._collection):
            if all(_matches(data, f, op, v) for f, op, v in self._filters):
                yield FakeSnapshot(FakeDocumentReference(self._db, self._collection, doc_id), data)

    def get(self):
        return list(self.stream())


class FakeCollectionReference(FakeQuery):
    def document(self, doc_id=None):
        return FakeDocumentReference(self._db, self._collection, doc_id or uuid.uuid4().hex[:20])


class FakeWriteBatch:
    def __init__(self, db):
        self._db = db
        self._ops = []

    def update(self, ref, fields):
        self._ops.append((ref, fields))

    def commit(self):
        self._db._commit(self._ops)
        return []


class FakeFirestore:
    def __init__(self):
        self.data = {}
        self.events = []
        self.commits = 0
        self.fail_commits = False
        self._lock = threading.RLock()
        self._clock = itertools.count(1)

    # --- client surface ---

    def collection(self, name):
        return FakeCollectionReference(self, name)

    def batch(self):
        return FakeWriteBatch(self)

    def get_all(self, refs):
        for ref in refs:
            yield ref.get()

    # --- test helpers ---

    def seed(self, collection, doc_id, data):
        """Store a document without firing a change event."""
        self.data.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    def doc(self, collection, doc_id):
        return copy.deepcopy(self.data.get(collection, {}).get(doc_id))

    # --- internals ---

    def _now(self):
        return datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc) + datetime.timedelta(
            seconds=next(self._clock)
        )

    def _documents(self, collection):
        with self._lock:
            return [(k, copy.deepcopy(v)) for k, v in self.data.get(collection, {}).items()]

    def _read(self, collection, doc_id):
        with self._lock:
            return copy.deepcopy(self.data.get(collection, {}).get(doc_id))

    def _resolve(self, fields):
        return {k: (self._now() if isinstance(v, Sentinel) else copy.deepcopy(v)) for k, v in fields.items()}

    def _write(self, collection, doc_id, after):
        with self._lock:
            docs = self.data.setdefault(collection, {})
            before = docs.get(doc_id)
            if after is None:
                docs.pop(doc_id, None)
            else:
                docs[doc_id] = self._resolve(after)
                after = docs[doc_id]
            if before != after:
                self.events.append((collection, doc_id, copy.deepcopy(before), copy.deepcopy(after)))

    def _update(self, collection, doc_id, fields):
        with self._lock:
            current = self.data.get(collection, {}).get(doc_id)
            if current is None:
                raise NotFound(f"No document to update: {collection}/{doc_id}")
            self._write(collection, doc_id, {**current, **fields})

    def _commit(self, ops):
        with self._lock:
            if self.fail_commits:
                raise RuntimeError("batch commit failed")
            for ref, _ in ops:
                if self._read(ref.collection_name, ref.id) is None:
                    raise NotFound(f"No document to update: {ref.path}")
            for ref, fields in ops:
                self._update(ref.collection_name, ref.id, fields)
            self.commits += 1


class FakeIndex:
    def __init__(self, name):
        self.name = name
        self.records = {}
        self.saves = 0
        self.bulk_saves = []
        self.deletes = []
        self.fail_saves = False

    def save_object(self, obj):
        if self.fail_saves:
            raise RuntimeError("index unavailable")
        self.saves += 1
        self.records[obj["objectID"]] = copy.deepcopy(obj)

    def save_objects(self, objs):
        if self.fail_saves:
            raise RuntimeError("index unavailable")
        self.bulk_saves.append(len(objs))
        for obj in objs:
            self.records[obj["objectID"]] = copy.deepcopy(obj)

    def delete_object(self, object_id):
        self.deletes.append(object_id)
        self.records.pop(object_id, None)

    def browse_objects(self, params=None):
        return iter([{"objectID": object_id} for object_id in list(self.records)])

    def delete_objects(self, object_ids):
        for object_id in object_ids:
            self.delete_object(object_id)


class FakeSearchClient:
    def __init__(self):
        self.indices = {}

    def init_index(self, name):
        return self.indices.setdefault(name, FakeIndex(name))


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def clients(db):
    return build_clients(db=db, search_client=FakeSearchClient())


@pytest.fixture
def settle(db, clients):
    """Replay pending change events through the triggers until quiescent."""
    from reference_cleanup import DELETE_HANDLERS
    from sync_handlers import WRITE_HANDLERS

    def _settle(max_events=200):
        handled = 0
        while db.events:
            collection, doc_id, before, after = db.events.pop(0)
            WRITE_HANDLERS[collection](clients, doc_id, before, after)
            if after is None:
                DELETE_HANDLERS[collection](clients, doc_id)
            handled += 1
            assert handled <= max_events, "triggers did not converge"
        return handled

    return _settle


@pytest.fixture
def index(clients):
    return lambda collection: clients.indices[collection]
