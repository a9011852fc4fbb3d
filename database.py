"""
Document store for the storefront.

Collections hold camelCase documents addressed by string ids:
- users, products (embedded variants), categories, blog_posts, orders (embedded items)

Two backends share one interface:
- MongoStore: MongoDB through pymongo, used when DATABASE_URL and DATABASE_NAME are set
- MemoryStore: in-process documents for local runs and the test suite

Both provide run_transaction(callback), an optimistic read-then-write
transaction. Reads inside the callback see committed state, writes are buffered
until commit, and a concurrent change to any document read by the callback
re-runs it (bounded by ORDER_TXN_MAX_ATTEMPTS).
"""
import copy
import logging
import operator
import random
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from errors import ConflictError, NotFound, ServerError, TransactionAborted

logger = logging.getLogger("storefront")

UNIQUE_FIELDS: List[Tuple[str, str]] = [
    ("users", "email"),
    ("products", "slug"),
    ("categories", "slug"),
    ("blog_posts", "slug"),
    ("orders", "orderNumber"),
]

Sort = List[Tuple[str, int]]

_MISSING = object()


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(ObjectId())


def _backoff(attempt: int):
    time.sleep(min(0.01 * 2 ** (attempt - 1), 0.5) * random.uniform(0.5, 1.0))


# ---------------------- Filter evaluation (in-memory) ----------------------

_COMPARATORS = {
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
}


def _get_path(doc: Dict[str, Any], path: str):
    cur: Any = doc
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


def _set_path(doc: Dict[str, Any], path: str, value):
    parts = path.split(".")
    cur = doc
    for part in parts[:-1]:
        if not isinstance(cur.get(part), dict):
            cur[part] = {}
        cur = cur[part]
    cur[parts[-1]] = value


def _equals(value, expected) -> bool:
    if value is _MISSING:
        return expected is None
    if isinstance(value, list) and not isinstance(expected, list):
        # equality against an array field means array-contains
        return expected in value
    return value == expected


def _match_condition(value, cond) -> bool:
    if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
        for op, arg in cond.items():
            if op == "$in":
                ok = any(_equals(value, a) for a in arg)
            elif op == "$ne":
                ok = not _equals(value, arg)
            elif op in _COMPARATORS:
                ok = value is not _MISSING and value is not None and _COMPARATORS[op](value, arg)
            else:
                raise ValueError(f"Unsupported filter operator: {op}")
            if not ok:
                return False
        return True
    return _equals(value, cond)


def matches(doc: Dict[str, Any], filter_dict: Optional[Dict[str, Any]]) -> bool:
    for path, cond in (filter_dict or {}).items():
        if not _match_condition(_get_path(doc, path), cond):
            return False
    return True


def sort_documents(docs: List[Dict[str, Any]], sort: Optional[Sort]) -> List[Dict[str, Any]]:
    """Sort like MongoDB does for the simple cases: missing/None first when ascending."""
    out = list(docs)
    for field, direction in reversed(sort or []):
        present = [d for d in out if _get_path(d, field) not in (None, _MISSING)]
        missing = [d for d in out if _get_path(d, field) in (None, _MISSING)]
        present.sort(key=lambda d: _get_path(d, field), reverse=direction < 0)
        out = missing + present if direction >= 0 else present + missing
    return out


# ---------------------- In-memory backend ----------------------

class _MemoryTransaction:
    def __init__(self, store: "MemoryStore"):
        self._store = store
        self.reads: Dict[Tuple[str, str], int] = {}
        self.writes: List[Tuple[str, str, str, Dict[str, Any]]] = []

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc, version = self._store._read_versioned(collection, doc_id)
        self.reads[(collection, doc_id)] = version
        return doc

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]):
        self.writes.append(("update", collection, doc_id, copy.deepcopy(fields)))

    def insert(self, collection: str, doc: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or new_id()
        self.writes.append(("insert", collection, doc_id, copy.deepcopy(doc)))
        return doc_id


class MemoryStore:
    backend = "memory"
    name = "memory"

    def __init__(self):
        self._lock = threading.RLock()
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._versions: Dict[Tuple[str, str], int] = {}

    # -- internals --

    @staticmethod
    def _out(doc_id: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        out = copy.deepcopy(doc)
        out["id"] = doc_id
        return out

    def _docs(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    def _read_versioned(self, collection: str, doc_id: str):
        with self._lock:
            doc = self._docs(collection).get(doc_id)
            version = self._versions.get((collection, doc_id), 0)
            return (self._out(doc_id, doc) if doc is not None else None), version

    def _check_unique(self, collection: str, doc_id: str, doc: Dict[str, Any]):
        for col, field in UNIQUE_FIELDS:
            if col != collection or doc.get(field) is None:
                continue
            for other_id, other in self._docs(collection).items():
                if other_id != doc_id and other.get(field) == doc[field]:
                    raise ConflictError(f"Duplicate value for {collection}.{field}")

    def _apply_insert(self, collection: str, doc_id: str, doc: Dict[str, Any]):
        if doc_id in self._docs(collection):
            raise ConflictError(f"Document {doc_id} already exists in {collection}")
        body = {k: v for k, v in copy.deepcopy(doc).items() if k != "id"}
        self._check_unique(collection, doc_id, body)
        self._docs(collection)[doc_id] = body
        self._versions[(collection, doc_id)] = self._versions.get((collection, doc_id), 0) + 1

    def _apply_update(self, collection: str, doc_id: str, fields: Dict[str, Any]):
        current = self._docs(collection)[doc_id]
        updated = copy.deepcopy(current)
        for path, value in fields.items():
            if path != "id":
                _set_path(updated, path, copy.deepcopy(value))
        self._check_unique(collection, doc_id, updated)
        self._docs(collection)[doc_id] = updated
        self._versions[(collection, doc_id)] += 1

    def _commit(self, txn: _MemoryTransaction) -> bool:
        with self._lock:
            for key, version in txn.reads.items():
                if self._versions.get(key, 0) != version:
                    return False
            pending = set()
            for op, collection, doc_id, _ in txn.writes:
                if op == "insert":
                    pending.add((collection, doc_id))
                elif doc_id not in self._docs(collection) and (collection, doc_id) not in pending:
                    raise NotFound(f"Document {doc_id} not found in {collection}")
            snapshot = (copy.deepcopy(self._collections), dict(self._versions))
            try:
                for op, collection, doc_id, body in txn.writes:
                    if op == "insert":
                        self._apply_insert(collection, doc_id, body)
                    else:
                        self._apply_update(collection, doc_id, body)
            except ConflictError:
                self._collections, self._versions = snapshot
                raise
            return True

    # -- public interface --

    def list_collections(self) -> List[str]:
        with self._lock:
            return sorted(name for name, docs in self._collections.items() if docs)

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return self._read_versioned(collection, doc_id)[0]

    def find(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None, sort: Optional[Sort] = None,
             limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
        with self._lock:
            docs = [self._out(i, d) for i, d in self._docs(collection).items() if matches(d, filter_dict)]
        docs = sort_documents(docs, sort)
        docs = docs[offset:]
        if limit:
            docs = docs[:limit]
        return docs

    def find_one(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        found = self.find(collection, filter_dict, limit=1)
        return found[0] if found else None

    def count(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        with self._lock:
            return sum(1 for d in self._docs(collection).values() if matches(d, filter_dict))

    def insert(self, collection: str, doc: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or new_id()
        with self._lock:
            self._apply_insert(collection, doc_id, doc)
        return doc_id

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> bool:
        with self._lock:
            if doc_id not in self._docs(collection):
                return False
            self._apply_update(collection, doc_id, fields)
            return True

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            removed = self._docs(collection).pop(doc_id, None)
            if removed is not None:
                self._versions[(collection, doc_id)] += 1
            return removed is not None

    def batch_update(self, collection: str, doc_ids: List[str], fields: Dict[str, Any]) -> int:
        with self._lock:
            missing = [i for i in doc_ids if i not in self._docs(collection)]
            if missing:
                raise NotFound(f"Documents not found in {collection}: {', '.join(missing)}")
            for doc_id in doc_ids:
                self._apply_update(collection, doc_id, fields)
        return len(doc_ids)

    def run_transaction(self, callback: Callable[[Any], Any], max_attempts: Optional[int] = None):
        attempts = max_attempts or config.ORDER_TXN_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            txn = _MemoryTransaction(self)
            result = callback(txn)
            if self._commit(txn):
                return result
            logger.info("Transaction conflict, retrying (attempt %d/%d)", attempt, attempts)
            _backoff(attempt)
        raise TransactionAborted(attempts)


# ---------------------- MongoDB backend ----------------------

def _from_mongo(doc):
    if doc is None:
        return None
    d = dict(doc)
    d["id"] = str(d.pop("_id"))
    return d


class _MongoTransaction:
    def __init__(self, db, session):
        self._db = db
        self._session = session

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return _from_mongo(self._db[collection].find_one({"_id": doc_id}, session=self._session))

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]):
        fields = {k: v for k, v in fields.items() if k != "id"}
        res = self._db[collection].update_one({"_id": doc_id}, {"$set": fields}, session=self._session)
        if res.matched_count == 0:
            raise NotFound(f"Document {doc_id} not found in {collection}")

    def insert(self, collection: str, doc: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        body = {k: v for k, v in doc.items() if k != "id"}
        body["_id"] = doc_id or new_id()
        try:
            self._db[collection].insert_one(body, session=self._session)
        except DuplicateKeyError:
            raise ConflictError(f"Duplicate value for a unique field in {collection}")
        return body["_id"]


class MongoStore:
    backend = "mongodb"

    def __init__(self, url: str, name: str):
        self.client = MongoClient(url, tz_aware=True)
        self.db = self.client[name]
        self.name = name

    def ensure_indexes(self):
        for collection, field in UNIQUE_FIELDS:
            try:
                self.db[collection].create_index(
                    field, unique=True, partialFilterExpression={field: {"$type": "string"}}
                )
            except PyMongoError as exc:
                logger.warning("Unable to ensure unique index on %s.%s: %s", collection, field, exc)

    def list_collections(self) -> List[str]:
        return self.db.list_collection_names()

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return _from_mongo(self.db[collection].find_one({"_id": doc_id}))

    def find(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None, sort: Optional[Sort] = None,
             limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
        cursor = self.db[collection].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if offset:
            cursor = cursor.skip(offset)
        if limit:
            cursor = cursor.limit(limit)
        return [_from_mongo(d) for d in cursor]

    def find_one(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        return _from_mongo(self.db[collection].find_one(filter_dict or {}))

    def count(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        return self.db[collection].count_documents(filter_dict or {})

    def insert(self, collection: str, doc: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        body = {k: v for k, v in doc.items() if k != "id"}
        body["_id"] = doc_id or new_id()
        try:
            self.db[collection].insert_one(body)
        except DuplicateKeyError:
            raise ConflictError(f"Duplicate value for a unique field in {collection}")
        return body["_id"]

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> bool:
        fields = {k: v for k, v in fields.items() if k != "id"}
        try:
            res = self.db[collection].update_one({"_id": doc_id}, {"$set": fields})
        except DuplicateKeyError:
            raise ConflictError(f"Duplicate value for a unique field in {collection}")
        return res.matched_count > 0

    def delete(self, collection: str, doc_id: str) -> bool:
        return self.db[collection].delete_one({"_id": doc_id}).deleted_count > 0

    def batch_update(self, collection: str, doc_ids: List[str], fields: Dict[str, Any]) -> int:
        def _apply(session):
            res = self.db[collection].update_many({"_id": {"$in": doc_ids}}, {"$set": fields}, session=session)
            if res.matched_count != len(set(doc_ids)):
                raise NotFound(f"Some documents were not found in {collection}")
            return res.matched_count

        with self.client.start_session() as session:
            return session.with_transaction(_apply)

    def run_transaction(self, callback: Callable[[Any], Any], max_attempts: Optional[int] = None):
        # with_transaction re-runs the callback on TransientTransactionError (write conflicts)
        attempts = max_attempts or config.ORDER_TXN_MAX_ATTEMPTS
        state = {"attempt": 0}

        def _run(session):
            state["attempt"] += 1
            if state["attempt"] > attempts:
                raise TransactionAborted(attempts)
            if state["attempt"] > 1:
                logger.info("Transaction conflict, retrying (attempt %d/%d)", state["attempt"], attempts)
            return callback(_MongoTransaction(self.db, session))

        with self.client.start_session() as session:
            return session.with_transaction(_run)


# ---------------------- Connection & helpers ----------------------

Store = Union[MemoryStore, MongoStore]


def connect() -> Store:
    if config.DATABASE_URL and config.DATABASE_NAME:
        store = MongoStore(config.DATABASE_URL, config.DATABASE_NAME)
        store.ensure_indexes()
        logger.info("[DB] Using MongoDB database %s", config.DATABASE_NAME)
        return store
    if config.IS_PRODUCTION:
        raise ServerError("DATABASE_URL and DATABASE_NAME must be set in production")
    logger.warning("[DB] DATABASE_URL/DATABASE_NAME not set, using in-memory store")
    return MemoryStore()


db: Optional[Store] = None


def get_db() -> Store:
    global db
    if db is None:
        db = connect()
    return db


def create_document(store: Store, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping createdAt/updatedAt."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(by_alias=True)
    else:
        data_dict = dict(data)
    data_dict["createdAt"] = now_utc()
    data_dict["updatedAt"] = now_utc()
    return store.insert(collection_name, data_dict)


def get_documents(store: Store, collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, sort: Optional[Sort] = None) -> List[Dict[str, Any]]:
    return store.find(collection_name, filter_dict, sort=sort, limit=limit)
