"""
Document backend: pymongo collections standing in for the relational tables.

MongoDB gives us no foreign keys, joins, column defaults or server-side
timestamps, so this module does that work itself:

- ids are random UUID strings stored in ``_id``
- schema defaults are merged in from ``DEFAULTS`` on insert
- ``created_at`` is stamped from the backend clock
- references are checked against ``schemas.REFERENCES`` before writes
- money is stored as strings so it round-trips with two decimals

Reads of a collection that has not been created yet come back empty instead
of raising.
"""

import copy
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from bson.timestamp import Timestamp
from fastapi.concurrency import run_in_threadpool
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, OperationFailure

from config import BackendKind
from errors import DuplicateKey, ReferenceViolation
from schemas import MODELS, REFERENCES, CreationClock, referenced_by, to_millis, utc_now

logger = logging.getLogger(__name__)

# NamespaceNotFound
NOT_PROVISIONED_CODES = frozenset({26})

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "users": {"primary_color": "#2563eb", "domain_verified": False},
    "products": {"download_limit": 5, "is_active": True},
    "checkout_pages": {"template": "publisher", "blocks": [], "custom_styles": {}, "is_published": False},
    "order_bumps": {"discount_type": "fixed", "discount_value": Decimal("0"), "position": 0, "is_active": True},
    "upsells": {"discount_type": "fixed", "discount_value": Decimal("0"), "position": 0, "is_active": True},
    "coupons": {"used_count": 0, "is_active": True},
    "orders": {"status": "pending", "discount": Decimal("0")},
    "order_items": {"item_type": "main", "download_count": 0},
    "abandoned_carts": {"recovery_email_sent": False},
    "email_templates": {"is_active": True},
    "pixel_events": {"action_source": "website", "sent_to_server": False},
}

UNIQUE_INDEXES: Dict[str, List[Tuple[str, ...]]] = {
    "users": [("email",)],
    "checkout_pages": [("slug",)],
    "coupons": [("user_id", "code")],
    "customers": [("user_id", "email")],
}

TIMESTAMP_FIELDS = frozenset({"created_at", "expires_at", "recovered_at", "token_expires_at", "event_time"})


def to_datetime(value: Any) -> Optional[datetime]:
    """Convert whatever the store handed back into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, Timestamp):
        return value.as_datetime()
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    raise TypeError(f"Unsupported timestamp value {value!r}")


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return to_millis(value)
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _hydrate(doc: Dict[str, Any]) -> Dict[str, Any]:
    row = dict(doc)
    row["id"] = row.pop("_id")
    for field in TIMESTAMP_FIELDS.intersection(row):
        row[field] = to_datetime(row[field])
    return row


def _filters(filters: Dict[str, Any]) -> Dict[str, Any]:
    return {("_id" if k == "id" else k): v for k, v in filters.items()}


class DocumentBackend:
    kind = BackendKind.DOCUMENT

    def __init__(
        self,
        db: Database,
        clock: Callable = utc_now,
        not_provisioned_codes: Iterable[int] = NOT_PROVISIONED_CODES,
    ):
        self._db = db
        self._clock = CreationClock(clock)
        self._not_provisioned = frozenset(not_provisioned_codes)

    def _tolerant(self, collection: str, read: Callable, default: Any):
        try:
            return read()
        except OperationFailure as exc:
            if exc.code not in self._not_provisioned:
                raise
            logger.debug("Collection %s not provisioned (code %s), returning empty", collection, exc.code)
            return default

    def _check_references(self, collection: str, values: Dict[str, Any]) -> None:
        for field, target in REFERENCES.get(collection, {}).items():
            ref = values.get(field)
            if ref is None:
                continue
            if self._db[target].count_documents({"_id": ref}, limit=1) == 0:
                raise ReferenceViolation(collection, f"{field}={ref} does not exist in {target}")

    def _check_not_referenced(self, collection: str, id: str) -> None:
        for source, field in referenced_by(collection):
            if self._db[source].count_documents({field: id}, limit=1):
                raise ReferenceViolation(collection, f"{id} is still referenced by {source}.{field}")

    # ============ sync primitives (run in the threadpool) ============
    def _find_one(self, collection, filters) -> Optional[Dict[str, Any]]:
        doc = self._tolerant(collection, lambda: self._db[collection].find_one(_filters(filters)), None)
        return _hydrate(doc) if doc is not None else None

    def _find(self, collection, filters, sort, limit) -> List[Dict[str, Any]]:
        def read():
            cursor = self._db[collection].find(_filters(filters))
            if sort:
                cursor = cursor.sort([(f, DESCENDING if desc else ASCENDING) for f, desc in sort])
            if limit is not None:
                cursor = cursor.limit(limit)
            return list(cursor)

        return [_hydrate(doc) for doc in self._tolerant(collection, read, [])]

    def _insert(self, collection, values) -> Dict[str, Any]:
        self._check_references(collection, values)
        doc = {**copy.deepcopy(DEFAULTS.get(collection, {})), **values, "_id": str(uuid.uuid4())}
        if "created_at" in MODELS[collection].model_fields:
            doc["created_at"] = self._clock()
        doc = _encode(doc)
        try:
            self._db[collection].insert_one(doc)
        except DuplicateKeyError as exc:
            raise DuplicateKey(collection, str(exc)) from exc
        return _hydrate(doc)

    def _update(self, collection, id, changes) -> Optional[Dict[str, Any]]:
        coll = self._db[collection]
        exists = self._tolerant(collection, lambda: coll.find_one({"_id": id}, {"_id": 1}), None)
        if exists is None:
            return None
        if changes:
            self._check_references(collection, changes)
            try:
                coll.update_one({"_id": id}, {"$set": _encode(changes)})
            except DuplicateKeyError as exc:
                raise DuplicateKey(collection, str(exc)) from exc
        return self._find_one(collection, {"id": id})

    def _delete(self, collection, id) -> bool:
        coll = self._db[collection]
        exists = self._tolerant(collection, lambda: coll.find_one({"_id": id}, {"_id": 1}), None)
        if exists is None:
            return False
        self._check_not_referenced(collection, id)
        return coll.delete_one({"_id": id}).deleted_count > 0

    def _provision(self) -> None:
        for collection, keys in UNIQUE_INDEXES.items():
            for fields in keys:
                self._db[collection].create_index(
                    [(f, ASCENDING) for f in fields],
                    unique=True,
                    name="uq_" + "_".join(fields),
                )
        for collection, refs in REFERENCES.items():
            if "user_id" in refs:
                self._db[collection].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    # ============ async surface ============
    async def provision(self) -> None:
        await run_in_threadpool(self._provision)
        logger.info("Document indexes ready on %s", self._db.name)

    async def describe(self) -> Dict[str, Any]:
        names = await run_in_threadpool(self._db.list_collection_names)
        return {"backend": self.kind.value, "name": self._db.name, "collections": names}

    async def get(self, collection: str, id: str) -> Optional[Dict[str, Any]]:
        return await run_in_threadpool(self._find_one, collection, {"id": id})

    async def find_one(self, collection: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await run_in_threadpool(self._find_one, collection, filters)

    async def find(
        self,
        collection: str,
        filters: Dict[str, Any],
        sort: Sequence[Tuple[str, bool]] = (),
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await run_in_threadpool(self._find, collection, filters, sort, limit)

    async def insert(self, collection: str, values: Dict[str, Any]) -> Dict[str, Any]:
        return await run_in_threadpool(self._insert, collection, values)

    async def update(self, collection: str, id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await run_in_threadpool(self._update, collection, id, changes)

    async def delete(self, collection: str, id: str) -> bool:
        return await run_in_threadpool(self._delete, collection, id)

    def close(self) -> None:
        self._db.client.close()
