"""
Relational backend: SQLAlchemy Core over PostgreSQL (or SQLite for local runs).

Every primitive is a single statement. Ids and defaults come from the column
definitions in ``tables``; ordering is the engine's ORDER BY; foreign keys
and unique constraints are enforced by the database and only translated here.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import delete, insert, inspect, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from config import BackendKind
from errors import DuplicateKey, ReferenceViolation
from schemas import CreationClock, utc_now
from tables import metadata

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


def translate_integrity_error(collection: str, exc: IntegrityError):
    """Map a driver integrity error onto the storage error it means, if any."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    message = str(orig)
    if code == UNIQUE_VIOLATION or "UNIQUE constraint failed" in message:
        return DuplicateKey(collection, message)
    if code == FOREIGN_KEY_VIOLATION or "FOREIGN KEY constraint failed" in message:
        return ReferenceViolation(collection, message)
    return None


class RelationalBackend:
    kind = BackendKind.RELATIONAL

    def __init__(self, engine: Engine, clock: Callable = utc_now):
        self._engine = engine
        self._clock = CreationClock(clock)

    def _table(self, collection: str):
        return metadata.tables[collection]

    def _where(self, table, filters: Dict[str, Any]):
        return [table.c[field] == value for field, value in filters.items()]

    def _write(self, collection: str, stmt):
        try:
            with self._engine.begin() as conn:
                return conn.execute(stmt).first()
        except IntegrityError as exc:
            error = translate_integrity_error(collection, exc)
            if error is None:
                raise
            raise error from exc

    # ============ sync primitives (run in the threadpool) ============
    def _select(self, collection, filters, sort=(), limit=None) -> List[Dict[str, Any]]:
        table = self._table(collection)
        stmt = select(table).where(*self._where(table, filters))
        if sort:
            stmt = stmt.order_by(*[table.c[f].desc() if desc else table.c[f].asc() for f, desc in sort])
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt)]

    def _insert(self, collection, values) -> Dict[str, Any]:
        table = self._table(collection)
        if "created_at" in table.c:
            values = {"created_at": self._clock(), **values}
        row = self._write(collection, insert(table).values(**values).returning(*table.c))
        return dict(row._mapping)

    def _update(self, collection, id, changes) -> Optional[Dict[str, Any]]:
        table = self._table(collection)
        stmt = update(table).where(table.c.id == id).values(**changes).returning(*table.c)
        row = self._write(collection, stmt)
        return dict(row._mapping) if row is not None else None

    def _delete(self, collection, id) -> bool:
        table = self._table(collection)
        row = self._write(collection, delete(table).where(table.c.id == id).returning(table.c.id))
        return row is not None

    # ============ async surface ============
    async def provision(self) -> None:
        await run_in_threadpool(metadata.create_all, self._engine)
        logger.info("Relational schema ready (%d tables)", len(metadata.tables))

    async def describe(self) -> Dict[str, Any]:
        names = await run_in_threadpool(lambda: inspect(self._engine).get_table_names())
        return {"backend": self.kind.value, "name": self._engine.url.database, "collections": names}

    async def get(self, collection: str, id: str) -> Optional[Dict[str, Any]]:
        return await self.find_one(collection, {"id": id})

    async def find_one(self, collection: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = await run_in_threadpool(self._select, collection, filters, (), 1)
        return rows[0] if rows else None

    async def find(
        self,
        collection: str,
        filters: Dict[str, Any],
        sort: Sequence[Tuple[str, bool]] = (),
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await run_in_threadpool(self._select, collection, filters, sort, limit)

    async def insert(self, collection: str, values: Dict[str, Any]) -> Dict[str, Any]:
        return await run_in_threadpool(self._insert, collection, values)

    async def update(self, collection: str, id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not changes:
            return await self.get(collection, id)
        return await run_in_threadpool(self._update, collection, id, changes)

    async def delete(self, collection: str, id: str) -> bool:
        return await run_in_threadpool(self._delete, collection, id)

    def close(self) -> None:
        self._engine.dispose()
