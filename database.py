"""
Connections to the two supported stores.

Nothing here is created at import time; the process entry point asks for a
connection once and hands it to the storage backend it builds.
"""

import logging

from pymongo import MongoClient
from pymongo.database import Database
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_sql_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    options = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every checkout sees an empty database
        options["poolclass"] = StaticPool
    engine = create_engine(url, **options)
    # sqlite ignores foreign keys unless asked per connection
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def create_mongo_database(url: str, name: str) -> Database:
    client = MongoClient(url, tz_aware=False)
    logger.debug("Mongo client created for database %s", name)
    return client[name]
