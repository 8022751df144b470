from datetime import datetime, timedelta, timezone

import mongomock
import pytest

from database import create_sql_engine
from mongo_backend import DocumentBackend
from sql_backend import RelationalBackend
from storage import Storage

BACKENDS = ["relational", "document"]


class Clock:
    """Advances by ``step`` (one second unless told otherwise) per reading."""

    def __init__(self, start=datetime(2024, 1, 1, tzinfo=timezone.utc), step=timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


def make_storage(kind, clock):
    if kind == "relational":
        return Storage(RelationalBackend(create_sql_engine("sqlite://"), clock=clock))
    return Storage(DocumentBackend(mongomock.MongoClient()["checkout"], clock=clock))


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def storage_factory():
    """Build a fresh storage of the given kind with its own clock."""
    return lambda kind, step=timedelta(seconds=1): make_storage(kind, Clock(step=step))


@pytest.fixture(params=BACKENDS)
async def storage(request, anyio_backend, clock):
    store = make_storage(request.param, clock)
    await store.provision()
    yield store
    store.close()


@pytest.fixture
async def owner(storage):
    return await storage.create_user({"email": "seller@example.com", "password": "hunter2"})


@pytest.fixture
async def product(storage, owner):
    return await storage.create_product({"user_id": owner.id, "name": "Ultimate Ebook Bundle", "price": "19.99"})
