import mongomock
import pytest

import database
from config import BackendKind, Settings
from storage import create_storage


def test_defaults_to_relational():
    settings = Settings.from_env({})

    assert settings.database_type is BackendKind.RELATIONAL
    assert settings.url == "sqlite:///checkout.db"
    assert settings.database_name == "checkout"


@pytest.mark.parametrize("raw", ["mongodb", "Mongo", " document "])
def test_document_aliases(raw):
    settings = Settings.from_env({"DATABASE_TYPE": raw, "DATABASE_NAME": "shop"})

    assert settings.database_type is BackendKind.DOCUMENT
    assert settings.url == "mongodb://localhost:27017"
    assert settings.database_name == "shop"


@pytest.mark.parametrize("raw", ["postgres", "postgresql", "sql", "relational"])
def test_relational_aliases(raw):
    assert Settings.from_env({"DATABASE_TYPE": raw}).database_type is BackendKind.RELATIONAL


def test_unknown_backend_is_rejected():
    with pytest.raises(ValueError):
        Settings.from_env({"DATABASE_TYPE": "firestore"})


def test_explicit_url_wins():
    settings = Settings.from_env({"DATABASE_URL": "postgresql://db/checkout"})

    assert settings.url == "postgresql://db/checkout"


def test_selector_builds_relational_storage():
    storage = create_storage(Settings(database_url="sqlite://"))
    try:
        assert storage.kind is BackendKind.RELATIONAL
    finally:
        storage.close()


def test_selector_builds_document_storage(monkeypatch):
    monkeypatch.setattr(database, "MongoClient", mongomock.MongoClient)

    storage = create_storage(Settings(database_type=BackendKind.DOCUMENT))
    try:
        assert storage.kind is BackendKind.DOCUMENT
    finally:
        storage.close()
