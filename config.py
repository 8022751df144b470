import os
from enum import Enum
from typing import Mapping, Optional

from pydantic import BaseModel


class BackendKind(str, Enum):
    RELATIONAL = "relational"
    DOCUMENT = "document"


BACKEND_ALIASES = {
    "relational": BackendKind.RELATIONAL,
    "postgres": BackendKind.RELATIONAL,
    "postgresql": BackendKind.RELATIONAL,
    "sql": BackendKind.RELATIONAL,
    "sqlite": BackendKind.RELATIONAL,
    "document": BackendKind.DOCUMENT,
    "mongo": BackendKind.DOCUMENT,
    "mongodb": BackendKind.DOCUMENT,
}

DEFAULT_URLS = {
    BackendKind.RELATIONAL: "sqlite:///checkout.db",
    BackendKind.DOCUMENT: "mongodb://localhost:27017",
}


class Settings(BaseModel):
    database_type: BackendKind = BackendKind.RELATIONAL
    database_url: Optional[str] = None
    database_name: str = "checkout"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        raw_type = env.get("DATABASE_TYPE", "relational").strip().lower()
        if raw_type not in BACKEND_ALIASES:
            raise ValueError(f"Unknown DATABASE_TYPE {raw_type!r}, expected one of {sorted(BACKEND_ALIASES)}")
        return cls(
            database_type=BACKEND_ALIASES[raw_type],
            database_url=env.get("DATABASE_URL") or None,
            database_name=env.get("DATABASE_NAME") or "checkout",
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def url(self) -> str:
        return self.database_url or DEFAULT_URLS[self.database_type]
