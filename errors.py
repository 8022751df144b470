"""Failures raised by the storage layer.

Absence is never an error here: lookups return ``None`` and listings return
``[]``. Driver faults (connection refused, malformed query) propagate as the
driver raised them.
"""


class StorageError(Exception):
    pass


class IntegrityViolation(StorageError):
    def __init__(self, collection: str, detail: str):
        self.collection = collection
        self.detail = detail
        super().__init__(f"{collection}: {detail}")


class ReferenceViolation(IntegrityViolation):
    """A row points at a missing row, or a delete would orphan one."""


class DuplicateKey(IntegrityViolation):
    """A unique key (email, slug, per-owner code) is already taken."""
