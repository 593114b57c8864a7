"""Storage-level exceptions shared by every backend."""

from typing import Optional


class StorageError(Exception):
    """Base exception for backend failures."""

    def __init__(self, message: str, *, collection: Optional[str] = None):
        self.message = message
        self.collection = collection
        super().__init__(message)


class RecordNotFound(StorageError):
    """No record with the requested id exists in the collection."""

    def __init__(self, collection: str, record_id: str):
        self.record_id = record_id
        super().__init__(
            f"{collection} record not found: {record_id}", collection=collection
        )


class StorageUnavailable(StorageError):
    """The backend could not be reached or returned unreadable data."""


class ConstraintViolation(StorageError):
    """A write would break a unique key."""

    def __init__(self, collection: str, field: str, value):
        self.field = field
        self.value = value
        super().__init__(
            f"duplicate {field} in {collection}: {value}", collection=collection
        )


class ConflictError(StorageError):
    """The record's version moved between read and conditional write."""

    def __init__(self, collection: str, record_id: str, expected_version: int):
        self.record_id = record_id
        self.expected_version = expected_version
        super().__init__(
            f"{collection} record {record_id} changed since version "
            f"{expected_version}; re-read and retry",
            collection=collection,
        )
