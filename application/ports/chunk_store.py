"""Application-owned chunk store port (hexagonal architecture).

A chunk store keeps one binary object per uploaded document, split into
fixed-size chunks ordered by sequence number. Objects start ``open`` and only
become readable once ``finalize`` has verified the written length against the
length declared at ``create`` time.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Optional, Protocol, runtime_checkable


class ObjectState(str, Enum):
    OPEN = "open"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class ObjectMetadata:
    """Fixed metadata carried by every stored object."""

    request_id: Optional[int] = None
    uploader_id: Optional[int] = None
    size_bytes: int = 0
    mime_type: Optional[str] = None
    original_name: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "uploader_id": self.uploader_id,
            "size_bytes": self.size_bytes,
            "mime_type": self.mime_type,
            "original_name": self.original_name,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "ObjectMetadata":
        data = data or {}
        return cls(
            request_id=data.get("request_id"),
            uploader_id=data.get("uploader_id"),
            size_bytes=int(data.get("size_bytes") or 0),
            mime_type=data.get("mime_type"),
            original_name=data.get("original_name"),
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class ObjectHandle:
    """Reference to an object that has been allocated but not finalized."""

    object_id: str
    filename: str
    content_type: str
    expected_length: int
    metadata: ObjectMetadata
    created_at: datetime


@dataclass(frozen=True)
class StoredObject:
    """A finalized, readable object."""

    object_id: str
    filename: str
    content_type: str
    length: int
    chunk_size: int
    metadata: ObjectMetadata
    created_at: datetime
    finalized_at: Optional[datetime] = None


class ChunkStoreError(Exception):
    """Base chunk store failure (I/O, backend unavailable, ...)."""


class ObjectNotFoundError(ChunkStoreError):
    """No object (or no finalized object, for reads) exists for the id."""


class ObjectStateError(ChunkStoreError):
    """Operation is not allowed in the object's current state."""


class IncompleteWriteError(ChunkStoreError):
    """Written bytes do not match the declared length; object stays open."""

    def __init__(self, object_id: str, expected: int, actual: int):
        self.object_id = object_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Incomplete write for {object_id}: expected {expected} bytes, got {actual}"
        )


@runtime_checkable
class ChunkWriter(Protocol):
    """Write sink for one object; chunks are committed in sequence order."""

    @property
    def bytes_written(self) -> int: ...

    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...

    async def abort(self) -> None: ...


@runtime_checkable
class ChunkStorePort(Protocol):
    @property
    def chunk_size(self) -> int: ...

    async def create(
        self,
        filename: str,
        content_type: str,
        metadata: ObjectMetadata,
        expected_length: int,
        object_id: Optional[str] = None,
    ) -> ObjectHandle: ...

    async def open_writer(self, handle: ObjectHandle) -> ChunkWriter: ...

    async def finalize(self, handle: ObjectHandle) -> StoredObject: ...

    async def stat(self, object_id: str) -> StoredObject: ...

    async def read(self, object_id: str) -> AsyncIterator[bytes]: ...

    async def delete(self, object_id: str) -> None: ...

    async def exists(self, object_id: str) -> bool: ...

    async def list_open(self, created_before: datetime) -> list[ObjectHandle]: ...

    async def health_check(self) -> bool: ...

    async def aclose(self) -> None: ...
