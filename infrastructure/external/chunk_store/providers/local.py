"""Local file system chunk store provider.

Layout (one directory per object)::

    <base>/<object_id>/manifest.json
    <base>/<object_id>/.writer          (created once, when the writer is opened)
    <base>/<object_id>/chunks/00000000
    <base>/<object_id>/chunks/00000001
    ...

The manifest is rewritten atomically (temp file + replace) on every state
change, so a crash never leaves a half-written manifest behind.
"""
import asyncio
import json
import re
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional

import aiofiles
import aiofiles.os

from application.ports.chunk_store import (
    ChunkStoreError,
    ChunkWriter,
    IncompleteWriteError,
    ObjectHandle,
    ObjectMetadata,
    ObjectNotFoundError,
    ObjectState,
    ObjectStateError,
    StoredObject,
)
from core.logging_config import get_logger
from ..config import ChunkStoreConfig
from ..writer import BufferedChunkWriter

logger = get_logger(__name__)

_OBJECT_ID_RE = re.compile(r"^[0-9a-f]{32}$")
_MANIFEST = "manifest.json"
_CHUNKS = "chunks"
_WRITER_MARKER = ".writer"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class LocalChunkStore:
    """Chunk store backed by the local file system (aiofiles)."""

    def __init__(self, config: ChunkStoreConfig):
        self.config = config
        self.base_path = Path(config.local_base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    @property
    def chunk_size(self) -> int:
        return self.config.chunk_size

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------
    async def create(
        self,
        filename: str,
        content_type: str,
        metadata: ObjectMetadata,
        expected_length: int,
        object_id: Optional[str] = None,
    ) -> ObjectHandle:
        handle = ObjectHandle(
            object_id=object_id or uuid.uuid4().hex,
            filename=filename,
            content_type=content_type,
            expected_length=expected_length,
            metadata=metadata,
            created_at=_utcnow(),
        )
        object_dir = self._object_dir(handle.object_id)
        try:
            await aiofiles.os.makedirs(object_dir / _CHUNKS, exist_ok=False)
            await self._write_manifest(
                object_dir,
                {
                    "id": handle.object_id,
                    "filename": filename,
                    "content_type": content_type,
                    "expected_length": expected_length,
                    "chunk_size": self.chunk_size,
                    "metadata": metadata.to_dict(),
                    "state": ObjectState.OPEN.value,
                    "write_started": False,
                    "length": None,
                    "created_at": handle.created_at.isoformat(),
                    "finalized_at": None,
                },
            )
        except OSError as e:
            raise ChunkStoreError(f"Failed to create object {handle.object_id}: {e}") from e
        return handle

    async def open_writer(self, handle: ObjectHandle) -> ChunkWriter:
        object_dir = self._object_dir(handle.object_id)
        manifest = await self._load_manifest(object_dir)
        if manifest["state"] != ObjectState.OPEN.value or manifest["write_started"]:
            raise ObjectStateError(f"Object {handle.object_id} is not writable")
        try:
            # O_EXCL claim; exactly one caller gets the writer
            async with aiofiles.open(object_dir / _WRITER_MARKER, "xb"):
                pass
        except FileExistsError as e:
            raise ObjectStateError(f"Object {handle.object_id} is not writable") from e
        except OSError as e:
            raise ChunkStoreError(f"Failed to open writer for {handle.object_id}: {e}") from e
        manifest["write_started"] = True
        await self._write_manifest(object_dir, manifest)

        chunk_dir = object_dir / _CHUNKS

        async def sink(sequence: int, data: bytes) -> None:
            try:
                # 'xb' refuses to overwrite an existing chunk
                async with aiofiles.open(chunk_dir / f"{sequence:08d}", "xb") as f:
                    await f.write(data)
            except OSError as e:
                raise ChunkStoreError(
                    f"Failed to write chunk {sequence} of {handle.object_id}: {e}"
                ) from e

        return BufferedChunkWriter(handle.object_id, self.chunk_size, sink)

    async def finalize(self, handle: ObjectHandle) -> StoredObject:
        object_dir = self._object_dir(handle.object_id)
        manifest = await self._load_manifest(object_dir)
        if manifest["state"] != ObjectState.OPEN.value:
            raise ObjectStateError(f"Object {handle.object_id} already finalized")

        sizes = await self._chunk_sizes(object_dir)
        total = sum(sizes)
        if total != manifest["expected_length"]:
            raise IncompleteWriteError(handle.object_id, manifest["expected_length"], total)

        manifest["state"] = ObjectState.FINALIZED.value
        manifest["length"] = total
        manifest["finalized_at"] = _utcnow().isoformat()
        await self._write_manifest(object_dir, manifest)
        logger.debug("chunk_object_finalized", object_id=handle.object_id, length=total, chunks=len(sizes))
        return self._to_stored(manifest)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------
    async def stat(self, object_id: str) -> StoredObject:
        manifest = await self._load_manifest(self._object_dir(object_id))
        if manifest["state"] != ObjectState.FINALIZED.value:
            raise ObjectNotFoundError(f"Object not finalized: {object_id}")
        return self._to_stored(manifest)

    async def read(self, object_id: str) -> AsyncIterator[bytes]:
        stored = await self.stat(object_id)
        return self._iter_chunks(object_id, stored.length)

    async def _iter_chunks(self, object_id: str, length: int) -> AsyncIterator[bytes]:
        chunk_dir = self._object_dir(object_id) / _CHUNKS
        sent = 0
        sequence = 0
        while sent < length:
            path = chunk_dir / f"{sequence:08d}"
            try:
                async with aiofiles.open(path, "rb") as f:
                    data = await f.read()
            except FileNotFoundError as e:
                raise ChunkStoreError(f"Missing chunk {sequence} of {object_id}") from e
            sent += len(data)
            sequence += 1
            yield data

    async def exists(self, object_id: str) -> bool:
        try:
            await self.stat(object_id)
        except ObjectNotFoundError:
            return False
        return True

    # ------------------------------------------------------------------
    # Deletion / maintenance
    # ------------------------------------------------------------------
    async def delete(self, object_id: str) -> None:
        object_dir = self._object_dir(object_id)
        if not await aiofiles.os.path.isdir(object_dir):
            raise ObjectNotFoundError(f"Object not found: {object_id}")
        try:
            await asyncio.to_thread(shutil.rmtree, object_dir)
        except FileNotFoundError as e:
            raise ObjectNotFoundError(f"Object not found: {object_id}") from e
        except OSError as e:
            raise ChunkStoreError(f"Failed to delete {object_id}: {e}") from e

    async def list_open(self, created_before: datetime) -> list[ObjectHandle]:
        handles: list[ObjectHandle] = []
        for name in await aiofiles.os.listdir(self.base_path):
            if not _OBJECT_ID_RE.match(name):
                continue
            try:
                manifest = await self._load_manifest(self.base_path / name)
            except ObjectNotFoundError:
                continue
            created_at = _parse_ts(manifest["created_at"])
            if manifest["state"] == ObjectState.OPEN.value and created_at < created_before:
                handles.append(
                    ObjectHandle(
                        object_id=manifest["id"],
                        filename=manifest["filename"],
                        content_type=manifest["content_type"],
                        expected_length=manifest["expected_length"],
                        metadata=ObjectMetadata.from_dict(manifest["metadata"]),
                        created_at=created_at,
                    )
                )
        return handles

    async def health_check(self) -> bool:
        marker = self.base_path / ".health_check"
        try:
            async with aiofiles.open(marker, "wb") as f:
                await f.write(b"ok")
            await aiofiles.os.remove(marker)
            return True
        except OSError as e:
            logger.error("chunk_store_health_check_failed", provider="local", error=str(e))
            return False

    async def aclose(self) -> None:
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _object_dir(self, object_id: str) -> Path:
        # ids are uuid4 hex; anything else cannot name an object and must not
        # be joined onto the base path
        if not _OBJECT_ID_RE.match(object_id or ""):
            raise ObjectNotFoundError(f"Invalid object id: {object_id!r}")
        return self.base_path / object_id

    async def _load_manifest(self, object_dir: Path) -> dict:
        try:
            async with aiofiles.open(object_dir / _MANIFEST, "r") as f:
                return json.loads(await f.read())
        except FileNotFoundError as e:
            raise ObjectNotFoundError(f"Object not found: {object_dir.name}") from e
        except (OSError, ValueError) as e:
            raise ChunkStoreError(f"Unreadable manifest for {object_dir.name}: {e}") from e

    async def _write_manifest(self, object_dir: Path, manifest: dict) -> None:
        tmp = object_dir / f"{_MANIFEST}.tmp"
        async with aiofiles.open(tmp, "w") as f:
            await f.write(json.dumps(manifest))
        await aiofiles.os.replace(tmp, object_dir / _MANIFEST)

    async def _chunk_sizes(self, object_dir: Path) -> list[int]:
        """Sizes of the written chunks, in sequence order; a gap means nothing counts past it."""
        names = sorted(await aiofiles.os.listdir(object_dir / _CHUNKS))
        sizes: list[int] = []
        for expected_seq, name in enumerate(names):
            if name != f"{expected_seq:08d}":
                break
            st = await aiofiles.os.stat(object_dir / _CHUNKS / name)
            sizes.append(st.st_size)
        return sizes

    @staticmethod
    def _to_stored(manifest: dict) -> StoredObject:
        return StoredObject(
            object_id=manifest["id"],
            filename=manifest["filename"],
            content_type=manifest["content_type"],
            length=manifest["length"],
            chunk_size=manifest["chunk_size"],
            metadata=ObjectMetadata.from_dict(manifest["metadata"]),
            created_at=_parse_ts(manifest["created_at"]),
            finalized_at=_parse_ts(manifest["finalized_at"]),
        )


async def build_local_provider(config: ChunkStoreConfig) -> LocalChunkStore:
    """Build local chunk store provider.

    Args:
        config: Chunk store configuration

    Returns:
        Configured local provider instance
    """
    provider = LocalChunkStore(config)
    if not await provider.health_check():
        raise ChunkStoreError("Failed to access local chunk store")
    return provider
