"""SQLAlchemy chunk store provider.

Objects live in ``stored_objects``, their bytes in ``object_chunks`` keyed by
``(object_id, n)``. The provider owns its engine so the chunk tables can sit
in a different database from the request metadata.
"""
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

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
from infrastructure.database import build_async_url
from infrastructure.models.stored_object import ObjectChunkModel, StoredObjectModel
from ..config import ChunkStoreConfig
from ..writer import BufferedChunkWriter

logger = get_logger(__name__)

_CHUNK_TABLES = [StoredObjectModel.__table__, ObjectChunkModel.__table__]


class DatabaseChunkStore:
    """Chunk store on top of an async SQLAlchemy engine."""

    def __init__(self, config: ChunkStoreConfig, engine: AsyncEngine):
        self.config = config
        self.engine = engine
        self._sessionmaker = async_sessionmaker(bind=engine, expire_on_commit=False)

    @property
    def chunk_size(self) -> int:
        return self.config.chunk_size

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(
                lambda sync_conn: StoredObjectModel.metadata.create_all(sync_conn, tables=_CHUNK_TABLES)
            )

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            raise ChunkStoreError(f"Chunk store database error: {e}") from e

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
        object_id = object_id or uuid.uuid4().hex
        created_at = datetime.now(timezone.utc)
        async with self._transaction() as session:
            session.add(
                StoredObjectModel(
                    id=object_id,
                    filename=filename,
                    content_type=content_type,
                    state=ObjectState.OPEN.value,
                    write_started=False,
                    expected_length=expected_length,
                    chunk_size=self.chunk_size,
                    request_id=metadata.request_id,
                    uploader_id=metadata.uploader_id,
                    size_bytes=metadata.size_bytes,
                    mime_type=metadata.mime_type,
                    original_name=metadata.original_name,
                    extra=dict(metadata.extra),
                    created_at=created_at,
                )
            )
        return ObjectHandle(
            object_id=object_id,
            filename=filename,
            content_type=content_type,
            expected_length=expected_length,
            metadata=metadata,
            created_at=created_at,
        )

    async def open_writer(self, handle: ObjectHandle) -> ChunkWriter:
        async with self._transaction() as session:
            result = await session.execute(
                update(StoredObjectModel)
                .where(
                    StoredObjectModel.id == handle.object_id,
                    StoredObjectModel.state == ObjectState.OPEN.value,
                    StoredObjectModel.write_started.is_(False),
                )
                .values(write_started=True)
            )
            if result.rowcount != 1:
                if await session.get(StoredObjectModel, handle.object_id) is None:
                    raise ObjectNotFoundError(f"Object not found: {handle.object_id}")
                raise ObjectStateError(f"Object {handle.object_id} is not writable")

        async def sink(sequence: int, data: bytes) -> None:
            # one transaction per chunk: a committed chunk is durable even if
            # a later chunk fails
            try:
                async with self._transaction() as session:
                    session.add(
                        ObjectChunkModel(object_id=handle.object_id, n=sequence, size=len(data), data=data)
                    )
            except ChunkStoreError as e:
                if isinstance(e.__cause__, IntegrityError):
                    raise ObjectStateError(
                        f"Chunk {sequence} of {handle.object_id} already written"
                    ) from e
                raise

        return BufferedChunkWriter(handle.object_id, self.chunk_size, sink)

    async def finalize(self, handle: ObjectHandle) -> StoredObject:
        async with self._transaction() as session:
            row = await session.get(StoredObjectModel, handle.object_id, with_for_update=True)
            if row is None:
                raise ObjectNotFoundError(f"Object not found: {handle.object_id}")
            if row.state != ObjectState.OPEN.value:
                raise ObjectStateError(f"Object {handle.object_id} already finalized")

            count, total, max_n = (
                await session.execute(
                    select(
                        func.count(ObjectChunkModel.n),
                        func.coalesce(func.sum(ObjectChunkModel.size), 0),
                        func.max(ObjectChunkModel.n),
                    ).where(ObjectChunkModel.object_id == handle.object_id)
                )
            ).one()
            total = int(total)
            gap_free = count == 0 or max_n == count - 1
            if not gap_free or total != row.expected_length:
                raise IncompleteWriteError(handle.object_id, row.expected_length, total)

            row.state = ObjectState.FINALIZED.value
            row.length = total
            row.finalized_at = datetime.now(timezone.utc)
            stored = self._to_stored(row)

        logger.debug("chunk_object_finalized", object_id=handle.object_id, length=total, chunks=count)
        return stored

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------
    async def stat(self, object_id: str) -> StoredObject:
        async with self._transaction() as session:
            row = await session.get(StoredObjectModel, object_id)
            if row is None or row.state != ObjectState.FINALIZED.value:
                raise ObjectNotFoundError(f"Object not found: {object_id}")
            return self._to_stored(row)

    async def read(self, object_id: str) -> AsyncIterator[bytes]:
        stored = await self.stat(object_id)
        return self._iter_chunks(object_id, stored.length)

    async def _iter_chunks(self, object_id: str, length: int) -> AsyncIterator[bytes]:
        sent = 0
        n = 0
        while sent < length:
            async with self._transaction() as session:
                data = await session.scalar(
                    select(ObjectChunkModel.data).where(
                        ObjectChunkModel.object_id == object_id,
                        ObjectChunkModel.n == n,
                    )
                )
            if data is None:
                raise ChunkStoreError(f"Missing chunk {n} of {object_id}")
            sent += len(data)
            n += 1
            yield bytes(data)

    async def exists(self, object_id: str) -> bool:
        async with self._transaction() as session:
            state = await session.scalar(
                select(StoredObjectModel.state).where(StoredObjectModel.id == object_id)
            )
        return state == ObjectState.FINALIZED.value

    # ------------------------------------------------------------------
    # Deletion / maintenance
    # ------------------------------------------------------------------
    async def delete(self, object_id: str) -> None:
        async with self._transaction() as session:
            await session.execute(delete(ObjectChunkModel).where(ObjectChunkModel.object_id == object_id))
            result = await session.execute(delete(StoredObjectModel).where(StoredObjectModel.id == object_id))
            if result.rowcount == 0:
                raise ObjectNotFoundError(f"Object not found: {object_id}")

    async def list_open(self, created_before: datetime) -> list[ObjectHandle]:
        async with self._transaction() as session:
            rows = (
                await session.scalars(
                    select(StoredObjectModel)
                    .where(
                        StoredObjectModel.state == ObjectState.OPEN.value,
                        StoredObjectModel.created_at < created_before,
                    )
                    .order_by(StoredObjectModel.created_at)
                )
            ).all()
        return [
            ObjectHandle(
                object_id=row.id,
                filename=row.filename,
                content_type=row.content_type,
                expected_length=row.expected_length,
                metadata=self._metadata(row),
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def health_check(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error("chunk_store_health_check_failed", provider="database", error=str(e))
            return False

    async def aclose(self) -> None:
        await self.engine.dispose()

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------
    @staticmethod
    def _metadata(row: StoredObjectModel) -> ObjectMetadata:
        return ObjectMetadata(
            request_id=row.request_id,
            uploader_id=row.uploader_id,
            size_bytes=row.size_bytes or 0,
            mime_type=row.mime_type,
            original_name=row.original_name,
            extra=dict(row.extra or {}),
        )

    @classmethod
    def _to_stored(cls, row: StoredObjectModel) -> StoredObject:
        return StoredObject(
            object_id=row.id,
            filename=row.filename,
            content_type=row.content_type,
            length=row.length,
            chunk_size=row.chunk_size,
            metadata=cls._metadata(row),
            created_at=row.created_at,
            finalized_at=row.finalized_at,
        )


async def build_database_provider(config: ChunkStoreConfig) -> DatabaseChunkStore:
    """Build database chunk store provider.

    Args:
        config: Chunk store configuration

    Returns:
        Configured database provider instance
    """
    engine = create_async_engine(build_async_url(config.database_url), echo=config.echo)
    provider = DatabaseChunkStore(config, engine)
    if config.create_schema:
        await provider.create_schema()
    return provider
