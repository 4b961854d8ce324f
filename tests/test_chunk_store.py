import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest

from application.ports.chunk_store import (
    IncompleteWriteError,
    ObjectMetadata,
    ObjectNotFoundError,
    ObjectStateError,
)
from infrastructure.external.chunk_store import BufferedChunkWriter, create_chunk_store, get_chunk_store_config
from infrastructure.external.chunk_store.config import ChunkStoreConfig
from infrastructure.external.chunk_store.providers.local import LocalChunkStore


def _meta(name="scan.pdf", size=0):
    return ObjectMetadata(request_id=1, uploader_id=7, size_bytes=size, mime_type="application/pdf", original_name=name)


async def _store_bytes(store, data: bytes, *, name="scan.pdf", piece=10_000):
    handle = await store.create(f"x{os.path.splitext(name)[1]}", "application/pdf", _meta(name, len(data)), len(data))
    writer = await store.open_writer(handle)
    for start in range(0, len(data), piece):
        await writer.write(data[start:start + piece])
    await writer.close()
    return handle, await store.finalize(handle)


async def _read_all(store, object_id: str) -> bytes:
    out = bytearray()
    async for chunk in await store.read(object_id):
        out.extend(chunk)
    return bytes(out)


@pytest.mark.asyncio
async def test_round_trip_across_multiple_chunks(chunk_store):
    data = os.urandom(chunk_store.chunk_size * 3 + 123)

    handle, stored = await _store_bytes(chunk_store, data)

    assert stored.length == len(data)
    assert stored.metadata.original_name == "scan.pdf"
    assert stored.metadata.uploader_id == 7
    assert await chunk_store.exists(handle.object_id) is True
    assert await _read_all(chunk_store, handle.object_id) == data


@pytest.mark.asyncio
async def test_chunks_are_full_except_the_last(chunk_store):
    size = chunk_store.chunk_size
    data = os.urandom(size * 2 + 5)
    handle, _ = await _store_bytes(chunk_store, data, piece=7_777)

    sizes = [len(c) async for c in await chunk_store.read(handle.object_id)]

    assert sizes == [size, size, 5]


@pytest.mark.asyncio
async def test_empty_object_can_be_finalized(chunk_store):
    handle, stored = await _store_bytes(chunk_store, b"")

    assert stored.length == 0
    assert await _read_all(chunk_store, handle.object_id) == b""


@pytest.mark.asyncio
async def test_short_write_is_rejected_and_object_stays_unreadable(chunk_store):
    handle = await chunk_store.create("a.pdf", "application/pdf", _meta(size=100), 100)
    writer = await chunk_store.open_writer(handle)
    await writer.write(b"x" * 40)
    await writer.close()

    with pytest.raises(IncompleteWriteError) as exc_info:
        await chunk_store.finalize(handle)

    assert exc_info.value.expected == 100
    assert exc_info.value.actual == 40
    assert await chunk_store.exists(handle.object_id) is False
    with pytest.raises(ObjectNotFoundError):
        await chunk_store.read(handle.object_id)
    with pytest.raises(ObjectNotFoundError):
        await chunk_store.stat(handle.object_id)


@pytest.mark.asyncio
async def test_writer_can_only_be_opened_once(chunk_store):
    handle = await chunk_store.create("a.pdf", "application/pdf", _meta(size=3), 3)
    await chunk_store.open_writer(handle)

    with pytest.raises(ObjectStateError):
        await chunk_store.open_writer(handle)


@pytest.mark.asyncio
async def test_finalized_object_is_immutable(chunk_store):
    handle, _ = await _store_bytes(chunk_store, b"abc")

    with pytest.raises(ObjectStateError):
        await chunk_store.finalize(handle)
    with pytest.raises(ObjectStateError):
        await chunk_store.open_writer(handle)


@pytest.mark.asyncio
async def test_read_unknown_object_fails_before_iteration(chunk_store):
    with pytest.raises(ObjectNotFoundError):
        await chunk_store.read("0" * 32)


@pytest.mark.asyncio
async def test_delete_removes_object_and_second_delete_reports_missing(chunk_store):
    handle, _ = await _store_bytes(chunk_store, b"payload")

    await chunk_store.delete(handle.object_id)

    assert await chunk_store.exists(handle.object_id) is False
    with pytest.raises(ObjectNotFoundError):
        await chunk_store.delete(handle.object_id)


@pytest.mark.asyncio
async def test_delete_open_object(chunk_store):
    handle = await chunk_store.create("a.pdf", "application/pdf", _meta(size=10), 10)
    writer = await chunk_store.open_writer(handle)
    await writer.write(b"12345")
    await writer.abort()

    await chunk_store.delete(handle.object_id)

    assert await chunk_store.list_open(datetime.now(timezone.utc) + timedelta(minutes=1)) == []


@pytest.mark.asyncio
async def test_create_uses_supplied_object_id(chunk_store):
    object_id = "ab" * 16
    handle = await chunk_store.create("a.pdf", "application/pdf", _meta(size=1), 1, object_id=object_id)

    assert handle.object_id == object_id


@pytest.mark.asyncio
async def test_list_open_only_returns_unfinalized_objects_older_than_cutoff(chunk_store):
    open_handle = await chunk_store.create("a.pdf", "application/pdf", _meta(size=10), 10)
    done, _ = await _store_bytes(chunk_store, b"done")

    later = datetime.now(timezone.utc) + timedelta(minutes=1)
    earlier = datetime.now(timezone.utc) - timedelta(hours=1)

    assert [h.object_id for h in await chunk_store.list_open(later)] == [open_handle.object_id]
    assert await chunk_store.list_open(earlier) == []
    assert done.object_id not in [h.object_id for h in await chunk_store.list_open(later)]


@pytest.mark.asyncio
async def test_health_check(chunk_store):
    assert await chunk_store.health_check() is True


@pytest.mark.asyncio
async def test_local_store_rejects_path_like_ids(local_store):
    with pytest.raises(ObjectNotFoundError):
        await local_store.stat("../../etc/passwd")
    assert await local_store.exists("not-an-id") is False


@pytest.mark.asyncio
async def test_local_concurrent_open_writer_hands_out_one_writer(local_store):
    handle = await local_store.create("a.pdf", "application/pdf", _meta(size=3), 3)

    results = await asyncio.gather(
        *(local_store.open_writer(handle) for _ in range(4)), return_exceptions=True
    )

    errors = [r for r in results if isinstance(r, BaseException)]
    writers = [r for r in results if not isinstance(r, BaseException)]
    assert len(writers) == 1
    assert len(errors) == 3
    assert all(isinstance(e, ObjectStateError) for e in errors)

    await writers[0].write(b"abc")
    await writers[0].close()
    stored = await local_store.finalize(handle)
    assert stored.length == 3
    assert await _read_all(local_store, handle.object_id) == b"abc"


@pytest.mark.asyncio
async def test_buffered_writer_emits_fixed_size_chunks_in_order():
    committed = []

    async def sink(n, data):
        committed.append((n, data))

    writer = BufferedChunkWriter("obj", 4, sink)
    await writer.write(b"abc")
    assert committed == []
    await writer.write(b"defgh")
    assert committed == [(0, b"abcd"), (1, b"efgh")]

    await writer.write(b"ij")
    # tail stays buffered until close
    assert len(committed) == 2
    await writer.close()

    assert committed == [(0, b"abcd"), (1, b"efgh"), (2, b"ij")]
    assert writer.bytes_written == 10
    with pytest.raises(ObjectStateError):
        await writer.write(b"k")


@pytest.mark.asyncio
async def test_aborted_writer_drops_buffered_tail():
    committed = []

    async def sink(n, data):
        committed.append(n)

    writer = BufferedChunkWriter("obj", 4, sink)
    await writer.write(b"abcdef")
    await writer.abort()
    await writer.close()

    assert committed == [0]


@pytest.mark.asyncio
async def test_factory_builds_local_provider(tmp_path):
    store = await create_chunk_store(ChunkStoreConfig(type="local", local_base_path=str(tmp_path)))
    try:
        assert isinstance(store, LocalChunkStore)
    finally:
        await store.aclose()


def test_config_falls_back_to_main_database_url():
    from core.config import Settings

    s = Settings(SECRET_KEY="k", database={"url": "sqlite+aiosqlite:///./main.db"})
    config = get_chunk_store_config(s)

    assert config.database_url == "sqlite+aiosqlite:///./main.db"
    assert config.chunk_size == 255 * 1024
