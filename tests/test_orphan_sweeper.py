from datetime import datetime, timedelta, timezone

import pytest

from application.ports.chunk_store import ObjectMetadata
from application.services.orphan_sweeper import OrphanSweeper


def _later(minutes: int = 5) -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


@pytest.mark.asyncio
async def test_sweeper_deletes_only_stale_open_objects(chunk_store):
    meta = ObjectMetadata(size_bytes=10)
    stale = await chunk_store.create("a.pdf", "application/pdf", meta, 10)
    done = await chunk_store.create("b.pdf", "application/pdf", ObjectMetadata(size_bytes=0), 0)
    await chunk_store.finalize(done)

    sweeper = OrphanSweeper(chunk_store, max_age_seconds=60)

    nothing = await sweeper.sweep()
    assert nothing.deleted == []

    result = await sweeper.sweep(now=_later())
    assert result.scanned == 1
    assert result.deleted == [stale.object_id]
    assert await chunk_store.exists(done.object_id) is True


@pytest.mark.asyncio
async def test_sweeper_reports_objects_it_could_not_delete(local_store, faulty_store_factory):
    store = faulty_store_factory(local_store, fail_delete_for={"stuck.pdf"})
    stuck = await store.create("s.pdf", "application/pdf", ObjectMetadata(size_bytes=4, original_name="stuck.pdf"), 4)
    loose = await store.create("l.pdf", "application/pdf", ObjectMetadata(size_bytes=4, original_name="loose.pdf"), 4)

    result = await OrphanSweeper(store, max_age_seconds=60).sweep(now=_later())

    assert result.scanned == 2
    assert result.deleted == [loose.object_id]
    assert result.failed == [stuck.object_id]
    assert [h.object_id for h in await local_store.list_open(_later())] == [stuck.object_id]
