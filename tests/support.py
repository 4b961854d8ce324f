"""Test doubles and helpers shared by the test modules."""
import asyncio

from application.ports.chunk_store import ChunkStoreError
from application.services.upload_supervisor import UploadPolicy
from domain.benefit_request import BenefitRequest, RequestStatus


class _FaultyWriter:
    def __init__(self, inner, fault):
        self._inner = inner
        self._fault = fault

    @property
    def bytes_written(self) -> int:
        return self._inner.bytes_written

    async def write(self, data: bytes) -> None:
        if self._fault == "timeout":
            # never completes; only the attempt deadline ends it
            await asyncio.Event().wait()
        if self._fault == "stream_error":
            await self._inner.write(data[: len(data) // 2])
            raise ChunkStoreError("simulated I/O fault")
        await self._inner.write(data)

    async def close(self) -> None:
        await self._inner.close()

    async def abort(self) -> None:
        await self._inner.abort()


class _ShortWriter(_FaultyWriter):
    def __init__(self, inner):
        super().__init__(inner, "short")
        self._dropped = False

    async def write(self, data: bytes) -> None:
        if not self._dropped:
            self._dropped = True
            data = data[: len(data) // 2]
        await self._inner.write(data)


class FaultyChunkStore:
    """Wraps a real store and injects faults per original filename and attempt.

    ``plan`` maps an original filename to a list of faults consumed one per
    ``create`` call: ``None`` (no fault), ``"timeout"``, ``"stream_error"``,
    ``"verify"`` (object never reported as existing) or ``"short"`` (only
    part of the bytes reach the store).
    """

    def __init__(self, inner, plan=None, fail_delete_for=()):
        self._inner = inner
        self._plan = {name: list(faults) for name, faults in (plan or {}).items()}
        self._fail_delete_for = set(fail_delete_for)
        self._faults: dict[str, object] = {}
        self._names: dict[str, str] = {}
        self.created: list[str] = []
        self.deleted: list[str] = []

    def __getattr__(self, name):
        return getattr(self._inner, name)

    @property
    def chunk_size(self) -> int:
        return self._inner.chunk_size

    async def create(self, filename, content_type, metadata, expected_length, object_id=None):
        handle = await self._inner.create(filename, content_type, metadata, expected_length, object_id=object_id)
        faults = self._plan.get(metadata.original_name)
        self._faults[handle.object_id] = faults.pop(0) if faults else None
        self._names[handle.object_id] = metadata.original_name
        self.created.append(handle.object_id)
        return handle

    async def open_writer(self, handle):
        writer = await self._inner.open_writer(handle)
        fault = self._faults.get(handle.object_id)
        if fault == "short":
            return _ShortWriter(writer)
        if fault in ("timeout", "stream_error"):
            return _FaultyWriter(writer, fault)
        return writer

    async def exists(self, object_id):
        if self._faults.get(object_id) == "verify":
            return False
        return await self._inner.exists(object_id)

    async def delete(self, object_id):
        self.deleted.append(object_id)
        if self._names.get(object_id) in self._fail_delete_for:
            raise ChunkStoreError("simulated delete failure")
        await self._inner.delete(object_id)


class RecordingSleep:
    """Replaces asyncio.sleep for backoff so tests do not wait."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FirstAttemptShortTimeout(UploadPolicy):
    """Attempt 1 gets a tiny deadline so an injected hang times out fast."""

    def timeout_for(self, size_bytes: int, attempt: int) -> float:
        return 0.2 if attempt == 1 else 30.0


async def create_request(uow_factory, user_id: int, status: RequestStatus = RequestStatus.PENDING) -> BenefitRequest:
    async with uow_factory() as uow:
        return await uow.request_repository.create(BenefitRequest(id=None, user_id=user_id, benefit_id=1, status=status))


async def load_request(uow_factory, request_id: int) -> BenefitRequest:
    async with uow_factory(readonly=True) as uow:
        return await uow.request_repository.get_by_id(request_id)
