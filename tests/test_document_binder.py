import os
from datetime import datetime, timezone

import pytest

from application.ports.chunk_store import ObjectMetadata
from application.services.document_binder import RequestDocumentBinder
from domain.benefit_request import DocumentReference, RequestStatus
from domain.common.exceptions import (
    ConcurrentModificationException,
    DocumentAccessForbiddenException,
    DocumentNotFoundException,
    DomainValidationException,
    RequestNotEditableException,
    RequestNotFoundException,
)
from infrastructure.repositories.benefit_request_repository import SQLAlchemyBenefitRequestRepository
from support import create_request, load_request


async def _stored_ref(store, name="id-card.png", content_type="image/png") -> DocumentReference:
    data = os.urandom(3000)
    handle = await store.create(name, content_type, ObjectMetadata(size_bytes=len(data), original_name=name), len(data))
    writer = await store.open_writer(handle)
    await writer.write(data)
    await writer.close()
    stored = await store.finalize(handle)
    return DocumentReference(
        object_id=stored.object_id,
        filename=stored.filename,
        original_name=name,
        content_type=content_type,
        size=stored.length,
        upload_date=datetime.now(timezone.utc),
    )


@pytest.mark.asyncio
async def test_attach_appends_in_order_and_bumps_version(uow_factory, local_store, pending_request, users):
    binder = RequestDocumentBinder(uow_factory, local_store)
    first = await _stored_ref(local_store, "a.png")
    second = await _stored_ref(local_store, "b.png")

    await binder.attach(pending_request.id, [first], users["owner"])
    saved = await binder.attach(pending_request.id, [second], users["owner"])

    assert saved.version == pending_request.version + 2
    reloaded = await load_request(uow_factory, pending_request.id)
    assert [d.original_name for d in reloaded.documents] == ["a.png", "b.png"]
    assert reloaded.version == saved.version


@pytest.mark.asyncio
async def test_attach_rejects_duplicate_object(uow_factory, local_store, pending_request, users):
    binder = RequestDocumentBinder(uow_factory, local_store)
    ref = await _stored_ref(local_store)
    await binder.attach(pending_request.id, [ref], users["owner"])

    with pytest.raises(DomainValidationException):
        await binder.attach(pending_request.id, [ref], users["owner"])


@pytest.mark.asyncio
async def test_attach_requires_pending_request(uow_factory, local_store, users):
    binder = RequestDocumentBinder(uow_factory, local_store)
    approved = await create_request(uow_factory, users["owner"].id, RequestStatus.APPROVED)
    ref = await _stored_ref(local_store)

    with pytest.raises(RequestNotEditableException):
        await binder.attach(approved.id, [ref])
    with pytest.raises(RequestNotFoundException):
        await binder.attach(4242, [ref])


@pytest.mark.asyncio
async def test_detach_removes_reference_then_object(uow_factory, chunk_store, pending_request, users):
    binder = RequestDocumentBinder(uow_factory, chunk_store)
    keep = await _stored_ref(chunk_store, "keep.png")
    drop = await _stored_ref(chunk_store, "drop.png")
    await binder.attach(pending_request.id, [keep, drop], users["owner"])

    removed = await binder.detach(pending_request.id, drop.object_id, users["owner"])

    assert removed.object_id == drop.object_id
    assert await chunk_store.exists(drop.object_id) is False
    assert await chunk_store.exists(keep.object_id) is True
    reloaded = await load_request(uow_factory, pending_request.id)
    assert [d.object_id for d in reloaded.documents] == [keep.object_id]


@pytest.mark.asyncio
async def test_detach_succeeds_when_object_already_missing(uow_factory, chunk_store, pending_request, users):
    binder = RequestDocumentBinder(uow_factory, chunk_store)
    ref = await _stored_ref(chunk_store)
    await binder.attach(pending_request.id, [ref], users["owner"])
    await chunk_store.delete(ref.object_id)

    await binder.detach(pending_request.id, ref.object_id, users["owner"])

    assert (await load_request(uow_factory, pending_request.id)).documents == []


@pytest.mark.asyncio
async def test_detach_keeps_reference_removal_when_object_delete_fails(
    uow_factory, local_store, faulty_store_factory, pending_request, users
):
    store = faulty_store_factory(local_store, fail_delete_for={"stuck.png"})
    binder = RequestDocumentBinder(uow_factory, store)
    ref = await _stored_ref(store, "stuck.png")
    await binder.attach(pending_request.id, [ref], users["owner"])

    removed = await binder.detach(pending_request.id, ref.object_id, users["owner"])

    assert removed.object_id == ref.object_id
    assert store.deleted == [ref.object_id]
    assert (await load_request(uow_factory, pending_request.id)).documents == []
    # left for manual cleanup
    assert await local_store.exists(ref.object_id) is True


@pytest.mark.asyncio
async def test_detach_permissions_and_state(uow_factory, local_store, users):
    binder = RequestDocumentBinder(uow_factory, local_store)
    request = await create_request(uow_factory, users["owner"].id)
    ref = await _stored_ref(local_store)
    await binder.attach(request.id, [ref], users["owner"])

    with pytest.raises(DocumentAccessForbiddenException):
        await binder.detach(request.id, ref.object_id, users["other"])
    with pytest.raises(DocumentNotFoundException):
        await binder.detach(request.id, "f" * 32, users["owner"])
    with pytest.raises(RequestNotFoundException):
        await binder.detach(9999, ref.object_id, users["owner"])

    async with uow_factory() as uow:
        current = await uow.request_repository.get_by_id(request.id)
        current.status = RequestStatus.APPROVED
        await uow.request_repository.save(current)

    with pytest.raises(RequestNotEditableException):
        await binder.detach(request.id, ref.object_id, users["owner"])

    # administrators may still remove documents
    await binder.detach(request.id, ref.object_id, users["admin"])
    assert await local_store.exists(ref.object_id) is False


@pytest.mark.asyncio
async def test_stale_write_is_rejected(uow_factory, local_store, pending_request):
    ref = await _stored_ref(local_store)

    async with uow_factory() as uow:
        stale = await uow.request_repository.get_by_id(pending_request.id)
    async with uow_factory() as uow:
        fresh = await uow.request_repository.get_by_id(pending_request.id)
        fresh.add_documents([ref])
        await uow.request_repository.save(fresh)

    stale.status = RequestStatus.APPROVED
    with pytest.raises(ConcurrentModificationException):
        async with uow_factory() as uow:
            await uow.request_repository.save(stale)

    reloaded = await load_request(uow_factory, pending_request.id)
    assert reloaded.status == RequestStatus.PENDING
    assert [d.object_id for d in reloaded.documents] == [ref.object_id]


@pytest.mark.asyncio
async def test_attach_retries_after_version_conflict(uow_factory, local_store, pending_request, users, monkeypatch):
    binder = RequestDocumentBinder(uow_factory, local_store, max_retries=3)
    ref = await _stored_ref(local_store)
    original_save = SQLAlchemyBenefitRequestRepository.save
    calls = []

    async def flaky_save(self, request):
        calls.append(request.version)
        if len(calls) == 1:
            raise ConcurrentModificationException(request.id, request.version)
        return await original_save(self, request)

    monkeypatch.setattr(SQLAlchemyBenefitRequestRepository, "save", flaky_save)

    saved = await binder.attach(pending_request.id, [ref], users["owner"])

    assert len(calls) == 2
    assert [d.object_id for d in saved.documents] == [ref.object_id]


@pytest.mark.asyncio
async def test_list_documents_checks_access(uow_factory, local_store, pending_request, users):
    binder = RequestDocumentBinder(uow_factory, local_store)
    ref = await _stored_ref(local_store)
    await binder.attach(pending_request.id, [ref], users["owner"])

    assert [d.object_id for d in await binder.list_documents(pending_request.id, users["admin"])] == [ref.object_id]
    with pytest.raises(DocumentAccessForbiddenException):
        await binder.list_documents(pending_request.id, users["other"])
