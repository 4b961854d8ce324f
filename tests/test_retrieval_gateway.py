import os

import pytest

from application.ports.chunk_store import ObjectMetadata
from application.services.retrieval_gateway import RetrievalGateway
from application.services.upload_supervisor import IncomingFile
from domain.common.exceptions import DocumentAccessForbiddenException, DocumentNotFoundException


async def _upload(make_supervisor, store, request, owner, name="receipt.pdf", size=150_000):
    data = os.urandom(size)
    result = await make_supervisor(store).upload_all(
        request.id, owner, [IncomingFile.from_bytes(name, "application/pdf", data)]
    )
    return result.uploaded[0], data


async def _drain(stream) -> bytes:
    return b"".join([chunk async for chunk in stream.chunks])


@pytest.mark.asyncio
async def test_owner_and_admin_can_download(make_supervisor, chunk_store, uow_factory, pending_request, users):
    ref, data = await _upload(make_supervisor, chunk_store, pending_request, users["owner"])
    gateway = RetrievalGateway(uow_factory, chunk_store)

    for caller in (users["owner"], users["admin"]):
        stream = await gateway.open(ref.object_id, caller)
        assert stream.original_filename == "receipt.pdf"
        assert stream.content_type == "application/pdf"
        assert stream.length == len(data)
        assert await _drain(stream) == data


@pytest.mark.asyncio
async def test_other_user_is_forbidden(make_supervisor, local_store, uow_factory, pending_request, users):
    ref, _ = await _upload(make_supervisor, local_store, pending_request, users["owner"])
    gateway = RetrievalGateway(uow_factory, local_store)

    with pytest.raises(DocumentAccessForbiddenException):
        await gateway.open(ref.object_id, users["other"])


@pytest.mark.asyncio
async def test_unknown_and_unreferenced_objects_are_not_found(chunk_store, uow_factory, users):
    gateway = RetrievalGateway(uow_factory, chunk_store)
    handle = await chunk_store.create("x.pdf", "application/pdf", ObjectMetadata(size_bytes=1), 1)
    writer = await chunk_store.open_writer(handle)
    await writer.write(b"x")
    await writer.close()
    await chunk_store.finalize(handle)

    with pytest.raises(DocumentNotFoundException):
        await gateway.open("0" * 32, users["admin"])
    # stored but never attached to a request
    with pytest.raises(DocumentNotFoundException):
        await gateway.open(handle.object_id, users["admin"])


@pytest.mark.asyncio
async def test_dangling_reference_is_not_found(make_supervisor, chunk_store, uow_factory, pending_request, users):
    ref, _ = await _upload(make_supervisor, chunk_store, pending_request, users["owner"])
    await chunk_store.delete(ref.object_id)
    gateway = RetrievalGateway(uow_factory, chunk_store)

    with pytest.raises(DocumentNotFoundException):
        await gateway.open(ref.object_id, users["owner"])


@pytest.mark.asyncio
async def test_status_reports_existence_and_access(make_supervisor, local_store, uow_factory, pending_request, users):
    ref, data = await _upload(make_supervisor, local_store, pending_request, users["owner"])
    gateway = RetrievalGateway(uow_factory, local_store)

    owner_view = await gateway.status(ref.object_id, users["owner"])
    assert owner_view.exists is True
    assert owner_view.in_requests is True
    assert owner_view.can_access is True
    assert owner_view.file.length == len(data)
    assert owner_view.request.id == pending_request.id

    other_view = await gateway.status(ref.object_id, users["other"])
    assert other_view.can_access is False
    assert other_view.file is None
    assert other_view.request is None

    missing = await gateway.status("1" * 32, users["owner"])
    assert missing.exists is False
    assert missing.in_requests is False

