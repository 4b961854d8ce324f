"""Resolve an object id to a permission-checked byte stream for download."""
from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from application.dto import DocumentFileDTO, DocumentStatusDTO, RequestSummaryDTO
from application.ports.chunk_store import ChunkStorePort, ObjectNotFoundError
from application.services.document_binder import ensure_request_access
from core.logging_config import get_logger
from domain.benefit_request import BenefitRequest
from domain.common.exceptions import DocumentAccessForbiddenException, DocumentNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.user.entity import User

logger = get_logger(__name__)


@dataclass
class DocumentStream:
    object_id: str
    chunks: AsyncIterator[bytes]
    content_type: str
    original_filename: str
    length: int


class RetrievalGateway:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], chunk_store: ChunkStorePort):
        self._uow_factory = uow_factory
        self._store = chunk_store

    async def _owning_request(self, object_id: str) -> Optional[BenefitRequest]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.request_repository.get_by_document(object_id)

    async def open(self, object_id: str, caller: User) -> DocumentStream:
        """Permission check first, then resolve the object.

        The store resolves the object before handing back the iterator, so a
        missing object fails here and no byte is ever streamed for it.
        """
        request = await self._owning_request(object_id)
        if request is None:
            # objects no request points at are never served
            raise DocumentNotFoundException(object_id)
        ensure_request_access(request, caller)

        try:
            stored = await self._store.stat(object_id)
            chunks = await self._store.read(object_id)
        except ObjectNotFoundError as e:
            logger.warning(
                "document_reference_dangling",
                object_id=object_id,
                request_id=request.id,
                error=str(e),
            )
            raise DocumentNotFoundException(object_id, request_id=request.id) from e

        ref = request.find_document(object_id)
        original = stored.metadata.original_name or (ref.original_name if ref else None) or stored.filename
        logger.info("document_download_started", object_id=object_id, caller_id=caller.id, length=stored.length)
        return DocumentStream(
            object_id=object_id,
            chunks=chunks,
            content_type=stored.content_type,
            original_filename=original,
            length=stored.length,
        )

    async def status(self, object_id: str, caller: User) -> DocumentStatusDTO:
        """Diagnostic view: does the object exist, who references it, may the caller read it."""
        exists = await self._store.exists(object_id)
        request = await self._owning_request(object_id)

        can_access = False
        if request is not None:
            try:
                ensure_request_access(request, caller)
                can_access = True
            except DocumentAccessForbiddenException:
                can_access = False

        file_dto = None
        if exists and (can_access or caller.is_admin):
            stored = await self._store.stat(object_id)
            file_dto = DocumentFileDTO(
                filename=stored.filename,
                content_type=stored.content_type,
                length=stored.length,
                upload_date=stored.finalized_at or stored.created_at,
                original_name=stored.metadata.original_name,
            )

        request_dto = None
        if request is not None and can_access:
            request_dto = RequestSummaryDTO(
                id=request.id,
                user_id=request.user_id,
                status=request.status.value,
                version=request.version,
                document_count=len(request.documents),
                updated_at=request.updated_at,
            )

        return DocumentStatusDTO(
            object_id=object_id,
            exists=exists,
            in_requests=request is not None,
            can_access=can_access,
            file=file_dto,
            request=request_dto,
        )
