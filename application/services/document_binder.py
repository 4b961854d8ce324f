"""Attach / detach stored objects to a benefit request's document list."""
from __future__ import annotations

from typing import Callable, Optional, Sequence

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_random

from application.ports.chunk_store import ChunkStoreError, ChunkStorePort, ObjectNotFoundError
from core.config import settings
from core.logging_config import get_logger
from domain.benefit_request import BenefitRequest, DocumentReference
from domain.common.exceptions import (
    ConcurrentModificationException,
    DocumentAccessForbiddenException,
    DocumentNotFoundException,
    RequestNotEditableException,
    RequestNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.user.entity import User

logger = get_logger(__name__)


def ensure_request_access(request: BenefitRequest, caller: Optional[User]) -> None:
    """Owner or administrator; anyone else is forbidden."""
    if caller is None or not (request.belongs_to(caller.id) or caller.is_admin):
        raise DocumentAccessForbiddenException()


def ensure_documents_editable(request: BenefitRequest, caller: Optional[User]) -> None:
    override = caller is not None and caller.is_admin
    if not request.can_edit_documents(override=override):
        raise RequestNotEditableException(request.id, request.status.value)


class RequestDocumentBinder:
    """Keeps a request's document list and the chunk store consistent.

    Every call re-reads the request inside its own Unit of Work; writes go
    through the repository's version check and a conflicting concurrent
    write makes the whole read-modify-write run again.
    """

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        chunk_store: ChunkStorePort,
        *,
        max_retries: Optional[int] = None,
    ):
        self._uow_factory = uow_factory
        self._store = chunk_store
        self._max_retries = max_retries or settings.upload.attach_max_retries

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_random(0, 0.05),
            retry=retry_if_exception_type(ConcurrentModificationException),
            reraise=True,
        )

    async def attach(
        self,
        request_id: int,
        refs: Sequence[DocumentReference],
        caller: Optional[User] = None,
    ) -> BenefitRequest:
        """Append ``refs`` to the request in one versioned write.

        ``caller=None`` is the internal path (the caller was authorized by
        whoever produced the refs); state is still re-checked.
        """
        async for attempt in self._retrying():
            with attempt:
                async with self._uow_factory() as uow:
                    request = await uow.request_repository.get_by_id(request_id)
                    if request is None:
                        raise RequestNotFoundException(request_id)
                    if caller is not None:
                        ensure_request_access(request, caller)
                    ensure_documents_editable(request, caller)

                    request.add_documents(refs)
                    saved = await uow.request_repository.save(request)

        logger.info(
            "documents_attached",
            request_id=request_id,
            object_ids=[ref.object_id for ref in refs],
            version=saved.version,
        )
        return saved

    async def detach(self, request_id: int, object_id: str, caller: User) -> DocumentReference:
        """Remove one reference, then delete its backing object.

        The reference removal is committed first. Failing to delete the
        object afterwards is logged and never raised.
        """
        async for attempt in self._retrying():
            with attempt:
                async with self._uow_factory() as uow:
                    request = await uow.request_repository.get_by_id(request_id)
                    if request is None:
                        raise RequestNotFoundException(request_id)
                    ensure_request_access(request, caller)
                    ensure_documents_editable(request, caller)

                    removed = request.remove_document(object_id)
                    if removed is None:
                        raise DocumentNotFoundException(object_id, request_id=request_id)
                    await uow.request_repository.save(request)

        logger.info("document_detached", request_id=request_id, object_id=object_id, caller_id=caller.id)

        try:
            await self._store.delete(object_id)
        except ObjectNotFoundError:
            logger.warning("document_object_already_missing", request_id=request_id, object_id=object_id)
        except ChunkStoreError as e:
            logger.error(
                "orphan_cleanup_failed",
                request_id=request_id,
                object_id=object_id,
                error=str(e),
            )
        return removed

    async def list_documents(self, request_id: int, caller: User) -> list[DocumentReference]:
        async with self._uow_factory(readonly=True) as uow:
            request = await uow.request_repository.get_by_id(request_id)
        if request is None:
            raise RequestNotFoundException(request_id)
        ensure_request_access(request, caller)
        return list(request.documents)
