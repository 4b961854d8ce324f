"""申请附件相关路由：上传、列表、删除。"""
from __future__ import annotations

from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, File, UploadFile, status

from api.dependencies import get_current_user, get_document_binder, get_upload_supervisor
from application.dto import (
    DocumentReferenceDTO,
    FailedUploadDTO,
    UploadBatchResponseDTO,
    UploadedDocumentDTO,
    document_url,
)
from application.services.document_binder import RequestDocumentBinder
from application.services.upload_supervisor import IncomingFile, UploadSupervisor
from core.response import Response as ApiResponse, success_response
from domain.user.entity import User

router = APIRouter(
    prefix="/requests",
    tags=["申请附件"],
)

_READ_CHUNK = 64 * 1024


def _upload_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    upload.file.seek(0, 2)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


def _to_incoming(upload: UploadFile) -> IncomingFile:
    """把 multipart 文件包装为可重复读取的上传源（每次重试从头读）"""

    async def stream() -> AsyncIterator[bytes]:
        await upload.seek(0)
        while True:
            chunk = await upload.read(_READ_CHUNK)
            if not chunk:
                break
            yield chunk

    return IncomingFile(
        filename=upload.filename or "document",
        content_type=upload.content_type,
        size=_upload_size(upload),
        open=stream,
    )


@router.post(
    "/{request_id}/documents",
    summary="上传申请附件",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[UploadBatchResponseDTO],
)
async def upload_documents(
    request_id: int,
    documents: Optional[list[UploadFile]] = File(default=None, description="最多 5 个文件"),
    current_user: User = Depends(get_current_user),
    supervisor: UploadSupervisor = Depends(get_upload_supervisor),
):
    files = [_to_incoming(upload) for upload in documents or []]
    result = await supervisor.upload_all(request_id, current_user, files)

    data = UploadBatchResponseDTO(
        uploaded=[
            UploadedDocumentDTO(
                id=ref.object_id,
                name=ref.original_name,
                size=ref.size,
                type=ref.content_type,
                url=document_url(ref.object_id),
            )
            for ref in result.uploaded
        ],
        failed=[FailedUploadDTO(**failure.to_dict()) for failure in result.failed],
    )
    message = "Documents uploaded" if not result.failed else "Some documents failed to upload"
    return success_response(data=data, message=message)


@router.get(
    "/{request_id}/documents",
    summary="申请附件列表",
    response_model=ApiResponse[list[DocumentReferenceDTO]],
)
async def list_documents(
    request_id: int,
    current_user: User = Depends(get_current_user),
    binder: RequestDocumentBinder = Depends(get_document_binder),
):
    refs = await binder.list_documents(request_id, current_user)
    return success_response(data=[DocumentReferenceDTO.model_validate(ref) for ref in refs])


@router.delete(
    "/{request_id}/documents/{object_id}",
    summary="删除申请附件",
    response_model=ApiResponse[dict],
)
async def delete_document(
    request_id: int,
    object_id: str,
    current_user: User = Depends(get_current_user),
    binder: RequestDocumentBinder = Depends(get_document_binder),
):
    await binder.detach(request_id, object_id, current_user)
    return success_response(
        data={"request_id": request_id, "object_id": object_id},
        message="Document deleted",
    )
