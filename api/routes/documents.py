"""文档下载与状态路由。"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from api.dependencies import (
    get_current_admin,
    get_current_user,
    get_orphan_sweeper,
    get_retrieval_gateway,
)
from api.utils.headers import build_content_disposition
from application.dto import DocumentStatusDTO, OrphanSweepResultDTO
from application.services.orphan_sweeper import OrphanSweeper
from application.services.retrieval_gateway import RetrievalGateway
from core.response import Response as ApiResponse, success_response
from domain.user.entity import User

router = APIRouter(
    prefix="/documents",
    tags=["文档"],
)


@router.post(
    "/maintenance/sweep-orphans",
    summary="清理未完成上传留下的孤儿对象（管理员）",
    response_model=ApiResponse[OrphanSweepResultDTO],
)
async def sweep_orphans(
    _admin: User = Depends(get_current_admin),
    sweeper: OrphanSweeper = Depends(get_orphan_sweeper),
):
    result = await sweeper.sweep()
    return success_response(data=result)


@router.get(
    "/{object_id}",
    summary="下载文档",
    response_class=StreamingResponse,
)
async def download_document(
    object_id: str,
    current_user: User = Depends(get_current_user),
    gateway: RetrievalGateway = Depends(get_retrieval_gateway),
):
    # 任何 404/403 都在开始发送响应体之前抛出
    stream = await gateway.open(object_id, current_user)
    return StreamingResponse(
        stream.chunks,
        media_type=stream.content_type,
        headers={
            "Content-Disposition": build_content_disposition("attachment", stream.original_filename),
            "Content-Length": str(stream.length),
            "Cache-Control": "no-store",
        },
    )


@router.get(
    "/{object_id}/status",
    summary="文档状态",
    response_model=ApiResponse[DocumentStatusDTO],
)
async def document_status(
    object_id: str,
    current_user: User = Depends(get_current_user),
    gateway: RetrievalGateway = Depends(get_retrieval_gateway),
):
    return success_response(data=await gateway.status(object_id, current_user))
