"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输
"""
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_serializer

from core.config import settings


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


def document_url(object_id: str) -> str:
    """下载地址：稳定路径 /documents/{object_id}"""
    return f"{settings.API_PREFIX}/documents/{object_id}"


class DocumentReferenceDTO(DTOBase):
    """申请附件引用"""
    model_config = ConfigDict(from_attributes=True)

    object_id: str
    filename: str
    original_name: str
    content_type: str
    size: int
    upload_date: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class UploadedDocumentDTO(DTOBase):
    """上传成功的文件摘要"""
    id: str
    name: str
    size: int
    type: str
    url: str


class FailedUploadDTO(DTOBase):
    """上传失败的文件"""
    filename: str
    reason: str
    message: str
    attempts: int
    orphan_cleanup_failed: list[str] = Field(default_factory=list)


class UploadBatchResponseDTO(DTOBase):
    uploaded: list[UploadedDocumentDTO] = Field(default_factory=list)
    failed: list[FailedUploadDTO] = Field(default_factory=list)


class RequestSummaryDTO(DTOBase):
    id: int
    user_id: int
    status: str
    version: int
    document_count: int
    updated_at: Optional[datetime] = None


class DocumentFileDTO(DTOBase):
    filename: str
    content_type: str
    length: int
    upload_date: Optional[datetime] = None
    original_name: Optional[str] = None


class DocumentStatusDTO(DTOBase):
    """文档状态诊断信息"""
    object_id: str
    exists: bool
    in_requests: bool
    can_access: bool
    file: Optional[DocumentFileDTO] = None
    request: Optional[RequestSummaryDTO] = None


class OrphanSweepResultDTO(DTOBase):
    scanned: int
    deleted: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
