"""领域层业务异常定义，供领域、应用与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Any, Optional

from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Request / document lookups
# ---------------------------------------------------------------------------
class RequestNotFoundException(BusinessException):
    def __init__(self, request_id: Optional[int] = None):
        details = {"request_id": request_id} if request_id is not None else None
        super().__init__(
            code=BusinessCode.REQUEST_NOT_FOUND,
            message="Request not found",
            error_type="RequestNotFound",
            details=details,
        )


class DocumentNotFoundException(BusinessException):
    def __init__(self, object_id: str, *, request_id: Optional[int] = None):
        details: dict[str, Any] = {"object_id": object_id}
        if request_id is not None:
            details["request_id"] = request_id
        super().__init__(
            code=BusinessCode.DOCUMENT_NOT_FOUND,
            message="Document not found",
            error_type="DocumentNotFound",
            details=details,
        )


# ---------------------------------------------------------------------------
# Ownership / state preconditions
# ---------------------------------------------------------------------------
class DocumentAccessForbiddenException(BusinessException):
    def __init__(self, message: str = "Not authorized to access this request's documents"):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message=message,
            error_type="DocumentAccessForbidden",
        )


class RequestNotEditableException(BusinessException):
    """请求不处于可编辑状态（非 pending）"""

    def __init__(self, request_id: int, status: str):
        super().__init__(
            code=BusinessCode.REQUEST_NOT_EDITABLE,
            message="Request is not eligible for document changes right now",
            error_type="RequestNotEditable",
            details={"request_id": request_id, "status": status},
        )


class ConcurrentModificationException(BusinessException):
    def __init__(self, request_id: int, expected_version: int):
        super().__init__(
            code=BusinessCode.CONCURRENT_MODIFICATION,
            message="Request was modified concurrently, please retry",
            error_type="ConcurrentModification",
            details={"request_id": request_id, "expected_version": expected_version},
        )


# ---------------------------------------------------------------------------
# Input validation (file rejected)
# ---------------------------------------------------------------------------
class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        error_type: str = "DomainValidationError",
        code: int = BusinessCode.PARAM_VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=details,
            field=field,
        )


class NoFilesProvidedException(DomainValidationException):
    def __init__(self):
        super().__init__(
            "No files uploaded",
            field="documents",
            error_type="NoFilesProvided",
            code=BusinessCode.PARAM_MISSING,
        )


class TooManyFilesException(DomainValidationException):
    def __init__(self, count: int, max_files: int):
        super().__init__(
            f"Too many files: {count} > {max_files}",
            field="documents",
            details={"count": count, "max_files": max_files},
            error_type="TooManyFiles",
        )


class UnsupportedMimeTypeException(DomainValidationException):
    def __init__(self, filename: str, mime_type: Optional[str], allowed: list[str]):
        super().__init__(
            f"File rejected: {filename} has unsupported type {mime_type}",
            field="documents",
            details={"filename": filename, "mime_type": mime_type, "allowed": allowed},
            error_type="UnsupportedMimeType",
        )


class FileTooLargeException(DomainValidationException):
    def __init__(self, filename: str, size: int, max_size: int):
        super().__init__(
            f"File rejected: {filename} exceeds the {max_size} byte limit",
            field="documents",
            details={"filename": filename, "size": size, "max_size": max_size},
            error_type="FileTooLarge",
        )


# ---------------------------------------------------------------------------
# Upload lifecycle
# ---------------------------------------------------------------------------
class UploadFailedException(BusinessException):
    """整批上传全部失败（重试耗尽），请求记录未被修改"""

    def __init__(self, failures: list[dict[str, Any]]):
        super().__init__(
            code=BusinessCode.UPLOAD_FAILED,
            message=f"Upload failed for all {len(failures)} file(s)",
            error_type="UploadFailed",
            details={"failed": failures},
        )


class UploadAttemptError(Exception):
    """单次上传尝试失败的基类；仅在 UploadSupervisor 内部重试，不直接返回给调用方"""

    reason = "attempt_failed"


class UploadTimeoutError(UploadAttemptError):
    reason = "timeout"


class UploadStreamError(UploadAttemptError):
    reason = "stream_error"


class UploadVerificationError(UploadAttemptError):
    reason = "verification_failed"
