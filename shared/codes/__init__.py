"""
Shared business codes used across layers (Domain/Core/API).

This package provides a single source of truth to avoid drift between
multiple enum definitions scattered across the codebase.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """业务状态码定义（单一来源）"""

    # 成功
    SUCCESS = 0

    # 参数错误 (1xxxx)
    PARAM_ERROR = 10000
    PARAM_MISSING = 10001
    PARAM_VALIDATION_ERROR = 10003

    # 业务错误 (2xxxx)
    BUSINESS_ERROR = 20000
    NOT_FOUND = 20006  # 资源未找到（通用）
    REQUEST_NOT_FOUND = 20101
    DOCUMENT_NOT_FOUND = 20102
    REQUEST_NOT_EDITABLE = 20103
    CONCURRENT_MODIFICATION = 20104

    # 权限错误 (3xxxx)
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002
    TOKEN_EXPIRED = 30004

    # 系统错误 (4xxxx)
    SYSTEM_ERROR = 40000
    STORAGE_ERROR = 40002
    SERVICE_UNAVAILABLE = 40003
    UPLOAD_FAILED = 40004


__all__ = ["BusinessCode"]
