"""
用户领域实体 - 存储子系统只关心身份与角色
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
import re


class UserRole(str, Enum):
    EMPLOYEE = "employee"
    # 雇主即管理员角色，可以代为管理任意请求的附件
    EMPLOYER = "employer"


@dataclass
class User:
    """用户实体"""

    id: Optional[int]
    email: str
    full_name: Optional[str] = None
    role: UserRole = UserRole.EMPLOYEE
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.role = UserRole(self.role)
        self.validate_email()

    def validate_email(self) -> None:
        """业务规则：邮箱格式验证"""
        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, self.email):
            raise ValueError(f"无效的邮箱格式: {self.email}")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.EMPLOYER
