"""
用户仓储接口 - 存储子系统只需要按ID解析调用者身份
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import User


class UserRepository(ABC):
    @abstractmethod
    async def create(self, user: User) -> User:
        """创建用户；邮箱重复时抛出 DomainValidationException(UserAlreadyExists)"""

    @abstractmethod
    async def get_by_id(self, user_id: int) -> Optional[User]:
        """根据ID获取用户（包括已停用用户，由调用方判断 is_active）"""
