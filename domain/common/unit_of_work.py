"""Unit of Work 抽象定义

一次 UoW 对应一个数据库事务。请求记录的版本号检查在 ``save`` 时执行，
冲突（ConcurrentModificationException）会使整个事务回滚，由调用方决定是否重读重试。
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.benefit_request.repository import BenefitRequestRepository
from domain.user.repository import UserRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象"""

    user_repository: UserRepository
    request_repository: BenefitRequestRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.user_repository = None  # type: ignore[assignment]
        self.request_repository = None  # type: ignore[assignment]

    @property
    def readonly(self) -> bool:
        return self._readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc is not None:
            await self.rollback()
            return
        # 只读事务从不提交；写事务在未显式提交时自动提交
        if not self._readonly and not self._committed:
            await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务（包括版本冲突与取消）"""
