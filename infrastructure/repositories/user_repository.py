"""
用户仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException
from domain.user.entity import User
from domain.user.repository import UserRepository
from infrastructure.models.user import UserModel


logger = get_logger(__name__)


class SQLAlchemyUserRepository(UserRepository):
    """用户仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: UserModel) -> User:
        """将数据库模型转换为领域实体"""
        return User(
            id=model.id,
            email=model.email,
            full_name=model.full_name,
            role=model.role,
            is_active=model.is_active,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, user: User) -> User:
        """创建用户"""
        db_user = UserModel(
            email=user.email,
            full_name=user.full_name,
            role=user.role.value,
            is_active=user.is_active,
        )
        self.session.add(db_user)
        try:
            await self.session.flush()  # 获取生成的ID
        except IntegrityError as e:
            logger.warning("create_user_conflict", field="email", email=user.email)
            raise DomainValidationException(
                f"Email already registered: {user.email}",
                field="email",
                error_type="UserAlreadyExists",
            ) from e
        await self.session.refresh(db_user)
        return self._to_entity(db_user)

    async def get_by_id(self, user_id: int) -> Optional[User]:
        """根据ID获取用户"""
        db_user = await self.session.get(UserModel, user_id)
        return self._to_entity(db_user) if db_user else None
