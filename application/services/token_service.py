"""
令牌服务 - 签发与校验访问令牌（仅存储子系统鉴权所需）
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
import uuid

import jwt

from core.config import settings
from core.exceptions import TokenExpiredException
from domain.user.entity import User


class TokenService:
    """访问令牌的签发与校验"""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        expire_minutes: Optional[int] = None,
    ):
        self._secret_key = secret_key or settings.SECRET_KEY
        self._algorithm = algorithm or settings.ALGORITHM
        self._expire_minutes = expire_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES

    def create_access_token(self, user: User) -> str:
        """创建访问令牌"""
        expire = datetime.now(timezone.utc) + timedelta(minutes=self._expire_minutes)
        to_encode = {
            "sub": str(user.id),
            "role": user.role.value,
            "exp": expire,
            "type": "access",
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(to_encode, self._secret_key, algorithm=self._algorithm)

    def verify_access_token(self, token: str) -> Optional[int]:
        """校验访问令牌并返回用户ID

        - 过期：抛出 TokenExpiredException
        - 无效或类型不符：返回 None
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            raise TokenExpiredException()
        except jwt.InvalidTokenError:
            return None

        if payload.get("type") != "access":
            return None

        user_id = payload.get("sub")
        if user_id is None:
            return None
        try:
            return int(user_id)
        except ValueError:
            return None
