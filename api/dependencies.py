"""
API依赖项 - 认证、授权与服务装配
"""
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from application.ports.chunk_store import ChunkStorePort
from application.services.document_binder import RequestDocumentBinder
from application.services.orphan_sweeper import OrphanSweeper
from application.services.retrieval_gateway import RetrievalGateway
from application.services.token_service import TokenService
from application.services.upload_supervisor import UploadSupervisor
from core.exceptions import UnauthorizedException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.user.entity import User
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


async def get_token(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> str:
    """从 Bearer 头中提取 token"""
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials
    raise UnauthorizedException("未提供认证凭据")


def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return SQLAlchemyUnitOfWork


def get_token_service() -> TokenService:
    return TokenService()


def get_chunk_store(request: Request) -> ChunkStorePort:
    """启动时在 lifespan 中创建的分块存储"""
    store = getattr(request.app.state, "chunk_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chunk store not initialized",
        )
    return store


async def get_current_user(
    token: str = Depends(get_token),
    tokens: TokenService = Depends(get_token_service),
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
) -> User:
    """获取当前登录且激活的用户"""
    user_id = tokens.verify_access_token(token)
    if user_id is None:
        raise UnauthorizedException("无效的认证凭据")
    async with uow_factory(readonly=True) as uow:
        user = await uow.user_repository.get_by_id(user_id)
    if user is None:
        raise UnauthorizedException("用户不存在")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="用户账户已被停用")
    return user


async def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    """需要管理员（employer）角色"""
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="需要管理员权限")
    return current_user


def get_document_binder(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    store: ChunkStorePort = Depends(get_chunk_store),
) -> RequestDocumentBinder:
    return RequestDocumentBinder(uow_factory, store)


def get_upload_supervisor(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    store: ChunkStorePort = Depends(get_chunk_store),
    binder: RequestDocumentBinder = Depends(get_document_binder),
) -> UploadSupervisor:
    return UploadSupervisor(uow_factory, store, binder)


def get_retrieval_gateway(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    store: ChunkStorePort = Depends(get_chunk_store),
) -> RetrievalGateway:
    return RetrievalGateway(uow_factory, store)


def get_orphan_sweeper(store: ChunkStorePort = Depends(get_chunk_store)) -> OrphanSweeper:
    return OrphanSweeper(store)
