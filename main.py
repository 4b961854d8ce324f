"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import documents as documents_routes
from api.routes import requests as requests_routes
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from infrastructure.database import create_tables, engine
from infrastructure.external.chunk_store import build_chunk_store


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时创建数据库表（仅开发环境）。生产应使用 Alembic 迁移
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info(
            "database_migrations_required",
            message="No auto-create in production, use Alembic migrations (alembic upgrade head)",
        )

    # 分块存储在启动时一次性创建，失败则拒绝启动；之后通过依赖注入传给各服务
    store = await build_chunk_store(create_schema=settings.DEBUG)
    if not await store.health_check():
        await store.aclose()
        raise RuntimeError("Chunk store health check failed")
    app.state.chunk_store = store
    logger.info("chunk_store_initialized", provider=settings.chunk_store.type)

    try:
        yield
    finally:
        await store.aclose()
        await engine.dispose()
        logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="福利申请附件存储服务：分块存储、带超时与重试的上传、下载",
)

# 添加中间件（注意顺序：从下往上执行）
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Request-ID"],
)

# 注册全局异常处理器
register_exception_handlers(app)

# 注册路由
app.include_router(requests_routes.router, prefix=settings.API_PREFIX)
app.include_router(documents_routes.router, prefix=settings.API_PREFIX)


@app.get("/", tags=["Root"])
async def root():
    """API根路径"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "redoc": "/redoc",
        },
        message="Welcome",
    )


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """健康检查端点"""
    store = getattr(request.app.state, "chunk_store", None)
    chunk_store_ok = bool(store) and await store.health_check()
    return success_response(
        data={
            "status": "healthy" if chunk_store_ok else "degraded",
            "chunk_store": "ok" if chunk_store_ok else "unavailable",
        },
        message="OK",
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
