"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os
from functools import partial

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
# Module-level engine must not need a running Postgres
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEBUG", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from application.services.document_binder import RequestDocumentBinder
from application.services.upload_supervisor import UploadPolicy, UploadSupervisor
from domain.user.entity import User, UserRole
from infrastructure.database import create_tables
from infrastructure.external.chunk_store.config import ChunkStoreConfig
from infrastructure.external.chunk_store.providers.database import build_database_provider
from infrastructure.external.chunk_store.providers.local import LocalChunkStore
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from support import FaultyChunkStore, RecordingSleep, create_request

TEST_CHUNK_SIZE = 64 * 1024


# ---------------------------------------------------------------------------
# Metadata store
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'meta.db'}")
    await create_tables(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow_factory(db_engine):
    session_factory = async_sessionmaker(bind=db_engine, expire_on_commit=False)
    return partial(SQLAlchemyUnitOfWork, session_factory)


# ---------------------------------------------------------------------------
# Chunk stores
# ---------------------------------------------------------------------------
async def _make_store(kind: str, tmp_path):
    if kind == "database":
        return await build_database_provider(
            ChunkStoreConfig(
                type="database",
                chunk_size=TEST_CHUNK_SIZE,
                database_url=f"sqlite+aiosqlite:///{tmp_path / 'chunks.db'}",
                create_schema=True,
            )
        )
    return LocalChunkStore(
        ChunkStoreConfig(type="local", chunk_size=TEST_CHUNK_SIZE, local_base_path=str(tmp_path / "chunks"))
    )


@pytest_asyncio.fixture(params=["database", "local"])
async def chunk_store(request, tmp_path):
    store = await _make_store(request.param, tmp_path)
    yield store
    await store.aclose()


@pytest_asyncio.fixture
async def local_store(tmp_path):
    store = await _make_store("local", tmp_path)
    yield store
    await store.aclose()


@pytest.fixture
def faulty_store_factory():
    return FaultyChunkStore


# ---------------------------------------------------------------------------
# Users / requests
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture
async def users(uow_factory):
    async with uow_factory() as uow:
        owner = await uow.user_repository.create(User(id=None, email="owner@example.com", full_name="Owner"))
        other = await uow.user_repository.create(User(id=None, email="other@example.com", full_name="Other"))
        admin = await uow.user_repository.create(
            User(id=None, email="hr@example.com", full_name="HR", role=UserRole.EMPLOYER)
        )
    return {"owner": owner, "other": other, "admin": admin}


@pytest_asyncio.fixture
async def pending_request(uow_factory, users):
    return await create_request(uow_factory, users["owner"].id)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------
@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def make_supervisor(uow_factory, recording_sleep):
    def _make(store, *, policy=None, binder=None, on_progress=None):
        binder = binder or RequestDocumentBinder(uow_factory, store)
        return UploadSupervisor(
            uow_factory,
            store,
            binder,
            policy=policy or UploadPolicy(),
            sleep=recording_sleep,
            on_progress=on_progress,
        )

    return _make
