"""Chunk store entry point.

The store is built once at startup (see ``main.lifespan``) and handed to the
application services explicitly; there is no module-level instance.
"""
from typing import Optional

from core.config import Settings, settings as default_settings
from .config import ChunkStoreConfig, ChunkStoreType
from .factory import create_chunk_store, register_provider
from .writer import BufferedChunkWriter


def get_chunk_store_config(
    settings: Optional[Settings] = None,
    *,
    create_schema: bool = False,
) -> ChunkStoreConfig:
    """Assemble ChunkStoreConfig from core.config settings."""
    s = settings or default_settings
    return ChunkStoreConfig(
        type=s.chunk_store.type,
        chunk_size=s.chunk_store.chunk_size,
        database_url=s.chunk_store_database_url,
        echo=s.database.echo,
        create_schema=create_schema,
        local_base_path=s.chunk_store.local_base_path,
    )


async def build_chunk_store(
    settings: Optional[Settings] = None,
    *,
    create_schema: bool = False,
):
    """Create the configured chunk store."""
    return await create_chunk_store(get_chunk_store_config(settings, create_schema=create_schema))


__all__ = [
    "BufferedChunkWriter",
    "ChunkStoreConfig",
    "ChunkStoreType",
    "build_chunk_store",
    "create_chunk_store",
    "get_chunk_store_config",
    "register_provider",
]
