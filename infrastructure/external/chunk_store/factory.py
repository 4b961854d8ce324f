"""Chunk store provider factory with registry pattern."""
import importlib
from typing import Awaitable, Callable

from application.ports.chunk_store import ChunkStoreError, ChunkStorePort
from core.logging_config import get_logger
from .config import ChunkStoreConfig, ChunkStoreType

logger = get_logger(__name__)

# Provider builder type
ProviderBuilder = Callable[[ChunkStoreConfig], Awaitable[ChunkStorePort]]

_provider_registry: dict[str, ProviderBuilder] = {}

_BUILTIN_PROVIDERS = [
    (ChunkStoreType.DATABASE, "infrastructure.external.chunk_store.providers.database", "build_database_provider"),
    (ChunkStoreType.LOCAL, "infrastructure.external.chunk_store.providers.local", "build_local_provider"),
]


def register_provider(store_type: str, builder: ProviderBuilder) -> None:
    """Register a chunk store provider builder.

    Args:
        store_type: Provider type name
        builder: Async function to build provider instance
    """
    _provider_registry[ChunkStoreType(store_type).value] = builder
    logger.debug("chunk_store_provider_registered", provider=store_type)


async def create_chunk_store(config: ChunkStoreConfig) -> ChunkStorePort:
    """Create chunk store instance based on config.

    Raises:
        ChunkStoreError: If provider type is unknown or creation fails
    """
    if config.type not in _provider_registry:
        _auto_register_providers()
        if config.type not in _provider_registry:
            raise ChunkStoreError(
                f"Chunk store provider '{config.type}' not registered. "
                f"Available: {list(_provider_registry.keys())}"
            )

    builder = _provider_registry[config.type]
    try:
        store = await builder(config)
    except Exception as e:
        logger.error("chunk_store_create_failed", provider=config.type, error=str(e))
        raise ChunkStoreError(f"Failed to create chunk store '{config.type}': {e}") from e

    logger.info("chunk_store_created", provider=config.type, chunk_size=config.chunk_size)
    return store


def _auto_register_providers() -> None:
    for store_type, module_path, builder_name in _BUILTIN_PROVIDERS:
        if store_type.value in _provider_registry:
            continue
        module = importlib.import_module(module_path)
        register_provider(store_type, getattr(module, builder_name))
