"""Chunk store configuration models."""
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ChunkStoreType(str, Enum):
    """Chunk store provider types."""
    DATABASE = "database"
    LOCAL = "local"


class ChunkStoreConfig(BaseModel):
    """Chunk store configuration model."""

    model_config = ConfigDict(use_enum_values=True)

    type: ChunkStoreType = ChunkStoreType.DATABASE
    chunk_size: int = Field(default=255 * 1024, gt=0)

    # Database specific
    database_url: str = "sqlite+aiosqlite:///./chunks.db"
    echo: bool = False
    create_schema: bool = False

    # Local specific
    local_base_path: str = "/tmp/chunk-store"
