"""Delete open objects left behind by crashed uploads."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from application.dto import OrphanSweepResultDTO
from application.ports.chunk_store import ChunkStoreError, ChunkStorePort, ObjectNotFoundError
from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


class OrphanSweeper:
    def __init__(self, chunk_store: ChunkStorePort, *, max_age_seconds: Optional[int] = None):
        self._store = chunk_store
        self._max_age = timedelta(seconds=max_age_seconds or settings.upload.orphan_max_age_seconds)

    async def sweep(self, now: Optional[datetime] = None) -> OrphanSweepResultDTO:
        """Delete every open object created more than ``max_age`` ago.

        Objects younger than that may belong to an upload still in flight.
        """
        cutoff = (now or datetime.now(timezone.utc)) - self._max_age
        handles = await self._store.list_open(created_before=cutoff)

        deleted: list[str] = []
        failed: list[str] = []
        for handle in handles:
            try:
                await self._store.delete(handle.object_id)
                deleted.append(handle.object_id)
            except ObjectNotFoundError:
                continue
            except ChunkStoreError as e:
                logger.error("orphan_cleanup_failed", object_id=handle.object_id, error=str(e))
                failed.append(handle.object_id)

        logger.info("orphan_sweep_completed", scanned=len(handles), deleted=len(deleted), failed=len(failed))
        return OrphanSweepResultDTO(scanned=len(handles), deleted=deleted, failed=failed)
