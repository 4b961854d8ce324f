"""Repository abstraction for benefit requests."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .entity import BenefitRequest


class BenefitRequestRepository(ABC):
    """Persistence port for :class:`BenefitRequest` aggregates."""

    @abstractmethod
    async def create(self, request: BenefitRequest) -> BenefitRequest:
        """Persist a new request and return it with its id."""

    @abstractmethod
    async def get_by_id(self, request_id: int) -> Optional[BenefitRequest]:
        """Load a request with its document list."""

    @abstractmethod
    async def get_by_document(self, object_id: str) -> Optional[BenefitRequest]:
        """Load the request whose document list references ``object_id``."""

    @abstractmethod
    async def save(self, request: BenefitRequest) -> BenefitRequest:
        """Write back status and document list.

        The write only succeeds when the stored version still equals
        ``request.version``; otherwise ``ConcurrentModificationException`` is
        raised. The returned aggregate carries the bumped version.
        """
