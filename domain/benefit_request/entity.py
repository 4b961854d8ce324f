"""Benefit request aggregate and its embedded document references."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from domain.common.exceptions import DomainValidationException


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_REVISION = "needs_revision"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class DocumentReference:
    """Link from a request to one finalized stored object."""

    object_id: str
    filename: str
    original_name: str
    content_type: str
    size: int
    upload_date: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.object_id:
            raise DomainValidationException("Document reference requires an object id", field="object_id")
        if self.size < 0:
            raise DomainValidationException("Document size must be non-negative", field="size")
        object.__setattr__(self, "upload_date", _ensure_utc(self.upload_date))


@dataclass
class BenefitRequest:
    """Aggregate root: a user's request for a benefit, owning its documents.

    ``version`` is the optimistic concurrency token; repositories bump it on
    every successful save.
    """

    id: Optional[int]
    user_id: int
    benefit_id: Optional[int] = None
    status: RequestStatus = RequestStatus.PENDING
    documents: list[DocumentReference] = field(default_factory=list)
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.status = RequestStatus(self.status)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    def belongs_to(self, user_id: Optional[int]) -> bool:
        return user_id is not None and self.user_id == user_id

    @property
    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING

    def can_edit_documents(self, *, override: bool = False) -> bool:
        """Documents change only while pending, unless an admin overrides."""
        return override or self.is_pending

    def find_document(self, object_id: str) -> Optional[DocumentReference]:
        for ref in self.documents:
            if ref.object_id == object_id:
                return ref
        return None

    def add_documents(self, refs: Iterable[DocumentReference]) -> None:
        refs = list(refs)
        known = {ref.object_id for ref in self.documents}
        for ref in refs:
            if ref.object_id in known:
                raise DomainValidationException(
                    f"Document {ref.object_id} is already attached",
                    field="object_id",
                    details={"object_id": ref.object_id},
                )
            known.add(ref.object_id)
        self.documents.extend(refs)
        self._touch()

    def remove_document(self, object_id: str) -> Optional[DocumentReference]:
        ref = self.find_document(object_id)
        if ref is None:
            return None
        self.documents = [d for d in self.documents if d.object_id != object_id]
        self._touch()
        return ref

    def _touch(self) -> None:
        now = datetime.now(timezone.utc)
        self.updated_at = now
        if self.created_at is None:
            self.created_at = now
