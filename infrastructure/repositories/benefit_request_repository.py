"""SQLAlchemy implementation of the benefit request repository."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.benefit_request.entity import BenefitRequest, DocumentReference
from domain.benefit_request.repository import BenefitRequestRepository
from domain.common.exceptions import (
    ConcurrentModificationException,
    DomainValidationException,
    RequestNotFoundException,
)
from infrastructure.models.benefit_request import BenefitRequestModel, RequestDocumentModel

logger = get_logger(__name__)


class SQLAlchemyBenefitRequestRepository(BenefitRequestRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_reference(model: RequestDocumentModel) -> DocumentReference:
        return DocumentReference(
            object_id=model.object_id,
            filename=model.filename,
            original_name=model.original_name,
            content_type=model.content_type,
            size=model.size,
            upload_date=model.upload_date,
            metadata=dict(model.extra_metadata or {}),
        )

    def _to_entity(self, model: BenefitRequestModel) -> BenefitRequest:
        return BenefitRequest(
            id=model.id,
            user_id=model.user_id,
            benefit_id=model.benefit_id,
            status=model.status,
            documents=[self._to_reference(doc) for doc in model.documents],
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _to_document_model(request_id: int, ref: DocumentReference) -> RequestDocumentModel:
        return RequestDocumentModel(
            request_id=request_id,
            object_id=ref.object_id,
            filename=ref.filename,
            original_name=ref.original_name,
            content_type=ref.content_type,
            size=ref.size,
            upload_date=ref.upload_date,
            extra_metadata=dict(ref.metadata),
        )

    async def create(self, request: BenefitRequest) -> BenefitRequest:
        now = datetime.now(timezone.utc)
        model = BenefitRequestModel(
            user_id=request.user_id,
            benefit_id=request.benefit_id,
            status=request.status.value,
            version=request.version,
            created_at=request.created_at or now,
            updated_at=request.updated_at or now,
        )
        self.session.add(model)
        await self.session.flush()
        for ref in request.documents:
            self.session.add(self._to_document_model(model.id, ref))
        await self.session.flush()
        await self.session.refresh(model, attribute_names=["documents"])
        return self._to_entity(model)

    async def get_by_id(self, request_id: int) -> Optional[BenefitRequest]:
        result = await self.session.execute(
            select(BenefitRequestModel)
            .where(BenefitRequestModel.id == request_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_document(self, object_id: str) -> Optional[BenefitRequest]:
        result = await self.session.execute(
            select(BenefitRequestModel)
            .join(RequestDocumentModel, RequestDocumentModel.request_id == BenefitRequestModel.id)
            .where(RequestDocumentModel.object_id == object_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def save(self, request: BenefitRequest) -> BenefitRequest:
        if request.id is None:
            raise RequestNotFoundException()

        result = await self.session.execute(
            update(BenefitRequestModel)
            .where(
                BenefitRequestModel.id == request.id,
                BenefitRequestModel.version == request.version,
            )
            .values(
                status=request.status.value,
                version=request.version + 1,
                updated_at=request.updated_at or datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "request_version_conflict",
                request_id=request.id,
                expected_version=request.version,
            )
            raise ConcurrentModificationException(request.id, request.version)

        existing = set(
            (
                await self.session.scalars(
                    select(RequestDocumentModel.object_id).where(
                        RequestDocumentModel.request_id == request.id
                    )
                )
            ).all()
        )
        wanted = {ref.object_id for ref in request.documents}

        removed = existing - wanted
        if removed:
            await self.session.execute(
                delete(RequestDocumentModel)
                .where(
                    RequestDocumentModel.request_id == request.id,
                    RequestDocumentModel.object_id.in_(removed),
                )
                .execution_options(synchronize_session=False)
            )
        for ref in request.documents:
            if ref.object_id not in existing:
                self.session.add(self._to_document_model(request.id, ref))

        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.warning("attach_document_conflict", request_id=request.id, error=str(e))
            raise DomainValidationException(
                "Document is already attached to another request",
                field="object_id",
                error_type="DocumentAlreadyAttached",
            ) from e

        request.version += 1
        return request
