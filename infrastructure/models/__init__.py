"""Infrastructure models package exports."""
from .base import Base, metadata
from .user import UserModel
from .benefit_request import BenefitRequestModel, RequestDocumentModel
from .stored_object import ObjectChunkModel, StoredObjectModel

__all__ = [
    "Base",
    "metadata",
    "UserModel",
    "BenefitRequestModel",
    "RequestDocumentModel",
    "StoredObjectModel",
    "ObjectChunkModel",
]
