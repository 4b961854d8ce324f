"""Benefit request domain exports."""
from .entity import BenefitRequest, DocumentReference, RequestStatus
from .repository import BenefitRequestRepository

__all__ = ["BenefitRequest", "BenefitRequestRepository", "DocumentReference", "RequestStatus"]
