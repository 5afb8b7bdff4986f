"""Pydantic schemas for API requests and responses."""

from app.schemas.events import CanonicalEvent, HandleResult, SipParticipant
from app.schemas.telephony import (
    BindingListResponse,
    BindingResponse,
    CallResponse,
    CarrierNumber,
    ConnectNumberRequest,
    IntegrationListResponse,
    IntegrationResponse,
)

__all__ = [
    "BindingListResponse",
    "BindingResponse",
    "CallResponse",
    "CanonicalEvent",
    "CarrierNumber",
    "ConnectNumberRequest",
    "HandleResult",
    "IntegrationListResponse",
    "IntegrationResponse",
    "SipParticipant",
]
