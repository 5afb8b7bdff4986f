"""Telephony management request and response schemas.

Request bodies are strict: unknown fields are rejected with a 400.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.utils.helpers import is_valid_e164, normalize_e164


class CamelModel(BaseModel):
    """Base schema using camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class StrictRequest(CamelModel):
    """Base request schema that forbids unknown fields."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


# ============================================================================
# Credentials
# ============================================================================


class TwilioCredentials(StrictRequest):
    """Twilio API key credentials (API key scoped to one account)."""

    account_sid: str = Field(..., min_length=1)
    api_key_sid: str = Field(..., min_length=1)
    api_key_secret: str = Field(..., min_length=1)


class TwilioCreateIntegrationRequest(TwilioCredentials):
    name: Optional[str] = None


class TelnyxCredentials(StrictRequest):
    """Telnyx v2 API key."""

    api_key: str = Field(..., min_length=1)


class TelnyxCreateIntegrationRequest(TelnyxCredentials):
    name: Optional[str] = None


class PlivoCredentials(StrictRequest):
    """Plivo account auth id and token."""

    auth_id: str = Field(..., min_length=1)
    auth_token: str = Field(..., min_length=1)


class PlivoCreateIntegrationRequest(PlivoCredentials):
    name: Optional[str] = None


# ============================================================================
# Numbers
# ============================================================================


class ConnectNumberRequest(StrictRequest):
    """Bind a carrier number to an agent."""

    e164: str = Field(..., min_length=1)
    agent_id: Optional[str] = None
    agent_config: Optional[dict[str, Any]] = None

    @field_validator("e164")
    @classmethod
    def normalize_and_validate_e164(cls, v: str) -> str:
        normalized = normalize_e164(v)
        if not is_valid_e164(normalized):
            raise ValueError("e164 must be a valid E.164 phone number")
        return normalized


class CarrierNumber(CamelModel):
    """A phone number as listed by a carrier."""

    provider_number_id: str
    e164: str
    friendly_name: Optional[str] = None
    # Trunk/connection/app the number currently routes to, if any
    routed_to: Optional[str] = None


class NumbersResponse(CamelModel):
    numbers: list[CarrierNumber]


# ============================================================================
# Responses
# ============================================================================


class VerifyResponse(CamelModel):
    valid: bool = True


class IntegrationResponse(CamelModel):
    """Integration without its encrypted credentials."""

    id: str
    carrier: str
    name: Optional[str] = None
    status: str
    credential_fingerprint: str
    provider_resources: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class IntegrationListResponse(CamelModel):
    integrations: list[IntegrationResponse]


class CreateIntegrationResponse(CamelModel):
    integration_id: str
    carrier: str
    status: str


class DeleteIntegrationResponse(CamelModel):
    ok: bool = True
    deleted_bindings: int


class BindingResponse(CamelModel):
    id: str
    integration_id: str
    carrier: str
    provider_number_id: str
    e164: str
    agent_id: Optional[str] = None
    agent_config: Optional[dict[str, Any]] = None
    enabled: bool
    created_at: datetime
    updated_at: datetime


class BindingListResponse(CamelModel):
    bindings: list[BindingResponse]


class OkResponse(CamelModel):
    ok: bool = True


class CallResponse(CamelModel):
    """Call record for diagnostics."""

    call_id: str
    room_name: str
    direction: str
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    status: str
    agent_dispatched: bool
    sip_participant: Optional[dict[str, Any]] = None
    last_event: Optional[dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
