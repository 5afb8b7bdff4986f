"""Canonical LiveKit webhook event and call-admission result."""

from typing import Optional

from pydantic import BaseModel, Field


class SipParticipant(BaseModel):
    """Participant fields the telephony flow relies on."""

    participant_id: Optional[str] = None
    identity: Optional[str] = None
    kind: Optional[str] = None
    attributes: dict[str, str] = Field(default_factory=dict)


class CanonicalEvent(BaseModel):
    """A LiveKit webhook flattened into one shape."""

    event_id: str
    event_id_derived: bool = False
    event: str = "unknown"
    created_at: Optional[int] = None
    room_name: Optional[str] = None
    participant: Optional[SipParticipant] = None


class HandleResult(BaseModel):
    """Outcome of applying one webhook event."""

    first_seen: bool
    ignored_reason: Optional[str] = None
    dispatch_attempted: bool = False
    dispatch_succeeded: bool = False
    call_id: Optional[str] = None
