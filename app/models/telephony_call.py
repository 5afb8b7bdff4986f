"""Inbound call record, keyed by LiveKit room."""

import enum
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.db.base import TimestampMixin, UUIDPrimaryKeyMixin
from app.utils.helpers import SIP_NUMBER_MAX_LENGTH


class CallStatus(str, enum.Enum):
    CREATED = "created"
    SIP_PARTICIPANT_JOINED = "sip_participant_joined"
    AGENT_DISPATCHED = "agent_dispatched"
    ENDED = "ended"
    FAILED = "failed"


class CallDirection(str, enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class TelephonyCall(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One phone call bridged into a LiveKit room."""

    __tablename__ = "telephony_calls"

    room_name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    direction: Mapped[str] = mapped_column(
        String(20), default=CallDirection.INBOUND.value, nullable=False
    )

    # Caller and called DID (E.164)
    from_number: Mapped[Optional[str]] = mapped_column(String(SIP_NUMBER_MAX_LENGTH), nullable=True)
    to_number: Mapped[Optional[str]] = mapped_column(String(SIP_NUMBER_MAX_LENGTH), nullable=True)

    status: Mapped[str] = mapped_column(
        String(30), default=CallStatus.CREATED.value, nullable=False
    )
    agent_dispatched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Snapshot of the SIP participant that created the call
    sip_participant: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Diagnostics from the last webhook applied to this call
    last_event: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    @property
    def call_id(self) -> str:
        return self.id

    def __repr__(self) -> str:
        return f"<TelephonyCall {self.room_name} {self.status}>"
