"""DID-to-agent routing binding."""

from typing import Any, Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.db.base import TimestampMixin, UUIDPrimaryKeyMixin


class TelephonyBinding(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Routes inbound calls to one DID through an integration to an agent."""

    __tablename__ = "telephony_bindings"
    __table_args__ = (
        # At most one enabled binding per DID
        Index(
            "uq_telephony_bindings_enabled_e164",
            "e164",
            unique=True,
            postgresql_where=text("enabled"),
            sqlite_where=text("enabled = 1"),
        ),
    )

    integration_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("telephony_integrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    carrier: Mapped[str] = mapped_column(String(20), nullable=False)

    # Twilio IncomingPhoneNumber SID, Telnyx phone number id, or Plivo number
    provider_number_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # E.164, normalized
    e164: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    agent_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    agent_config: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<TelephonyBinding {self.e164} -> {self.agent_id}>"
