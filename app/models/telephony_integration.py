"""Carrier integration model: encrypted credentials plus carrier-side resources."""

import enum
from typing import Any, Optional

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.db.base import TimestampMixin, UUIDPrimaryKeyMixin


class Carrier(str, enum.Enum):
    """Supported PSTN carriers."""

    TWILIO = "twilio"
    TELNYX = "telnyx"
    PLIVO = "plivo"


class IntegrationStatus(str, enum.Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class TelephonyIntegration(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A verified set of carrier credentials.

    Credentials are stored encrypted (see app.core.crypto); only the
    fingerprint is usable for lookups and diagnostics.
    """

    __tablename__ = "telephony_integrations"

    carrier: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    encrypted_credentials: Mapped[str] = mapped_column(Text, nullable=False)
    credential_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    status: Mapped[str] = mapped_column(
        String(20), default=IntegrationStatus.ACTIVE.value, nullable=False
    )

    # Carrier-side trunk resources created for this integration
    # twilio: trunk_sid, origination_url_sid
    # telnyx: fqdn_connection_id, fqdn_id
    # plivo:  trunk_id, origination_uri_id
    provider_resources: Mapped[dict[str, Any]] = mapped_column(
        JSON, default=dict, nullable=False
    )

    @property
    def is_active(self) -> bool:
        return self.status == IntegrationStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<TelephonyIntegration {self.carrier} {self.id}>"
