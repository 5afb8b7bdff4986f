"""Carrier adapters keyed by carrier."""

from app.models.telephony_integration import Carrier
from app.services.carriers.base import (
    CarrierAdapter,
    CarrierClientError,
    CarrierErrorCode,
    ProviderNumber,
)
from app.services.carriers.plivo import PlivoAdapter
from app.services.carriers.telnyx import TelnyxAdapter
from app.services.carriers.twilio import TwilioAdapter

ADAPTERS: dict[Carrier, type[CarrierAdapter]] = {
    Carrier.TWILIO: TwilioAdapter,
    Carrier.TELNYX: TelnyxAdapter,
    Carrier.PLIVO: PlivoAdapter,
}

__all__ = [
    "ADAPTERS",
    "CarrierAdapter",
    "CarrierClientError",
    "CarrierErrorCode",
    "PlivoAdapter",
    "ProviderNumber",
    "TelnyxAdapter",
    "TwilioAdapter",
]
