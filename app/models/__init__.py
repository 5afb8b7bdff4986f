"""Database models for the telephony orchestrator."""

from app.models.telephony_binding import TelephonyBinding
from app.models.telephony_call import CallDirection, CallStatus, TelephonyCall
from app.models.telephony_integration import Carrier, IntegrationStatus, TelephonyIntegration

__all__ = [
    "CallDirection",
    "CallStatus",
    "Carrier",
    "IntegrationStatus",
    "TelephonyBinding",
    "TelephonyCall",
    "TelephonyIntegration",
]
