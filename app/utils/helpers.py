"""Helper utility functions."""

import re
from typing import Optional

E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")

# LiveKit SIP participant attribute keys
SIP_FROM_ATTRIBUTE = "sip.phoneNumber"
SIP_TO_ATTRIBUTE = "sip.trunkPhoneNumber"

# Width of the stored caller and called number columns
SIP_NUMBER_MAX_LENGTH = 64


def normalize_e164(phone: str) -> str:
    """Normalize a phone number to E.164 by trimming and ensuring a leading +."""
    trimmed = phone.strip()
    if not trimmed:
        return trimmed
    return trimmed if trimmed.startswith("+") else "+" + trimmed


def is_valid_e164(phone: str) -> bool:
    """Check a phone number is strict E.164 (+ then 8 to 15 digits)."""
    return bool(E164_PATTERN.match(phone))


def _sip_number(raw: Optional[str]) -> Optional[str]:
    # Attributes are caller-controlled; anything past the column width is dropped
    if not raw:
        return None
    return normalize_e164(raw)[:SIP_NUMBER_MAX_LENGTH] or None


def extract_sip_from_to(
    attributes: Optional[dict[str, str]],
) -> tuple[Optional[str], Optional[str]]:
    """Get (caller, called DID) from SIP participant attributes."""
    if not attributes:
        return None, None

    return (
        _sip_number(attributes.get(SIP_FROM_ATTRIBUTE)),
        _sip_number(attributes.get(SIP_TO_ATTRIBUTE)),
    )


def mask_phone(phone: Optional[str]) -> str:
    """Mask phone number for logging (privacy)."""
    if not phone or len(phone) < 4:
        return "***"

    return "***" + phone[-4:]


def sip_host_of(uri_or_host: str) -> str:
    """Reduce a SIP URI or host[:port] to a lower-cased bare host."""
    value = uri_or_host.strip().lower()
    if not value:
        return ""

    value = re.sub(r"^sip:", "", value)
    value = value.split("?", 1)[0]
    value = value.split(";", 1)[0]
    value = value.rsplit("@", 1)[-1].strip()
    return re.sub(r":\d+$", "", value).strip()
