import pytest

from app.core.database import get_async_database_url
from app.utils.helpers import (
    SIP_NUMBER_MAX_LENGTH,
    extract_sip_from_to,
    is_valid_e164,
    mask_phone,
    normalize_e164,
    sip_host_of,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("+15551234567", "+15551234567"),
        ("15551234567", "+15551234567"),
        ("  +15551234567  ", "+15551234567"),
        ("", ""),
    ],
)
def test_normalize_e164(raw, expected):
    assert normalize_e164(raw) == expected


@pytest.mark.parametrize(
    "phone,valid",
    [
        ("+15551234567", True),
        ("+442071838750", True),
        ("15551234567", False),
        ("+0123456789", False),
        ("+1555", False),
        ("+1234567890123456", False),
    ],
)
def test_is_valid_e164(phone, valid):
    assert is_valid_e164(phone) is valid


def test_extract_sip_from_to_normalizes_numbers():
    attributes = {"sip.phoneNumber": "15550001111", "sip.trunkPhoneNumber": "+15552223333"}
    assert extract_sip_from_to(attributes) == ("+15550001111", "+15552223333")


def test_extract_sip_from_to_missing_attributes():
    assert extract_sip_from_to({}) == (None, None)
    assert extract_sip_from_to(None) == (None, None)
    assert extract_sip_from_to({"sip.phoneNumber": "+15550001111"}) == ("+15550001111", None)


def test_extract_sip_from_to_caps_long_values():
    extension = "15550001111;ext=" + "9" * 200
    caller, called = extract_sip_from_to({"sip.phoneNumber": extension, "sip.trunkPhoneNumber": "+15552223333"})

    assert len(caller) == SIP_NUMBER_MAX_LENGTH
    assert caller.startswith("+15550001111;ext=")
    assert called == "+15552223333"


def test_mask_phone():
    assert mask_phone("+15551234567") == "***4567"
    assert mask_phone(None) == "***"
    assert mask_phone("12") == "***"


@pytest.mark.parametrize(
    "value,expected",
    [
        ("sip:abc.sip.livekit.cloud", "abc.sip.livekit.cloud"),
        ("SIP:user@ABC.sip.livekit.cloud:5060;transport=tcp", "abc.sip.livekit.cloud"),
        ("abc.sip.livekit.cloud:5061", "abc.sip.livekit.cloud"),
        ("", ""),
    ],
)
def test_sip_host_of(value, expected):
    assert sip_host_of(value) == expected


@pytest.mark.parametrize(
    "url,expected",
    [
        ("sqlite+aiosqlite://", "sqlite+aiosqlite://"),
        ("sqlite+aiosqlite:////var/data/telephony.db", "sqlite+aiosqlite:////var/data/telephony.db"),
        ("postgresql://u:p@db:5432/telephony", "postgresql+asyncpg://u:p@db:5432/telephony"),
        ("postgres://u:p@db/telephony?pgbouncer=true&sslmode=require", "postgresql+asyncpg://u:p@db/telephony?sslmode=require"),
        ("postgresql+asyncpg://u:p@db/telephony", "postgresql+asyncpg://u:p@db/telephony"),
    ],
)
def test_get_async_database_url(url, expected):
    assert get_async_database_url(url) == expected
