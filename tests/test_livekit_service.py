import base64
import hashlib
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.protobuf.json_format import MessageToJson
from livekit import api
from livekit.protocol import models, webhook

from app.services.event_normalizer import normalize_livekit_event
from app.services.livekit_service import LiveKitSipClient, LiveKitWebhookVerifier, WebhookVerificationError

API_KEY = "APIdemo"
API_SECRET = "demo-secret-demo-secret-demo-secret"


def signed_webhook(event: webhook.WebhookEvent, api_key=API_KEY, api_secret=API_SECRET):
    """Serialize ``event`` the way LiveKit does and sign the body hash."""
    body = MessageToJson(event)
    body_hash = base64.b64encode(hashlib.sha256(body.encode("utf-8")).digest()).decode("ascii")
    token = api.AccessToken(api_key, api_secret).with_sha256(body_hash).to_jwt()
    return body.encode("utf-8"), token


def sip_join_event(event_id="EV_signed", room="call-signed"):
    return webhook.WebhookEvent(
        event="participant_joined",
        id=event_id,
        created_at=1700000000,
        room=models.Room(name=room),
        participant=models.ParticipantInfo(
            sid="PA_signed",
            identity="sip_+15550001111",
            kind=models.ParticipantInfo.Kind.SIP,
            attributes={"sip.phoneNumber": "+15550001111", "sip.trunkPhoneNumber": "+15552223333"},
        ),
    )


class TestWebhookVerifier:
    @pytest.fixture()
    def verifier(self):
        return LiveKitWebhookVerifier(API_KEY, API_SECRET)

    def test_decodes_signed_event(self, verifier):
        body, token = signed_webhook(sip_join_event())

        payload = verifier.verify_and_decode(body, token)
        event = normalize_livekit_event(payload)

        assert event.event_id == "EV_signed"
        assert event.event_id_derived is False
        assert event.created_at == 1700000000
        assert event.room_name == "call-signed"
        assert event.participant.kind == "SIP"
        assert event.participant.participant_id == "PA_signed"
        assert event.participant.attributes["sip.trunkPhoneNumber"] == "+15552223333"

    def test_accepts_bearer_prefix(self, verifier):
        body, token = signed_webhook(sip_join_event())
        assert verifier.verify_and_decode(body, f"Bearer {token}")["id"] == "EV_signed"

    def test_rejects_tampered_body(self, verifier):
        body, token = signed_webhook(sip_join_event())
        tampered = body.replace(b"call-signed", b"call-hijack")

        with pytest.raises(WebhookVerificationError):
            verifier.verify_and_decode(tampered, token)

    def test_rejects_wrong_secret(self, verifier):
        body, token = signed_webhook(sip_join_event(), api_secret="another-secret-another-secret-xx")

        with pytest.raises(WebhookVerificationError):
            verifier.verify_and_decode(body, token)

    def test_rejects_missing_header(self, verifier):
        body, _ = signed_webhook(sip_join_event())

        with pytest.raises(WebhookVerificationError, match="Missing Authorization"):
            verifier.verify_and_decode(body, None)


class FakeLiveKitAPI:
    """Async context manager standing in for api.LiveKitAPI."""

    def __init__(self):
        self.sip = MagicMock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


@pytest.fixture()
def lkapi(monkeypatch):
    fake = FakeLiveKitAPI()
    monkeypatch.setattr(LiveKitSipClient, "_api", lambda self: fake)
    return fake


async def test_set_inbound_trunk_numbers(lkapi):
    lkapi.sip.update_inbound_trunk_fields = AsyncMock(
        return_value=SimpleNamespace(sip_trunk_id="ST_1", name="byoc-inbound", numbers=["+15552223333"])
    )
    client = LiveKitSipClient("https://demo.livekit.cloud", API_KEY, API_SECRET)

    trunk = await client.set_inbound_trunk_numbers("ST_1", ["+15552223333"])

    lkapi.sip.update_inbound_trunk_fields.assert_awaited_once_with("ST_1", numbers=["+15552223333"])
    assert (trunk.id, trunk.name, trunk.numbers) == ("ST_1", "byoc-inbound", ["+15552223333"])


async def test_set_dispatch_rule_trunks(lkapi):
    lkapi.sip.update_dispatch_rule_fields = AsyncMock(
        return_value=SimpleNamespace(sip_dispatch_rule_id="SDR_1", name="byoc-dispatch", trunk_ids=["ST_1", "ST_2"])
    )
    client = LiveKitSipClient("https://demo.livekit.cloud", API_KEY, API_SECRET)

    rule = await client.set_dispatch_rule_trunks("SDR_1", ["ST_1", "ST_2"])

    lkapi.sip.update_dispatch_rule_fields.assert_awaited_once_with("SDR_1", trunk_ids=["ST_1", "ST_2"])
    assert rule.trunk_ids == ["ST_1", "ST_2"]
