import httpx
import pytest
import respx

from app.api import deps
from app.api.v1.endpoints.telephony import process_livekit_event
from app.core.config import settings
from app.main import app
from app.services.call_routing import DefaultCallRouting
from app.services.event_ledger import InMemoryEventLedger
from app.services.event_normalizer import normalize_livekit_event
from app.services.livekit_service import LiveKitWebhookVerifier, WebhookVerificationError
from app.services.sip_provisioning_service import SipProvisioningService
from app.services.telephony_session_service import TelephonySessionService
from tests.conftest import API_HEADERS
from tests.test_livekit_service import API_KEY, API_SECRET, signed_webhook, sip_join_event

TELNYX = "https://api.telnyx.com"
WEBHOOK = "/api/v1/telephony/livekit-webhook"

JOINED = {
    "event": "participant_joined",
    "id": "EV_1",
    "createdAt": "1700000000",
    "room": {"name": "call-route-1"},
    "participant": {
        "sid": "PA_1",
        "identity": "sip_+15550001111",
        "kind": "SIP",
        "attributes": {"sip.phoneNumber": "+15550001111", "sip.trunkPhoneNumber": "+15552223333"},
    },
}


class FakeVerifier:
    def __init__(self, payload):
        self.payload = payload

    def verify_and_decode(self, raw_body, authorization):
        if authorization != "Bearer good-token":
            raise WebhookVerificationError("signature mismatch")
        return self.payload


@pytest.fixture()
def session_service(call_store, dispatcher, notifier):
    return TelephonySessionService(
        ledger=InMemoryEventLedger(ttl_seconds=60, max_entries=100),
        call_store=call_store,
        routing=DefaultCallRouting(),
        dispatcher=dispatcher,
        notifier=notifier,
        sip_identity_prefix="sip_",
        dispatch_on_any_join=False,
    )


@pytest.fixture()
async def client(session_service, call_store, integration_store, binding_store, sip_client):
    app.dependency_overrides[deps.get_webhook_verifier] = lambda: FakeVerifier(JOINED)
    app.dependency_overrides[deps.get_session_service] = lambda: session_service
    app.dependency_overrides[deps.get_call_store] = lambda: call_store
    app.dependency_overrides[deps.get_integration_store] = lambda: integration_store
    app.dependency_overrides[deps.get_binding_store] = lambda: binding_store
    app.dependency_overrides[deps.get_sip_provisioning] = lambda: SipProvisioningService(sip_client)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


async def test_webhook_disabled_returns_503(client, monkeypatch):
    monkeypatch.setattr(settings, "telephony_enabled", False)

    response = await client.post(WEBHOOK, content=b"{}", headers={"Authorization": "Bearer good-token"})

    assert response.status_code == 503
    assert response.json() == {"error": "Telephony is disabled"}


async def test_webhook_empty_body_returns_400(client):
    response = await client.post(WEBHOOK, content=b"", headers={"Authorization": "Bearer good-token"})
    assert response.status_code == 400


async def test_webhook_bad_signature_returns_401_with_details(client):
    response = await client.post(WEBHOOK, content=b"{}", headers={"Authorization": "Bearer forged"})

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid webhook signature", "details": "signature mismatch"}


async def test_webhook_bad_signature_hides_details_in_production(client, monkeypatch):
    monkeypatch.setattr(settings, "app_env", "production")

    response = await client.post(WEBHOOK, content=b"{}", headers={"Authorization": "Bearer forged"})

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid webhook signature"}


async def test_webhook_acknowledges_and_dispatches(client, call_store, dispatcher):
    response = await client.post(WEBHOOK, content=b"{...}", headers={"Authorization": "Bearer good-token"})

    assert response.status_code == 200
    assert response.json() == {"ok": True}

    call = await call_store.get_by_room("call-route-1")
    assert call.agent_dispatched is True
    assert len(dispatcher.dispatches) == 1

    # Redelivery is acknowledged but not reprocessed
    again = await client.post(WEBHOOK, content=b"{...}", headers={"Authorization": "Bearer good-token"})
    assert again.status_code == 200
    assert len(dispatcher.dispatches) == 1


async def test_signed_webhook_is_admitted(client, call_store, dispatcher):
    app.dependency_overrides[deps.get_webhook_verifier] = lambda: LiveKitWebhookVerifier(API_KEY, API_SECRET)
    body, token = signed_webhook(sip_join_event(room="call-signed"))

    response = await client.post(WEBHOOK, content=body, headers={"Authorization": token})

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    call = await call_store.get_by_room("call-signed")
    assert call.from_number == "+15550001111"
    assert call.agent_dispatched is True
    assert [room for room, _ in dispatcher.dispatches] == ["call-signed"]


async def test_tampered_signed_webhook_is_rejected(client, call_store, dispatcher):
    app.dependency_overrides[deps.get_webhook_verifier] = lambda: LiveKitWebhookVerifier(API_KEY, API_SECRET)
    body, token = signed_webhook(sip_join_event(room="call-signed"))

    response = await client.post(
        WEBHOOK, content=body.replace(b"call-signed", b"call-hijack"), headers={"Authorization": token}
    )

    assert response.status_code == 401
    assert response.json()["error"] == "Invalid webhook signature"
    assert await call_store.get_by_room("call-hijack") is None
    assert dispatcher.dispatches == []


async def test_background_processing_applies_event(session_service, call_store, dispatcher):
    await process_livekit_event(session_service, normalize_livekit_event(JOINED))

    call = await call_store.get_by_room("call-route-1")
    assert call.agent_dispatched is True
    assert len(dispatcher.dispatches) == 1


async def test_background_processing_logs_failures(session_service, monkeypatch):
    async def broken(event):
        raise RuntimeError("store offline")

    monkeypatch.setattr(session_service, "handle", broken)

    await process_livekit_event(session_service, normalize_livekit_event(JOINED))


async def test_call_diagnostics(client):
    await client.post(WEBHOOK, content=b"{...}", headers={"Authorization": "Bearer good-token"})

    by_room = await client.get("/api/v1/telephony/calls/by-room/call-route-1")
    assert by_room.status_code == 200
    body = by_room.json()
    assert body["roomName"] == "call-route-1"
    assert body["fromNumber"] == "+15550001111"
    assert body["agentDispatched"] is True

    by_id = await client.get(f"/api/v1/telephony/calls/{body['callId']}")
    assert by_id.json()["callId"] == body["callId"]

    missing = await client.get("/api/v1/telephony/calls/nope")
    assert missing.status_code == 404
    assert missing.json() == {"error": "Call not found"}


async def test_call_diagnostics_hidden_in_production(client, monkeypatch):
    monkeypatch.setattr(settings, "app_env", "production")
    response = await client.get("/api/v1/telephony/calls/by-room/call-route-1")
    assert response.status_code == 404


# ---------------------------------------------------------------------------
# Carrier management
# ---------------------------------------------------------------------------


async def test_management_requires_api_key(client):
    response = await client.get("/api/v1/telephony/telnyx/integrations")
    assert response.status_code == 401

    response = await client.get("/api/v1/telephony/bindings", headers={"x-api-key": "wrong"})
    assert response.status_code == 401


async def test_unknown_fields_are_rejected(client):
    response = await client.post(
        "/api/v1/telephony/telnyx/credentials/verify",
        json={"apiKey": "KEYabc", "extra": "nope"},
        headers=API_HEADERS,
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request"
    assert any(issue["path"][-1] == "extra" for issue in body["issues"])


async def test_numbers_requires_integration_id(client):
    response = await client.get("/api/v1/telephony/telnyx/numbers", headers=API_HEADERS)

    assert response.status_code == 400
    assert response.json() == {"error": "integrationId query param is required"}


async def test_invalid_e164_is_rejected(client):
    response = await client.post(
        "/api/v1/telephony/telnyx/numbers/PN1/connect?integrationId=abc",
        json={"e164": "not-a-number"},
        headers=API_HEADERS,
    )
    assert response.status_code == 400


@respx.mock
async def test_verify_maps_carrier_auth_failure(client):
    respx.get(f"{TELNYX}/v2/phone_numbers").mock(return_value=httpx.Response(401, json={"errors": []}))

    response = await client.post(
        "/api/v1/telephony/telnyx/credentials/verify", json={"apiKey": "bad"}, headers=API_HEADERS
    )

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid Telnyx credentials"}


@respx.mock
async def test_telnyx_onboarding_flow(client, sip_client):
    respx.get(f"{TELNYX}/v2/phone_numbers").mock(
        return_value=httpx.Response(
            200,
            json={"data": [{"id": "PN1", "phone_number": "+15552223333"}], "meta": {"total_pages": 1}},
        )
    )
    respx.get(f"{TELNYX}/v2/fqdn_connections").mock(return_value=httpx.Response(200, json={"data": []}))
    respx.post(f"{TELNYX}/v2/fqdn_connections").mock(
        return_value=httpx.Response(201, json={"data": {"id": "FC1"}})
    )
    respx.get(f"{TELNYX}/v2/fqdn_connections/FC1").mock(
        return_value=httpx.Response(200, json={"data": {"id": "FC1", "transport_protocol": "TCP"}})
    )
    respx.get(f"{TELNYX}/v2/fqdns").mock(return_value=httpx.Response(200, json={"data": []}))
    respx.post(f"{TELNYX}/v2/fqdns").mock(return_value=httpx.Response(201, json={"data": {"id": "FQ1"}}))
    respx.get(f"{TELNYX}/v2/phone_numbers/PN1").mock(
        return_value=httpx.Response(200, json={"data": {"id": "PN1", "phone_number": "+15552223333"}})
    )
    respx.patch(f"{TELNYX}/v2/phone_numbers/PN1").mock(return_value=httpx.Response(200, json={"data": {}}))
    respx.delete(f"{TELNYX}/v2/fqdns/FQ1").mock(return_value=httpx.Response(200))
    respx.delete(f"{TELNYX}/v2/fqdn_connections/FC1").mock(return_value=httpx.Response(200))

    created = await client.post(
        "/api/v1/telephony/telnyx/credentials",
        json={"apiKey": "KEYabc", "name": "Main"},
        headers=API_HEADERS,
    )
    assert created.status_code == 201
    integration_id = created.json()["integrationId"]
    assert created.json()["carrier"] == "telnyx"
    assert created.json()["status"] == "active"

    listed = await client.get("/api/v1/telephony/telnyx/integrations", headers=API_HEADERS)
    [integration] = listed.json()["integrations"]
    assert integration["providerResources"] == {"fqdn_connection_id": "FC1", "fqdn_id": "FQ1"}
    assert "encryptedCredentials" not in integration

    numbers = await client.get(
        f"/api/v1/telephony/telnyx/numbers?integrationId={integration_id}", headers=API_HEADERS
    )
    assert numbers.json() == {
        "numbers": [{"providerNumberId": "PN1", "e164": "+15552223333", "friendlyName": None, "routedTo": None}]
    }

    mismatch = await client.post(
        f"/api/v1/telephony/telnyx/numbers/PN1/connect?integrationId={integration_id}",
        json={"e164": "+15559999999"},
        headers=API_HEADERS,
    )
    assert mismatch.status_code == 422

    connected = await client.post(
        f"/api/v1/telephony/telnyx/numbers/PN1/connect?integrationId={integration_id}",
        json={"e164": "+15552223333", "agentId": "agent-7"},
        headers=API_HEADERS,
    )
    assert connected.status_code == 200
    binding = connected.json()
    assert binding["e164"] == "+15552223333"
    assert binding["agentId"] == "agent-7"
    assert [t.numbers for t in sip_client.trunks.values()] == [["+15552223333"]]

    bindings = await client.get("/api/v1/telephony/bindings?carrier=telnyx", headers=API_HEADERS)
    assert [b["id"] for b in bindings.json()["bindings"]] == [binding["id"]]

    deleted = await client.delete(f"/api/v1/telephony/telnyx/credentials/{integration_id}", headers=API_HEADERS)
    assert deleted.json() == {"ok": True, "deletedBindings": 1}
    assert sip_client.trunks == {}

    gone = await client.get(
        f"/api/v1/telephony/telnyx/numbers?integrationId={integration_id}", headers=API_HEADERS
    )
    assert gone.status_code == 404


async def test_disconnect_binding_of_other_carrier_is_400(client, integration_store, binding_store):
    integration = await integration_store.create(carrier="plivo", encrypted_credentials="v1.x", credential_fingerprint="f")
    binding = await binding_store.upsert(
        integration_id=integration.id, carrier="plivo", provider_number_id="15550000001", e164="+15550000001"
    )

    response = await client.delete(f"/api/v1/telephony/telnyx/bindings/{binding.id}", headers=API_HEADERS)

    assert response.status_code == 400


async def test_health_reports_components(client):
    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    body = response.json()
    assert body["database"] == "healthy"
    assert body["redis"] == "disabled"
    assert body["telephony_enabled"] is True
    assert body["background_tasks"] >= 0
