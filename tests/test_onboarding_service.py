from typing import Any, Optional

import pytest

from app.core.crypto import decrypt_string, encrypt_string
from app.core.errors import ServiceError
from app.models.telephony_integration import Carrier, IntegrationStatus
from app.schemas.telephony import TelnyxCredentials
from app.services.carriers.base import CarrierAdapter, CarrierClientError, CarrierErrorCode, ProviderNumber
from app.services.onboarding_service import OnboardingService, map_carrier_error
from app.services.sip_provisioning_service import SipProvisioningService
from tests.conftest import TEST_KEY

CREDS = {"api_key": "KEYabc"}
NUMBER = ProviderNumber(provider_number_id="PN_1", e164="+15551230001", friendly_name="Main")
SECOND = ProviderNumber(provider_number_id="PN_2", e164="+15551230002")


class FakeCarrier:
    """Carrier-side state shared by every adapter the engine builds."""

    def __init__(self) -> None:
        self.numbers = {n.provider_number_id: n for n in (NUMBER, SECOND)}
        self.attached: dict[str, str] = {}
        self.trunks: dict[str, str] = {}
        self.calls: list[str] = []
        self.seen_credentials: list[dict[str, str]] = []
        self.verify_error: Optional[CarrierClientError] = None
        self.ensure_error: Optional[CarrierClientError] = None


class FakeAdapter(CarrierAdapter):
    carrier = Carrier.TELNYX
    display_name = "Telnyx"
    credentials_model = TelnyxCredentials

    def __init__(self, state: FakeCarrier, credentials: dict[str, str]) -> None:
        self.state = state
        self.credentials = credentials
        state.seen_credentials.append(credentials)

    def fingerprint_source(self) -> str:
        return self.credentials["api_key"]

    async def verify(self) -> None:
        self.state.calls.append("verify")
        if self.state.verify_error:
            raise self.state.verify_error

    async def list_numbers(self) -> list[ProviderNumber]:
        return list(self.state.numbers.values())

    async def get_number(self, provider_number_id: str) -> ProviderNumber:
        if provider_number_id not in self.state.numbers:
            raise CarrierClientError(404, CarrierErrorCode.VALIDATION_ERROR, "Resource not found")
        return self.state.numbers[provider_number_id]

    def has_trunk(self, resources: dict[str, Any]) -> bool:
        return bool(resources.get("fqdn_connection_id"))

    async def ensure_trunk(self, trunk_name: str, sip_host: str) -> dict[str, Any]:
        self.state.calls.append("ensure_trunk")
        if self.state.ensure_error:
            raise self.state.ensure_error
        self.state.trunks[trunk_name] = sip_host
        return {"fqdn_connection_id": "FC_1", "fqdn_id": "FQ_1"}

    async def attach_number(self, resources: dict[str, Any], provider_number_id: str) -> None:
        self.state.calls.append("attach_number")
        self.state.attached[provider_number_id] = resources["fqdn_connection_id"]

    async def detach_number(self, resources: dict[str, Any], provider_number_id: str) -> None:
        self.state.calls.append("detach_number")
        self.state.attached.pop(provider_number_id, None)

    async def delete_trunk(self, resources: dict[str, Any]) -> None:
        self.state.calls.append("delete_trunk")
        self.state.trunks.clear()


@pytest.fixture()
def carrier_state() -> FakeCarrier:
    return FakeCarrier()


@pytest.fixture()
def provisioning(sip_client) -> SipProvisioningService:
    return SipProvisioningService(sip_client, trunk_name="byoc-inbound", dispatch_rule_name="byoc-dispatch")


@pytest.fixture()
def service(carrier_state, integration_store, binding_store, provisioning) -> OnboardingService:
    return OnboardingService(
        carrier=Carrier.TELNYX,
        integration_store=integration_store,
        binding_store=binding_store,
        provisioning=provisioning,
        adapter_factory=lambda creds: FakeAdapter(carrier_state, creds),
        encryption_key=TEST_KEY,
        sip_host="demo.sip.livekit.cloud",
    )


@pytest.mark.parametrize(
    "code,status,message",
    [
        (CarrierErrorCode.AUTH_INVALID, 401, "Invalid Telnyx credentials"),
        (CarrierErrorCode.RATE_LIMITED, 429, "Telnyx rate limit exceeded"),
        (CarrierErrorCode.VALIDATION_ERROR, 422, "number is not routable"),
        (CarrierErrorCode.PROVIDER_UNREACHABLE, 502, "Unable to reach Telnyx API"),
        (CarrierErrorCode.PROVIDER_ERROR, 502, "Telnyx error: number is not routable"),
    ],
)
def test_map_carrier_error(code, status, message):
    err = map_carrier_error("Telnyx", CarrierClientError(400, code, "number is not routable"))
    assert err.status_code == status
    assert err.message == message


async def test_verify_credentials_maps_auth_failure(service, carrier_state):
    carrier_state.verify_error = CarrierClientError(401, CarrierErrorCode.AUTH_INVALID, "Authentication failed")

    with pytest.raises(ServiceError) as exc_info:
        await service.verify_credentials(CREDS)

    assert exc_info.value.status_code == 401


async def test_create_integration_encrypts_and_bootstraps_trunk(service, integration_store, carrier_state):
    integration = await service.create_integration(CREDS, name="Main account")

    stored = await integration_store.get(integration.id)
    assert stored.carrier == "telnyx"
    assert stored.name == "Main account"
    assert "KEYabc" not in stored.encrypted_credentials
    assert decrypt_string(stored.encrypted_credentials, TEST_KEY) == '{"api_key": "KEYabc"}'
    assert len(stored.credential_fingerprint) == 64
    assert stored.provider_resources == {"fqdn_connection_id": "FC_1", "fqdn_id": "FQ_1"}
    assert carrier_state.trunks == {f"livekit-inbound-{integration.id}": "demo.sip.livekit.cloud"}


async def test_create_integration_defers_trunk_failure(service, integration_store, carrier_state):
    carrier_state.ensure_error = CarrierClientError(503, CarrierErrorCode.PROVIDER_ERROR, "maintenance")

    integration = await service.create_integration(CREDS)

    stored = await integration_store.get(integration.id)
    assert stored.status == IntegrationStatus.ACTIVE.value
    assert stored.provider_resources == {}


async def test_create_integration_rejects_bad_credentials(service, integration_store, carrier_state):
    carrier_state.verify_error = CarrierClientError(403, CarrierErrorCode.AUTH_INVALID, "Forbidden")

    with pytest.raises(ServiceError):
        await service.create_integration(CREDS)

    assert await integration_store.list_by_carrier("telnyx") == []


async def test_did_mismatch_is_rejected_without_side_effects(service, binding_store, sip_client, carrier_state):
    integration = await service.create_integration(CREDS)
    carrier_state.calls.clear()

    with pytest.raises(ServiceError) as exc_info:
        await service.connect_number(integration.id, "PN_1", "+15559999999")

    assert exc_info.value.status_code == 422
    assert exc_info.value.message == (
        "Requested e164 +15559999999 does not match provider number +15551230001"
    )
    assert sip_client.calls == []
    assert "attach_number" not in carrier_state.calls
    assert await binding_store.list_all() == []


async def test_connect_and_disconnect_lifecycle(service, binding_store, sip_client, carrier_state):
    integration = await service.create_integration(CREDS)

    binding = await service.connect_number(
        integration.id, "PN_1", "15551230001", agent_id="agent-1", agent_config={"prompt": "Hi"}
    )

    assert binding.e164 == "+15551230001"
    assert binding.provider_number_id == "PN_1"
    assert binding.agent_id == "agent-1"
    assert carrier_state.attached == {"PN_1": "FC_1"}
    [trunk] = sip_client.trunks.values()
    assert trunk.numbers == ["+15551230001"]
    assert (await binding_store.get_enabled_by_e164("+15551230001")).id == binding.id

    await service.disconnect_number(binding.id)

    assert carrier_state.attached == {}
    assert sip_client.trunks == {}
    assert sip_client.rules == {}
    assert await binding_store.get(binding.id) is None


async def test_disconnect_detaches_at_carrier_before_livekit_teardown(service, sip_client, carrier_state):
    integration = await service.create_integration(CREDS)
    binding = await service.connect_number(integration.id, "PN_1", "+15551230001")
    sip_client.calls.clear()
    carrier_state.calls.clear()

    original_detach = FakeAdapter.detach_number

    async def detach_and_check(adapter, resources, provider_number_id):
        # LiveKit has not been touched yet
        assert sip_client.calls == []
        await original_detach(adapter, resources, provider_number_id)

    FakeAdapter.detach_number = detach_and_check
    try:
        await service.disconnect_number(binding.id)
    finally:
        FakeAdapter.detach_number = original_detach

    assert "delete_trunk" in sip_client.calls


async def test_connect_lazily_creates_deferred_trunk(service, integration_store, carrier_state):
    carrier_state.ensure_error = CarrierClientError(0, CarrierErrorCode.PROVIDER_UNREACHABLE, "timeout")
    integration = await service.create_integration(CREDS)
    carrier_state.ensure_error = None

    await service.connect_number(integration.id, "PN_1", "+15551230001")

    stored = await integration_store.get(integration.id)
    assert stored.provider_resources["fqdn_connection_id"] == "FC_1"
    assert carrier_state.attached == {"PN_1": "FC_1"}


async def test_reconnect_rebinds_same_did(service, binding_store):
    integration = await service.create_integration(CREDS)

    first = await service.connect_number(integration.id, "PN_1", "+15551230001", agent_id="a")
    second = await service.connect_number(integration.id, "PN_1", "+15551230001", agent_id="b")

    assert second.id == first.id
    assert [b.agent_id for b in await binding_store.list_all()] == ["b"]


async def test_delete_integration_cascades(service, integration_store, binding_store, sip_client, carrier_state):
    integration = await service.create_integration(CREDS)
    await service.connect_number(integration.id, "PN_1", "+15551230001")
    await service.connect_number(integration.id, "PN_2", "+15551230002")

    deleted = await service.delete_integration(integration.id)

    assert deleted == 2
    assert await integration_store.get(integration.id) is None
    assert await binding_store.list_all() == []
    assert carrier_state.attached == {}
    assert carrier_state.trunks == {}
    assert sip_client.trunks == {}
    assert sip_client.rules == {}


async def test_missing_integration_is_404(service):
    with pytest.raises(ServiceError) as exc_info:
        await service.list_numbers("missing")
    assert exc_info.value.status_code == 404


async def test_other_carrier_integration_is_400(service, integration_store):
    other = await integration_store.create(
        carrier="plivo",
        encrypted_credentials=encrypt_string('{"auth_id": "MA", "auth_token": "t"}', TEST_KEY),
        credential_fingerprint="f",
    )

    with pytest.raises(ServiceError) as exc_info:
        await service.list_numbers(other.id)
    assert exc_info.value.status_code == 400


async def test_disabled_integration_is_403(service):
    integration = await service.create_integration(CREDS)
    disabled = await service.disable_integration(integration.id)
    assert disabled.status == IntegrationStatus.DISABLED.value

    with pytest.raises(ServiceError) as exc_info:
        await service.connect_number(integration.id, "PN_1", "+15551230001")
    assert exc_info.value.status_code == 403

    # Disabled integrations can still be deleted
    assert await service.delete_integration(integration.id) == 0


async def test_undecryptable_credentials_are_409(service, integration_store):
    integration = await integration_store.create(
        carrier="telnyx",
        encrypted_credentials=encrypt_string('{"api_key": "KEYabc"}', b"x" * 32),
        credential_fingerprint="f",
    )

    with pytest.raises(ServiceError) as exc_info:
        await service.list_numbers(integration.id)

    assert exc_info.value.status_code == 409
    assert "re-create" in exc_info.value.message


async def test_invalid_stored_credentials_are_409(service, integration_store):
    integration = await integration_store.create(
        carrier="telnyx",
        encrypted_credentials=encrypt_string('{"token": "nope"}', TEST_KEY),
        credential_fingerprint="f",
    )

    with pytest.raises(ServiceError) as exc_info:
        await service.list_numbers(integration.id)
    assert exc_info.value.status_code == 409


async def test_list_numbers_uses_decrypted_credentials(service, carrier_state):
    integration = await service.create_integration(CREDS)
    carrier_state.seen_credentials.clear()

    numbers = await service.list_numbers(integration.id)

    assert [n.e164 for n in numbers] == ["+15551230001", "+15551230002"]
    assert carrier_state.seen_credentials == [CREDS]


async def test_disconnect_unknown_binding_is_404(service):
    with pytest.raises(ServiceError) as exc_info:
        await service.disconnect_number("missing")
    assert exc_info.value.status_code == 404
