"""Carrier onboarding: credentials, integrations, and DID connect/disconnect.

One engine serves every carrier; carrier differences live in the adapters
under app.services.carriers.

Ordering rules:
- connect: LiveKit SIP setup is ensured before the carrier routes the number,
  so a partial failure leaves LiveKit ready but unused.
- disconnect: the carrier stops routing the number before LiveKit setup is
  removed, so a partial failure never leaves live carrier routing pointing at
  a missing LiveKit trunk.
"""

import json
from typing import Any, Callable, Optional

from fastapi import status
from pydantic import ValidationError

from app.core.config import settings
from app.core.crypto import SecretBoxError, decrypt_string, encrypt_string, fingerprint_secret
from app.core.errors import ServiceError
from app.core.logging import get_logger
from app.models.telephony_binding import TelephonyBinding
from app.models.telephony_integration import Carrier, IntegrationStatus, TelephonyIntegration
from app.services.carriers import ADAPTERS
from app.services.carriers.base import CarrierAdapter, CarrierClientError, CarrierErrorCode, ProviderNumber
from app.services.integration_store import BindingStore, IntegrationStore
from app.services.sip_provisioning_service import SipProvisioningService
from app.utils.helpers import mask_phone, normalize_e164

logger = get_logger(__name__)

TRUNK_NAME_PREFIX = "livekit-inbound-"

AdapterFactory = Callable[[dict[str, str]], CarrierAdapter]


def map_carrier_error(display_name: str, err: CarrierClientError) -> ServiceError:
    """Translate a carrier client failure into an API-safe error."""
    if err.code == CarrierErrorCode.AUTH_INVALID:
        return ServiceError(status.HTTP_401_UNAUTHORIZED, f"Invalid {display_name} credentials")
    if err.code == CarrierErrorCode.RATE_LIMITED:
        return ServiceError(status.HTTP_429_TOO_MANY_REQUESTS, f"{display_name} rate limit exceeded")
    if err.code == CarrierErrorCode.VALIDATION_ERROR:
        return ServiceError(status.HTTP_422_UNPROCESSABLE_ENTITY, err.message)
    if err.code == CarrierErrorCode.PROVIDER_UNREACHABLE:
        return ServiceError(status.HTTP_502_BAD_GATEWAY, f"Unable to reach {display_name} API")
    return ServiceError(status.HTTP_502_BAD_GATEWAY, f"{display_name} error: {err.message}")


class OnboardingService:
    """Integration lifecycle and number binding for one carrier."""

    def __init__(
        self,
        carrier: Carrier,
        integration_store: IntegrationStore,
        binding_store: BindingStore,
        provisioning: SipProvisioningService,
        adapter_factory: Optional[AdapterFactory] = None,
        encryption_key: Optional[bytes] = None,
        sip_host: Optional[str] = None,
    ) -> None:
        self.carrier = carrier
        self.adapter_cls = ADAPTERS[carrier]
        self.adapter_factory = adapter_factory or self.adapter_cls
        self.integration_store = integration_store
        self.binding_store = binding_store
        self.provisioning = provisioning
        self._encryption_key = encryption_key
        self._sip_host = sip_host

    @property
    def display_name(self) -> str:
        return self.adapter_cls.display_name

    @property
    def encryption_key(self) -> bytes:
        if self._encryption_key is None:
            try:
                self._encryption_key = settings.telephony_secrets_key_bytes
            except ValueError as e:
                raise ServiceError(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e)) from e
        return self._encryption_key

    @property
    def sip_host(self) -> str:
        host = self._sip_host or settings.livekit_sip_host
        if not host:
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "LIVEKIT_SIP_URI is not configured",
            )
        return host

    # ------------------------------------------------------------------
    # Credentials and integrations
    # ------------------------------------------------------------------

    async def verify_credentials(self, credentials: dict[str, str]) -> None:
        adapter = self.adapter_factory(credentials)
        try:
            await adapter.verify()
        except CarrierClientError as e:
            raise map_carrier_error(self.display_name, e) from e

    async def create_integration(
        self, credentials: dict[str, str], name: Optional[str] = None
    ) -> TelephonyIntegration:
        """Verify, encrypt and store credentials, then try to set up the carrier trunk."""
        adapter = self.adapter_factory(credentials)
        try:
            await adapter.verify()
        except CarrierClientError as e:
            raise map_carrier_error(self.display_name, e) from e

        integration = await self.integration_store.create(
            carrier=self.carrier.value,
            name=name,
            encrypted_credentials=encrypt_string(json.dumps(credentials), self.encryption_key),
            credential_fingerprint=fingerprint_secret(adapter.fingerprint_source()),
        )

        try:
            resources = await self._ensure_trunk(adapter, integration.id)
            integration.provider_resources = resources
        except ServiceError as e:
            # Retried lazily on first connect
            logger.warning(
                "carrier_trunk_setup_deferred",
                carrier=self.carrier.value,
                integration_id=integration.id,
                error=e.message,
            )

        logger.info(
            "carrier_integration_created",
            carrier=self.carrier.value,
            integration_id=integration.id,
        )
        return integration

    async def list_integrations(self) -> list[TelephonyIntegration]:
        return await self.integration_store.list_by_carrier(self.carrier.value)

    async def disable_integration(self, integration_id: str) -> TelephonyIntegration:
        await self._get_integration(integration_id, allow_disabled=True)
        integration = await self.integration_store.set_status(integration_id, IntegrationStatus.DISABLED)
        if integration is None:
            raise ServiceError(status.HTTP_404_NOT_FOUND, f"Integration {integration_id} not found")
        logger.info("carrier_integration_disabled", carrier=self.carrier.value, integration_id=integration_id)
        return integration

    async def delete_integration(self, integration_id: str) -> int:
        """Disconnect every binding, remove carrier trunk resources, delete the integration.

        Returns the number of bindings removed.
        """
        integration = await self._get_integration(integration_id, allow_disabled=True)
        adapter = self._adapter_for(integration)

        bindings = await self.binding_store.list_by_integration(integration_id)
        for binding in bindings:
            await self._disconnect(binding, adapter, integration)

        try:
            await adapter.delete_trunk(integration.provider_resources or {})
        except CarrierClientError as e:
            raise map_carrier_error(self.display_name, e) from e

        if not await self.integration_store.delete(integration_id):
            raise ServiceError(status.HTTP_404_NOT_FOUND, f"Integration {integration_id} not found")

        logger.info(
            "carrier_integration_deleted",
            carrier=self.carrier.value,
            integration_id=integration_id,
            deleted_bindings=len(bindings),
        )
        return len(bindings)

    # ------------------------------------------------------------------
    # Numbers
    # ------------------------------------------------------------------

    async def list_numbers(self, integration_id: str) -> list[ProviderNumber]:
        integration = await self._get_integration(integration_id)
        adapter = self._adapter_for(integration)
        try:
            return await adapter.list_numbers()
        except CarrierClientError as e:
            raise map_carrier_error(self.display_name, e) from e

    async def connect_number(
        self,
        integration_id: str,
        provider_number_id: str,
        e164: str,
        agent_id: Optional[str] = None,
        agent_config: Optional[dict[str, Any]] = None,
    ) -> TelephonyBinding:
        """Route a carrier number into LiveKit and bind it to an agent."""
        integration = await self._get_integration(integration_id)
        adapter = self._adapter_for(integration)

        try:
            number = await adapter.get_number(provider_number_id)
        except CarrierClientError as e:
            raise map_carrier_error(self.display_name, e) from e

        requested = normalize_e164(e164)
        actual = normalize_e164(number.e164)
        if requested != actual:
            raise ServiceError(
                status.HTTP_422_UNPROCESSABLE_ENTITY,
                f"Requested e164 {requested} does not match provider number {actual}",
            )

        await self.provisioning.ensure_inbound_setup_for_did(actual)

        resources = integration.provider_resources or {}
        if not adapter.has_trunk(resources):
            resources = await self._ensure_trunk(adapter, integration.id)

        try:
            await adapter.attach_number(resources, provider_number_id)
        except CarrierClientError as e:
            raise map_carrier_error(self.display_name, e) from e

        binding = await self.binding_store.upsert(
            integration_id=integration.id,
            carrier=self.carrier.value,
            provider_number_id=provider_number_id,
            e164=actual,
            agent_id=agent_id,
            agent_config=agent_config,
        )
        logger.info(
            "carrier_number_connected",
            carrier=self.carrier.value,
            integration_id=integration.id,
            binding_id=binding.id,
            e164=mask_phone(actual),
        )
        return binding

    async def disconnect_number(self, binding_id: str) -> None:
        binding = await self.binding_store.get(binding_id)
        if binding is None:
            raise ServiceError(status.HTTP_404_NOT_FOUND, f"Binding {binding_id} not found")
        if binding.carrier != self.carrier.value:
            raise ServiceError(
                status.HTTP_400_BAD_REQUEST,
                f"Binding {binding_id} is not a {self.display_name} binding",
            )

        integration = await self._get_integration(binding.integration_id, allow_disabled=True)
        adapter = self._adapter_for(integration)
        await self._disconnect(binding, adapter, integration)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _disconnect(
        self,
        binding: TelephonyBinding,
        adapter: CarrierAdapter,
        integration: TelephonyIntegration,
    ) -> None:
        try:
            await adapter.detach_number(integration.provider_resources or {}, binding.provider_number_id)
        except CarrierClientError as e:
            raise map_carrier_error(self.display_name, e) from e

        await self.provisioning.remove_inbound_setup_for_did(binding.e164)

        if not await self.binding_store.delete(binding.id):
            raise ServiceError(status.HTTP_404_NOT_FOUND, f"Binding {binding.id} not found")

        logger.info(
            "carrier_number_disconnected",
            carrier=self.carrier.value,
            integration_id=integration.id,
            binding_id=binding.id,
            e164=mask_phone(binding.e164),
        )

    async def _ensure_trunk(self, adapter: CarrierAdapter, integration_id: str) -> dict[str, Any]:
        try:
            resources = await adapter.ensure_trunk(f"{TRUNK_NAME_PREFIX}{integration_id}", self.sip_host)
        except CarrierClientError as e:
            raise map_carrier_error(self.display_name, e) from e

        await self.integration_store.update_provider_resources(integration_id, resources)
        return resources

    async def _get_integration(
        self, integration_id: str, allow_disabled: bool = False
    ) -> TelephonyIntegration:
        integration = await self.integration_store.get(integration_id)
        if integration is None:
            raise ServiceError(status.HTTP_404_NOT_FOUND, f"Integration {integration_id} not found")
        if integration.carrier != self.carrier.value:
            raise ServiceError(
                status.HTTP_400_BAD_REQUEST,
                f"Integration {integration_id} is not a {self.display_name} integration",
            )
        if not allow_disabled and not integration.is_active:
            raise ServiceError(status.HTTP_403_FORBIDDEN, f"Integration {integration_id} is disabled")
        return integration

    def _adapter_for(self, integration: TelephonyIntegration) -> CarrierAdapter:
        return self.adapter_factory(self._decrypt_credentials(integration))

    def _decrypt_credentials(self, integration: TelephonyIntegration) -> dict[str, str]:
        try:
            plaintext = decrypt_string(integration.encrypted_credentials, self.encryption_key)
        except SecretBoxError as e:
            logger.warning(
                "carrier_credentials_decrypt_failed",
                carrier=self.carrier.value,
                integration_id=integration.id,
                fingerprint=integration.credential_fingerprint,
                error=str(e),
            )
            raise ServiceError(
                status.HTTP_409_CONFLICT,
                f"Unable to decrypt {self.display_name} credentials. The telephony secrets key "
                f"may have changed; please re-create the {self.display_name} integration.",
            ) from e

        try:
            credentials = self.adapter_cls.credentials_model.model_validate(json.loads(plaintext))
        except (ValueError, ValidationError) as e:
            raise ServiceError(
                status.HTTP_409_CONFLICT,
                f"Stored {self.display_name} credentials are invalid",
            ) from e
        return credentials.model_dump()
