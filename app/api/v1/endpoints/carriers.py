"""Carrier onboarding endpoints.

Every carrier exposes the same routes under /telephony/<carrier>; only the
credential schema differs.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from app.api.deps import get_binding_store, get_integration_store, get_sip_provisioning
from app.core.errors import ServiceError
from app.models.telephony_integration import Carrier
from app.schemas.telephony import (
    BindingListResponse,
    BindingResponse,
    CarrierNumber,
    ConnectNumberRequest,
    CreateIntegrationResponse,
    DeleteIntegrationResponse,
    IntegrationListResponse,
    IntegrationResponse,
    NumbersResponse,
    OkResponse,
    PlivoCreateIntegrationRequest,
    PlivoCredentials,
    TelnyxCreateIntegrationRequest,
    TelnyxCredentials,
    TwilioCreateIntegrationRequest,
    TwilioCredentials,
    VerifyResponse,
)
from app.services.integration_store import BindingStore, IntegrationStore
from app.services.onboarding_service import OnboardingService
from app.services.sip_provisioning_service import SipProvisioningService


def _require_integration_id(integration_id: Optional[str]) -> str:
    if not integration_id:
        raise ServiceError(status.HTTP_400_BAD_REQUEST, "integrationId query param is required")
    return integration_id


def create_carrier_router(
    carrier: Carrier,
    credentials_model: type[BaseModel],
    create_model: type[BaseModel],
) -> APIRouter:
    """Build the onboarding routes for one carrier."""
    router = APIRouter()

    def get_service(
        integration_store: IntegrationStore = Depends(get_integration_store),
        binding_store: BindingStore = Depends(get_binding_store),
        provisioning: SipProvisioningService = Depends(get_sip_provisioning),
    ) -> OnboardingService:
        return OnboardingService(
            carrier=carrier,
            integration_store=integration_store,
            binding_store=binding_store,
            provisioning=provisioning,
        )

    @router.get("/integrations", response_model=IntegrationListResponse)
    async def list_integrations(
        service: OnboardingService = Depends(get_service),
    ) -> IntegrationListResponse:
        integrations = await service.list_integrations()
        return IntegrationListResponse(
            integrations=[IntegrationResponse.model_validate(i) for i in integrations]
        )

    @router.post("/credentials/verify", response_model=VerifyResponse)
    async def verify_credentials(
        body: credentials_model,
        service: OnboardingService = Depends(get_service),
    ) -> VerifyResponse:
        """Check credentials against the carrier without storing them."""
        await service.verify_credentials(body.model_dump())
        return VerifyResponse(valid=True)

    @router.post(
        "/credentials",
        response_model=CreateIntegrationResponse,
        status_code=status.HTTP_201_CREATED,
    )
    async def create_integration(
        body: create_model,
        service: OnboardingService = Depends(get_service),
    ) -> CreateIntegrationResponse:
        """Verify and store credentials, then set up the carrier trunk."""
        credentials = body.model_dump(exclude={"name"})
        integration = await service.create_integration(credentials, name=body.name)
        return CreateIntegrationResponse(
            integration_id=integration.id,
            carrier=integration.carrier,
            status=integration.status,
        )

    @router.delete("/credentials/{integration_id}", response_model=DeleteIntegrationResponse)
    async def delete_integration(
        integration_id: str,
        service: OnboardingService = Depends(get_service),
    ) -> DeleteIntegrationResponse:
        """Disconnect all numbers, remove the carrier trunk, delete the integration."""
        deleted = await service.delete_integration(integration_id)
        return DeleteIntegrationResponse(ok=True, deleted_bindings=deleted)

    @router.post("/credentials/{integration_id}/disable", response_model=IntegrationResponse)
    async def disable_integration(
        integration_id: str,
        service: OnboardingService = Depends(get_service),
    ) -> IntegrationResponse:
        integration = await service.disable_integration(integration_id)
        return IntegrationResponse.model_validate(integration)

    @router.get("/numbers", response_model=NumbersResponse)
    async def list_numbers(
        integration_id: Optional[str] = Query(None, alias="integrationId"),
        service: OnboardingService = Depends(get_service),
    ) -> NumbersResponse:
        numbers = await service.list_numbers(_require_integration_id(integration_id))
        return NumbersResponse(
            numbers=[
                CarrierNumber(
                    provider_number_id=n.provider_number_id,
                    e164=n.e164,
                    friendly_name=n.friendly_name,
                    routed_to=n.routed_to,
                )
                for n in numbers
            ]
        )

    @router.post("/numbers/{provider_number_id}/connect", response_model=BindingResponse)
    async def connect_number(
        provider_number_id: str,
        body: ConnectNumberRequest,
        integration_id: Optional[str] = Query(None, alias="integrationId"),
        service: OnboardingService = Depends(get_service),
    ) -> BindingResponse:
        """Route a carrier number into LiveKit and bind it to an agent."""
        binding = await service.connect_number(
            integration_id=_require_integration_id(integration_id),
            provider_number_id=provider_number_id,
            e164=body.e164,
            agent_id=body.agent_id,
            agent_config=body.agent_config,
        )
        return BindingResponse.model_validate(binding)

    @router.delete("/bindings/{binding_id}", response_model=OkResponse)
    async def disconnect_number(
        binding_id: str,
        service: OnboardingService = Depends(get_service),
    ) -> OkResponse:
        await service.disconnect_number(binding_id)
        return OkResponse()

    return router


twilio_router = create_carrier_router(Carrier.TWILIO, TwilioCredentials, TwilioCreateIntegrationRequest)
telnyx_router = create_carrier_router(Carrier.TELNYX, TelnyxCredentials, TelnyxCreateIntegrationRequest)
plivo_router = create_carrier_router(Carrier.PLIVO, PlivoCredentials, PlivoCreateIntegrationRequest)

bindings_router = APIRouter()


@bindings_router.get("/bindings", response_model=BindingListResponse)
async def list_bindings(
    carrier: Optional[Carrier] = None,
    binding_store: BindingStore = Depends(get_binding_store),
) -> BindingListResponse:
    """List number bindings across carriers."""
    bindings = await binding_store.list_all(carrier=carrier.value if carrier else None)
    return BindingListResponse(bindings=[BindingResponse.model_validate(b) for b in bindings])
