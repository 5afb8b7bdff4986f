"""Persistence for carrier integrations and DID bindings."""

from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import async_session_maker
from app.models.telephony_binding import TelephonyBinding
from app.models.telephony_integration import IntegrationStatus, TelephonyIntegration


class IntegrationStore:
    """CRUD for TelephonyIntegration rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session_maker) -> None:
        self.session_factory = session_factory

    async def create(
        self,
        carrier: str,
        encrypted_credentials: str,
        credential_fingerprint: str,
        name: Optional[str] = None,
    ) -> TelephonyIntegration:
        integration = TelephonyIntegration(
            carrier=carrier,
            name=name,
            encrypted_credentials=encrypted_credentials,
            credential_fingerprint=credential_fingerprint,
            status=IntegrationStatus.ACTIVE.value,
            provider_resources={},
        )
        async with self.session_factory() as session:
            session.add(integration)
            await session.commit()
        return integration

    async def get(self, integration_id: str) -> Optional[TelephonyIntegration]:
        async with self.session_factory() as session:
            return await session.get(TelephonyIntegration, integration_id)

    async def list_by_carrier(self, carrier: str) -> list[TelephonyIntegration]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(TelephonyIntegration)
                .where(TelephonyIntegration.carrier == carrier)
                .order_by(TelephonyIntegration.created_at.desc())
            )
            return list(result.scalars().all())

    async def update_provider_resources(
        self, integration_id: str, resources: dict[str, Any]
    ) -> Optional[TelephonyIntegration]:
        """Merge ``resources`` into the integration's provider_resources."""
        async with self.session_factory() as session:
            integration = await session.get(TelephonyIntegration, integration_id)
            if integration is None:
                return None
            # Reassign so the JSON column is flagged dirty
            integration.provider_resources = {**(integration.provider_resources or {}), **resources}
            await session.commit()
            return integration

    async def set_status(self, integration_id: str, status: IntegrationStatus) -> Optional[TelephonyIntegration]:
        async with self.session_factory() as session:
            integration = await session.get(TelephonyIntegration, integration_id)
            if integration is None:
                return None
            integration.status = status.value
            await session.commit()
            return integration

    async def delete(self, integration_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(TelephonyIntegration).where(TelephonyIntegration.id == integration_id)
            )
            await session.commit()
            return result.rowcount > 0


class BindingStore:
    """CRUD for TelephonyBinding rows. A DID has at most one binding."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session_maker) -> None:
        self.session_factory = session_factory

    async def upsert(
        self,
        integration_id: str,
        carrier: str,
        provider_number_id: str,
        e164: str,
        agent_id: Optional[str] = None,
        agent_config: Optional[dict[str, Any]] = None,
    ) -> TelephonyBinding:
        """Create or rebind the binding for ``e164``."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(TelephonyBinding).where(TelephonyBinding.e164 == e164)
            )
            binding = result.scalars().first()
            if binding is None:
                binding = TelephonyBinding(e164=e164)
                session.add(binding)

            binding.integration_id = integration_id
            binding.carrier = carrier
            binding.provider_number_id = provider_number_id
            binding.agent_id = agent_id
            binding.agent_config = agent_config
            binding.enabled = True

            await session.commit()
            return binding

    async def get(self, binding_id: str) -> Optional[TelephonyBinding]:
        async with self.session_factory() as session:
            return await session.get(TelephonyBinding, binding_id)

    async def get_enabled_by_e164(self, e164: str) -> Optional[TelephonyBinding]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(TelephonyBinding).where(
                    TelephonyBinding.e164 == e164,
                    TelephonyBinding.enabled.is_(True),
                )
            )
            return result.scalars().first()

    async def list_all(self, carrier: Optional[str] = None) -> list[TelephonyBinding]:
        query = select(TelephonyBinding).order_by(TelephonyBinding.created_at.desc())
        if carrier:
            query = query.where(TelephonyBinding.carrier == carrier)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_by_integration(self, integration_id: str) -> list[TelephonyBinding]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(TelephonyBinding).where(TelephonyBinding.integration_id == integration_id)
            )
            return list(result.scalars().all())

    async def delete(self, binding_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(TelephonyBinding).where(TelephonyBinding.id == binding_id)
            )
            await session.commit()
            return result.rowcount > 0
