"""Dependency injection for API endpoints - service wiring."""

from functools import lru_cache

from app.core.config import settings
from app.core.database import async_session_maker
from app.services.call_routing import BindingCallRouting
from app.services.call_store import CallStore
from app.services.dispatch_notifier import DispatchNotifier, LogDispatchNotifier, RedisDispatchNotifier
from app.services.event_ledger import EventLedger, InMemoryEventLedger, RedisEventLedger
from app.services.integration_store import BindingStore, IntegrationStore
from app.services.livekit_service import (
    LiveKitAgentDispatcher,
    LiveKitWebhookVerifier,
    get_livekit_sip_client,
)
from app.services.redis_service import RedisService
from app.services.sip_provisioning_service import SipProvisioningService
from app.services.telephony_session_service import TelephonySessionService


@lru_cache
def get_call_store() -> CallStore:
    return CallStore(async_session_maker)


@lru_cache
def get_integration_store() -> IntegrationStore:
    return IntegrationStore(async_session_maker)


@lru_cache
def get_binding_store() -> BindingStore:
    return BindingStore(async_session_maker)


@lru_cache
def get_event_ledger() -> EventLedger:
    """Redis when enabled, otherwise a bounded in-process map."""
    if settings.redis_enabled:
        return RedisEventLedger(RedisService(), ttl_seconds=settings.telephony_idempotency_ttl_seconds)
    return InMemoryEventLedger(
        ttl_seconds=settings.telephony_idempotency_ttl_seconds,
        max_entries=settings.telephony_idempotency_max_entries,
    )


@lru_cache
def get_dispatch_notifier() -> DispatchNotifier:
    if settings.redis_enabled:
        return RedisDispatchNotifier(RedisService())
    return LogDispatchNotifier()


@lru_cache
def get_webhook_verifier() -> LiveKitWebhookVerifier:
    return LiveKitWebhookVerifier()


@lru_cache
def get_session_service() -> TelephonySessionService:
    """Process-wide session service; it owns the per-room locks."""
    return TelephonySessionService(
        ledger=get_event_ledger(),
        call_store=get_call_store(),
        routing=BindingCallRouting(get_binding_store()),
        dispatcher=LiveKitAgentDispatcher(),
        notifier=get_dispatch_notifier(),
    )


@lru_cache
def get_sip_provisioning() -> SipProvisioningService:
    return SipProvisioningService(get_livekit_sip_client())

