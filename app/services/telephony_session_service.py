"""Call admission: turns LiveKit webhook events into call records and agent dispatches.

Webhooks arrive at least once and possibly out of order. Every event passes the
idempotency ledger first; dispatch for a room happens under that room's lock
so concurrent joins cannot dispatch twice.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Protocol

from app.core.config import settings
from app.core.logging import get_logger
from app.models.telephony_call import TelephonyCall
from app.schemas.events import CanonicalEvent, HandleResult, SipParticipant
from app.services.background_tasks import fire_and_forget
from app.services.call_routing import RoutingContext
from app.services.call_store import CallStore
from app.services.dispatch_notifier import DispatchNotifier
from app.services.event_ledger import EventLedger
from app.utils.helpers import extract_sip_from_to, mask_phone

logger = get_logger(__name__)

PARTICIPANT_JOINED = "participant_joined"
PARTICIPANT_LEFT = "participant_left"


class CallRouter(Protocol):
    async def resolve_routing(self, ctx: RoutingContext) -> dict[str, Any]:
        ...


class AgentDispatcher(Protocol):
    async def dispatch_agent(self, room_name: str, agent_config: dict[str, Any]) -> Any:
        ...


class TelephonySessionService:
    """Applies canonical LiveKit events to the call state machine."""

    def __init__(
        self,
        ledger: EventLedger,
        call_store: CallStore,
        routing: CallRouter,
        dispatcher: AgentDispatcher,
        notifier: Optional[DispatchNotifier] = None,
        sip_identity_prefix: Optional[str] = None,
        dispatch_on_any_join: Optional[bool] = None,
    ) -> None:
        self.ledger = ledger
        self.call_store = call_store
        self.routing = routing
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.sip_identity_prefix = (
            settings.telephony_sip_identity_prefix
            if sip_identity_prefix is None
            else sip_identity_prefix
        )
        self.dispatch_on_any_join = (
            settings.telephony_dispatch_on_any_participant_join
            if dispatch_on_any_join is None
            else dispatch_on_any_join
        )
        # room_name -> (lock, holders + waiters)
        self._room_locks: dict[str, tuple[asyncio.Lock, int]] = {}

    def is_sip_participant(self, participant: Optional[SipParticipant]) -> bool:
        """Classify a participant as the PSTN caller's SIP leg."""
        if self.dispatch_on_any_join:
            return True
        if participant is None:
            return False
        if participant.kind and "sip" in participant.kind.lower():
            return True
        if (
            self.sip_identity_prefix
            and participant.identity
            and participant.identity.startswith(self.sip_identity_prefix)
        ):
            return True
        return any(key.startswith("sip.") for key in participant.attributes)

    async def handle(self, event: CanonicalEvent) -> HandleResult:
        """Apply one webhook event. Never raises for dispatch failures."""
        first_seen = await self.ledger.record_event_seen(event.event_id)
        if not first_seen:
            return HandleResult(first_seen=False, ignored_reason="duplicate")

        if not event.room_name:
            return HandleResult(first_seen=True, ignored_reason="missing_room")

        if event.event == PARTICIPANT_JOINED:
            return await self._on_participant_joined(event)
        if event.event == PARTICIPANT_LEFT:
            return await self._on_participant_left(event)
        return HandleResult(first_seen=True, ignored_reason="unsupported_event")

    @staticmethod
    def _diagnostics(event: CanonicalEvent) -> dict[str, Any]:
        return {
            "event_id": event.event_id,
            "event_id_derived": event.event_id_derived,
            "event": event.event,
            "created_at": event.created_at,
        }

    @asynccontextmanager
    async def _locked_room(self, room_name: str) -> AsyncIterator[None]:
        """Serialize work per room; the lock is dropped once nobody holds or awaits it."""
        lock, users = self._room_locks.get(room_name, (asyncio.Lock(), 0))
        self._room_locks[room_name] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._room_locks[room_name]
            if users <= 1:
                del self._room_locks[room_name]
            else:
                self._room_locks[room_name] = (lock, users - 1)

    async def _on_participant_joined(self, event: CanonicalEvent) -> HandleResult:
        participant = event.participant
        if not self.is_sip_participant(participant):
            return HandleResult(first_seen=True, ignored_reason="non_sip_participant")

        participant = participant or SipParticipant()
        room_name = event.room_name
        from_number, to_number = extract_sip_from_to(participant.attributes)

        async with self._locked_room(room_name):
            call, created = await self.call_store.upsert_sip_joined(
                room_name=room_name,
                sip_participant=participant.model_dump(),
                from_number=from_number,
                to_number=to_number,
                last_event=self._diagnostics(event),
            )
            if created:
                logger.info(
                    "telephony_call_created",
                    call_id=call.id,
                    room_name=room_name,
                    from_number=mask_phone(from_number),
                    to_number=mask_phone(to_number),
                )

            if call.agent_dispatched:
                return HandleResult(first_seen=True, call_id=call.id)

            succeeded = await self._dispatch(call, participant)

        return HandleResult(
            first_seen=True,
            dispatch_attempted=True,
            dispatch_succeeded=succeeded,
            call_id=call.id,
        )

    async def _dispatch(self, call: TelephonyCall, participant: SipParticipant) -> bool:
        try:
            agent_config = await self.routing.resolve_routing(
                RoutingContext(
                    room_name=call.room_name,
                    from_number=call.from_number,
                    to_number=call.to_number,
                    participant=participant,
                )
            )
            session_id = agent_config.get("session_id") or str(uuid.uuid4())
            agent_config = {**agent_config, "session_id": session_id}

            await self.dispatcher.dispatch_agent(call.room_name, agent_config)
            await self.call_store.mark_agent_dispatched(call.id)
        except Exception as e:
            logger.error(
                "agent_dispatch_failed",
                call_id=call.id,
                room_name=call.room_name,
                error=str(e),
            )
            return False

        logger.info(
            "telephony_agent_dispatched",
            call_id=call.id,
            room_name=call.room_name,
            session_id=session_id,
        )

        if self.notifier is not None:
            fire_and_forget(
                "agent_dispatch_notification",
                self.notifier.notify,
                {
                    "call_id": call.id,
                    "room_name": call.room_name,
                    "session_id": session_id,
                    "agent_id": agent_config.get("agent_id"),
                    "from_number": call.from_number,
                    "to_number": call.to_number,
                },
            )
        return True

    async def _on_participant_left(self, event: CanonicalEvent) -> HandleResult:
        if not self.is_sip_participant(event.participant):
            return HandleResult(first_seen=True, ignored_reason="non_sip_participant")

        call = await self.call_store.get_by_room(event.room_name)
        if call is None:
            return HandleResult(first_seen=True)

        recorded_id = (call.sip_participant or {}).get("participant_id")
        leaving_id = event.participant.participant_id if event.participant else None
        if recorded_id and recorded_id != leaving_id:
            return HandleResult(first_seen=True, call_id=call.id)

        await self.call_store.mark_ended(call.id, self._diagnostics(event))
        logger.info("telephony_call_ended", call_id=call.id, room_name=call.room_name)
        return HandleResult(first_seen=True, call_id=call.id)
