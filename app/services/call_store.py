"""Persistence for inbound call records."""

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import async_session_maker
from app.models.telephony_call import CallDirection, CallStatus, TelephonyCall


class CallStore:
    """TelephonyCall lifecycle: upsert on SIP join, mark dispatched, mark ended."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session_maker) -> None:
        self.session_factory = session_factory

    async def get(self, call_id: str) -> Optional[TelephonyCall]:
        async with self.session_factory() as session:
            return await session.get(TelephonyCall, call_id)

    async def get_by_room(self, room_name: str) -> Optional[TelephonyCall]:
        async with self.session_factory() as session:
            return await self._by_room(session, room_name)

    @staticmethod
    async def _by_room(session: AsyncSession, room_name: str) -> Optional[TelephonyCall]:
        result = await session.execute(
            select(TelephonyCall).where(TelephonyCall.room_name == room_name)
        )
        return result.scalars().first()

    async def upsert_sip_joined(
        self,
        room_name: str,
        sip_participant: dict[str, Any],
        from_number: Optional[str],
        to_number: Optional[str],
        last_event: dict[str, Any],
    ) -> tuple[TelephonyCall, bool]:
        """Record a SIP participant join. Returns (call, created).

        Caller/called numbers and the participant snapshot are only captured
        when the call is created; later joins refresh status and diagnostics.
        """
        async with self.session_factory() as session:
            call = await self._by_room(session, room_name)
            if call is None:
                call = TelephonyCall(
                    room_name=room_name,
                    direction=CallDirection.INBOUND.value,
                    from_number=from_number,
                    to_number=to_number,
                    status=CallStatus.SIP_PARTICIPANT_JOINED.value,
                    agent_dispatched=False,
                    sip_participant=sip_participant,
                    last_event=last_event,
                )
                session.add(call)
                try:
                    await session.commit()
                    return call, True
                except IntegrityError:
                    # Another worker created the room's call first
                    await session.rollback()
                    call = await self._by_room(session, room_name)
                    if call is None:
                        raise

            if call.status not in (CallStatus.AGENT_DISPATCHED.value, CallStatus.ENDED.value):
                call.status = CallStatus.SIP_PARTICIPANT_JOINED.value
            call.last_event = last_event
            await session.commit()
            return call, False

    async def mark_agent_dispatched(self, call_id: str) -> Optional[TelephonyCall]:
        async with self.session_factory() as session:
            call = await session.get(TelephonyCall, call_id)
            if call is None:
                return None
            call.agent_dispatched = True
            if call.status != CallStatus.ENDED.value:
                call.status = CallStatus.AGENT_DISPATCHED.value
            await session.commit()
            return call

    async def mark_ended(self, call_id: str, last_event: dict[str, Any]) -> Optional[TelephonyCall]:
        async with self.session_factory() as session:
            call = await session.get(TelephonyCall, call_id)
            if call is None:
                return None
            call.status = CallStatus.ENDED.value
            call.last_event = last_event
            await session.commit()
            return call
