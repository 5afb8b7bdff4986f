"""LiveKit server API integration: SIP control plane, agent dispatch, webhooks."""

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from google.protobuf.json_format import MessageToDict
from livekit import api

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SipTrunk:
    """LiveKit SIP inbound trunk."""

    id: str
    name: str
    numbers: list[str] = field(default_factory=list)


@dataclass
class SipDispatchRule:
    """LiveKit SIP dispatch rule."""

    id: str
    name: str
    trunk_ids: list[str] = field(default_factory=list)


class WebhookVerificationError(Exception):
    """Raised when a webhook has a bad signature or an unreadable payload."""


class LiveKitSipClient:
    """Thin wrapper around the LiveKit SIP service.

    Opens a LiveKitAPI session per call and converts protobuf responses
    into plain dataclasses.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
    ) -> None:
        self.url = url or settings.livekit_http_url
        self.api_key = api_key or settings.livekit_api_key
        self.api_secret = api_secret or settings.livekit_api_secret

    def _api(self) -> api.LiveKitAPI:
        return api.LiveKitAPI(self.url, self.api_key, self.api_secret)

    @staticmethod
    def _trunk(info: Any) -> SipTrunk:
        return SipTrunk(id=info.sip_trunk_id, name=info.name, numbers=list(info.numbers))

    @staticmethod
    def _rule(info: Any) -> SipDispatchRule:
        return SipDispatchRule(
            id=info.sip_dispatch_rule_id, name=info.name, trunk_ids=list(info.trunk_ids)
        )

    async def list_inbound_trunks(self) -> list[SipTrunk]:
        async with self._api() as lkapi:
            response = await lkapi.sip.list_sip_inbound_trunk(api.ListSIPInboundTrunkRequest())
        return [self._trunk(item) for item in response.items]

    async def create_inbound_trunk(self, name: str, numbers: list[str]) -> SipTrunk:
        async with self._api() as lkapi:
            info = await lkapi.sip.create_sip_inbound_trunk(
                api.CreateSIPInboundTrunkRequest(
                    trunk=api.SIPInboundTrunkInfo(name=name, numbers=numbers)
                )
            )
        logger.info("livekit_sip_trunk_created", trunk_id=info.sip_trunk_id, name=name)
        return self._trunk(info)

    async def set_inbound_trunk_numbers(self, trunk_id: str, numbers: list[str]) -> SipTrunk:
        async with self._api() as lkapi:
            info = await lkapi.sip.update_inbound_trunk_fields(trunk_id, numbers=numbers)
        return self._trunk(info)

    async def delete_trunk(self, trunk_id: str) -> None:
        async with self._api() as lkapi:
            await lkapi.sip.delete_sip_trunk(api.DeleteSIPTrunkRequest(sip_trunk_id=trunk_id))
        logger.info("livekit_sip_trunk_deleted", trunk_id=trunk_id)

    async def list_dispatch_rules(self) -> list[SipDispatchRule]:
        async with self._api() as lkapi:
            response = await lkapi.sip.list_sip_dispatch_rule(api.ListSIPDispatchRuleRequest())
        return [self._rule(item) for item in response.items]

    async def create_individual_dispatch_rule(
        self,
        name: str,
        room_prefix: str,
        trunk_ids: list[str],
    ) -> SipDispatchRule:
        """Create a rule that puts every caller in a fresh ``<prefix><random>`` room."""
        async with self._api() as lkapi:
            info = await lkapi.sip.create_sip_dispatch_rule(
                api.CreateSIPDispatchRuleRequest(
                    name=name,
                    trunk_ids=trunk_ids,
                    rule=api.SIPDispatchRule(
                        dispatch_rule_individual=api.SIPDispatchRuleIndividual(
                            room_prefix=room_prefix,
                        )
                    ),
                )
            )
        logger.info("livekit_dispatch_rule_created", rule_id=info.sip_dispatch_rule_id, name=name)
        return self._rule(info)

    async def set_dispatch_rule_trunks(self, rule_id: str, trunk_ids: list[str]) -> SipDispatchRule:
        async with self._api() as lkapi:
            info = await lkapi.sip.update_dispatch_rule_fields(rule_id, trunk_ids=trunk_ids)
        return self._rule(info)

    async def delete_dispatch_rule(self, rule_id: str) -> None:
        async with self._api() as lkapi:
            await lkapi.sip.delete_sip_dispatch_rule(
                api.DeleteSIPDispatchRuleRequest(sip_dispatch_rule_id=rule_id)
            )
        logger.info("livekit_dispatch_rule_deleted", rule_id=rule_id)


class LiveKitAgentDispatcher:
    """Explicitly dispatches the telephony agent worker into a room."""

    def __init__(self, agent_name: Optional[str] = None) -> None:
        self.agent_name = agent_name or settings.telephony_agent_name
        self.url = settings.livekit_http_url
        self.api_key = settings.livekit_api_key
        self.api_secret = settings.livekit_api_secret

    async def dispatch_agent(self, room_name: str, agent_config: dict[str, Any]) -> str:
        """Create an agent dispatch carrying the agent config as metadata."""
        async with api.LiveKitAPI(self.url, self.api_key, self.api_secret) as lkapi:
            dispatch = await lkapi.agent_dispatch.create_dispatch(
                api.CreateAgentDispatchRequest(
                    agent_name=self.agent_name,
                    room=room_name,
                    metadata=json.dumps(agent_config),
                )
            )

        logger.info(
            "agent_dispatched",
            room_name=room_name,
            agent_name=self.agent_name,
            dispatch_id=dispatch.id,
        )
        return dispatch.id


class LiveKitWebhookVerifier:
    """Validates LiveKit webhook signatures and decodes the event."""

    def __init__(self, api_key: Optional[str] = None, api_secret: Optional[str] = None) -> None:
        self._receiver = api.WebhookReceiver(
            api.TokenVerifier(
                api_key or settings.webhook_api_key,
                api_secret or settings.webhook_api_secret,
            )
        )

    def verify_and_decode(self, raw_body: bytes, authorization: Optional[str]) -> dict[str, Any]:
        """Return the webhook payload as a dict, or raise WebhookVerificationError."""
        if not authorization:
            raise WebhookVerificationError("Missing Authorization header")

        token = authorization.removeprefix("Bearer ").strip()
        try:
            event = self._receiver.receive(raw_body.decode("utf-8"), token)
        except Exception as e:
            # The receiver raises jwt, protobuf and plain ValueErrors alike
            raise WebhookVerificationError(str(e) or e.__class__.__name__) from e

        return MessageToDict(event)


def get_livekit_sip_client() -> LiveKitSipClient:
    """Get LiveKit SIP client instance."""
    return LiveKitSipClient()
