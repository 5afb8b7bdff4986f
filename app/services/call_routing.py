"""Decides which agent config answers an inbound call."""

import copy
from dataclasses import dataclass, field
from typing import Any, Optional

from app.schemas.events import SipParticipant
from app.services.integration_store import BindingStore
from app.utils.helpers import normalize_e164

# Defaults tuned for PSTN audio
DEFAULT_AGENT_CONFIG: dict[str, Any] = {
    "noise_cancellation": {"enabled": True, "type": "telephony"},
    "prompt": (
        "You are a helpful voice AI assistant on a phone call. Be concise, speak in "
        "short sentences, and confirm important details. If you didn't hear something "
        "clearly, ask the caller to repeat."
    ),
    "conversation_start": {"who": "ai", "greeting": "Hi, how can I help you today?"},
}


@dataclass
class RoutingContext:
    room_name: str
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    participant: Optional[SipParticipant] = None
    extra: dict[str, Any] = field(default_factory=dict)


class DefaultCallRouting:
    """Routes every call to the default PSTN agent config."""

    async def resolve_routing(self, ctx: RoutingContext) -> dict[str, Any]:
        return copy.deepcopy(DEFAULT_AGENT_CONFIG)


class BindingCallRouting:
    """Routes by the called DID's binding, falling back to the default config."""

    def __init__(self, binding_store: BindingStore, fallback: Optional[DefaultCallRouting] = None) -> None:
        self.binding_store = binding_store
        self.fallback = fallback or DefaultCallRouting()

    async def resolve_routing(self, ctx: RoutingContext) -> dict[str, Any]:
        if not ctx.to_number:
            return await self.fallback.resolve_routing(ctx)

        binding = await self.binding_store.get_enabled_by_e164(normalize_e164(ctx.to_number))
        if binding is None:
            return await self.fallback.resolve_routing(ctx)

        if binding.agent_config:
            config = copy.deepcopy(binding.agent_config)
        else:
            config = await self.fallback.resolve_routing(ctx)
        if binding.agent_id:
            config["agent_id"] = binding.agent_id
        config["binding_id"] = binding.id
        return config
