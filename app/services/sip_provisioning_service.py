"""Keeps the LiveKit SIP inbound trunk and dispatch rule in sync with bound DIDs.

All bound DIDs live on one named inbound trunk; one named dispatch rule routes
that trunk into ``<room_prefix><random>`` rooms. Both operations are
find-or-create / find-or-remove, so re-running them converges.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import status

from app.core.config import settings
from app.core.errors import ServiceError
from app.core.logging import get_logger
from app.services.livekit_service import LiveKitSipClient, SipDispatchRule, SipTrunk
from app.utils.helpers import mask_phone, normalize_e164

logger = get_logger(__name__)


@dataclass
class EnsureResult:
    normalized_did: str
    inbound_trunk_id: str
    dispatch_rule_id: str


@dataclass
class RemoveResult:
    normalized_did: str
    inbound_trunk_id: Optional[str] = None
    trunk_deleted: bool = False
    dispatch_rule_updated: bool = False
    dispatch_rule_deleted: bool = False


class SipProvisioningService:
    """Ensures/removes DIDs on the LiveKit inbound trunk and dispatch rule."""

    def __init__(
        self,
        sip_client: LiveKitSipClient,
        trunk_name: Optional[str] = None,
        dispatch_rule_name: Optional[str] = None,
        room_prefix: Optional[str] = None,
    ) -> None:
        self.sip_client = sip_client
        self.trunk_name = trunk_name or settings.telephony_livekit_inbound_trunk_name
        self.dispatch_rule_name = dispatch_rule_name or settings.telephony_livekit_dispatch_rule_name
        self.room_prefix = room_prefix or settings.telephony_livekit_dispatch_room_prefix

    async def ensure_inbound_setup_for_did(self, e164: str) -> EnsureResult:
        """Make sure ``e164`` can ring into LiveKit."""
        did = normalize_e164(e164)
        try:
            trunk = await self._ensure_trunk_has_did(did)
            rule = await self._ensure_rule_has_trunk(trunk.id)
        except ServiceError:
            raise
        except Exception as e:
            raise self._failure(e) from e

        logger.info(
            "livekit_inbound_setup_ensured",
            did=mask_phone(did),
            trunk_id=trunk.id,
            dispatch_rule_id=rule.id,
        )
        return EnsureResult(normalized_did=did, inbound_trunk_id=trunk.id, dispatch_rule_id=rule.id)

    async def remove_inbound_setup_for_did(self, e164: str) -> RemoveResult:
        """Remove ``e164`` from LiveKit, tearing down the trunk and rule when unused."""
        did = normalize_e164(e164)
        try:
            return await self._remove(did)
        except ServiceError:
            raise
        except Exception as e:
            raise self._failure(e) from e

    async def _find_trunk(self) -> Optional[SipTrunk]:
        trunks = await self.sip_client.list_inbound_trunks()
        return next((t for t in trunks if t.name == self.trunk_name), None)

    async def _find_rule(self) -> Optional[SipDispatchRule]:
        rules = await self.sip_client.list_dispatch_rules()
        return next((r for r in rules if r.name == self.dispatch_rule_name), None)

    async def _ensure_trunk_has_did(self, did: str) -> SipTrunk:
        trunk = await self._find_trunk()
        if trunk is None:
            trunk = await self.sip_client.create_inbound_trunk(self.trunk_name, [did])
        elif did not in trunk.numbers:
            trunk = await self.sip_client.set_inbound_trunk_numbers(trunk.id, [*trunk.numbers, did])

        if not trunk.id:
            raise ServiceError(
                status.HTTP_502_BAD_GATEWAY,
                "LiveKit telephony provisioning failed: inbound trunk has no id",
            )
        return trunk

    async def _ensure_rule_has_trunk(self, trunk_id: str) -> SipDispatchRule:
        rule = await self._find_rule()
        if rule is None:
            rule = await self.sip_client.create_individual_dispatch_rule(
                self.dispatch_rule_name, self.room_prefix, [trunk_id]
            )
        elif trunk_id not in rule.trunk_ids:
            rule = await self.sip_client.set_dispatch_rule_trunks(rule.id, [*rule.trunk_ids, trunk_id])

        if not rule.id:
            raise ServiceError(
                status.HTTP_502_BAD_GATEWAY,
                "LiveKit telephony provisioning failed: dispatch rule has no id",
            )
        return rule

    async def _remove(self, did: str) -> RemoveResult:
        result = RemoveResult(normalized_did=did)

        trunk = await self._find_trunk()
        if trunk is None or did not in trunk.numbers:
            return result
        result.inbound_trunk_id = trunk.id

        remaining = [n for n in trunk.numbers if n != did]
        if remaining:
            await self.sip_client.set_inbound_trunk_numbers(trunk.id, remaining)
            logger.info("livekit_did_removed", did=mask_phone(did), trunk_id=trunk.id)
            return result

        # Last DID on the trunk
        await self.sip_client.delete_trunk(trunk.id)
        result.trunk_deleted = True

        rule = await self._find_rule()
        if rule is not None and trunk.id in rule.trunk_ids:
            other_trunks = [t for t in rule.trunk_ids if t != trunk.id]
            if other_trunks:
                await self.sip_client.set_dispatch_rule_trunks(rule.id, other_trunks)
                result.dispatch_rule_updated = True
            else:
                await self.sip_client.delete_dispatch_rule(rule.id)
                result.dispatch_rule_deleted = True

        logger.info(
            "livekit_inbound_setup_removed",
            did=mask_phone(did),
            trunk_id=trunk.id,
            trunk_deleted=result.trunk_deleted,
            dispatch_rule_updated=result.dispatch_rule_updated,
            dispatch_rule_deleted=result.dispatch_rule_deleted,
        )
        return result

    @staticmethod
    def _failure(e: Exception) -> ServiceError:
        logger.error("livekit_provisioning_failed", error=str(e))
        return ServiceError(
            status.HTTP_502_BAD_GATEWAY,
            f"LiveKit telephony provisioning failed: {e}",
        )
