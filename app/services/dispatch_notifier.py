"""One-way notifications emitted after an agent is dispatched to a call."""

import json
from typing import Any, Optional, Protocol

from tenacity import retry, stop_after_attempt, wait_exponential

from app.core.config import settings
from app.core.logging import get_logger
from app.services.redis_service import RedisService

logger = get_logger(__name__)


class DispatchNotifier(Protocol):
    async def notify(self, payload: dict[str, Any]) -> None:
        ...


class LogDispatchNotifier:
    """Records dispatches in the log only."""

    async def notify(self, payload: dict[str, Any]) -> None:
        logger.info("agent_dispatch_notification", **payload)


class RedisDispatchNotifier:
    """Publishes dispatches on a Redis channel for session-metadata consumers."""

    def __init__(self, redis_service: RedisService, channel: Optional[str] = None) -> None:
        self.redis = redis_service
        self.channel = channel or settings.telephony_dispatch_channel

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def notify(self, payload: dict[str, Any]) -> None:
        await self.redis.publish(self.channel, json.dumps(payload, default=str))
        logger.info("agent_dispatch_notification_published", channel=self.channel, call_id=payload.get("call_id"))
