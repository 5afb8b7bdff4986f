import asyncio
import base64
import os
from typing import Any, Optional

import pytest

# Must be set before importing modules that read settings or create the engine.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["APP_ENV"] = "test"
os.environ["TELEPHONY_ENABLED"] = "true"
os.environ["TELEPHONY_SECRETS_KEY"] = base64.b64encode(b"k" * 32).decode("ascii")
os.environ["API_KEYS"] = "test-key"
os.environ["LIVEKIT_URL"] = "wss://demo-project.livekit.cloud"
os.environ["LIVEKIT_API_KEY"] = "APIdemo"
os.environ["LIVEKIT_API_SECRET"] = "demo-secret-demo-secret-demo-secret"
os.environ["REDIS_ENABLED"] = "false"

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from app.core.database import Base  # noqa: E402
import app.models  # noqa: E402,F401
from app.services.call_store import CallStore  # noqa: E402
from app.services.integration_store import BindingStore, IntegrationStore  # noqa: E402
from app.services.livekit_service import SipDispatchRule, SipTrunk  # noqa: E402

TEST_KEY = b"k" * 32
API_HEADERS = {"x-api-key": "test-key"}


@pytest.fixture()
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{(tmp_path / 'telephony.db').as_posix()}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture()
def call_store(session_factory) -> CallStore:
    return CallStore(session_factory)


@pytest.fixture()
def integration_store(session_factory) -> IntegrationStore:
    return IntegrationStore(session_factory)


@pytest.fixture()
def binding_store(session_factory) -> BindingStore:
    return BindingStore(session_factory)


class FakeSipClient:
    """In-memory stand-in for the LiveKit SIP API."""

    def __init__(self) -> None:
        self.trunks: dict[str, SipTrunk] = {}
        self.rules: dict[str, SipDispatchRule] = {}
        self.calls: list[str] = []
        self._next_id = 0
        self.fail_with: Optional[Exception] = None

    def _id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}_{self._next_id}"

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with

    async def list_inbound_trunks(self) -> list[SipTrunk]:
        self._record("list_inbound_trunks")
        return [SipTrunk(t.id, t.name, list(t.numbers)) for t in self.trunks.values()]

    async def create_inbound_trunk(self, name: str, numbers: list[str]) -> SipTrunk:
        self._record("create_inbound_trunk")
        trunk = SipTrunk(self._id("ST"), name, list(numbers))
        self.trunks[trunk.id] = trunk
        return SipTrunk(trunk.id, trunk.name, list(trunk.numbers))

    async def set_inbound_trunk_numbers(self, trunk_id: str, numbers: list[str]) -> SipTrunk:
        self._record("set_inbound_trunk_numbers")
        self.trunks[trunk_id].numbers = list(numbers)
        trunk = self.trunks[trunk_id]
        return SipTrunk(trunk.id, trunk.name, list(trunk.numbers))

    async def delete_trunk(self, trunk_id: str) -> None:
        self._record("delete_trunk")
        del self.trunks[trunk_id]

    async def list_dispatch_rules(self) -> list[SipDispatchRule]:
        self._record("list_dispatch_rules")
        return [SipDispatchRule(r.id, r.name, list(r.trunk_ids)) for r in self.rules.values()]

    async def create_individual_dispatch_rule(
        self, name: str, room_prefix: str, trunk_ids: list[str]
    ) -> SipDispatchRule:
        self._record("create_individual_dispatch_rule")
        rule = SipDispatchRule(self._id("SDR"), name, list(trunk_ids))
        self.rules[rule.id] = rule
        return SipDispatchRule(rule.id, rule.name, list(rule.trunk_ids))

    async def set_dispatch_rule_trunks(self, rule_id: str, trunk_ids: list[str]) -> SipDispatchRule:
        self._record("set_dispatch_rule_trunks")
        self.rules[rule_id].trunk_ids = list(trunk_ids)
        rule = self.rules[rule_id]
        return SipDispatchRule(rule.id, rule.name, list(rule.trunk_ids))

    async def delete_dispatch_rule(self, rule_id: str) -> None:
        self._record("delete_dispatch_rule")
        del self.rules[rule_id]


@pytest.fixture()
def sip_client() -> FakeSipClient:
    return FakeSipClient()


class FakeDispatcher:
    """Records agent dispatches; can be slowed down or made to fail."""

    def __init__(self, delay: float = 0.0, fail: bool = False) -> None:
        self.delay = delay
        self.fail = fail
        self.dispatches: list[tuple[str, dict[str, Any]]] = []

    async def dispatch_agent(self, room_name: str, agent_config: dict[str, Any]) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("livekit unavailable")
        self.dispatches.append((room_name, agent_config))
        return f"AD_{len(self.dispatches)}"


class RecordingNotifier:
    def __init__(self) -> None:
        self.payloads: list[dict[str, Any]] = []

    async def notify(self, payload: dict[str, Any]) -> None:
        self.payloads.append(payload)


@pytest.fixture()
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
