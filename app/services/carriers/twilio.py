"""Twilio client and carrier adapter built on the official SDK.

Inbound calls reach LiveKit through an Elastic SIP trunk whose origination
URL is the LiveKit SIP host; numbers are routed by adding them to the trunk.
The SDK is synchronous, so every call runs in a worker thread.
"""

import asyncio
from typing import Any, Callable, Optional

from requests.exceptions import RequestException
from twilio.base.exceptions import TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from app.core.config import settings
from app.core.logging import get_logger
from app.models.telephony_integration import Carrier
from app.schemas.telephony import TwilioCredentials
from app.services.carriers.base import (
    CarrierAdapter,
    CarrierClientError,
    CarrierErrorCode,
    ProviderNumber,
    map_status_to_code,
    page_limit_error,
)
from app.utils.helpers import normalize_e164

logger = get_logger(__name__)

PAGE_SIZE = 50


class TwilioClient:
    """Async facade over the Twilio SDK with normalized errors."""

    def __init__(
        self,
        account_sid: str,
        api_key_sid: str,
        api_key_secret: str,
        timeout: Optional[float] = None,
        max_pages: Optional[int] = None,
        sdk_client: Optional[Client] = None,
    ) -> None:
        self.account_sid = account_sid
        self.max_pages = max_pages or settings.carrier_max_pages
        self.sdk = sdk_client or Client(
            api_key_sid,
            api_key_secret,
            account_sid,
            http_client=TwilioHttpClient(
                timeout=timeout or settings.carrier_request_timeout_seconds
            ),
        )

    async def _call(self, func: Callable[[], Any]) -> Any:
        try:
            return await asyncio.to_thread(func)
        except TwilioRestException as e:
            raise CarrierClientError(e.status, map_status_to_code(e.status), e.msg) from e
        except RequestException as e:
            raise CarrierClientError(
                0, CarrierErrorCode.PROVIDER_UNREACHABLE, "Unable to reach Twilio API"
            ) from e

    def _collect(self, first_page: Any, what: str) -> list[Any]:
        items: list[Any] = []
        page = first_page
        pages = 1
        while True:
            items.extend(page)
            page = page.next_page()
            if page is None:
                return items
            if pages >= self.max_pages:
                raise page_limit_error(what, len(items), self.max_pages)
            pages += 1

    async def verify_credentials(self) -> None:
        await self._call(lambda: self.sdk.api.v2010.accounts(self.account_sid).fetch())

    async def list_incoming_phone_numbers(self) -> list[Any]:
        return await self._call(
            lambda: self._collect(
                self.sdk.incoming_phone_numbers.page(page_size=PAGE_SIZE),
                "Incoming phone number",
            )
        )

    async def get_incoming_phone_number(self, sid: str) -> Any:
        return await self._call(lambda: self.sdk.incoming_phone_numbers(sid).fetch())

    async def list_trunks(self) -> list[Any]:
        return await self._call(
            lambda: self._collect(self.sdk.trunking.v1.trunks.page(page_size=PAGE_SIZE), "Trunk")
        )

    async def create_trunk(self, friendly_name: str, domain_name: str) -> Any:
        return await self._call(
            lambda: self.sdk.trunking.v1.trunks.create(
                friendly_name=friendly_name, domain_name=domain_name
            )
        )

    async def delete_trunk(self, trunk_sid: str) -> None:
        await self._call(lambda: self.sdk.trunking.v1.trunks(trunk_sid).delete())

    async def list_origination_urls(self, trunk_sid: str) -> list[Any]:
        return await self._call(
            lambda: self._collect(
                self.sdk.trunking.v1.trunks(trunk_sid).origination_urls.page(page_size=PAGE_SIZE),
                "Origination URL",
            )
        )

    async def create_origination_url(self, trunk_sid: str, sip_url: str) -> Any:
        return await self._call(
            lambda: self.sdk.trunking.v1.trunks(trunk_sid).origination_urls.create(
                weight=1,
                priority=1,
                enabled=True,
                friendly_name="LiveKit SIP Host",
                sip_url=sip_url,
            )
        )

    async def list_trunk_phone_numbers(self, trunk_sid: str) -> list[Any]:
        return await self._call(
            lambda: self._collect(
                self.sdk.trunking.v1.trunks(trunk_sid).phone_numbers.page(page_size=PAGE_SIZE),
                "Trunk phone number",
            )
        )

    async def add_trunk_phone_number(self, trunk_sid: str, phone_number_sid: str) -> None:
        await self._call(
            lambda: self.sdk.trunking.v1.trunks(trunk_sid).phone_numbers.create(
                phone_number_sid=phone_number_sid
            )
        )

    async def remove_trunk_phone_number(self, trunk_sid: str, phone_number_sid: str) -> None:
        await self._call(
            lambda: self.sdk.trunking.v1.trunks(trunk_sid).phone_numbers(phone_number_sid).delete()
        )


class TwilioAdapter(CarrierAdapter):
    carrier = Carrier.TWILIO
    display_name = "Twilio"
    credentials_model = TwilioCredentials

    def __init__(self, credentials: dict[str, str], client: Optional[TwilioClient] = None) -> None:
        self.credentials = credentials
        self.client = client or TwilioClient(
            credentials["account_sid"],
            credentials["api_key_sid"],
            credentials["api_key_secret"],
        )

    def fingerprint_source(self) -> str:
        return f"{self.credentials['account_sid']}:{self.credentials['api_key_sid']}"

    async def verify(self) -> None:
        await self.client.verify_credentials()

    @staticmethod
    def _number(record: Any) -> ProviderNumber:
        return ProviderNumber(
            provider_number_id=record.sid,
            e164=normalize_e164(record.phone_number),
            friendly_name=record.friendly_name,
            routed_to=record.trunk_sid,
        )

    async def list_numbers(self) -> list[ProviderNumber]:
        return [self._number(r) for r in await self.client.list_incoming_phone_numbers()]

    async def get_number(self, provider_number_id: str) -> ProviderNumber:
        return self._number(await self.client.get_incoming_phone_number(provider_number_id))

    def has_trunk(self, resources: dict[str, Any]) -> bool:
        return bool(resources.get("trunk_sid"))

    async def ensure_trunk(self, trunk_name: str, sip_host: str) -> dict[str, Any]:
        domain_name = f"{trunk_name}.pstn.twilio.com"

        trunks = await self.client.list_trunks()
        trunk = next((t for t in trunks if t.domain_name == domain_name), None)
        if trunk is None:
            trunk = await self.client.create_trunk(trunk_name, domain_name)
            logger.info("twilio_trunk_created", trunk_sid=trunk.sid, domain_name=domain_name)

        sip_url = f"sip:{sip_host}"
        urls = await self.client.list_origination_urls(trunk.sid)
        url = next((u for u in urls if u.sip_url == sip_url), None)
        if url is None:
            url = await self.client.create_origination_url(trunk.sid, sip_url)

        return {"trunk_sid": trunk.sid, "origination_url_sid": url.sid}

    async def attach_number(self, resources: dict[str, Any], provider_number_id: str) -> None:
        trunk_sid = resources["trunk_sid"]
        attached = await self.client.list_trunk_phone_numbers(trunk_sid)
        if any(n.sid == provider_number_id for n in attached):
            return
        await self.client.add_trunk_phone_number(trunk_sid, provider_number_id)

    async def detach_number(self, resources: dict[str, Any], provider_number_id: str) -> None:
        trunk_sid = resources.get("trunk_sid")
        if not trunk_sid:
            return
        try:
            await self.client.remove_trunk_phone_number(trunk_sid, provider_number_id)
        except CarrierClientError as e:
            if not e.is_not_found:
                raise

    async def delete_trunk(self, resources: dict[str, Any]) -> None:
        # Deleting the trunk also removes its origination URLs
        if not resources.get("trunk_sid"):
            return
        try:
            await self.client.delete_trunk(resources["trunk_sid"])
        except CarrierClientError as e:
            if not e.is_not_found:
                raise
