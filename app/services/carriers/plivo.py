"""Plivo REST client and carrier adapter.

Inbound calls reach LiveKit through a Zentrunk inbound trunk whose primary
origination URI is the LiveKit SIP host; numbers are routed by setting their
``app_id`` to the trunk id.
"""

from typing import Any, Optional

import httpx

from app.core.config import settings
from app.core.logging import get_logger
from app.models.telephony_integration import Carrier
from app.schemas.telephony import PlivoCredentials
from app.services.carriers.base import (
    CarrierAdapter,
    CarrierClientError,
    CarrierErrorCode,
    ProviderNumber,
    map_status_to_code,
    page_limit_error,
)
from app.utils.helpers import normalize_e164, sip_host_of

logger = get_logger(__name__)

BASE_URL = "https://api.plivo.com"
PAGE_LIMIT = 20


def _non_empty(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class PlivoClient:
    """Minimal Plivo API client covering numbers and Zentrunk inbound trunks."""

    def __init__(
        self,
        auth_id: str,
        auth_token: str,
        timeout: Optional[float] = None,
        max_pages: Optional[int] = None,
    ) -> None:
        self.auth_id = auth_id
        self.auth_token = auth_token
        self.timeout = timeout or settings.carrier_request_timeout_seconds
        self.max_pages = max_pages or settings.carrier_max_pages

    def _path(self, resource: str) -> str:
        return f"/v1/Account/{self.auth_id}{resource}"

    async def verify_credentials(self) -> None:
        await self._request("GET", self._path("/Number/"), params={"limit": 1, "offset": 0})

    async def list_phone_numbers(self) -> list[dict[str, Any]]:
        return await self._list("/Number/", "Phone number")

    async def get_phone_number(self, number: str) -> dict[str, Any]:
        body = await self._request("GET", self._path(f"/Number/{number}/"))
        return body or {}

    async def set_number_app_id(self, number: str, app_id: Optional[str]) -> None:
        await self._request("POST", self._path(f"/Number/{number}/"), json={"app_id": app_id})

    async def list_inbound_trunks(self) -> list[dict[str, Any]]:
        return await self._list("/Zentrunk/Trunk/", "Inbound trunk")

    async def create_inbound_trunk(self, name: str, primary_uri_id: str) -> dict[str, Any]:
        body = await self._request(
            "POST",
            self._path("/Zentrunk/Trunk/"),
            json={
                "name": name,
                "trunk_direction": "inbound",
                "primary_uri_uuid": primary_uri_id,
            },
        )
        if not _non_empty((body or {}).get("trunk_id")):
            raise CarrierClientError(
                0, CarrierErrorCode.PROVIDER_ERROR, "Plivo trunk create returned no trunk_id"
            )
        return body

    async def delete_inbound_trunk(self, trunk_id: str) -> None:
        await self._request("DELETE", self._path(f"/Zentrunk/Trunk/{trunk_id}/"))

    async def list_origination_uris(self) -> list[dict[str, Any]]:
        return await self._list("/Zentrunk/URI/", "Origination URI")

    async def create_origination_uri(self, name: str, uri: str) -> str:
        body = await self._request(
            "POST", self._path("/Zentrunk/URI/"), json={"name": name, "uri": uri}
        )
        uri_id = _non_empty((body or {}).get("uri_uuid") or (body or {}).get("id"))
        if not uri_id:
            raise CarrierClientError(
                0, CarrierErrorCode.PROVIDER_ERROR, "Plivo origination URI create returned no uri_uuid"
            )
        return uri_id

    async def delete_origination_uri(self, uri_id: str) -> None:
        await self._request("DELETE", self._path(f"/Zentrunk/URI/{uri_id}/"))

    async def _list(self, resource: str, what: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        offset = 0
        for _ in range(self.max_pages):
            body = await self._request(
                "GET", self._path(resource), params={"limit": PAGE_LIMIT, "offset": offset}
            )
            body = body or {}
            items.extend(body.get("objects") or [])
            if not (body.get("meta") or {}).get("next"):
                return items
            offset += PAGE_LIMIT
        raise page_limit_error(what, len(items), self.max_pages)

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method,
                    f"{BASE_URL}{path}",
                    params=params,
                    json=json,
                    auth=(self.auth_id, self.auth_token),
                )
        except httpx.TimeoutException as e:
            raise CarrierClientError(
                0, CarrierErrorCode.PROVIDER_UNREACHABLE, "Plivo API request timed out"
            ) from e
        except httpx.RequestError as e:
            raise CarrierClientError(
                0, CarrierErrorCode.PROVIDER_UNREACHABLE, "Unable to reach Plivo API"
            ) from e

        try:
            body = response.json() if response.content.strip() else None
        except ValueError:
            body = None

        if response.is_success:
            return body

        raise CarrierClientError(
            response.status_code,
            map_status_to_code(response.status_code),
            self._error_detail(body) or response.reason_phrase or "Plivo error",
        )

    @staticmethod
    def _error_detail(body: Any) -> Optional[str]:
        if not isinstance(body, dict):
            return None

        error = body.get("error")
        if isinstance(error, str) and error.strip():
            return error
        if isinstance(error, dict):
            for key in ("error", "message"):
                nested = error.get(key)
                if isinstance(nested, str) and nested.strip():
                    return nested

        message = body.get("message")
        if isinstance(message, str) and message.strip():
            return message
        return None


class PlivoAdapter(CarrierAdapter):
    carrier = Carrier.PLIVO
    display_name = "Plivo"
    credentials_model = PlivoCredentials

    def __init__(self, credentials: dict[str, str], client: Optional[PlivoClient] = None) -> None:
        self.credentials = credentials
        self.client = client or PlivoClient(credentials["auth_id"], credentials["auth_token"])

    def fingerprint_source(self) -> str:
        return f"plivo:{self.credentials['auth_id']}"

    async def verify(self) -> None:
        await self.client.verify_credentials()

    @staticmethod
    def _number(item: dict[str, Any], fallback: Optional[str] = None) -> ProviderNumber:
        number = _non_empty(item.get("number")) or fallback or ""
        return ProviderNumber(
            provider_number_id=number,
            e164=normalize_e164(number),
            friendly_name=_non_empty(item.get("alias")),
            routed_to=_non_empty(item.get("app_id")),
        )

    async def list_numbers(self) -> list[ProviderNumber]:
        return [self._number(item) for item in await self.client.list_phone_numbers()]

    async def get_number(self, provider_number_id: str) -> ProviderNumber:
        item = await self.client.get_phone_number(provider_number_id)
        return self._number(item, fallback=provider_number_id)

    def has_trunk(self, resources: dict[str, Any]) -> bool:
        return bool(resources.get("trunk_id"))

    async def ensure_trunk(self, trunk_name: str, sip_host: str) -> dict[str, Any]:
        target_uri = sip_host.strip().removeprefix("sip:")
        target_host = sip_host_of(target_uri)

        uri_id = await self._ensure_origination_uri(target_uri, target_host)

        trunks = await self.client.list_inbound_trunks()
        trunk = next((t for t in trunks if t.get("name") == trunk_name), None)
        if trunk is None:
            trunk = await self.client.create_inbound_trunk(trunk_name, uri_id)
        elif _non_empty(trunk.get("primary_uri_uuid")) not in (None, uri_id):
            # Trunk points somewhere else; the primary URI cannot be swapped in place
            await self.client.delete_inbound_trunk(str(trunk["trunk_id"]))
            trunk = await self.client.create_inbound_trunk(trunk_name, uri_id)
            logger.info("plivo_trunk_recreated", trunk_name=trunk_name)

        return {"trunk_id": str(trunk["trunk_id"]), "origination_uri_id": uri_id}

    async def _ensure_origination_uri(self, target_uri: str, target_host: str) -> str:
        for entry in await self.client.list_origination_uris():
            raw = _non_empty(entry.get("uri") or entry.get("host"))
            entry_id = _non_empty(entry.get("uri_uuid") or entry.get("id"))
            if raw and entry_id and sip_host_of(raw) == target_host:
                return entry_id
        return await self.client.create_origination_uri("LiveKit SIP Host", target_uri)

    async def attach_number(self, resources: dict[str, Any], provider_number_id: str) -> None:
        await self.client.set_number_app_id(provider_number_id, resources["trunk_id"])

    async def detach_number(self, resources: dict[str, Any], provider_number_id: str) -> None:
        try:
            await self.client.set_number_app_id(provider_number_id, None)
        except CarrierClientError as e:
            if not e.is_not_found:
                raise

    async def delete_trunk(self, resources: dict[str, Any]) -> None:
        # Trunk first: Plivo refuses to delete a URI still used as a primary
        if resources.get("trunk_id"):
            try:
                await self.client.delete_inbound_trunk(resources["trunk_id"])
            except CarrierClientError as e:
                if not e.is_not_found:
                    raise
        if resources.get("origination_uri_id"):
            try:
                await self.client.delete_origination_uri(resources["origination_uri_id"])
            except CarrierClientError as e:
                if not e.is_not_found:
                    raise
