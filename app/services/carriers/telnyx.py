"""Telnyx v2 REST client and carrier adapter.

Inbound calls reach LiveKit through an FQDN connection whose FQDN is the
LiveKit SIP host; numbers are routed by setting their ``connection_id``.
"""

from typing import Any, Optional

import httpx

from app.core.config import settings
from app.core.logging import get_logger
from app.models.telephony_integration import Carrier
from app.schemas.telephony import TelnyxCredentials
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

BASE_URL = "https://api.telnyx.com"
TRANSPORT_PROTOCOL = "TCP"


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


class TelnyxClient:
    """Minimal Telnyx API client covering numbers and FQDN connections."""

    def __init__(
        self,
        api_key: str,
        timeout: Optional[float] = None,
        max_pages: Optional[int] = None,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout or settings.carrier_request_timeout_seconds
        self.max_pages = max_pages or settings.carrier_max_pages

    async def verify_credentials(self) -> None:
        await self._request("GET", "/v2/phone_numbers", params={"page[size]": 1})

    async def list_phone_numbers(self) -> list[dict[str, Any]]:
        numbers: list[dict[str, Any]] = []
        page = 1
        while True:
            body = await self._request(
                "GET",
                "/v2/phone_numbers",
                params={"page[number]": page, "page[size]": 50},
            )
            numbers.extend(body.get("data") or [])

            total_pages = int((body.get("meta") or {}).get("total_pages") or 1)
            if page >= total_pages:
                return numbers
            if page >= self.max_pages:
                raise page_limit_error("Phone number", len(numbers), self.max_pages)
            page += 1

    async def get_phone_number(self, phone_number_id: str) -> dict[str, Any]:
        body = await self._request("GET", f"/v2/phone_numbers/{phone_number_id}")
        return body["data"]

    async def set_phone_number_connection(
        self, phone_number_id: str, connection_id: Optional[str]
    ) -> None:
        await self._request(
            "PATCH",
            f"/v2/phone_numbers/{phone_number_id}",
            json={"connection_id": connection_id},
        )

    async def list_fqdn_connections(self) -> list[dict[str, Any]]:
        body = await self._request("GET", "/v2/fqdn_connections", params={"page[size]": 250})
        return body.get("data") or []

    async def get_fqdn_connection(self, connection_id: str) -> dict[str, Any]:
        body = await self._request("GET", f"/v2/fqdn_connections/{connection_id}")
        return body["data"]

    async def create_fqdn_connection(self, name: str) -> dict[str, Any]:
        body = await self._request(
            "POST",
            "/v2/fqdn_connections",
            json={
                "connection_name": name,
                "active": True,
                "transport_protocol": TRANSPORT_PROTOCOL,
                "inbound": {
                    "ani_number_format": "+E.164",
                    "dnis_number_format": "+e164",
                },
            },
        )
        return body["data"]

    async def update_fqdn_connection_transport(self, connection_id: str, transport: str) -> None:
        await self._request(
            "PATCH",
            f"/v2/fqdn_connections/{connection_id}",
            json={"transport_protocol": transport},
        )

    async def delete_fqdn_connection(self, connection_id: str) -> None:
        await self._request("DELETE", f"/v2/fqdn_connections/{connection_id}")

    async def list_fqdns(self, connection_id: str) -> list[dict[str, Any]]:
        body = await self._request(
            "GET", "/v2/fqdns", params={"filter[connection_id]": connection_id}
        )
        return body.get("data") or []

    async def create_fqdn(self, fqdn: str, connection_id: str) -> dict[str, Any]:
        body = await self._request(
            "POST",
            "/v2/fqdns",
            json={"fqdn": fqdn, "connection_id": connection_id, "dns_record_type": "a"},
        )
        return body["data"]

    async def delete_fqdn(self, fqdn_id: str) -> None:
        await self._request("DELETE", f"/v2/fqdns/{fqdn_id}")

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
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.TimeoutException as e:
            raise CarrierClientError(
                0, CarrierErrorCode.PROVIDER_UNREACHABLE, "Telnyx API request timed out"
            ) from e
        except httpx.RequestError as e:
            raise CarrierClientError(
                0, CarrierErrorCode.PROVIDER_UNREACHABLE, "Unable to reach Telnyx API"
            ) from e

        if response.is_success:
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise CarrierClientError(
                    response.status_code,
                    CarrierErrorCode.PROVIDER_ERROR,
                    "Telnyx returned invalid JSON",
                ) from e

        raise CarrierClientError(
            response.status_code,
            map_status_to_code(response.status_code, client_errors_are_validation=False),
            self._error_detail(response),
        )

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            errors = response.json().get("errors") or []
        except (ValueError, AttributeError):
            errors = []
        if errors and isinstance(errors[0], dict):
            detail = errors[0].get("detail") or errors[0].get("title")
            if detail:
                return str(detail)
        return response.reason_phrase or f"HTTP {response.status_code}"


class TelnyxAdapter(CarrierAdapter):
    carrier = Carrier.TELNYX
    display_name = "Telnyx"
    credentials_model = TelnyxCredentials

    def __init__(self, credentials: dict[str, str], client: Optional[TelnyxClient] = None) -> None:
        self.credentials = credentials
        self.client = client or TelnyxClient(credentials["api_key"])

    def fingerprint_source(self) -> str:
        return self.credentials["api_key"]

    async def verify(self) -> None:
        await self.client.verify_credentials()

    @staticmethod
    def _number(item: dict[str, Any]) -> ProviderNumber:
        return ProviderNumber(
            provider_number_id=str(item["id"]),
            e164=normalize_e164(str(item["phone_number"])),
            friendly_name=_str_or_none(item.get("connection_name")),
            routed_to=_str_or_none(item.get("connection_id")),
        )

    async def list_numbers(self) -> list[ProviderNumber]:
        return [self._number(item) for item in await self.client.list_phone_numbers()]

    async def get_number(self, provider_number_id: str) -> ProviderNumber:
        return self._number(await self.client.get_phone_number(provider_number_id))

    def has_trunk(self, resources: dict[str, Any]) -> bool:
        return bool(resources.get("fqdn_connection_id"))

    async def ensure_trunk(self, trunk_name: str, sip_host: str) -> dict[str, Any]:
        connection = await self._ensure_connection(trunk_name)
        connection_id = str(connection["id"])
        await self._ensure_transport(connection_id)
        fqdn_id = await self._ensure_fqdn(connection_id, sip_host)
        return {"fqdn_connection_id": connection_id, "fqdn_id": fqdn_id}

    async def _ensure_connection(self, name: str) -> dict[str, Any]:
        connections = await self.client.list_fqdn_connections()
        connection = next((c for c in connections if c.get("connection_name") == name), None)
        if connection is not None:
            return connection

        try:
            return await self.client.create_fqdn_connection(name)
        except CarrierClientError as e:
            # A concurrent create wins the name; pick it up
            if e.code != CarrierErrorCode.VALIDATION_ERROR:
                raise
            connections = await self.client.list_fqdn_connections()
            connection = next((c for c in connections if c.get("connection_name") == name), None)
            if connection is None:
                raise
            return connection

    async def _ensure_transport(self, connection_id: str) -> None:
        try:
            details = await self.client.get_fqdn_connection(connection_id)
            current = details.get("transport_protocol")
            if current and current != TRANSPORT_PROTOCOL:
                await self.client.update_fqdn_connection_transport(connection_id, TRANSPORT_PROTOCOL)
        except CarrierClientError as e:
            logger.warning(
                "telnyx_transport_update_failed",
                connection_id=connection_id,
                error=e.message,
            )

    async def _ensure_fqdn(self, connection_id: str, sip_host: str) -> str:
        host = sip_host.lower()
        fqdns = await self.client.list_fqdns(connection_id)
        existing = next((f for f in fqdns if str(f.get("fqdn", "")).lower() == host), None)
        if existing is not None:
            return str(existing["id"])

        try:
            created = await self.client.create_fqdn(sip_host, connection_id)
        except CarrierClientError as e:
            if e.code != CarrierErrorCode.VALIDATION_ERROR:
                raise
            fqdns = await self.client.list_fqdns(connection_id)
            existing = next((f for f in fqdns if str(f.get("fqdn", "")).lower() == host), None)
            if existing is None:
                raise
            return str(existing["id"])
        return str(created["id"])

    async def attach_number(self, resources: dict[str, Any], provider_number_id: str) -> None:
        await self.client.set_phone_number_connection(
            provider_number_id, resources["fqdn_connection_id"]
        )

    async def detach_number(self, resources: dict[str, Any], provider_number_id: str) -> None:
        try:
            await self.client.set_phone_number_connection(provider_number_id, None)
        except CarrierClientError as e:
            if not e.is_not_found:
                raise

    async def delete_trunk(self, resources: dict[str, Any]) -> None:
        if resources.get("fqdn_id"):
            try:
                await self.client.delete_fqdn(resources["fqdn_id"])
            except CarrierClientError as e:
                if not e.is_not_found:
                    raise
        if resources.get("fqdn_connection_id"):
            try:
                await self.client.delete_fqdn_connection(resources["fqdn_connection_id"])
            except CarrierClientError as e:
                if not e.is_not_found:
                    raise
