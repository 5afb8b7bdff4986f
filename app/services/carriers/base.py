"""Carrier client error taxonomy and the capability interface the onboarding engine drives."""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Optional

from pydantic import BaseModel

from app.core.config import settings
from app.models.telephony_integration import Carrier


class CarrierErrorCode(str, enum.Enum):
    AUTH_INVALID = "AUTH_INVALID"
    RATE_LIMITED = "RATE_LIMITED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PROVIDER_UNREACHABLE = "PROVIDER_UNREACHABLE"
    PROVIDER_ERROR = "PROVIDER_ERROR"


class CarrierClientError(Exception):
    """Normalized failure from a carrier REST API.

    ``status`` is the HTTP status, or 0 for network failures and
    client-side checks (pagination ceiling, malformed bodies).
    """

    def __init__(self, status: int, code: CarrierErrorCode, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


def map_status_to_code(status: int, client_errors_are_validation: bool = True) -> CarrierErrorCode:
    """Map an HTTP error status to a canonical code.

    Telnyx only reports 422 as a validation failure; Twilio and Plivo use any 4xx.
    """
    if status in (401, 403):
        return CarrierErrorCode.AUTH_INVALID
    if status == 429:
        return CarrierErrorCode.RATE_LIMITED
    if status == 422:
        return CarrierErrorCode.VALIDATION_ERROR
    if client_errors_are_validation and 400 <= status < 500:
        return CarrierErrorCode.VALIDATION_ERROR
    return CarrierErrorCode.PROVIDER_ERROR


def page_limit_error(what: str, count: int, max_pages: Optional[int] = None) -> CarrierClientError:
    pages = max_pages or settings.carrier_max_pages
    return CarrierClientError(
        0,
        CarrierErrorCode.PROVIDER_ERROR,
        f"{what} listing exceeds {pages} pages ({count}+ items). Contact support.",
    )


@dataclass
class ProviderNumber:
    """A carrier-owned phone number."""

    provider_number_id: str
    e164: str
    friendly_name: Optional[str] = None
    routed_to: Optional[str] = None


class CarrierAdapter(ABC):
    """Capabilities one carrier exposes to the onboarding engine.

    An adapter is bound to one set of decrypted credentials.
    """

    carrier: ClassVar[Carrier]
    display_name: ClassVar[str]
    credentials_model: ClassVar[type[BaseModel]]

    @abstractmethod
    def fingerprint_source(self) -> str:
        """Carrier-qualified string identifying the credentials."""

    @abstractmethod
    async def verify(self) -> None:
        """Raise CarrierClientError unless the credentials work."""

    @abstractmethod
    async def list_numbers(self) -> list[ProviderNumber]:
        ...

    @abstractmethod
    async def get_number(self, provider_number_id: str) -> ProviderNumber:
        ...

    @abstractmethod
    def has_trunk(self, resources: dict[str, Any]) -> bool:
        """Whether cached provider_resources already name a trunk-like resource."""

    @abstractmethod
    async def ensure_trunk(self, trunk_name: str, sip_host: str) -> dict[str, Any]:
        """Find or create the trunk-like resource pointing at LiveKit.

        Returns the provider_resources to persist on the integration.
        """

    @abstractmethod
    async def attach_number(self, resources: dict[str, Any], provider_number_id: str) -> None:
        ...

    @abstractmethod
    async def detach_number(self, resources: dict[str, Any], provider_number_id: str) -> None:
        """Stop routing the number to the trunk. Already-detached is not an error."""

    @abstractmethod
    async def delete_trunk(self, resources: dict[str, Any]) -> None:
        """Delete carrier-side trunk resources, ignoring ones already gone."""
