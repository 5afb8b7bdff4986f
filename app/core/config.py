"""Application configuration using Pydantic Settings."""

import base64
import binascii
from functools import lru_cache
from typing import Any, List
from urllib.parse import urlparse

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Telephony Orchestrator API"
    app_env: str = "development"
    debug: bool = False
    api_v1_prefix: str = "/api/v1"

    # Database (PostgreSQL)
    database_url: str = "postgresql+asyncpg://localhost:5432/telephony"
    database_pool_size: int = 10

    # Redis (idempotency ledger and dispatch notifications)
    redis_url: str = "redis://localhost:6379/0"
    redis_enabled: bool = False

    # LiveKit
    livekit_url: str = ""
    livekit_api_key: str = ""
    livekit_api_secret: str = ""
    livekit_sip_uri: str = ""  # SIP host carriers originate to (e.g., "abc123.sip.livekit.cloud")

    # Telephony
    telephony_enabled: bool = False
    telephony_webhook_api_key: str = ""  # Falls back to livekit_api_key
    telephony_webhook_api_secret: str = ""  # Falls back to livekit_api_secret
    telephony_sip_identity_prefix: str = "sip_"
    telephony_dispatch_on_any_participant_join: bool = False
    telephony_secrets_key: str = ""  # base64, 32 bytes
    telephony_agent_name: str = "telephony-agent"

    # LiveKit SIP provisioning
    telephony_livekit_inbound_trunk_name: str = "byoc-inbound"
    telephony_livekit_dispatch_rule_name: str = "byoc-dispatch"
    telephony_livekit_dispatch_room_prefix: str = "call-"

    # Webhook idempotency
    telephony_idempotency_ttl_seconds: int = 86400
    telephony_idempotency_max_entries: int = 10000

    # Post-dispatch notifications
    telephony_dispatch_channel: str = "telephony:agent_dispatched"

    # Carrier REST clients
    carrier_request_timeout_seconds: float = 15.0
    carrier_max_pages: int = 20

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    # API Authentication
    api_key_header: str = "x-api-key"
    api_keys: str = ""  # Comma-separated list

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        if isinstance(v, str):
            import json
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [v]
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.app_env.lower() == "production"

    @property
    def valid_api_keys(self) -> List[str]:
        """Get list of valid API keys."""
        if not self.api_keys:
            return []
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    @property
    def webhook_api_key(self) -> str:
        """API key used to verify LiveKit webhook signatures."""
        return self.telephony_webhook_api_key or self.livekit_api_key

    @property
    def webhook_api_secret(self) -> str:
        """API secret used to verify LiveKit webhook signatures."""
        return self.telephony_webhook_api_secret or self.livekit_api_secret

    @property
    def livekit_http_url(self) -> str:
        """LiveKit server URL with an http(s) scheme, as required by the server API."""
        url = self.livekit_url.strip()
        if url.startswith("wss://"):
            return "https://" + url[len("wss://"):]
        if url.startswith("ws://"):
            return "http://" + url[len("ws://"):]
        if url and not url.startswith(("http://", "https://")):
            return "https://" + url
        return url

    @property
    def livekit_sip_host(self) -> str:
        """SIP host that carriers should originate calls to.

        Derived from LIVEKIT_URL for LiveKit Cloud projects when not set explicitly.
        """
        if self.livekit_sip_uri:
            return self.livekit_sip_uri.strip().removeprefix("sip:")

        host = urlparse(self.livekit_http_url).netloc
        if host.endswith(".livekit.cloud"):
            subdomain = host.replace(".livekit.cloud", "")
            return f"{subdomain}.sip.livekit.cloud"
        return ""

    @property
    def telephony_secrets_key_bytes(self) -> bytes:
        """Decode the AES-256 key used for carrier credentials."""
        if not self.telephony_secrets_key:
            raise ValueError("TELEPHONY_SECRETS_KEY is not configured")
        try:
            key = base64.b64decode(self.telephony_secrets_key, validate=True)
        except binascii.Error as e:
            raise ValueError("TELEPHONY_SECRETS_KEY must be base64") from e
        if len(key) != 32:
            raise ValueError("TELEPHONY_SECRETS_KEY must decode to 32 bytes")
        return key


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
