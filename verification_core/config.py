"""
Configuration for verification_core.

Features:
- Typed settings with Pydantic v2 / pydantic-settings.
- Sources priority: env vars (VERIFY_*) > .env (optional) > defaults.
- Secrets are held in SecretStr and redacted in logs.
- Network-aware defaults for NEAR and Celo RPC endpoints.
- Cached singleton with explicit invalidation (reload_settings).
"""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# ---------------- Network constants ----------------

FASTNEAR_RPC_URLS: Dict[str, str] = {
    "mainnet": "https://free.rpc.fastnear.com",
    "testnet": "https://test.rpc.fastnear.com",
}

CELO_RPC_URLS: Dict[str, List[str]] = {
    "mainnet": [
        "https://1rpc.io/celo",
        "https://rpc.ankr.com/celo",
        "https://forno.celo.org",
        "https://celo-mainnet.public.blastapi.io",
        "https://celo-mainnet-rpc.allthatnode.com",
    ],
    "testnet": ["https://alfajores-forno.celo-testnet.org"],
}

# Self.xyz IdentityVerificationHub deployments on Celo
IDENTITY_VERIFICATION_HUB: Dict[str, str] = {
    "mainnet": "0xe57F4773bd9c9d8b6Cd70431117d353298B9f5BF",
    "testnet": "0x16ECBA51e18a4a7e61fdC417f0d47AFEeDfbed74",
}

DEFAULT_SIGNING_MESSAGE = "Identify myself"
VERIFICATIONS_CACHE_TAG = "verifications"


# ---------------- Settings ----------------

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="VERIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = Field(default="verification-core")
    env: Literal["dev", "staging", "prod"] = Field(default="prod")
    version: str = Field(default="0.1.0")
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")
    cors_origins: Annotated[List[str], NoDecode] = Field(default_factory=list)
    expose_openapi: bool = Field(default=False)
    metrics_enabled: bool = Field(default=True)
    admin_token: Optional[SecretStr] = Field(default=None)

    # Session store (Redis)
    redis_url: Optional[SecretStr] = Field(default=None)
    redis_namespace: str = Field(default="self-session")
    session_ttl_seconds: int = Field(default=5 * 60, ge=1)
    nonce_ttl_seconds: int = Field(default=10 * 60, ge=1)

    # HTTP client
    http_timeout_seconds: float = Field(default=10.0, gt=0)
    http_retries: int = Field(default=2, ge=0)
    http_backoff_base: float = Field(default=0.2, ge=0)

    # NEAR
    near_network: Literal["mainnet", "testnet"] = Field(default="testnet")
    near_rpc_url: str = Field(default="https://rpc.testnet.near.org")
    near_fallback_rpc_url: Optional[str] = Field(default=None)
    verification_contract_id: str = Field(default="")
    near_rpc_timeout_seconds: float = Field(default=10.0, gt=0)

    # Celo / Self.xyz
    self_network: Literal["mainnet", "testnet"] = Field(default="mainnet")
    celo_rpc_urls: Annotated[List[str], NoDecode] = Field(default_factory=list)
    celo_rpc_timeout_seconds: float = Field(default=5.0, gt=0)
    celo_rpc_success_ttl_seconds: float = Field(default=5 * 60, ge=0)

    # Verification
    signing_message: str = Field(default=DEFAULT_SIGNING_MESSAGE)
    listing_cache_ttl_seconds: float = Field(default=60.0, ge=0)
    max_page_size: int = Field(default=100, ge=1, le=100)

    @field_validator("celo_rpc_urls", "cors_origins", mode="before")
    @classmethod
    def _split_csv(cls, v: Any) -> Any:
        if isinstance(v, str):
            if v.strip().startswith("["):
                return json.loads(v)
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    # ---------------- Derived values ----------------

    @property
    def near_rpc_urls(self) -> List[str]:
        fallback = self.near_fallback_rpc_url or FASTNEAR_RPC_URLS[self.near_network]
        urls = [self.near_rpc_url]
        if fallback and fallback != self.near_rpc_url:
            urls.append(fallback)
        return urls

    @property
    def effective_celo_rpc_urls(self) -> List[str]:
        return list(self.celo_rpc_urls) or list(CELO_RPC_URLS[self.self_network])

    @property
    def identity_hub_address(self) -> str:
        return IDENTITY_VERIFICATION_HUB[self.self_network]

    @property
    def redis_dsn(self) -> Optional[str]:
        return self.redis_url.get_secret_value() if self.redis_url else None

    def redacted(self) -> Dict[str, Any]:
        data = self.model_dump()
        data["redis_url"] = "***" if self.redis_url else None
        data["admin_token"] = "***" if self.admin_token else None
        return data


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def reload_settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()
