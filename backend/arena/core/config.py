from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("target_session_attrs", "read-write")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///./data/arena.db",
        description="SQLAlchemy compatible database URL",
    )
    polymarket_base_url: AnyUrl = Field(
        default="https://gamma-api.polymarket.com",
        description="Base URL for the Polymarket gamma API",
    )
    kalshi_base_url: AnyUrl = Field(
        default="https://api.elections.kalshi.com/trade-api/v2",
        description="Base URL for the Kalshi trade API",
    )
    oracle_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to every oracle HTTP request",
        gt=0,
    )
    betting_fee_bps: int = Field(
        default=500,
        description="Protocol fee charged on winnings and draw refunds, in basis points",
        ge=0,
        le=10_000,
    )
    betting_last_open_round: int = Field(
        default=2,
        description="Last battle round during which spectators may still place bets",
        ge=0,
        le=5,
    )
    schedule_clock_skew_seconds: int = Field(
        default=60,
        description="Tolerance for scheduled times slightly in the past",
        ge=0,
    )
    resolution_lease_seconds: int = Field(
        default=300,
        description="How long an executing resolution may hold its lease before being reclaimed",
        ge=1,
    )
    resolution_sweep_batch_size: int = Field(
        default=20,
        description="Maximum number of ready resolutions executed per sweep",
        ge=1,
    )
    resolution_max_attempts: int = Field(
        default=48,
        description="Attempts after which the sweep marks a resolution as failed",
        ge=1,
    )
    resolution_list_limit: int = Field(
        default=100,
        description="Maximum number of resolutions returned by status listings",
        ge=1,
    )
    battle_page_size_default: int = Field(default=20, ge=1)
    battle_page_size_max: int = Field(default=100, ge=1)
    default_trait_value: int = Field(
        default=5000,
        description="Trait value used when a warrior's traits are not supplied",
        ge=0,
        le=10_000,
    )
    web3_rpc_url: str | None = Field(
        default=None,
        description="JSON-RPC endpoint used for ownership checks and mirror settlement",
    )
    web3_timeout_seconds: float = Field(default=15.0, gt=0)
    warrior_contract_address: str | None = Field(
        default=None,
        description="ERC-721 contract holding warrior NFTs",
    )
    mirror_contract_address: str | None = Field(
        default=None,
        description="Contract that settles mirror markets",
    )
    mirror_signer_key: str | None = Field(
        default=None,
        description="Private key used to sign mirror settlement transactions",
    )
    arbitrage_service_url: str | None = Field(
        default=None,
        description="Base URL of the arbitrage trading service",
    )
    arbitrage_timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value
        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @field_validator("web3_rpc_url", "arbitrage_service_url", mode="before")
    @classmethod
    def _blank_as_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def resolved_database_url(self) -> str:
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
