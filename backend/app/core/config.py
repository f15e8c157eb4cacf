from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    # psycopg 3 is the only installed driver
    scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("sslmode", "require")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


def _split_list(value: Any, *, label: str) -> list[str]:
    if value in (None, "", []):
        return []
    if isinstance(value, str):
        return [item for item in (part.strip() for part in value.split(",")) if item]
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]
    raise ValueError(f"{label} must be provided as a list or comma-separated string")


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
        default="sqlite:///./data/minigames.db",
        description="SQLAlchemy compatible database URL",
    )
    production_db_url: AnyUrl | str | None = Field(
        default=None,
        description="Pooled Postgres connection string used when ENVIRONMENT=production",
    )
    neynar_base_url: AnyUrl = Field(
        default="https://api.neynar.com",
        description="Base URL for the Neynar identity API",
    )
    neynar_api_key: str | None = Field(
        default=None,
        description="API key sent with every Neynar request",
    )
    neynar_bulk_batch_size: int = Field(
        default=100,
        description="Maximum number of fids requested per bulk user lookup",
        ge=1,
        le=100,
    )
    base_rpc_url: str = Field(
        default="https://mainnet.base.org",
        description="JSON-RPC endpoint used for stake reads and token transfers",
    )
    chain_id: int = Field(default=8453, description="Chain id used when signing transfers")
    master_wallet_private_key: str | None = Field(
        default=None,
        description="Private key of the prize wallet; transfers are refused when unset",
    )
    transfer_receipt_timeout_seconds: float = Field(
        default=120.0,
        description="Seconds to wait for a transfer receipt before failing the transfer",
        gt=0,
    )
    stake_read_attempts: int = Field(
        default=3,
        description="Attempts per address when measuring a requester's stake",
        ge=1,
    )
    stake_read_backoff_seconds: float = Field(
        default=1.5,
        description="Linear backoff step between stake read attempts",
        ge=0,
    )
    default_community: str = Field(
        default="betr",
        description="Community whose token pays out when a game does not name one",
    )
    communities_config_path: str | None = Field(
        default=None,
        description="Optional YAML file overriding or adding community token economies",
    )
    known_contract_addresses: list[str] | str = Field(
        default_factory=list,
        description="Contract addresses that must never be selected as payout wallets",
    )
    admin_fids: list[int] | str = Field(
        default_factory=list,
        description="Fids allowed through the default admin predicate",
    )
    explorer_tx_url_template: str = Field(
        default="https://basescan.org/tx/{tx_hash}",
        description="Block explorer URL template for transaction links",
    )
    notification_webhook_url: AnyUrl | str | None = Field(
        default=None,
        description="Endpoint receiving settlement notifications (disabled when unset)",
    )

    @field_validator("database_url", "production_db_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value
        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @field_validator("known_contract_addresses", mode="before")
    @classmethod
    def _parse_known_contracts(cls, value: Any) -> list[str]:
        return [item.lower() for item in _split_list(value, label="KNOWN_CONTRACT_ADDRESSES")]

    @field_validator("admin_fids", mode="before")
    @classmethod
    def _parse_admin_fids(cls, value: Any) -> list[int]:
        fids: list[int] = []
        for item in _split_list(value, label="ADMIN_FIDS"):
            try:
                fids.append(int(item))
            except ValueError as exc:
                raise ValueError("ADMIN_FIDS entries must be integers") from exc
        return fids

    @field_validator("explorer_tx_url_template")
    @classmethod
    def _validate_explorer_template(cls, value: str) -> str:
        if "{tx_hash}" not in value:
            raise ValueError("EXPLORER_TX_URL_TEMPLATE must contain a {tx_hash} placeholder")
        return value

    @property
    def resolved_database_url(self) -> str:
        if self.environment.lower() == "production":
            if not self.production_db_url:
                raise ValueError(
                    "PRODUCTION_DB_URL must be set when ENVIRONMENT=production"
                )
            return _ensure_sqlalchemy_postgres_scheme(str(self.production_db_url))
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))

    def explorer_tx_url(self, tx_hash: str | None) -> str | None:
        if not tx_hash:
            return None
        return self.explorer_tx_url_template.format(tx_hash=tx_hash)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
