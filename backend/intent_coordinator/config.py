from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import Field, NonNegativeInt, PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict

from intent_coordinator.errors import ConfigurationError

log = logging.getLogger("intent_coordinator.settings")

env_path = Path(__file__).parent.parent / ".env"
if env_path.is_file():
    load_dotenv(dotenv_path=env_path)


def _mask(s: str | None, keep: int = 4) -> str | None:
    if not s:
        return None
    return (s[:keep] + "…") if len(s) > keep else "…"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # --- Store ---
    postgres_dsn: str | None = Field(default=None, alias="POSTGRES_DSN")
    postgres_pool_size: PositiveInt = Field(default=10, alias="POSTGRES_POOL_SIZE")

    # --- Chains ---
    lens_rpc_url: str | None = Field(default=None, alias="LENS_RPC_URL")
    base_rpc_url: str | None = Field(default=None, alias="BASE_RPC_URL")
    lens_chain_id: PositiveInt = Field(default=232, alias="LENS_CHAIN_ID")
    base_chain_id: PositiveInt = Field(default=8453, alias="BASE_CHAIN_ID")
    private_key: str | None = Field(default=None, alias="PRIVATE_KEY")

    # --- Contracts ---
    lens_intent_resolver: str | None = Field(default=None, alias="LENS_INTENT_RESOLVER")
    base_intent_resolver: str | None = Field(default=None, alias="BASE_INTENT_RESOLVER")
    cross_chain_resolver: str | None = Field(default=None, alias="CROSS_CHAIN_RESOLVER")
    ticket_registry: str | None = Field(default=None, alias="TICKET_REGISTRY")
    abi_dir: Path | None = Field(default=None, alias="ABI_DIR")

    # --- Bridge polling ---
    bridge_api_url: str = Field(default="https://app.across.to/api", alias="BRIDGE_API_URL")
    bridge_poll_timeout_sec: PositiveFloat = Field(default=10.0, alias="BRIDGE_POLL_TIMEOUT_SEC")
    bridge_pending_delay_sec: PositiveFloat = Field(default=60.0, alias="BRIDGE_PENDING_DELAY_SEC")
    bridge_error_delay_sec: PositiveFloat = Field(default=300.0, alias="BRIDGE_ERROR_DELAY_SEC")
    # 0 = poll until relayed
    bridge_max_attempts: NonNegativeInt = Field(default=0, alias="BRIDGE_MAX_ATTEMPTS")
    deadline_policy: Literal["ignore", "fail"] = Field(default="ignore", alias="DEADLINE_POLICY")

    # --- Listener / engine ---
    listener_poll_interval_sec: PositiveFloat = Field(default=2.0, alias="LISTENER_POLL_INTERVAL_SEC")
    listener_confirmations: NonNegativeInt = Field(default=0, alias="LISTENER_CONFIRMATIONS")
    listener_start_block: NonNegativeInt | None = Field(default=None, alias="LISTENER_START_BLOCK")
    listener_reconnect_delay_sec: PositiveFloat = Field(default=5.0, alias="LISTENER_RECONNECT_DELAY_SEC")
    reconcile_interval_sec: PositiveFloat = Field(default=300.0, alias="RECONCILE_INTERVAL_SEC")
    handler_max_retries: NonNegativeInt = Field(default=5, alias="HANDLER_MAX_RETRIES")

    # --- API ---
    admin_token: str | None = Field(default=None, alias="ADMIN_TOKEN")

    # ---------------------------- derived / getters ----------------------------

    @property
    def dsn(self) -> str:
        """POSTGRES_DSN or an explicit, early configuration error."""
        if not self.postgres_dsn:
            raise ConfigurationError("Missing required configuration: POSTGRES_DSN")
        return self.postgres_dsn

    def missing_worker_config(self) -> list[str]:
        required = {
            "POSTGRES_DSN": self.postgres_dsn,
            "LENS_RPC_URL": self.lens_rpc_url,
            "BASE_RPC_URL": self.base_rpc_url,
            "PRIVATE_KEY": self.private_key,
            "LENS_INTENT_RESOLVER": self.lens_intent_resolver,
            "CROSS_CHAIN_RESOLVER": self.cross_chain_resolver,
            "TICKET_REGISTRY": self.ticket_registry,
        }
        return [name for name, value in required.items() if not value]

    def require_worker_config(self) -> None:
        """Refuse to run the coordinator in a degraded mode."""
        missing = self.missing_worker_config()
        if missing:
            raise ConfigurationError("Missing required configuration: " + ", ".join(missing))

    def debug_dump(self) -> dict[str, Any]:
        return {
            "postgres_dsn": _mask(self.postgres_dsn, 16),
            "lens": {"rpc_url": self.lens_rpc_url, "chain_id": self.lens_chain_id},
            "base": {"rpc_url": self.base_rpc_url, "chain_id": self.base_chain_id},
            "private_key": _mask(self.private_key, 0),
            "contracts": {
                "lens_intent_resolver": self.lens_intent_resolver,
                "base_intent_resolver": self.base_intent_resolver,
                "cross_chain_resolver": self.cross_chain_resolver,
                "ticket_registry": self.ticket_registry,
            },
            "abi_dir": str(self.abi_dir) if self.abi_dir else None,
            "bridge": {
                "api_url": self.bridge_api_url,
                "timeout": self.bridge_poll_timeout_sec,
                "pending_delay": self.bridge_pending_delay_sec,
                "error_delay": self.bridge_error_delay_sec,
                "max_attempts": self.bridge_max_attempts,
            },
            "deadline_policy": self.deadline_policy,
            "reconcile_interval_sec": self.reconcile_interval_sec,
            "admin_token": _mask(self.admin_token, 0),
        }


# единый экземпляр
settings = Settings()
