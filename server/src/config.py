from enum import Enum
from pathlib import Path
from typing import List, Literal
import json

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeploymentMode(str, Enum):
    """Role of the dashboard's mainchain node.

    The values mirror the node-type names used by federation operators: a
    50K node is a full multisig federation member with a wallet, a 10K node
    is a sidechain miner without one.
    """

    MULTISIG_FEDERATION = "50K"
    MINER_NODE = "10K"

    @classmethod
    def parse(cls, value: object) -> "DeploymentMode":
        if isinstance(value, cls):
            return value
        raw = str(value).strip().upper()
        aliases = {
            "50K": cls.MULTISIG_FEDERATION,
            "MULTISIG": cls.MULTISIG_FEDERATION,
            "FEDERATION": cls.MULTISIG_FEDERATION,
            "MULTISIG_FEDERATION": cls.MULTISIG_FEDERATION,
            "10K": cls.MINER_NODE,
            "MINER": cls.MINER_NODE,
            "MINER_NODE": cls.MINER_NODE,
        }
        try:
            return aliases[raw]
        except KeyError:
            raise ValueError(f"Unknown deployment mode '{value}'; expected 50K or 10K") from None


class Settings(BaseSettings):
    """Application configuration sourced from environment variables or overrides."""

    api_host: str = "127.0.0.1"
    api_port: int = 8000
    api_log_level: str = "info"

    database_url: str = "sqlite+aiosqlite:///./data/dashboard.db"
    sql_echo: bool = False
    # "database" persists the snapshot across restarts; "memory" keeps it in-process.
    cache_backend: Literal["database", "memory"] = "database"

    mainchain_node_url: str = "http://localhost:37221"
    sidechain_node_url: str = "http://localhost:38225"
    deployment_mode: DeploymentMode = DeploymentMode.MULTISIG_FEDERATION

    refresh_interval_seconds: float = 5.0
    probe_timeout_seconds: float = 3.0
    node_request_timeout_seconds: float = 10.0
    wallet_history_max_entries: int = 30

    # Accept either a raw comma separated string or a list; see the validator.
    cors_allow_origins: str | List[str] = []

    model_config = SettingsConfigDict(
        env_prefix="DASHBOARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("deployment_mode", mode="before")
    @classmethod
    def _coerce_mode(cls, value):
        return DeploymentMode.parse(value)

    @field_validator(
        "refresh_interval_seconds",
        "probe_timeout_seconds",
        "node_request_timeout_seconds",
        "wallet_history_max_entries",
    )
    @classmethod
    def _require_positive(cls, value):
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("mainchain_node_url", "sidechain_node_url")
    @classmethod
    def _require_http_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"Node URL '{value}' must start with http:// or https://")
        return value.rstrip("/")

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _coerce_origins(cls, value):
        """Allow comma or newline separated env strings as well as JSON arrays."""
        if value in (None, ""):
            return []
        if isinstance(value, str):
            v = value.strip()
            if v.startswith("["):
                try:
                    decoded = json.loads(v)
                    if isinstance(decoded, list):
                        return [str(item).strip() for item in decoded if str(item).strip()]
                except ValueError:
                    # fall back to comma/newline splitting below
                    pass
            cleaned = v.replace("\n", ",")
            return [item.strip() for item in cleaned.split(",") if item.strip()]
        if isinstance(value, (tuple, set, list)):
            return [str(item).strip() for item in value if str(item).strip()]
        return value

    @property
    def is_multisig(self) -> bool:
        return self.deployment_mode is DeploymentMode.MULTISIG_FEDERATION

    @property
    def database_path(self) -> Path:
        """Return the on-disk path for the SQLite database when applicable."""
        if self.database_url.startswith("sqlite"):
            raw_path = self.database_url.split("///", maxsplit=1)[-1]
            return Path(raw_path).expanduser().resolve()
        raise ValueError("Database URL is not pointing to a SQLite database")
