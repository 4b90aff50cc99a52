"""Configuration loading for Momentum."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .models import EntityType


@dataclass
class AccountConfig:
    user_id: str = "local"


@dataclass
class StorageConfig:
    """Local entity storage."""

    data_dir: str = "~/.momentum/data"
    tombstone_grace_days: int = 30


@dataclass
class SyncConfig:
    """Configuration for the sync client."""

    enabled: bool = True
    server_url: str = ""
    access_token: str | None = None
    refresh_token: str | None = None
    interval_minutes: int = 5
    max_retries: int = 5
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    timeout_seconds: float = 30.0
    entity_types: list[str] = field(default_factory=lambda: [t.value for t in EntityType])

    @property
    def types(self) -> list[EntityType]:
        return [EntityType(name) for name in self.entity_types]


@dataclass
class ServerConfig:
    """Configuration for the reference sync server."""

    host: str = "127.0.0.1"
    port: int = 8080
    data_dir: str = "~/.momentum/server"
    tokens: dict[str, str] = field(default_factory=dict)
    """Access token -> user id"""

    refresh_tokens: dict[str, str] = field(default_factory=dict)
    """Refresh token -> access token"""


@dataclass
class Config:
    account: AccountConfig = field(default_factory=AccountConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with MOMENTUM_ prefix."""
    return os.environ.get(f"MOMENTUM_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if user_id := _get_env("USER_ID"):
        config.account.user_id = user_id

    # Storage overrides
    if data_dir := _get_env("DATA_DIR"):
        config.storage.data_dir = data_dir
    if grace := _get_env("TOMBSTONE_GRACE_DAYS"):
        config.storage.tombstone_grace_days = int(grace)

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _is_true(sync_enabled)
    if server_url := _get_env("SYNC_SERVER_URL"):
        config.sync.server_url = server_url
    if access_token := _get_env("SYNC_ACCESS_TOKEN"):
        config.sync.access_token = access_token
    if refresh_token := _get_env("SYNC_REFRESH_TOKEN"):
        config.sync.refresh_token = refresh_token
    if interval := _get_env("SYNC_INTERVAL"):
        config.sync.interval_minutes = int(interval)
    if retries := _get_env("SYNC_MAX_RETRIES"):
        config.sync.max_retries = int(retries)

    # Server overrides
    if host := _get_env("SERVER_HOST"):
        config.server.host = host
    if port := _get_env("SERVER_PORT"):
        config.server.port = int(port)
    if server_dir := _get_env("SERVER_DATA_DIR"):
        config.server.data_dir = server_dir

    return config


def _validate(config: Config) -> None:
    """Fail fast on values the sync layer cannot work with."""
    for name in config.sync.entity_types:
        try:
            EntityType(name)
        except ValueError:
            raise ValueError(f"Unknown entity type in sync.entity_types: {name}") from None
    if config.sync.max_retries < 1:
        raise ValueError("sync.max_retries must be at least 1")
    if config.storage.tombstone_grace_days < 0:
        raise ValueError("storage.tombstone_grace_days must not be negative")


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded and validated Config object.

    Raises:
        ValueError: If a value is out of range.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "account" in data:
                config.account = AccountConfig(
                    user_id=str(data["account"].get("user_id", config.account.user_id))
                )

            if "storage" in data:
                storage_data = data["storage"]
                config.storage = StorageConfig(
                    data_dir=storage_data.get("data_dir", config.storage.data_dir),
                    tombstone_grace_days=storage_data.get(
                        "tombstone_grace_days", config.storage.tombstone_grace_days
                    ),
                )

            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    server_url=sync_data.get("server_url", config.sync.server_url),
                    access_token=sync_data.get("access_token"),
                    refresh_token=sync_data.get("refresh_token"),
                    interval_minutes=sync_data.get(
                        "interval_minutes", config.sync.interval_minutes
                    ),
                    max_retries=sync_data.get("max_retries", config.sync.max_retries),
                    initial_backoff_seconds=sync_data.get(
                        "initial_backoff_seconds", config.sync.initial_backoff_seconds
                    ),
                    max_backoff_seconds=sync_data.get(
                        "max_backoff_seconds", config.sync.max_backoff_seconds
                    ),
                    timeout_seconds=sync_data.get(
                        "timeout_seconds", config.sync.timeout_seconds
                    ),
                    entity_types=sync_data.get("entity_types", config.sync.entity_types),
                )

            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                    data_dir=server_data.get("data_dir", config.server.data_dir),
                    tokens={str(k): str(v) for k, v in (server_data.get("tokens") or {}).items()},
                    refresh_tokens={
                        str(k): str(v)
                        for k, v in (server_data.get("refresh_tokens") or {}).items()
                    },
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)
    _validate(config)

    return config
