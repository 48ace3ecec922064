"""
Configuration settings with environment variable loading.

All secrets MUST be provided via environment variables.
Never log or expose tokens in any output.
"""

import json
import os
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


class SyncDirection(str, Enum):
    """Which way peer records flow during a reconciliation pass."""
    CLOUD_TO_LOCAL = "cloud_to_local"
    LOCAL_TO_CLOUD = "local_to_cloud"
    BIDIRECTIONAL = "bidirectional"

    @property
    def pushes_to_local(self) -> bool:
        return self in (SyncDirection.CLOUD_TO_LOCAL, SyncDirection.BIDIRECTIONAL)

    @property
    def pushes_to_cloud(self) -> bool:
        return self in (SyncDirection.LOCAL_TO_CLOUD, SyncDirection.BIDIRECTIONAL)


class ConflictResolution(str, Enum):
    """Policy applied when both stores hold diverging versions of a peer."""
    CLOUD_WINS = "cloud_wins"
    LOCAL_WINS = "local_wins"
    NEWEST_WINS = "newest_wins"


def _parse_enum(enum_cls, value, setting_name: str):
    """Map a raw setting onto a closed enum, rejecting anything unknown."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(
            f"{setting_name} must be one of: {allowed} (got {value!r})"
        ) from None


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class CloudConfig:
    """Cloud peer store (managed backend) configuration."""
    base_url: str
    api_key: str
    access_token: Optional[str] = None
    peers_table: str = "wireguard_peers"

    def __post_init__(self):
        if not self.base_url:
            raise ConfigurationError("CLOUD_BASE_URL is required")
        if not self.api_key:
            raise ConfigurationError("CLOUD_API_KEY is required")
        # Validate URL format
        if not self.base_url.startswith("https://"):
            raise ConfigurationError("CLOUD_BASE_URL must use HTTPS")
        if not self.peers_table:
            raise ConfigurationError("CLOUD_PEERS_TABLE must not be empty")

    def __repr__(self) -> str:
        """Never expose keys in repr."""
        return (
            f"CloudConfig(base_url='{self.base_url}', api_key='***REDACTED***', "
            f"peers_table='{self.peers_table}')"
        )


@dataclass(frozen=True)
class LocalAgentConfig:
    """
    Local agent configuration.

    An empty base_url is valid: it means the local agent is not configured
    and every pass that needs it reports so instead of failing hard.
    """
    base_url: str = ""
    server_token: Optional[str] = None

    def __post_init__(self):
        if self.base_url and not self.base_url.startswith(("http://", "https://")):
            raise ConfigurationError("LOCAL_AGENT_URL must be an http(s) URL")

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def __repr__(self) -> str:
        token = "***REDACTED***" if self.server_token else None
        return f"LocalAgentConfig(base_url='{self.base_url}', server_token={token!r})"


@dataclass(frozen=True)
class SyncConfig:
    """
    Operator-owned synchronization settings.

    Read on every pass; an interval below MIN_INTERVAL_SECONDS is accepted
    here but leaves the scheduler idle.
    """
    enabled: bool = False
    interval: int = 60
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    conflict_resolution: ConflictResolution = ConflictResolution.NEWEST_WINS

    MIN_INTERVAL_SECONDS = 10

    def __post_init__(self):
        object.__setattr__(
            self, "direction", _parse_enum(SyncDirection, self.direction, "direction")
        )
        object.__setattr__(
            self,
            "conflict_resolution",
            _parse_enum(ConflictResolution, self.conflict_resolution, "conflict_resolution"),
        )
        if isinstance(self.interval, bool):
            raise ConfigurationError("interval must be an integer number of seconds")
        try:
            object.__setattr__(self, "interval", int(self.interval))
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"interval must be an integer number of seconds (got {self.interval!r})"
            ) from None
        object.__setattr__(self, "enabled", _parse_bool(self.enabled))

    @property
    def schedulable(self) -> bool:
        """Whether the scheduler should install a timer for this config."""
        return self.enabled and self.interval >= self.MIN_INTERVAL_SECONDS

    @classmethod
    def from_dict(cls, data: dict, fallback: Optional["SyncConfig"] = None) -> "SyncConfig":
        """
        Build from a settings blob.

        Accepts both snake_case and the dashboard's camelCase
        ``conflictResolution`` key. Missing keys take the fallback's value.
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Sync configuration must be a JSON object")

        base = fallback or cls()
        resolution = data.get(
            "conflict_resolution",
            data.get("conflictResolution", base.conflict_resolution),
        )
        return cls(
            enabled=data.get("enabled", base.enabled),
            interval=data.get("interval", base.interval),
            direction=data.get("direction", base.direction),
            conflict_resolution=resolution,
        )

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "interval": self.interval,
            "direction": self.direction.value,
            "conflict_resolution": self.conflict_resolution.value,
        }


@dataclass(frozen=True)
class HttpConfig:
    """Shared HTTP client behaviour."""
    timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_delay_seconds: float = 1.0

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ConfigurationError("HTTP_TIMEOUT must be positive")
        if self.max_retries < 1:
            raise ConfigurationError("SYNC_MAX_RETRIES must be at least 1")


@dataclass(frozen=True)
class StorageConfig:
    """Persistent storage configuration."""
    database_path: Path = field(default_factory=lambda: Path("data/sync_state.db"))
    sync_config_path: Optional[Path] = None

    def __post_init__(self):
        object.__setattr__(self, 'database_path', Path(self.database_path))
        if self.sync_config_path is not None:
            object.__setattr__(self, 'sync_config_path', Path(self.sync_config_path))


@dataclass(frozen=True)
class Settings:
    """
    Application settings container.

    All configuration is loaded from environment variables.
    Secrets are never logged or exposed.
    """
    cloud: CloudConfig
    local: LocalAgentConfig
    sync: SyncConfig
    http: HttpConfig
    storage: StorageConfig
    log_level: str = "INFO"

    def __repr__(self) -> str:
        return (
            f"Settings(\n"
            f"  cloud={self.cloud},\n"
            f"  local={self.local},\n"
            f"  sync={self.sync},\n"
            f"  http={self.http},\n"
            f"  storage={self.storage}\n"
            f")"
        )


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Load settings from environment variables.

    Optionally loads from a .env file first.

    Args:
        env_file: Optional path to .env file

    Returns:
        Configured Settings instance

    Raises:
        ConfigurationError: If required configuration is missing
    """
    # Load .env file if provided
    if env_file and env_file.exists():
        _load_env_file(env_file)
    elif Path(".env").exists():
        _load_env_file(Path(".env"))

    try:
        cloud = CloudConfig(
            base_url=os.getenv("CLOUD_BASE_URL", "").rstrip("/"),
            api_key=os.getenv("CLOUD_API_KEY", ""),
            access_token=os.getenv("CLOUD_ACCESS_TOKEN") or None,
            peers_table=os.getenv("CLOUD_PEERS_TABLE", "wireguard_peers"),
        )

        local = LocalAgentConfig(
            base_url=os.getenv("LOCAL_AGENT_URL", "").rstrip("/"),
            server_token=os.getenv("LOCAL_AGENT_TOKEN") or None,
        )

        sync = SyncConfig(
            enabled=os.getenv("SYNC_ENABLED", "false"),
            interval=os.getenv("SYNC_INTERVAL", "60"),
            direction=os.getenv("SYNC_DIRECTION", "bidirectional"),
            conflict_resolution=os.getenv("SYNC_CONFLICT_RESOLUTION", "newest_wins"),
        )

        http = HttpConfig(
            timeout_seconds=float(os.getenv("HTTP_TIMEOUT", "30")),
            max_retries=int(os.getenv("SYNC_MAX_RETRIES", "3")),
            retry_delay_seconds=float(os.getenv("SYNC_RETRY_DELAY", "1.0")),
        )

        sync_config_path = os.getenv("SYNC_CONFIG_PATH")
        storage = StorageConfig(
            database_path=Path(os.getenv("STORAGE_DATABASE_PATH", "data/sync_state.db")),
            sync_config_path=Path(sync_config_path) if sync_config_path else None,
        )

        log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        settings = Settings(
            cloud=cloud,
            local=local,
            sync=sync,
            http=http,
            storage=storage,
            log_level=log_level,
        )

        logger.info("Configuration loaded successfully")
        logger.debug(f"Settings: {settings}")

        return settings

    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e


def load_sync_config(path: Optional[Path], fallback: SyncConfig) -> SyncConfig:
    """
    Read the operator's sync settings blob.

    Called on every scheduler tick so edits to the file apply to the next pass.

    Args:
        path: JSON file holding the settings blob (None disables the lookup)
        fallback: Values used when the file or individual keys are absent

    Returns:
        Validated SyncConfig

    Raises:
        ConfigurationError: If the file is malformed or holds unknown values
    """
    if path is None or not path.exists():
        return fallback

    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot read sync configuration {path}: {e}") from e

    return SyncConfig.from_dict(data, fallback=fallback)


def _load_env_file(path: Path) -> None:
    """
    Load environment variables from a file.

    Simple .env parser that handles:
    - KEY=value
    - KEY="quoted value"
    - # comments
    - Empty lines
    """
    logger.debug(f"Loading environment from {path}")

    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()

            # Skip empty lines and comments
            if not line or line.startswith("#"):
                continue

            # Parse KEY=value
            if "=" not in line:
                logger.warning(f"Invalid line {line_num} in {path}: no '=' found")
                continue

            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()

            # Remove quotes if present
            if value.startswith('"') and value.endswith('"'):
                value = value[1:-1]
            elif value.startswith("'") and value.endswith("'"):
                value = value[1:-1]

            # Only set if not already defined (env vars take precedence)
            if key not in os.environ:
                os.environ[key] = value
