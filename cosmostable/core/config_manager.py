"""
Configuration for cosmostable.

Pydantic models for the client settings and a ConfigManager that merges them
from a file, the environment and explicit overrides.
"""

import os
import json
import logging
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple
from enum import Enum

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator, ValidationError, ConfigDict

from .logging_config import REDACTED

if TYPE_CHECKING:
    from ..storage.cosmos import CosmosStorage

logger = logging.getLogger(__name__)


class LogLevel(str, Enum):
    """Valid log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StorageBackendType(str, Enum):
    """Supported storage backend types."""
    COSMOS = "cosmos"
    MEMORY = "memory"


class AuthMode(str, Enum):
    """How the client authenticates against Cosmos DB."""
    SERVICE_PRINCIPAL = "service_principal"
    MANAGED_IDENTITY = "managed_identity"
    CONNECTION_STRING = "connection_string"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = LogLevel.INFO
    format: str = "json"
    file: Optional[str] = None
    rotation_size: str = "10MB"
    rotation_count: int = 5
    module_levels: Optional[Dict[str, str]] = Field(
        default=None,
        description="Per-module log levels, e.g., {'cosmostable.storage.cosmos': 'DEBUG'}"
    )


class CosmosConfig(BaseModel):
    """Cosmos DB client configuration."""
    backend: StorageBackendType = StorageBackendType.COSMOS
    auth_mode: AuthMode = AuthMode.SERVICE_PRINCIPAL

    instance_name: Optional[str] = Field(default=None, description="Cosmos DB account name")
    tenant_id: Optional[str] = None
    subscription_id: Optional[str] = None
    app_id: Optional[str] = None
    app_secret: Optional[str] = None
    connection_string: Optional[str] = None

    database_name: str = "Test"
    create_database_if_not_exists: bool = True
    page_size: int = Field(default=100, ge=1, description="Max items per query page")
    max_concurrency: int = Field(default=10, ge=1, description="Parallel requests in batch operations")

    model_config = ConfigDict(use_enum_values=True)

    @field_validator("database_name")
    @classmethod
    def validate_database_name(cls, v: str) -> str:
        """Validate database name."""
        if not v:
            raise ValueError("Database name cannot be empty")
        if len(v) > 255:
            raise ValueError("Database name must be 255 characters or less")
        if not all(c.isalnum() or c in ['_', '-'] for c in v):
            raise ValueError("Database name can only contain alphanumeric characters, underscores, and hyphens")
        return v

    @model_validator(mode="after")
    def validate_auth_settings(self) -> "CosmosConfig":
        """Ensure the settings required by the auth mode are present."""
        if self.backend != StorageBackendType.COSMOS.value:
            return self

        if self.auth_mode == AuthMode.CONNECTION_STRING.value:
            required = ["connection_string"]
        elif self.auth_mode == AuthMode.MANAGED_IDENTITY.value:
            required = ["instance_name", "subscription_id"]
        else:
            required = ["instance_name", "tenant_id", "subscription_id", "app_id", "app_secret"]

        missing = [name for name in required if not getattr(self, name)]
        if missing:
            raise ValueError(f"Auth mode '{self.auth_mode}' requires: {', '.join(missing)}")
        return self


class TableStorageSettings(BaseModel):
    """Main cosmostable configuration schema."""

    version: str = Field(default="0.1.0", description="Configuration version")

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    storage: CosmosConfig = Field(
        default_factory=lambda: CosmosConfig(backend=StorageBackendType.MEMORY)
    )

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate version format."""
        parts = v.split(".")
        if len(parts) != 3:
            raise ValueError("Version must be in format x.y.z")
        for part in parts:
            if not part.isdigit():
                raise ValueError("Version components must be numeric")
        return v

    model_config = ConfigDict(use_enum_values=True)


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


# Environment variable -> (section, field, converter)
ENV_VARS: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "COSMOSTABLE_BACKEND": ("storage", "backend", str.lower),
    "COSMOSTABLE_AUTH_MODE": ("storage", "auth_mode", str.lower),
    "COSMOSTABLE_INSTANCE_NAME": ("storage", "instance_name", str),
    "COSMOSTABLE_TENANT_ID": ("storage", "tenant_id", str),
    "COSMOSTABLE_SUBSCRIPTION_ID": ("storage", "subscription_id", str),
    "COSMOSTABLE_APP_ID": ("storage", "app_id", str),
    "COSMOSTABLE_APP_SECRET": ("storage", "app_secret", str),
    "COSMOSTABLE_CONNECTION_STRING": ("storage", "connection_string", str),
    "COSMOSTABLE_DATABASE_NAME": ("storage", "database_name", str),
    "COSMOSTABLE_CREATE_DATABASE": ("storage", "create_database_if_not_exists", _as_bool),
    "COSMOSTABLE_PAGE_SIZE": ("storage", "page_size", int),
    "COSMOSTABLE_MAX_CONCURRENCY": ("storage", "max_concurrency", int),
    "COSMOSTABLE_LOG_LEVEL": ("logging", "level", str.upper),
    "COSMOSTABLE_LOG_FILE": ("logging", "file", str),
}

SECRET_FIELDS = ("app_secret", "connection_string")


def _read_yaml(stream: IO[str]) -> Dict[str, Any]:
    return yaml.safe_load(stream) or {}


_FILE_READERS: Dict[str, Callable[[IO[str]], Dict[str, Any]]] = {
    ".yaml": _read_yaml,
    ".yml": _read_yaml,
    ".json": json.load,
}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``base`` updated with ``override``; nested dicts merge key by key."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """
    Loads and validates cosmostable settings.

    Sources, lowest to highest precedence: model defaults, a YAML or JSON
    file, ``COSMOSTABLE_*`` environment variables, explicit overrides.

    Example:
        ```python
        manager = ConfigManager()
        settings = manager.load("cosmostable.yaml")
        setup_logging_from_config(settings.logging)
        storage = manager.create_storage()
        ```
    """

    def __init__(self):
        self._config: Optional[TableStorageSettings] = None
        self._config_file: Optional[Path] = None
        self._overrides: Optional[Dict[str, Any]] = None

    def load(
        self,
        config_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None
    ) -> TableStorageSettings:
        """
        Merge all sources and validate the result.

        Args:
            config_file: Path to a .yaml, .yml or .json file
            overrides: Nested dict applied last

        Returns:
            Validated TableStorageSettings

        Raises:
            ValidationError: If the merged settings are invalid
            FileNotFoundError: If config_file doesn't exist
            ValueError: If config_file has an unsupported extension
        """
        merged: Dict[str, Any] = {}
        sources = []

        if config_file:
            merged = self._read_file(Path(config_file))
            sources.append(f"file {config_file}")

        env = self._read_env()
        if env:
            merged = deep_merge(merged, env)
            sources.append(f"{sum(len(section) for section in env.values())} environment variable(s)")

        if overrides:
            merged = deep_merge(merged, overrides)
            sources.append("explicit overrides")

        logger.info(f"Loading configuration from {', '.join(sources) or 'defaults'}")

        try:
            settings = TableStorageSettings(**merged)
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

        self._config = settings
        self._config_file = Path(config_file) if config_file else None
        self._overrides = overrides
        logger.info(f"Active configuration: {json.dumps(self.redacted(), indent=2)}")
        return settings

    @staticmethod
    def _read_file(path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        reader = _FILE_READERS.get(path.suffix.lower())
        if reader is None:
            raise ValueError(f"Unsupported config file format: {path.suffix}")

        with open(path, 'r') as f:
            return reader(f)

    @staticmethod
    def _read_env() -> Dict[str, Dict[str, Any]]:
        sections: Dict[str, Dict[str, Any]] = {}
        for name, (section, field, convert) in ENV_VARS.items():
            value = os.getenv(name)
            if value:
                sections.setdefault(section, {})[field] = convert(value)
        return sections

    def redacted(self) -> Dict[str, Any]:
        """Loaded settings as a dict with secret fields masked."""
        data = self.get_config().model_dump(mode="json")
        for name in SECRET_FIELDS:
            if data["storage"].get(name):
                data["storage"][name] = REDACTED
        return data

    def get_config(self) -> TableStorageSettings:
        """
        Return the loaded settings.

        Raises:
            RuntimeError: If load() hasn't been called
        """
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config

    def reload(self) -> TableStorageSettings:
        """Load again from the same file and overrides, picking up file and env changes."""
        config_file = str(self._config_file) if self._config_file else None
        return self.load(config_file=config_file, overrides=self._overrides)

    def create_storage(self) -> "CosmosStorage":
        """Build a storage client for the loaded settings; it connects on first use."""
        from ..storage.cosmos import CosmosStorage

        return CosmosStorage(self.get_config().storage)
