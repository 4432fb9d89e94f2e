"""
Configuration loader for SnowpipeSettings.json / snowpipe.yaml files.

Keys may be written in snake_case or with the PascalCase names used by
SnowpipeSettings.json (BufferCountRecords, BufferFlushTime, ...).
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .policy import Thresholds

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SNOWPIPE_CONFIG"
CONFIG_FILENAMES = ("SnowpipeSettings.json", "snowpipe.yaml", "snowpipe.yml")

# PascalCase settings names → PipeConfig fields
_KEY_ALIASES = {
    "BufferCountRecords": "record_count_limit",
    "BufferSizeBytes": "byte_size_limit",
    "BufferFlushTime": "disk_flush_interval_seconds",
    "MemoryBufferFlushTime": "memory_flush_interval_millis",
    "CurrentLogFilename": "current_log_filename",
    "Account": "account",
    "User": "user",
    "PrivateKeyFilename": "private_key_filename",
    "PrivateKeyPassphrase": "private_key_passphrase",
    "DatabaseName": "database_name",
    "SchemaName": "schema_name",
    "PipeName": "pipe_name",
    "StageName": "stage_name",
}

_REQUIRED = (
    "account",
    "user",
    "private_key_filename",
    "database_name",
    "schema_name",
    "pipe_name",
    "stage_name",
)

STAGE_TYPES = ("internal", "s3")


class ConfigError(ValueError):
    """Raised when a configuration file is missing keys or has bad values."""


@dataclass(frozen=True)
class PipeConfig:
    """Settings for one buffered Snowpipe stream. Immutable after load."""
    account: str
    user: str
    private_key_filename: str
    database_name: str
    schema_name: str
    pipe_name: str
    stage_name: str
    private_key_passphrase: Optional[str] = None

    record_count_limit: int = 1_000_000
    byte_size_limit: int = 100_000_000
    disk_flush_interval_seconds: float = 120
    memory_flush_interval_millis: float = 10_000
    current_log_filename: str = "SnowpipeMessages.tmp.gz"

    cloud_host: str = "snowflakecomputing.com"
    http_timeout_seconds: float = 30
    stage_type: str = "internal"
    s3_bucket: Optional[str] = None
    s3_prefix: str = ""
    s3_region: str = "us-east-1"

    @property
    def thresholds(self) -> Thresholds:
        return Thresholds(
            record_count_limit=int(self.record_count_limit),
            byte_size_limit=int(self.byte_size_limit),
            disk_flush_interval_seconds=self.disk_flush_interval_seconds,
            memory_flush_interval_millis=self.memory_flush_interval_millis,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipeConfig":
        """
        Build a PipeConfig from a parsed settings mapping.

        Raises:
            ConfigError: On missing required keys, unknown keys or bad values
        """
        if not isinstance(data, dict):
            raise ConfigError(f"Settings must be a mapping, got {type(data).__name__}")

        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = _KEY_ALIASES.get(key, key)
            if name not in known:
                raise ConfigError(f"Unknown setting: {key}")
            values[name] = value

        missing = [name for name in _REQUIRED if not values.get(name)]
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")

        config = cls(**values)
        config.validate()
        return config

    def validate(self) -> None:
        if self.stage_type not in STAGE_TYPES:
            raise ConfigError(
                f"stage_type must be one of {STAGE_TYPES}, got {self.stage_type!r}"
            )
        if self.stage_type == "s3" and not self.s3_bucket:
            raise ConfigError("s3_bucket is required when stage_type is 's3'")
        try:
            Thresholds(
                record_count_limit=self.record_count_limit,
                byte_size_limit=self.byte_size_limit,
                disk_flush_interval_seconds=self.disk_flush_interval_seconds,
                memory_flush_interval_millis=self.memory_flush_interval_millis,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(str(e)) from e


def load_config(config_path: Optional[Union[str, Path]] = None) -> PipeConfig:
    """
    Load configuration.

    Search order:
    1. Provided config_path
    2. SNOWPIPE_CONFIG environment variable
    3. SnowpipeSettings.json / snowpipe.yaml in the current directory
    4. The same names in parent directories (walk up the tree)

    Raises:
        FileNotFoundError: If no config file is found
        ConfigError: If the file content is invalid
    """
    if config_path:
        return _load_from_path(Path(config_path))

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return _load_from_path(Path(env_path))

    current = Path.cwd()
    while True:
        for name in CONFIG_FILENAMES:
            candidate = current / name
            if candidate.exists():
                return _load_from_path(candidate)

        # Stop at filesystem root
        if current == current.parent:
            break
        current = current.parent

    raise FileNotFoundError(
        f"No Snowpipe settings found (looked for {', '.join(CONFIG_FILENAMES)})"
    )


def _load_from_path(path: Path) -> PipeConfig:
    """Load config from a specific path"""
    with open(path, "r", encoding="utf-8") as f:
        content = f.read()

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(content)
        else:
            data = yaml.safe_load(content) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e

    logger.debug(f"Loaded settings from {path}")
    return PipeConfig.from_dict(data)


def write_config(config: PipeConfig, path: Union[str, Path]) -> Path:
    """Write settings as indented JSON."""
    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)
    return path
