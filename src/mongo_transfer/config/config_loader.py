"""
Configuration loader for export/import runs.

Precedence, lowest first: built-in defaults, optional YAML file,
environment variables (a .env file is loaded first), CLI flags.
"""

import logging
import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from ..core.exceptions import ConfigError

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("json", "csv")
SUPPORTED_STRATEGIES = ("insert", "upsert", "skip")


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "on", "1"):
        return True
    if text in ("false", "no", "off", "0"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


# Environment variable -> (field name, type)
ENV_OVERRIDES = {
    "MONGO_URI": ("mongo_uri", str),
    "DB_NAME": ("db_name", str),
    "DATA_FOLDER": ("data_folder", str),
    "BATCH_SIZE": ("batch_size", int),
    "FLUSH_INTERVAL": ("flush_interval", float),
    "MAX_WORKERS": ("max_workers", int),
    "LOG_LEVEL": ("log_level", str),
    "LOG_FILE": ("log_file", str),
}

# YAML section -> {key: (field name, type)}
YAML_SECTIONS = {
    "mongo": {
        "uri": ("mongo_uri", str),
        "db_name": ("db_name", str),
        "server_timeout_ms": ("server_timeout_ms", int),
    },
    "paths": {"data_folder": ("data_folder", str)},
    "transfer": {
        "file_format": ("file_format", str),
        "batch_size": ("batch_size", int),
        "flush_interval": ("flush_interval", float),
        "max_workers": ("max_workers", int),
        "conflict_strategy": ("conflict_strategy", str),
        "clear_collections": ("clear_collections", _to_bool),
        "clear_output": ("clear_output", _to_bool),
        "verify_checksums": ("verify_checksums", _to_bool),
    },
    "logging": {"level": ("log_level", str), "file": ("log_file", str)},
}


@dataclass(frozen=True)
class TransferConfig:
    """
    Settings for one export or import run.

    Built once and passed to the session, the pipelines and the CLI.

    Attributes:
        mongo_uri: MongoDB connection string
        db_name: Source (export) or target (import) database
        data_folder: Directory holding the exported files and manifest
        file_format: "json" or "csv"
        batch_size: Documents per bulk write on import
        flush_interval: Seconds after which a partial batch is written anyway
        max_workers: Collections exported concurrently
        conflict_strategy: "insert", "upsert" or "skip"
        clear_collections: Empty each target collection before importing into it
        clear_output: Empty the data folder before exporting
        verify_checksums: Check files against manifest.sha256 on import
        server_timeout_ms: Server selection timeout for the initial connection
        log_level: Level name for the package logger
        log_file: JSON-lines log file (None disables it)
    """
    mongo_uri: str = "mongodb://localhost:27017"
    db_name: str = "test"
    data_folder: str = "./data"
    file_format: str = "json"
    batch_size: int = 1000
    flush_interval: float = 1.0
    max_workers: int = 4
    conflict_strategy: str = "insert"
    clear_collections: bool = False
    clear_output: bool = False
    verify_checksums: bool = True
    server_timeout_ms: int = 5000
    log_level: str = "info"
    log_file: Optional[str] = "mongo_transfer.log"

    @property
    def data_path(self) -> Path:
        return Path(self.data_folder)

    @classmethod
    def load(
        cls,
        config_path: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        use_dotenv: bool = True,
    ) -> "TransferConfig":
        """
        Build a configuration from defaults, a YAML file and the environment.

        Args:
            config_path: Optional YAML file
            env: Environment mapping (defaults to os.environ)
            use_dotenv: Load a .env file into os.environ first

        Returns:
            Validated TransferConfig
        """
        if use_dotenv and env is None:
            load_dotenv()

        config = cls()
        if config_path is not None:
            config = config.with_overrides(**_load_yaml(Path(config_path)))

        config = config.with_overrides(**_env_overrides(os.environ if env is None else env))
        config.validate()
        return config

    def with_overrides(self, **values: Any) -> "TransferConfig":
        """Return a copy with the given non-None fields replaced."""
        changes = {key: value for key, value in values.items() if value is not None}
        unknown = set(changes) - set(self.__dataclass_fields__)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        return replace(self, **changes)

    def validate(self) -> None:
        """Raise ConfigError for values the pipelines cannot work with."""
        if self.file_format not in SUPPORTED_FORMATS:
            raise ConfigError(f"Unsupported format: {self.file_format}")
        if self.conflict_strategy not in SUPPORTED_STRATEGIES:
            raise ConfigError(f"Unsupported conflict strategy: {self.conflict_strategy}")
        if self.batch_size < 1:
            raise ConfigError(f"batch_size must be positive, got {self.batch_size}")
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be positive, got {self.max_workers}")
        if self.flush_interval <= 0:
            raise ConfigError(f"flush_interval must be positive, got {self.flush_interval}")
        if not self.mongo_uri:
            raise ConfigError("Connection URL is required")
        if not self.db_name:
            raise ConfigError("Database name is required")

    def to_dict(self) -> Dict[str, Any]:
        """Settings as a dict, with credentials removed from the URI."""
        data = asdict(self)
        data["mongo_uri"] = redact_uri(self.mongo_uri)
        return data


def _load_yaml(path: Path) -> Dict[str, Any]:
    """Flatten the YAML sections into TransferConfig field values."""
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    logger.info(f"Loading config from: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    values: Dict[str, Any] = {}
    for section, keys in YAML_SECTIONS.items():
        section_data = raw.get(section) or {}
        if not isinstance(section_data, dict):
            raise ConfigError(f"Section '{section}' in {path} must be a mapping")
        for key, (field_name, cast) in keys.items():
            value = section_data.get(key)
            if value is None:
                continue
            try:
                values[field_name] = cast(value)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid value for {section}.{key} in {path}: {value!r}") from e
    return values


def _env_overrides(env: Dict[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for var, (field_name, cast) in ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        try:
            values[field_name] = cast(raw)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {var}: {raw!r}") from e
    return values


def redact_uri(uri: str) -> str:
    scheme, sep, rest = uri.partition("://")
    if not sep or "@" not in rest:
        return uri
    credentials, _, host = rest.rpartition("@")
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"
