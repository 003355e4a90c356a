"""Configuration management for the journal loader.

Provides typed configuration classes. Values come from built-in
defaults, then an optional YAML file, then environment variables (which
always win).

Example ``config.yaml``::

    threads_count: 4
    batch_size: 5000
    clickhouse:
      host: clickhouse
      database: logs
      table_suffix: Main
"""

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import yaml

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or the store cannot be reached."""


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _to_optional_float(value: Any) -> Optional[float]:
    if value is None or str(value).strip() == "":
        return None
    return float(value)


@dataclass
class ClickHouseConfig:
    """ClickHouse connection and table layout configuration."""

    host: str = "localhost"
    port: int = 8123
    user: str = "default"
    password: str = ""
    database: str = "default"
    table_suffix: str = "Main"
    engine: str = "MergeTree"
    order_by: str = "datetime, event"
    partition_by: str = "toHour(datetime), source"
    driver: str = "clickhouse+http"

    @property
    def connection_string(self) -> str:
        return self.url_for(self.database)

    def url_for(self, database: str) -> str:
        auth = self.user if not self.password else f"{self.user}:{self.password}"
        return f"{self.driver}://{auth}@{self.host}:{self.port}/{database}"


@dataclass
class LoaderConfig:
    """Top-level loader configuration."""

    threads_count: int = 1
    batch_size: int = 1000
    log_extension: str = ".log"
    daemon_mode: bool = False
    monitoring_interval_sec: int = 30
    threshold_size_hash_by_attr: int = 10 * 1024 * 1024
    empty_file_threshold: int = 3
    shutdown_timeout: Optional[float] = None
    log_level: str = "INFO"
    clickhouse: ClickHouseConfig = field(default_factory=ClickHouseConfig)

    def validate(self) -> list:
        """Validate configuration values.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors = []

        if self.threads_count < 1:
            errors.append("threads_count must be at least 1")
        if self.batch_size < 1:
            errors.append("batch_size must be at least 1")
        if not self.log_extension.startswith("."):
            errors.append("log_extension must start with '.'")
        if self.monitoring_interval_sec < 1:
            errors.append("monitoring_interval_sec must be at least 1")
        if self.threshold_size_hash_by_attr < 0:
            errors.append("threshold_size_hash_by_attr must not be negative")
        if not self.clickhouse.host:
            errors.append("ClickHouse host is required")
        if not self.clickhouse.database:
            errors.append("ClickHouse database is required")
        if not self.clickhouse.table_suffix:
            errors.append("ClickHouse table suffix is required")

        return errors


# Environment variable -> (section, attribute, converter).
# Section ``None`` is the top-level LoaderConfig.
ENV_BINDINGS: Dict[str, Tuple[Optional[str], str, Callable[[Any], Any]]] = {
    "DAEMON_MODE": (None, "daemon_mode", _to_bool),
    "LOG_FILE_EXTENSION": (None, "log_extension", str),
    "THREADCOUNT": (None, "threads_count", int),
    "BATCHSIZE": (None, "batch_size", int),
    "THRESHOLD_SIZE_HASH_BY_ATTR": (None, "threshold_size_hash_by_attr", int),
    "MONITORING_INTERVAL_SEC": (None, "monitoring_interval_sec", int),
    "SHUTDOWN_TIMEOUT_SEC": (None, "shutdown_timeout", _to_optional_float),
    "TJ_LOG_LEVEL": (None, "log_level", str),
    "CH_HOST": ("clickhouse", "host", str),
    "CH_PORT": ("clickhouse", "port", int),
    "CH_USER": ("clickhouse", "user", str),
    "CH_PASS": ("clickhouse", "password", str),
    "CH_DATABASE": ("clickhouse", "database", str),
    "CH_ENGINE": ("clickhouse", "engine", str),
    "CH_TABLEPOSTFIX": ("clickhouse", "table_suffix", str),
    "CH_ORDERBY": ("clickhouse", "order_by", str),
    "CH_PARTITION": ("clickhouse", "partition_by", str),
}

# Converters for values read from the YAML file.
_FILE_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    attr: convert for (_, attr, convert) in ENV_BINDINGS.values()
}


def _apply_mapping(target: Any, values: Mapping[str, Any], source: str) -> None:
    known = {f.name for f in fields(target)}
    for key, value in values.items():
        if key == "clickhouse" and isinstance(target, LoaderConfig):
            continue
        if key not in known:
            log.warning("Ignoring unknown configuration key '%s' in %s", key, source)
            continue
        convert = _FILE_CONVERTERS.get(key, lambda v: v)
        try:
            setattr(target, key, convert(value))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Invalid value for '{key}' in {source}: {value!r}"
            ) from exc


def read_config_file(path: str) -> Dict[str, Any]:
    """Read a YAML configuration file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed mapping (empty for an empty file).

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Failed to read config file '{path}': {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file '{path}' must contain a mapping")
    return data


def apply_file_values(config: LoaderConfig, data: Mapping[str, Any], source: str) -> None:
    """Apply values from a parsed config file onto ``config``."""
    _apply_mapping(config, data, source)
    clickhouse = data.get("clickhouse") or {}
    if not isinstance(clickhouse, dict):
        raise ConfigurationError(f"'clickhouse' section in {source} must be a mapping")
    _apply_mapping(config.clickhouse, clickhouse, f"{source} [clickhouse]")


def apply_env_overrides(config: LoaderConfig, environ: Mapping[str, str] = None) -> None:
    """Apply environment variable overrides declared in ``ENV_BINDINGS``."""
    environ = os.environ if environ is None else environ
    for env_name, (section, attr, convert) in ENV_BINDINGS.items():
        raw = environ.get(env_name)
        if raw is None:
            continue
        target = config if section is None else getattr(config, section)
        try:
            setattr(target, attr, convert(raw))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Invalid value for environment variable {env_name}: {raw!r}"
            ) from exc
        log.debug("Configuration %s overridden from environment", env_name)


def get_config(path: Optional[str] = None, environ: Mapping[str, str] = None) -> LoaderConfig:
    """Create and validate the loader configuration.

    Args:
        path: Optional YAML file. Defaults to ``PATH_TO_CONFIG`` or
            ``config.yaml``; a missing default file is not an error.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        Validated LoaderConfig instance.

    Raises:
        ConfigurationError: If the file is unreadable or values are invalid.
    """
    environ = os.environ if environ is None else environ
    explicit = path is not None or "PATH_TO_CONFIG" in environ
    path = path or environ.get("PATH_TO_CONFIG", DEFAULT_CONFIG_PATH)

    config = LoaderConfig()
    if os.path.exists(path):
        apply_file_values(config, read_config_file(path), path)
        log.info("Using settings from config file %s", path)
    elif explicit:
        raise ConfigurationError(f"Config file '{path}' not found")
    else:
        log.info("Config file %s not found, using defaults", path)

    apply_env_overrides(config, environ)

    errors = config.validate()
    if errors:
        raise ConfigurationError(f"Configuration errors: {'; '.join(errors)}")
    return config
