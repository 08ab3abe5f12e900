"""calsync configuration loading and validation.

Reads ``calsync.toml``, resolves ``${VAR}`` environment references, and
returns a validated CalsyncConfig dataclass.

Example::

    [calsync]
    service_name = "calsync"

    [calsync.logging]
    level = "INFO"
    format = "json"

    [calsync.scheduler]
    failure_cooldown_s = 60
    shutdown_timeout_s = 30

    [calsync.retry]
    max_attempts = 3
    initial_delay_ms = 1000
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from calsync.sync.retry import RetryPolicy

DEFAULT_CONFIG_FILENAME = "calsync.toml"

# Pattern matching ${VAR_NAME}; supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when calsync configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [calsync.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class SchedulerConfig:
    """Scheduler loop configuration from [calsync.scheduler] section.

    ``failure_cooldown_s`` is the pause after an unexpected error inside a
    binding's scheduling loop.  ``shutdown_timeout_s`` bounds how long
    ``stop()`` waits for in-flight runs before cancelling them.
    ``past_days`` is how far back the source window reaches.
    """

    failure_cooldown_s: float = 60.0
    shutdown_timeout_s: float = 30.0
    past_days: int = 7
    status_queue_size: int = 100


@dataclass
class RetryConfig:
    """Remote-call retry configuration from [calsync.retry] section."""

    max_attempts: int = 3
    initial_delay_ms: int = 1000
    multiplier: float = 2.0
    max_delay_ms: int = 30000
    jitter: bool = True

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay_ms=self.initial_delay_ms,
            multiplier=self.multiplier,
            max_delay_ms=self.max_delay_ms,
            jitter=self.jitter,
        )


@dataclass
class CalsyncConfig:
    """Parsed and validated calsync configuration."""

    service_name: str = "calsync"
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _section(parent: dict[str, Any], name: str) -> dict[str, Any]:
    value = parent.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"calsync.{name} must be a table")
    return value


def _coerce_number(section: dict[str, Any], key: str, default: float, *, path: str) -> float:
    raw = section.get(key, default)
    if isinstance(raw, bool):
        raise ConfigError(f"{path}.{key} must be a number, got {raw!r}")
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{path}.{key} must be a number, got {raw!r}") from exc


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    level = str(section.get("level", "INFO")).upper()
    fmt = str(section.get("format", "text")).lower()
    if fmt not in ("text", "json"):
        raise ConfigError(f"calsync.logging.format must be 'text' or 'json', got {fmt!r}")
    log_root = section.get("log_root")
    if log_root is not None and not isinstance(log_root, str):
        raise ConfigError("calsync.logging.log_root must be a string when set")
    return LoggingConfig(level=level, format=fmt, log_root=log_root)


def _parse_scheduler(section: dict[str, Any]) -> SchedulerConfig:
    path = "calsync.scheduler"
    cooldown = _coerce_number(section, "failure_cooldown_s", 60.0, path=path)
    shutdown = _coerce_number(section, "shutdown_timeout_s", 30.0, path=path)
    past_days = int(_coerce_number(section, "past_days", 7, path=path))
    queue_size = int(_coerce_number(section, "status_queue_size", 100, path=path))
    if cooldown < 0:
        raise ConfigError(f"{path}.failure_cooldown_s must be >= 0")
    if shutdown < 0:
        raise ConfigError(f"{path}.shutdown_timeout_s must be >= 0")
    if past_days < 0:
        raise ConfigError(f"{path}.past_days must be >= 0")
    if queue_size < 1:
        raise ConfigError(f"{path}.status_queue_size must be >= 1")
    return SchedulerConfig(
        failure_cooldown_s=cooldown,
        shutdown_timeout_s=shutdown,
        past_days=past_days,
        status_queue_size=queue_size,
    )


def _parse_retry(section: dict[str, Any]) -> RetryConfig:
    path = "calsync.retry"
    max_attempts = int(_coerce_number(section, "max_attempts", 3, path=path))
    initial = int(_coerce_number(section, "initial_delay_ms", 1000, path=path))
    multiplier = _coerce_number(section, "multiplier", 2.0, path=path)
    max_delay = int(_coerce_number(section, "max_delay_ms", 30000, path=path))
    jitter = section.get("jitter", True)
    if not isinstance(jitter, bool):
        raise ConfigError(f"{path}.jitter must be a boolean, got {jitter!r}")
    if max_attempts < 0:
        raise ConfigError(f"{path}.max_attempts must be >= 0")
    if initial < 0 or max_delay < 0:
        raise ConfigError(f"{path} delays must be >= 0")
    if multiplier < 1.0:
        raise ConfigError(f"{path}.multiplier must be >= 1.0")
    return RetryConfig(
        max_attempts=max_attempts,
        initial_delay_ms=initial,
        multiplier=multiplier,
        max_delay_ms=max_delay,
        jitter=jitter,
    )


def parse_config(data: dict[str, Any]) -> CalsyncConfig:
    """Build a CalsyncConfig from already-decoded TOML data."""
    data = resolve_env_vars(data)

    section = data.get("calsync", {})
    if not isinstance(section, dict):
        raise ConfigError("[calsync] must be a table")

    service_name = str(section.get("service_name", "calsync")).strip()
    if not service_name:
        raise ConfigError("calsync.service_name must be a non-empty string")

    return CalsyncConfig(
        service_name=service_name,
        logging=_parse_logging(_section(section, "logging")),
        scheduler=_parse_scheduler(_section(section, "scheduler")),
        retry=_parse_retry(_section(section, "retry")),
    )


def load_config(path: Path) -> CalsyncConfig:
    """Load and validate a calsync TOML file.

    *path* may point at the file itself or at a directory containing
    ``calsync.toml``.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or holds invalid values.
    """
    toml_path = path / DEFAULT_CONFIG_FILENAME if path.is_dir() else path

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
