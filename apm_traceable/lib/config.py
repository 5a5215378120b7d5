"""Configuration for tracing instrumentation.

The configuration is resolved once at process start and is immutable
afterwards. It is passed explicitly to a SpanRunner rather than read from
a global at call time.

Example YAML (tracing.yaml):
    apm_traceable:
      service_name: "${APP_NAME}-api"
      enabled: true
      fail_open: true
      include_module: false

Usage:
    from apm_traceable.lib.config import load_config
    config = load_config("./tracing.yaml")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from apm_traceable.lib.env import (
    FALSY,
    TRUTHY,
    env_flag,
    expand_options,
    first_env,
    load_env_file,
)
from apm_traceable.lib.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "SERVICE_NAME_ENV_VARS",
    "TraceableConfig",
    "load_config",
]

# Checked in order; the first non-empty value wins
SERVICE_NAME_ENV_VARS = (
    "APM_TRACEABLE_SERVICE_NAME",
    "OTEL_SERVICE_NAME",
    "DD_SERVICE",
)

CONFIG_SECTION = "apm_traceable"


@dataclass(frozen=True)
class TraceableConfig:
    """Immutable settings consumed by the span runner.

    Attributes:
        service_name: Service reported on every span
        enabled: When False, spans are not opened and work runs untraced
        fail_open: When True, tracer failures are logged and the work still
            runs; when False they propagate to the caller
        include_module: Prefix trace names with the class's module path
        tracer_name: Instrumentation scope name used to obtain the tracer
    """

    service_name: str
    enabled: bool = True
    fail_open: bool = True
    include_module: bool = False
    tracer_name: str = "apm_traceable"

    def __post_init__(self) -> None:
        if not isinstance(self.service_name, str) or not self.service_name.strip():
            raise ConfigurationError(
                "service_name must be a non-empty string",
                field="service_name",
                value=self.service_name,
                suggestion=(
                    "Set service_name in the config file or one of "
                    + ", ".join(SERVICE_NAME_ENV_VARS)
                ),
            )
        if not self.tracer_name:
            raise ConfigurationError(
                "tracer_name must not be empty", field="tracer_name"
            )

    @classmethod
    def from_env(cls, **overrides: Any) -> "TraceableConfig":
        """Build configuration from environment variables.

        Keyword overrides take precedence over the environment.
        """
        values = _env_values()
        values.update(overrides)
        if "service_name" not in values:
            raise ConfigurationError(
                "No service name configured",
                suggestion="Set one of " + ", ".join(SERVICE_NAME_ENV_VARS),
            )
        return cls(**values)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TraceableConfig":
        """Build configuration from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys: {', '.join(unknown)}",
                details={"allowed": ", ".join(sorted(known))},
            )
        values = dict(data)
        for name in ("enabled", "fail_open", "include_module"):
            if name in values:
                values[name] = _coerce_bool(name, values[name])
        return cls(**values)


def _env_values() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    service_name = first_env(SERVICE_NAME_ENV_VARS)
    if service_name:
        values["service_name"] = service_name
    try:
        values["enabled"] = env_flag("APM_TRACEABLE_ENABLED", True)
        values["fail_open"] = env_flag("APM_TRACEABLE_FAIL_OPEN", True)
        values["include_module"] = env_flag("APM_TRACEABLE_INCLUDE_MODULE", False)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    return values


def _coerce_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUTHY:
            return True
        if lowered in FALSY:
            return False
    raise ConfigurationError(f"{name} must be a boolean", field=name, value=value)


def load_config(
    path: Optional[Union[str, Path]] = None,
    *,
    env_file: Optional[Union[str, Path]] = None,
    strict_env: bool = False,
) -> TraceableConfig:
    """Load configuration from an optional YAML file and the environment.

    The .env file (if given) is loaded first so ${VAR} references in the
    YAML can use it. Values in the file win; the environment fills in
    anything the file leaves unset.

    Args:
        path: YAML file, with settings at top level or under an
            ``apm_traceable:`` section
        env_file: Optional .env file to load before reading values
        strict_env: Reject ${VAR} references to unset variables instead
            of leaving them as written

    Returns:
        Validated TraceableConfig

    Raises:
        ConfigurationError: If the file is missing, malformed, or the
            resulting settings are invalid
    """
    if env_file is not None:
        loaded = load_env_file(env_file)
        logger.debug("Loaded env file %s: %s", env_file, loaded)

    file_values: Dict[str, Any] = {}
    if path is not None:
        file_values = _read_yaml(Path(path), strict_env)

    if not file_values:
        return TraceableConfig.from_env()

    values = _env_values()
    values.update(file_values)
    if "service_name" not in values:
        raise ConfigurationError(
            f"No service name in {path} or the environment",
            suggestion="Set service_name or one of " + ", ".join(SERVICE_NAME_ENV_VARS),
        )
    return TraceableConfig.from_dict(values)


def _read_yaml(path: Path, strict_env: bool = False) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {path}", field="path", value=path
        )

    try:
        with path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in {path}", details={"cause": str(e)}
        ) from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Configuration in {path} must be a mapping",
            value=type(raw).__name__,
        )

    section = raw.get(CONFIG_SECTION, raw)
    if not isinstance(section, dict):
        raise ConfigurationError(
            f"'{CONFIG_SECTION}' section in {path} must be a mapping",
            field=CONFIG_SECTION,
        )
    try:
        return expand_options(section, strict=strict_env)
    except KeyError as e:
        raise ConfigurationError(
            f"Unresolved variable in {path}: {e.args[0]}",
            suggestion="Export the variable or load it with env_file=",
        ) from e
