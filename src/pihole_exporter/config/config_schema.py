"""Declarative exporter configuration.

All settings are gathered once at startup from (highest precedence first)
command-line flags, ``PIHOLE_EXPORTER_*`` environment variables, an optional
YAML file and the model defaults, then validated in a single pydantic model.
The resulting ExporterConfig is frozen and passed explicitly to the client,
collector and webserver.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import MissingConfiguration
from .logging_config import get_level, parse_log_format

logger = logging.getLogger(__name__)

ENV_PREFIX = "PIHOLE_EXPORTER_"

# Routes served next to the metrics path.
RESERVED_PATHS = frozenset({"/", "/health"})

# Environment variable suffix -> ExporterConfig field.
ENV_FIELDS = {
    "LISTEN_ADDRESS": "listen_address",
    "TELEMETRY_PATH": "metrics_path",
    "ENDPOINT": "endpoint",
    "AUTH": "auth",
    "TIMEOUT": "timeout",
    "LOG_LEVEL": "log_level",
    "LOG_FORMAT": "log_format",
}

# YAML (section, key) -> ExporterConfig field; section None means top level.
YAML_FIELDS = {
    (None, "listen_address"): "listen_address",
    (None, "metrics_path"): "metrics_path",
    (None, "include_process_metrics"): "include_process_metrics",
    ("pihole", "endpoint"): "endpoint",
    ("pihole", "auth"): "auth",
    ("pihole", "timeout"): "timeout",
    ("logging", "level"): "log_level",
    ("logging", "format"): "log_format",
}


def parse_listen_address(address: str) -> Tuple[str, int]:
    """Brief: Split a Go-style listen address into host and port.

    Inputs:
      - address: "[host]:port", e.g. ":9311", "127.0.0.1:9311" or "[::1]:9311".

    Outputs:
      - (host, port): an empty host becomes "0.0.0.0".

    Raises:
      - ValueError: when no port is given or it is outside 1-65535.

    Example:
      >>> parse_listen_address(":9311")
      ('0.0.0.0', 9311)
      >>> parse_listen_address("[::1]:9311")
      ('::1', 9311)
    """

    raw = str(address or "").strip()
    host, sep, port_text = raw.rpartition(":")
    if not sep:
        raise ValueError(f"listen address {raw!r} must be of the form [host]:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"listen address {raw!r} has an invalid port") from None
    if not 0 < port < 65536:
        raise ValueError(f"listen address {raw!r} port must be between 1 and 65535")
    return host or "0.0.0.0", port


class ExporterConfig(BaseModel):
    """Brief: Validated, immutable exporter settings.

    Inputs:
      - endpoint: Pi-hole base URL (required, non-blank).
      - auth: Pi-hole API token (optional).
      - timeout: Upstream request timeout in seconds; None keeps the
        requests default.
      - listen_address: "[host]:port" to serve on (default ":9311").
      - metrics_path: Path for the exposition endpoint (default "/metrics").
      - log_level / log_format: see logging_config.init_logging and
        logging_config.parse_log_format.
      - include_process_metrics: also export process/platform/gc metrics.

    Outputs:
      - Frozen ExporterConfig instance.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    endpoint: str = Field(min_length=1)
    auth: str = ""
    timeout: Optional[float] = Field(default=None, gt=0)
    listen_address: str = ":9311"
    metrics_path: str = "/metrics"
    log_level: str = "info"
    log_format: str = "logger:stderr"
    include_process_metrics: bool = False

    @field_validator("listen_address")
    @classmethod
    def _check_listen_address(cls, value: str) -> str:
        parse_listen_address(value)
        return value

    @field_validator("metrics_path")
    @classmethod
    def _check_metrics_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("metrics path must start with '/'")
        if value in RESERVED_PATHS:
            raise ValueError(f"metrics path must not be one of {sorted(RESERVED_PATHS)}")
        if "{" in value or "}" in value:
            raise ValueError("metrics path must not contain '{' or '}'")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        get_level(value)
        return value.lower()

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        parse_log_format(value)
        return value

    @property
    def listen(self) -> Tuple[str, int]:
        return parse_listen_address(self.listen_address)

    def logging_config(self) -> Dict[str, Any]:
        """Return the dict expected by logging_config.init_logging()."""

        cfg = parse_log_format(self.log_format)
        cfg["level"] = self.log_level
        return cfg


def load_yaml_config(path: str) -> Dict[str, Any]:
    """Brief: Read a YAML config file and flatten it to ExporterConfig fields.

    Inputs:
      - path: Filesystem path to the YAML document.

    Outputs:
      - Dict keyed by ExporterConfig field names. Unknown keys are logged at
        warning level and dropped.

    Raises:
      - OSError: when the file cannot be read.
      - ValueError: when the document is not a mapping.
    """

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid configuration in {path}: top level must be a mapping")

    out: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict) and key in {"pihole", "logging"}:
            for subkey, subval in value.items():
                field = YAML_FIELDS.get((key, subkey))
                if field is None:
                    logger.warning("Ignoring unknown config key %s.%s in %s", key, subkey, path)
                    continue
                out[field] = subval
            continue
        field = YAML_FIELDS.get((None, key))
        if field is None:
            logger.warning("Ignoring unknown config key %s in %s", key, path)
            continue
        out[field] = value
    return out


def env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Return ExporterConfig fields set through PIHOLE_EXPORTER_* variables."""

    out: Dict[str, Any] = {}
    for suffix, field in ENV_FIELDS.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value is not None and value != "":
            out[field] = value
    return out


def build_config(
    cli: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    config_path: Optional[str] = None,
) -> ExporterConfig:
    """Brief: Merge flags, environment and YAML into a validated ExporterConfig.

    Inputs:
      - cli: Mapping of field name -> value from the command line; None
        values mean "not given".
      - environ: Environment mapping (defaults to os.environ).
      - config_path: Optional YAML file path.

    Outputs:
      - ExporterConfig.

    Raises:
      - MissingConfiguration: when no endpoint is configured anywhere.
      - ValueError: for any other invalid setting, with one line per error.

    Example:
      >>> cfg = build_config({"endpoint": "http://pi.hole"}, environ={})
      >>> cfg.listen
      ('0.0.0.0', 9311)
    """

    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    if config_path:
        values.update(
            {k: v for k, v in load_yaml_config(config_path).items() if v is not None}
        )
    values.update(env_overrides(environ))
    values.update({k: v for k, v in (cli or {}).items() if v is not None})

    try:
        return ExporterConfig(**values)
    except ValidationError as exc:
        errors = exc.errors()
        if any(
            tuple(err.get("loc", ())) == ("endpoint",)
            and err.get("type") in {"missing", "string_too_short"}
            for err in errors
        ):
            raise MissingConfiguration("Pihole endpoint cannot be empty.") from exc
        header = f"Invalid configuration in {config_path or '<flags/environment>'}:"
        lines = [header]
        for err in errors:
            where = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
            lines.append(f"- {where}: {err.get('msg')}")
        raise ValueError("\n".join(lines)) from exc
