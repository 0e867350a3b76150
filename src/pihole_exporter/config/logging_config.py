from __future__ import annotations

import json
import logging
import logging.handlers
import os
import sys
import urllib.parse
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_TARGETS = ("stderr", "stdout", "syslog")

_TRUTHY = {"1", "true", "yes", "on"}


def get_level(level: str) -> int:
    """Brief: Map a textual level name to a logging constant.

    Inputs:
      - level: One of debug, info, warn, error, fatal (case-insensitive).

    Outputs:
      - int logging level.

    Raises:
      - ValueError: for unknown level names.
    """

    key = str(level or "").strip().lower()
    if key not in _LEVELS:
        raise ValueError(
            f"unknown log level {level!r}; valid levels: [debug, info, warn, error, fatal]"
        )
    return _LEVELS[key]


class SyslogFormatter(logging.Formatter):
    """Formatter for syslog output without timestamps (syslog adds its own)."""

    _TAGS = {
        logging.DEBUG: "[debug]",
        logging.INFO: "[info]",
        logging.WARNING: "[warn]",
        logging.ERROR: "[error]",
        logging.CRITICAL: "[crit]",
    }

    def __init__(self, tag: Optional[str] = None) -> None:
        super().__init__()
        self._prefix = f"{tag}: " if tag else ""

    def format(self, record):
        """Add level_tag attribute and format without timestamp."""
        record.level_tag = self._TAGS.get(record.levelno, f"[lvl{record.levelno}]")
        return f"{self._prefix}{record.level_tag} {record.name}: {record.getMessage()}"


class BracketLevelFormatter(logging.Formatter):
    """Custom formatter that adds bracketed lowercase level tags and UTC timestamps."""

    _TAGS = {
        logging.DEBUG: "[debug]",
        logging.INFO: "[info]",
        logging.WARNING: "[warn]",
        logging.ERROR: "[error]",
        logging.CRITICAL: "[crit]",
    }

    def formatTime(self, record, datefmt=None):
        """Format time as UTC ISO-8601 with Z suffix."""
        return datetime.fromtimestamp(record.created, timezone.utc).strftime(
            "%Y-%m-%dT%H:%M:%SZ"
        )

    def format(self, record):
        """Add level_tag attribute and format the record."""
        record.level_tag = self._TAGS.get(record.levelno, f"[lvl{record.levelno}]")
        return super().format(record)


class JsonLineFormatter(BracketLevelFormatter):
    """Formatter emitting one compact JSON object per record.

    Keys: time, level, logger, msg and, when an exception is attached, exc.
    """

    _NAMES = {
        logging.DEBUG: "debug",
        logging.INFO: "info",
        logging.WARNING: "warn",
        logging.ERROR: "error",
        logging.CRITICAL: "crit",
    }

    def format(self, record):
        payload: Dict[str, Any] = {
            "time": self.formatTime(record),
            "level": self._NAMES.get(record.levelno, f"lvl{record.levelno}"),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"))


def parse_log_format(log_format: Optional[str]) -> Dict[str, Any]:
    """
    Translate a ``logger:<target>?<params>`` string into an init_logging() config.

    Args:
        log_format: Target and format, for example "logger:stderr",
            "logger:stdout?json=true" or "logger:syslog?appname=bob&local=7".
            Empty or None means "logger:stderr".

    Returns:
        Dict with stderr/stdout/json/syslog keys understood by init_logging().

    Raises:
        ValueError: when the prefix, target or a syslog parameter is invalid.

    Example:
        >>> parse_log_format("logger:syslog?appname=bob&local=7")
        {'stderr': False, 'stdout': False, 'json': False, 'syslog': {'tag': 'bob', 'facility': 'LOCAL7'}}
    """
    raw = str(log_format or "").strip() or "logger:stderr"
    scheme, sep, rest = raw.partition(":")
    if scheme != "logger" or not sep:
        raise ValueError(f"invalid log format {raw!r}: expected 'logger:<target>'")

    target, _, query = rest.partition("?")
    if target not in _TARGETS:
        raise ValueError(
            f"invalid log format {raw!r}: target must be one of {', '.join(_TARGETS)}"
        )
    params = dict(urllib.parse.parse_qsl(query, keep_blank_values=True))

    out: Dict[str, Any] = {
        "stderr": target == "stderr",
        "stdout": target == "stdout",
        "json": str(params.get("json", "")).lower() in _TRUTHY,
    }
    if target == "syslog":
        syslog_cfg: Dict[str, Any] = {}
        if params.get("appname"):
            syslog_cfg["tag"] = params["appname"]
        if "local" in params:
            local = params["local"]
            if local not in {str(n) for n in range(8)}:
                raise ValueError(
                    f"invalid log format {raw!r}: local must be 0-7, got {local!r}"
                )
            syslog_cfg["facility"] = f"LOCAL{local}"
        if params.get("address"):
            syslog_cfg["address"] = params["address"]
        out["syslog"] = syslog_cfg or True
    return out


def init_logging(cfg: Optional[Dict[str, Any]]) -> None:
    """
    Initialize logging configuration based on the provided config.

    Args:
        cfg: Logging configuration dictionary with optional keys:
            - level: debug, info, warn, error, fatal (default: info)
            - stderr: boolean to log to stderr (default: True)
            - stdout: boolean to log to stdout (default: False)
            - json: boolean, emit JSON lines instead of bracketed text
            - file: string path to log file (optional)
            - syslog: boolean or dict to enable syslog logging (optional)
                Can be a boolean (True uses defaults) or a dict with:
                - address: Unix socket path (default: /dev/log) or (host, port) tuple
                - facility: syslog facility (default: USER)
                - tag: program identifier to prepend (default: none)

    Raises:
        ValueError: for an unknown level name.

    Example config:
        {
            "level": "info",
            "stderr": True,
            "syslog": {"tag": "pihole_exporter", "facility": "LOCAL7"}
        }
    """
    cfg = cfg or {}

    level = get_level(cfg.get("level", "info"))

    if cfg.get("json"):
        formatter: logging.Formatter = JsonLineFormatter()
    else:
        fmt = "%(asctime)s %(level_tag)s %(name)s: %(message)s"
        formatter = BracketLevelFormatter(fmt=fmt)

    # Configure root logger
    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for h in list(root.handlers):
        root.removeHandler(h)

    if cfg.get("stderr", True):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        root.addHandler(stderr_handler)

    if cfg.get("stdout", False):
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setFormatter(formatter)
        root.addHandler(stdout_handler)

    file_path = cfg.get("file")
    if isinstance(file_path, str) and file_path.strip():
        path = os.path.abspath(os.path.expanduser(file_path.strip()))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    syslog_cfg = cfg.get("syslog")
    if syslog_cfg:
        try:
            tag = None
            if isinstance(syslog_cfg, dict):
                address = syslog_cfg.get("address", "/dev/log")
                facility = getattr(
                    logging.handlers.SysLogHandler,
                    f"LOG_{str(syslog_cfg.get('facility', 'USER')).upper()}",
                    logging.handlers.SysLogHandler.LOG_USER,
                )
                tag = syslog_cfg.get("tag")
            else:
                address = "/dev/log"
                facility = logging.handlers.SysLogHandler.LOG_USER

            syslog_handler = logging.handlers.SysLogHandler(
                address=address, facility=facility
            )
            syslog_handler.setFormatter(SyslogFormatter(tag=tag))
            root.addHandler(syslog_handler)
        except (
            OSError,
            ValueError,
        ) as e:  # pragma: no cover - environment-specific: /dev/log may be absent
            root.warning(f"Failed to configure syslog: {e}")

    # Capture warnings to use the same logging configuration
    logging.captureWarnings(True)
