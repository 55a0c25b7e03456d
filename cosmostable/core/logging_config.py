"""
Logging setup for cosmostable.

Structured (JSON) or plain text output to stdout and an optional rotating
file. Every handler carries a filter that scrubs Cosmos DB account keys,
master-key auth tokens and service principal secrets before anything is
written.
"""

import json
import logging
import logging.handlers
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .config_manager import LoggingConfig

REDACTED = "***REDACTED***"

# Context variable for correlation IDs
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

# The Azure SDK logs every HTTP request at INFO
NOISY_LOGGERS = {
    "azure.core.pipeline.policies.http_logging_policy": "WARNING",
    "azure.identity": "WARNING",
}

_SIZE = re.compile(r'^(\d+(?:\.\d+)?)\s*([KMG]?B)?$', re.IGNORECASE)
_UNITS = {None: 1, "B": 1, "KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3}


def _secret(prefix: str, value: str = r'[^;\s"\',}]+') -> "re.Pattern[str]":
    return re.compile(f'({prefix}){value}', re.IGNORECASE)


class SensitiveDataFilter(logging.Filter):
    """Scrub credentials from the fully formatted message."""

    PATTERNS = [
        _secret(r'Authorization:\s+(?:Bearer\s+)?', r'\S+'),
        _secret(r'AccountKey='),
        _secret(r'(?:app|client)_?secret["\']?\s*[:=]\s*["\']?'),
        _secret(r'password["\']?\s*[:=]\s*["\']?'),
        _secret(r'type%3dmaster%26ver%3d1\.0%26sig%3d', r'[^&\s]+'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if not isinstance(record.msg, str):
            return True

        # Secrets usually arrive as %-args, so redact after interpolation
        message = record.getMessage()
        for pattern in self.PATTERNS:
            message = pattern.sub(rf'\g<1>{REDACTED}', message)
        record.msg, record.args = message, None
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }

        corr_id = correlation_id.get()
        if corr_id:
            entry["correlation_id"] = corr_id

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # Context values may be events, enums or exceptions
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines; context is appended as ``key=value`` pairs."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "context", None)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        head, newline, rest = line.partition("\n")
        return f"{head} [{pairs}]{newline}{rest}"


def _attach(root_logger: logging.Logger, handler: logging.Handler, formatter: logging.Formatter) -> None:
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    handler.addFilter(SensitiveDataFilter())
    root_logger.addHandler(handler)


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    log_file: Optional[str] = None,
    rotation_size: str = "10MB",
    rotation_count: int = 5,
    module_levels: Optional[Dict[str, str]] = None
) -> None:
    """
    Configure the root logger.

    Replaces any handlers already installed on the root logger.

    Args:
        level: Default log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: "json" or "text"
        log_file: Also write to this file, rotating at ``rotation_size``
        rotation_size: Size limit before rotation (e.g., "10MB")
        rotation_count: Number of rotated files kept
        module_levels: Per-logger levels; these win over NOISY_LOGGERS
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    root_logger.handlers.clear()

    formatter = JSONFormatter() if format_type == "json" else TextFormatter()
    _attach(root_logger, logging.StreamHandler(sys.stdout), formatter)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=_parse_size(rotation_size),
            backupCount=rotation_count,
            encoding='utf-8'
        )
        _attach(root_logger, file_handler, formatter)

    levels = {**NOISY_LOGGERS, **(module_levels or {})}
    for name, module_level in levels.items():
        logging.getLogger(name).setLevel(module_level.upper())

    log_with_context(
        root_logger, logging.INFO, "Logging configured",
        level=level, format=format_type, file=log_file, module_levels=module_levels
    )


def setup_logging_from_config(config: "LoggingConfig") -> None:
    """Apply a validated LoggingConfig section."""
    level = config.level.value if hasattr(config.level, "value") else config.level
    setup_logging(
        level=level,
        format_type=config.format,
        log_file=config.file,
        rotation_size=config.rotation_size,
        rotation_count=config.rotation_count,
        module_levels=config.module_levels,
    )


def _parse_size(size_str: str) -> int:
    """
    Parse a size such as "512", "64KB", "10MB" or "1.5GB" into bytes.

    Raises:
        ValueError: If the string is not a size
    """
    match = _SIZE.match(size_str.strip())
    if not match:
        raise ValueError(f"Invalid size: '{size_str}'")
    number, unit = match.groups()
    return int(float(number) * _UNITS[unit.upper() if unit else None])


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_correlation_id(corr_id: str) -> None:
    """Tag subsequent records in this context with ``corr_id``."""
    correlation_id.set(corr_id)


def clear_correlation_id() -> None:
    correlation_id.set(None)


def log_with_context(logger: logging.Logger, level: int, message: str, /, **context: Any) -> None:
    """
    Log a message with structured context.

    The context is attached to the record as ``record.context`` and rendered
    by JSONFormatter and TextFormatter.
    """
    extra = {"context": context} if context else {}
    logger.log(level, message, extra=extra, stacklevel=2)
