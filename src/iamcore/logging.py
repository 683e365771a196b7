"""Logging utilities for iamcore.

This module provides:
- Logging configuration from IamConfig
- Safe preview utilities for values that may hold credentials
- Secret redaction (bearer tokens, JWTs, passwords)
- Structured records carrying the bound tenant automatically
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from .config import IamConfig, LogLevel
from .context import ContextStore

AUDIT_LOGGER_NAME = "iamcore.audit"

# Patterns for detecting secrets (common patterns to redact)
SECRET_PATTERNS = [
    r'(?i)(?:password|passwd|pwd|secret|token|api[_-]?key)\s*[:=]\s*["\']?([^"\'\s,}]+)',
    r"(?i)bearer\s+[A-Za-z0-9\-_.+/=]+",
    r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*",  # compact JWS
    r"(?i)(?:-----BEGIN\s+(?:RSA\s+|EC\s+)?(?:PRIVATE\s+)?KEY-----).*?(?:-----END\s+(?:RSA\s+|EC\s+)?(?:PRIVATE\s+)?KEY-----)",
]

_COMPILED = [re.compile(p, re.DOTALL) for p in SECRET_PATTERNS]

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED = set(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}

_TENANT_KEYS = ("company", "business_unit", "outlet", "user_id", "request_id")


def safe_preview(value: Any, limit: int = 240) -> str:
    """Create a single-line, length-bounded preview of a value for logging.

    Args:
        value: The value to preview (any type)
        limit: Maximum length of the preview (default: 240)
    """
    if value is None:
        return ""

    if isinstance(value, str):
        s = value
    elif isinstance(value, (dict, list)):
        try:
            s = json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            s = str(value)
    else:
        s = str(value)

    s = " ".join(s.split())

    if len(s) > limit:
        return s[: limit - 1] + "…"
    return s


def redact_secrets(text: str, replacement: str = "[REDACTED]") -> str:
    """Redact bearer tokens, JWTs, private keys and password-like pairs."""
    if not isinstance(text, str):
        return text

    result = text
    for pattern in _COMPILED:
        result = pattern.sub(replacement, result)
    return result


def safe_log_value(value: Any, limit: int = 240, redact: bool = True) -> str:
    """Preview plus optional redaction; use for any caller-supplied value."""
    preview = safe_preview(value, limit=limit)
    if redact:
        preview = redact_secrets(preview)
    return preview


class IamFormatter(logging.Formatter):
    """Formatter that adds the bound tenant and emits JSON or plain text.

    Tenant fields (company, business_unit, outlet, user_id, request_id) are read
    from ContextStore at format time unless the record already carries them.
    """

    def __init__(
        self,
        json_format: bool = True,
        redact_secrets: bool = True,
        service_name: Optional[str] = None,
        *args: Any,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.json_format = json_format
        self.redact_secrets = redact_secrets
        self.service_name = service_name

    def _tenant_fields(self, record: logging.LogRecord) -> dict[str, str]:
        fields: dict[str, str] = {}
        ctx = ContextStore.current()
        if ctx:
            fields.update(ctx.as_log_fields())
        for key in _TENANT_KEYS:
            value = getattr(record, key, None)
            if value:
                fields[key] = str(value)
        return fields

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service_name:
            log_data["service"] = self.service_name

        tenant = self._tenant_fields(record)
        log_data.update(tenant)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED or key in _TENANT_KEYS or key.startswith("_"):
                continue
            log_data[key] = safe_log_value(value, redact=self.redact_secrets)

        if self.redact_secrets:
            log_data["message"] = redact_secrets(log_data["message"])

        if self.json_format:
            return json.dumps(log_data, default=str, ensure_ascii=False)

        parts = [
            f"[{log_data['timestamp']}]",
            log_data["level"],
            log_data["logger"],
        ]
        parts.extend(f"{k}={v}" for k, v in tenant.items())
        parts.append(f": {log_data['message']}")
        if "exception" in log_data:
            parts.append("\n" + log_data["exception"])
        return " ".join(parts)


class IamLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that moves keyword fields into ``extra``.

    Usage:
        logger = get_logger(__name__)
        logger.warning("Denied", source="order", action="refund")
    """

    _PASSTHROUGH = {"exc_info", "stack_info", "stacklevel", "extra"}

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        extra = dict(kwargs.pop("extra", None) or {})
        for key in list(kwargs):
            if key not in self._PASSTHROUGH:
                extra[key] = kwargs.pop(key)
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    config: Optional[IamConfig] = None,
    redact_secrets: bool = True,
) -> None:
    """Configure the root logger from IamConfig.

    Args:
        config: IamConfig instance (if None, loads from environment)
        redact_secrets: Whether to redact secrets (default: True)
    """
    if config is None:
        from .config import load_config_from_env

        config = load_config_from_env()

    log_level = logging.getLevelName(LogLevel(config.log_level).value)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        IamFormatter(
            json_format=config.log_json,
            redact_secrets=redact_secrets,
            service_name=config.service_name,
        )
    )
    root_logger.addHandler(console_handler)


def get_logger(name: str) -> IamLoggerAdapter:
    """Get a logger adapter that accepts structured keyword fields."""
    return IamLoggerAdapter(logging.getLogger(name), {})


def get_audit_logger() -> IamLoggerAdapter:
    """Logger for privileged operations (cross-tenant access, catalog edits)."""
    return get_logger(AUDIT_LOGGER_NAME)


__all__ = [
    "AUDIT_LOGGER_NAME",
    "safe_preview",
    "redact_secrets",
    "safe_log_value",
    "IamFormatter",
    "IamLoggerAdapter",
    "setup_logging",
    "get_logger",
    "get_audit_logger",
]
