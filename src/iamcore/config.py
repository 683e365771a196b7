"""Configuration contract for iamcore.

Pydantic-validated models for every setting the authorization core needs
(logging, Redis decision cache, JWT verification, tenant hint headers,
enforcement mode).

Services embed IamConfig in their own settings and pass it down; direct
os.environ/os.getenv usage is reserved for load_config_from_env().
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnforcementMode(str, Enum):
    """How transport adapters react to a failed gate.

    - OFF: no checks at all (local development only)
    - WARN: run the gate, log failures, let the call through
    - ENFORCE: reject failures with the mapped status code
    """

    OFF = "off"
    WARN = "warn"
    ENFORCE = "enforce"


class AuthConfig(BaseModel):
    """Bearer token verification settings.

    Environment variables:
        JWT_SECRET          — HMAC secret (or PEM public key for RS*/ES*)
        JWT_ALGORITHM       — signing algorithm, HS256 by default
        TOKEN_TTL_SECONDS   — lifetime of tokens minted by TokenIssuer
        TOKEN_ISSUER        — expected/minted "iss" claim
        TOKEN_AUDIENCE      — expected/minted "aud" claim
    """

    model_config = {"extra": "ignore"}

    jwt_secret: str = Field(
        default="",
        description="Key material used to sign and verify access tokens",
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm (PyJWT algorithm name)",
    )
    token_ttl_seconds: int = Field(
        default=3600,
        description="Default token TTL in seconds (1 hour)",
    )
    issuer: Optional[str] = Field(
        default=None,
        description="Token issuer; verified when set",
    )
    audience: Optional[str] = Field(
        default=None,
        description="Token audience; verified when set",
    )
    leeway_seconds: int = Field(
        default=0,
        ge=0,
        description="Clock skew tolerated on exp/iat/nbf",
    )

    @field_validator("token_ttl_seconds")
    @classmethod
    def validate_ttl(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("token_ttl_seconds must be positive")
        return v


class TenancyConfig(BaseModel):
    """Names of the request headers that carry tenant hints."""

    model_config = {"extra": "ignore"}

    company_header: str = Field(default="x-company-id")
    business_unit_header: str = Field(default="x-business-unit")
    outlet_header: str = Field(default="x-outlet-id")

    @field_validator("company_header", "business_unit_header", "outlet_header")
    @classmethod
    def lower_header(cls, v: str) -> str:
        """Header lookups are case-insensitive; store lowercase."""
        return v.strip().lower()


class IamConfig(BaseModel):
    """Top-level iamcore configuration."""

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )

    # Redis (decision cache)
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL (e.g., redis://localhost:6379/0)",
    )

    service_name: Optional[str] = Field(
        default=None,
        description="Service name attached to log records",
    )

    auth: AuthConfig = Field(default_factory=AuthConfig)
    tenancy: TenancyConfig = Field(default_factory=TenancyConfig)

    decision_cache_ttl_seconds: int = Field(
        default=3600,
        ge=0,
        description="TTL for cached authorization decisions; 0 disables caching",
    )
    enforcement: EnforcementMode = Field(
        default=EnforcementMode.ENFORCE,
        description="Transport adapter enforcement mode",
    )

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("Redis URL must start with redis://, rediss://, or unix://")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    @field_validator("enforcement", mode="before")
    @classmethod
    def validate_enforcement(cls, v: str | EnforcementMode) -> EnforcementMode:
        if isinstance(v, str):
            return EnforcementMode(v.strip().lower())
        return v

    model_config = {
        "use_enum_values": True,
        "extra": "forbid",
    }


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def load_config_from_env() -> IamConfig:
    """Load configuration from environment variables.

    This is the ONLY place where os.getenv is allowed for iamcore settings.

    Environment variables:
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - LOG_JSON: Use JSON log format (true/false, default: false)
    - REDIS_URL: Redis connection URL for the decision cache
    - SERVICE_NAME: Service name for log records
    - JWT_SECRET, JWT_ALGORITHM: token verification key and algorithm
    - TOKEN_TTL_SECONDS, TOKEN_ISSUER, TOKEN_AUDIENCE: token defaults
    - DECISION_CACHE_TTL_SECONDS: decision cache TTL
    - SECURITY_ENFORCEMENT: off | warn | enforce

    Returns:
        IamConfig instance with values from environment or defaults.
    """
    import os

    auth = AuthConfig(
        jwt_secret=os.getenv("JWT_SECRET", ""),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        token_ttl_seconds=int(os.getenv("TOKEN_TTL_SECONDS", "3600")),
        issuer=os.getenv("TOKEN_ISSUER") or None,
        audience=os.getenv("TOKEN_AUDIENCE") or None,
    )

    return IamConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=_env_flag(os.getenv("LOG_JSON", "false")),
        redis_url=os.getenv("REDIS_URL"),
        service_name=os.getenv("SERVICE_NAME"),
        auth=auth,
        decision_cache_ttl_seconds=int(os.getenv("DECISION_CACHE_TTL_SECONDS", "3600")),
        enforcement=os.getenv("SECURITY_ENFORCEMENT", "enforce"),
    )


__all__ = [
    "IamConfig",
    "AuthConfig",
    "TenancyConfig",
    "EnforcementMode",
    "LogLevel",
    "load_config_from_env",
]
