"""Unified exception hierarchy for iamcore.

All authorization and tenancy failures inherit from IamError. This module provides:
- Base exception hierarchy with stable error codes
- ErrorRegistry for protocol mapping
- HTTP and gRPC status mapping helpers

None of these errors are transient: they are terminal for the current request
and must never be downgraded to "allow".

Usage in services:
    from iamcore.exceptions import (
        IamError,
        PermissionDenied,
        http_status_for,
    )

Services may define thin subclasses for service-specific errors:
    @register_error("LICENSE_REQUIRED")
    class LicenseRequired(PermissionDenied):
        code = "LICENSE_REQUIRED"
"""

from __future__ import annotations

from typing import Any, Callable, TypeVar, cast

__all__ = [
    # Base hierarchy
    "IamError",
    "ConfigurationError",
    "Unauthenticated",
    "TenantResolutionError",
    "ContextMissing",
    "ContextAlreadyBound",
    "PermissionDenied",
    "UnknownPermission",
    "InvalidPermissionGraph",
    "PermissionInUse",
    # Registry
    "ErrorRegistry",
    "error_registry",
    "register_error",
    # Protocol helpers
    "http_status_for",
    "grpc_status_for",
]


# ---- Exception Hierarchy ----------------------------------------------------


class IamError(Exception):
    """Base exception for iamcore.

    Attributes:
        code: Stable error code string for protocol mapping (e.g. "PERMISSION_DENIED").
        message: Human-readable error description, safe to show to the caller.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Payload returned to callers at the request boundary."""
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            data["details"] = {k: v for k, v in self.details.items() if v is not None}
        return data


class ConfigurationError(IamError):
    """Invalid or missing configuration."""

    code: str = "CONFIGURATION_ERROR"


class Unauthenticated(IamError):
    """Missing, malformed, or expired credential, or an unusable account."""

    code: str = "UNAUTHENTICATED"
    message: str = "Authentication required"


class TenantResolutionError(IamError):
    """Tenant for a tenant-scoped request is missing, unknown, or ambiguous."""

    code: str = "TENANT_RESOLUTION_ERROR"
    message: str = "Tenant could not be resolved"


class ContextMissing(IamError):
    """A tenant-scoped operation ran with no bound context and no escape hatch."""

    code: str = "CONTEXT_MISSING"
    message: str = "No tenant context is bound"


class ContextAlreadyBound(IamError):
    """A tenant context is already bound in this call chain."""

    code: str = "CONTEXT_ALREADY_BOUND"
    message: str = "Tenant context is already bound for this request"


class PermissionDenied(IamError):
    """The resolver voted deny, or fell back to deny."""

    code: str = "PERMISSION_DENIED"
    message: str = "Insufficient permissions for this action"


class UnknownPermission(PermissionDenied):
    """Requested (source, action) is not present in the permission catalog."""

    code: str = "UNKNOWN_PERMISSION"
    message: str = "Unknown permission"


class InvalidPermissionGraph(ConfigurationError):
    """Role or permission-group inheritance is cyclic or references unknown nodes."""

    code: str = "INVALID_PERMISSION_GRAPH"
    message: str = "Permission configuration is invalid"


class PermissionInUse(ConfigurationError):
    """A permission or group cannot be removed while still referenced."""

    code: str = "PERMISSION_IN_USE"


# ---- Error Registry for Protocol Mapping ------------------------------------

_E = TypeVar("_E", bound=type[IamError])


class ErrorRegistry:
    """Registry for mapping internal errors to external protocol codes."""

    def __init__(self) -> None:
        self._errors: dict[str, type[IamError]] = {}

    def register(self, code: str, error_cls: type[IamError]) -> None:
        self._errors[code] = error_cls

    def get(self, code: str) -> type[IamError] | None:
        return self._errors.get(code)

    def all(self) -> dict[str, type[IamError]]:
        return dict(self._errors)


error_registry = ErrorRegistry()


def register_error(code: str) -> Callable[[_E], _E]:
    """Decorator to register a custom error type.

    Usage:
        @register_error("MY_CUSTOM_ERROR")
        class MyCustomError(IamError):
            code = "MY_CUSTOM_ERROR"
    """

    def decorator(cls: _E) -> _E:
        error_registry.register(code, cls)
        return cls

    return cast(Callable[[_E], _E], decorator)


# Register base errors
error_registry.register("INTERNAL_ERROR", IamError)
error_registry.register("CONFIGURATION_ERROR", ConfigurationError)
error_registry.register("UNAUTHENTICATED", Unauthenticated)
error_registry.register("TENANT_RESOLUTION_ERROR", TenantResolutionError)
error_registry.register("CONTEXT_MISSING", ContextMissing)
error_registry.register("CONTEXT_ALREADY_BOUND", ContextAlreadyBound)
error_registry.register("PERMISSION_DENIED", PermissionDenied)
error_registry.register("UNKNOWN_PERMISSION", UnknownPermission)
error_registry.register("INVALID_PERMISSION_GRAPH", InvalidPermissionGraph)
error_registry.register("PERMISSION_IN_USE", PermissionInUse)


# ---- Protocol Mapping -------------------------------------------------------

_HTTP_STATUS = {
    "UNAUTHENTICATED": 401,
    "TENANT_RESOLUTION_ERROR": 400,
    "CONTEXT_MISSING": 403,
    "PERMISSION_DENIED": 403,
    "UNKNOWN_PERMISSION": 403,
    "PERMISSION_IN_USE": 409,
    "CONFIGURATION_ERROR": 500,
    "INVALID_PERMISSION_GRAPH": 500,
    "CONTEXT_ALREADY_BOUND": 500,
}


def http_status_for(error: IamError) -> int:
    """Map IamError to an HTTP status code (500 for anything unmapped)."""
    return _HTTP_STATUS.get(error.code, 500)


def grpc_status_for(error: IamError) -> Any:
    """Map IamError to gRPC status code.

    Returns grpc.StatusCode value for the given error type.
    Import grpc locally to avoid hard dependency at module level.
    """
    import grpc

    error_to_status = {
        "UNAUTHENTICATED": grpc.StatusCode.UNAUTHENTICATED,
        "TENANT_RESOLUTION_ERROR": grpc.StatusCode.INVALID_ARGUMENT,
        "CONTEXT_MISSING": grpc.StatusCode.FAILED_PRECONDITION,
        "PERMISSION_DENIED": grpc.StatusCode.PERMISSION_DENIED,
        "UNKNOWN_PERMISSION": grpc.StatusCode.PERMISSION_DENIED,
        "PERMISSION_IN_USE": grpc.StatusCode.FAILED_PRECONDITION,
        "CONFIGURATION_ERROR": grpc.StatusCode.FAILED_PRECONDITION,
        "INVALID_PERMISSION_GRAPH": grpc.StatusCode.FAILED_PRECONDITION,
        "CONTEXT_ALREADY_BOUND": grpc.StatusCode.INTERNAL,
    }
    return error_to_status.get(error.code, grpc.StatusCode.INTERNAL)
