"""Tests for the iamcore exception hierarchy."""

from __future__ import annotations

import grpc

from iamcore.exceptions import (
    ConfigurationError,
    ContextAlreadyBound,
    ContextMissing,
    IamError,
    InvalidPermissionGraph,
    PermissionDenied,
    PermissionInUse,
    TenantResolutionError,
    Unauthenticated,
    UnknownPermission,
    error_registry,
    grpc_status_for,
    http_status_for,
    register_error,
)


class TestHierarchy:
    """Exception class relations and payloads."""

    def test_all_inherit_from_base(self) -> None:
        for cls in (ConfigurationError, Unauthenticated, TenantResolutionError, ContextMissing,
                    ContextAlreadyBound, PermissionDenied, PermissionInUse):
            assert issubclass(cls, IamError)

    def test_subclass_relations(self) -> None:
        """Unknown permissions are denials; graph errors are configuration errors."""
        assert issubclass(UnknownPermission, PermissionDenied)
        assert issubclass(InvalidPermissionGraph, ConfigurationError)

    def test_default_message(self) -> None:
        err = PermissionDenied()
        assert err.code == "PERMISSION_DENIED"
        assert str(err) == "Insufficient permissions for this action"

    def test_to_dict_drops_empty_details(self) -> None:
        err = PermissionDenied("order:refund denied", permission="order:refund", role=None)
        assert err.to_dict() == {
            "code": "PERMISSION_DENIED",
            "message": "order:refund denied",
            "details": {"permission": "order:refund"},
        }

    def test_to_dict_without_details(self) -> None:
        assert Unauthenticated().to_dict() == {"code": "UNAUTHENTICATED", "message": "Authentication required"}

    def test_code_override(self) -> None:
        assert IamError("boom", code="CUSTOM").code == "CUSTOM"


class TestProtocolMapping:
    """HTTP and gRPC status mapping."""

    def test_http_status(self) -> None:
        assert http_status_for(Unauthenticated()) == 401
        assert http_status_for(TenantResolutionError()) == 400
        assert http_status_for(PermissionDenied()) == 403
        assert http_status_for(UnknownPermission()) == 403
        assert http_status_for(ContextMissing()) == 403
        assert http_status_for(PermissionInUse("in use")) == 409
        assert http_status_for(InvalidPermissionGraph()) == 500

    def test_http_status_unmapped(self) -> None:
        assert http_status_for(IamError(code="SOMETHING_ELSE")) == 500

    def test_grpc_status(self) -> None:
        assert grpc_status_for(Unauthenticated()) == grpc.StatusCode.UNAUTHENTICATED
        assert grpc_status_for(TenantResolutionError()) == grpc.StatusCode.INVALID_ARGUMENT
        assert grpc_status_for(UnknownPermission()) == grpc.StatusCode.PERMISSION_DENIED
        assert grpc_status_for(ContextMissing()) == grpc.StatusCode.FAILED_PRECONDITION
        assert grpc_status_for(IamError()) == grpc.StatusCode.INTERNAL


class TestErrorRegistry:
    """Registry lookups and custom registration."""

    def test_base_errors_registered(self) -> None:
        assert error_registry.get("PERMISSION_DENIED") is PermissionDenied
        assert error_registry.get("INVALID_PERMISSION_GRAPH") is InvalidPermissionGraph
        assert error_registry.get("NOPE") is None

    def test_register_custom_error(self) -> None:
        @register_error("LICENSE_REQUIRED")
        class LicenseRequired(PermissionDenied):
            code = "LICENSE_REQUIRED"

        assert error_registry.get("LICENSE_REQUIRED") is LicenseRequired
        assert "LICENSE_REQUIRED" in error_registry.all()
        # custom codes fall back to 500 unless mapped
        assert http_status_for(LicenseRequired()) == 500
