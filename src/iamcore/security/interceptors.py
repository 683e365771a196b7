"""gRPC server interceptor for authorization.

Provides:
- ``AuthorizationInterceptor`` — maps RPC names to RouteRequirements, runs
  the gate, and binds the tenant context for the handler's lifetime.
- ``_extract_rpc_name``, ``_should_skip`` — helper utilities.

Unmapped RPCs are **denied** (fail-closed).
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import grpc

from ..config import EnforcementMode, TenancyConfig
from ..context import ContextStore, TenantContext
from ..exceptions import IamError, PermissionDenied, grpc_status_for
from ..token_utils import extract_tenant_hints, extract_token_from_grpc_metadata, normalize_headers
from .gate import AuthorizationGate, RouteRequirement

logger = logging.getLogger(__name__)

# Method prefixes that bypass authorization
_SKIP_PREFIXES = (
    "/grpc.health.v1",
    "/grpc.reflection.v1",
)


# ── Helpers ──────────────────────────────────────────────────────


def _extract_rpc_name(full_method: str) -> str:
    """``/orders.OrderService/CreateOrder`` → ``CreateOrder``"""
    return full_method.rsplit("/", 1)[-1] if "/" in full_method else full_method


def _should_skip(method: str) -> bool:
    return method.startswith(_SKIP_PREFIXES)


def _bound_handler(handler: grpc.RpcMethodHandler, context: TenantContext) -> grpc.RpcMethodHandler:
    """Same handler with ``context`` bound around its behavior."""
    kwargs = {
        "request_deserializer": handler.request_deserializer,
        "response_serializer": handler.response_serializer,
    }

    if handler.unary_unary:
        inner_uu = handler.unary_unary

        async def unary_unary(request: Any, servicer_context: Any) -> Any:
            with ContextStore.bind(context):
                return await inner_uu(request, servicer_context)

        return grpc.unary_unary_rpc_method_handler(unary_unary, **kwargs)

    if handler.unary_stream:
        inner_us = handler.unary_stream

        async def unary_stream(request: Any, servicer_context: Any) -> Any:
            with ContextStore.bind(context):
                async for response in inner_us(request, servicer_context):
                    yield response

        return grpc.unary_stream_rpc_method_handler(unary_stream, **kwargs)

    if handler.stream_unary:
        inner_su = handler.stream_unary

        async def stream_unary(request_iterator: Any, servicer_context: Any) -> Any:
            with ContextStore.bind(context):
                return await inner_su(request_iterator, servicer_context)

        return grpc.stream_unary_rpc_method_handler(stream_unary, **kwargs)

    inner_ss = handler.stream_stream

    async def stream_stream(request_iterator: Any, servicer_context: Any) -> Any:
        with ContextStore.bind(context):
            async for response in inner_ss(request_iterator, servicer_context):
                yield response

    return grpc.stream_stream_rpc_method_handler(stream_stream, **kwargs)


def _denied_handler(code: grpc.StatusCode, message: str) -> grpc.RpcMethodHandler:
    async def _denied(request: Any, context: Any) -> None:
        await context.abort(code, message)

    return grpc.unary_unary_rpc_method_handler(_denied)


# ── Interceptor ──────────────────────────────────────────────────


class AuthorizationInterceptor(grpc.aio.ServerInterceptor):
    """Authenticate, resolve tenant and authorize every RPC.

    Args:
        gate: AuthorizationGate over the loaded catalog.
        rpc_requirements: RPC name → RouteRequirement.
        service_name: Human-readable service name for log messages.
        enforcement: off / warn / enforce.
        tenancy: metadata keys for tenant hints.

    Usage::

        interceptor = AuthorizationInterceptor(
            gate,
            {"CreateOrder": RouteRequirement("order", "create")},
            service_name="Orders",
            enforcement=EnforcementMode.WARN,   # safe rollout
        )
        server = grpc.aio.server(interceptors=[interceptor])
    """

    def __init__(
        self,
        gate: AuthorizationGate,
        rpc_requirements: Mapping[str, RouteRequirement],
        *,
        service_name: str = "Service",
        enforcement: EnforcementMode = EnforcementMode.ENFORCE,
        tenancy: Optional[TenancyConfig] = None,
    ) -> None:
        self._gate = gate
        self._requirements = dict(rpc_requirements)
        self._service_name = service_name
        self._mode = EnforcementMode(enforcement)
        self._tenancy = tenancy or TenancyConfig()

        if self._mode != EnforcementMode.OFF:
            logger.info("%s interceptor mode: %s", self._service_name, self._mode.value)

    async def intercept_service(
        self,
        continuation: Any,
        handler_call_details: grpc.HandlerCallDetails,
    ) -> grpc.RpcMethodHandler:
        method = handler_call_details.method or ""

        if _should_skip(method) or self._mode == EnforcementMode.OFF:
            return await continuation(handler_call_details)

        rpc_name = _extract_rpc_name(method)
        metadata = handler_call_details.invocation_metadata or ()

        try:
            requirement = self._requirements.get(rpc_name)
            if requirement is None:
                raise PermissionDenied("RPC not mapped to a requirement", rpc=rpc_name)
            gate_pass = await self._gate.run(
                extract_token_from_grpc_metadata(handler_call_details),
                requirement,
                hints=extract_tenant_hints(metadata, self._tenancy),
                request_id=normalize_headers(metadata).get("x-request-id"),
            )
        except IamError as e:
            if self._mode == EnforcementMode.WARN:
                logger.warning(
                    "%s WARN_DENIED '%s': %s (would block in enforce mode)",
                    self._service_name,
                    rpc_name,
                    e.message,
                )
                return await continuation(handler_call_details)

            logger.warning("%s DENIED '%s': %s", self._service_name, rpc_name, e.message)
            return _denied_handler(grpc_status_for(e), f"{self._service_name}: {rpc_name} denied: {e.message}")

        handler = await continuation(handler_call_details)
        if handler is None:
            return handler

        if gate_pass.context is None:
            raise RuntimeError("Gate admitted a call without binding a context")
        logger.debug("%s ALLOWED '%s' for user %s", self._service_name, rpc_name, gate_pass.context.user_id)
        return _bound_handler(handler, gate_pass.context)


__all__ = [
    "AuthorizationInterceptor",
    "EnforcementMode",
    "_extract_rpc_name",
    "_should_skip",
]
