"""Request authorization for HTTP and gRPC services.

This package provides:
1. **AuthorizationGate** — authenticate → bind tenant → authorize
2. **HTTP adapter** — ASGI middleware plus FastAPI dependencies
3. **gRPC adapter** — server interceptor with off / warn / enforce modes

Usage (in any service)::

    from iamcore.security import build_gate, TenantContextMiddleware

    gate = await build_gate(config, store)
    app.add_middleware(TenantContextMiddleware, gate=gate, enforcement=config.enforcement)

    server = grpc.aio.server(interceptors=[
        AuthorizationInterceptor(gate, RPC_REQUIREMENTS, service_name="Orders"),
    ])

Configuration (env vars, via load_config_from_env)::

    JWT_SECRET=...                  # token verification key
    SECURITY_ENFORCEMENT=enforce    # off | warn | enforce
    REDIS_URL=redis://...           # shared decision cache (optional)
"""

from __future__ import annotations

from ..cache import build_decision_cache
from ..config import EnforcementMode, IamConfig
from ..permissions.resolver import PermissionResolver
from ..storage.interfaces import DocumentStore
from ..storage.policy_store import PolicyStore
from ..tokens import TokenIssuer
from .gate import AuthorizationGate, GatePass, GateState, RouteRequirement
from .http import (
    TenantContextMiddleware,
    authorize,
    error_response,
    get_gate_pass,
    install_error_handlers,
    require_roles,
)
from .interceptors import AuthorizationInterceptor, _extract_rpc_name, _should_skip


async def build_gate(config: IamConfig, store: DocumentStore) -> AuthorizationGate:
    """Load the catalog from ``store`` and wire issuer, resolver and cache.

    The decision cache is Redis-backed when ``config.redis_url`` is set.
    """
    policy = PolicyStore(store)
    catalog = await policy.load()
    cache = build_decision_cache(config.redis_url, config.decision_cache_ttl_seconds)
    resolver = PermissionResolver(catalog, cache=cache)
    return AuthorizationGate(TokenIssuer(config.auth), policy, resolver)


__all__ = [
    # Gate
    "AuthorizationGate",
    "GatePass",
    "GateState",
    "RouteRequirement",
    "build_gate",
    # HTTP
    "TenantContextMiddleware",
    "authorize",
    "require_roles",
    "get_gate_pass",
    "install_error_handlers",
    "error_response",
    # gRPC
    "AuthorizationInterceptor",
    "EnforcementMode",
    "_extract_rpc_name",
    "_should_skip",
]
