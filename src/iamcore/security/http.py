"""HTTP adapter: ASGI middleware and FastAPI dependencies.

``TenantContextMiddleware`` authenticates the bearer token, resolves the
tenant and binds it in ContextStore around the downstream app. Route-level
checks are FastAPI dependencies:

    app = FastAPI()
    install_error_handlers(app)
    app.add_middleware(TenantContextMiddleware, gate=gate)

    @app.post("/orders", dependencies=[Depends(authorize("order", "create"))])
    async def create_order(body: OrderIn):
        return await orders.insert_one(body.model_dump())

    @app.get("/audit", dependencies=[Depends(require_roles("Admin", "Auditor"))])
    async def audit_log(): ...
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import EnforcementMode, TenancyConfig
from ..context import ContextStore
from ..exceptions import IamError, TenantResolutionError, Unauthenticated, http_status_for
from ..permissions.resolver import Decision, QuotaRequest
from ..token_utils import extract_tenant_hints, extract_token_from_http_headers, normalize_headers
from .gate import AuthorizationGate, GatePass, RouteRequirement

logger = logging.getLogger(__name__)

STATE_PASS = "iam"
STATE_GATE = "iam_gate"
STATE_MODE = "iam_enforcement"

# Path parameter name -> tenant level it names
TENANT_PATH_PARAMS = {
    "company_id": "company",
    "business_unit_id": "business_unit",
    "outlet_id": "outlet",
}

DEFAULT_PUBLIC_PATHS = ("/health", "/docs", "/redoc", "/openapi.json")

QuotaSource = Union[QuotaRequest, Callable[[Request], Union[QuotaRequest, Awaitable[QuotaRequest]]]]


def error_response(error: IamError) -> JSONResponse:
    """JSON body ``{"error": {"code", "message", "details"}}`` with the mapped status."""
    status = http_status_for(error)
    headers = {"WWW-Authenticate": "Bearer"} if status == 401 else None
    return JSONResponse(status_code=status, content={"error": error.to_dict()}, headers=headers)


async def iam_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, IamError):
        raise exc
    if http_status_for(exc) >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return error_response(exc)


def install_error_handlers(app: FastAPI) -> None:
    """Render every IamError raised by routes or dependencies as JSON."""
    app.add_exception_handler(IamError, iam_error_handler)


# ── Middleware ───────────────────────────────────────────────────


class TenantContextMiddleware:
    """Pure ASGI middleware running the authenticate and bind stages.

    The context is bound in the same task that runs the downstream app and is
    released when the response completes, fails or is cancelled.

    Args:
        app: downstream ASGI app.
        gate: AuthorizationGate shared with the dependencies.
        tenancy: header names for tenant hints.
        enforcement: off (skip), warn (log failures, continue unbound),
            enforce (reject with the mapped status).
        public_paths: path prefixes that skip the gate.
        tenant_scoped: whether requests must resolve to a company.
    """

    def __init__(
        self,
        app: ASGIApp,
        gate: AuthorizationGate,
        *,
        tenancy: Optional[TenancyConfig] = None,
        enforcement: EnforcementMode = EnforcementMode.ENFORCE,
        public_paths: Iterable[str] = DEFAULT_PUBLIC_PATHS,
        tenant_scoped: bool = True,
    ) -> None:
        self.app = app
        self.gate = gate
        self.tenancy = tenancy or TenancyConfig()
        self.enforcement = EnforcementMode(enforcement)
        self.public_paths = tuple(public_paths)
        self.tenant_scoped = tenant_scoped

    def _is_public(self, path: str) -> bool:
        return any(path == p or path.startswith(p.rstrip("/") + "/") for p in self.public_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        state = scope.setdefault("state", {})
        state[STATE_GATE] = self.gate
        state[STATE_MODE] = self.enforcement
        if self.enforcement == EnforcementMode.OFF or self._is_public(scope["path"]):
            await self.app(scope, receive, send)
            return

        headers = scope.get("headers") or []
        gate_pass = GatePass()
        try:
            await self.gate.authenticate(gate_pass, extract_token_from_http_headers(headers))
            await self.gate.bind_context(
                gate_pass,
                extract_tenant_hints(headers, self.tenancy),
                tenant_scoped=self.tenant_scoped,
                request_id=normalize_headers(headers).get("x-request-id"),
            )
        except IamError as e:
            if self.enforcement == EnforcementMode.WARN:
                logger.warning("WARN_DENIED %s %s: %s (would block in enforce mode)", scope.get("method"), scope["path"], e.message)
                await self.app(scope, receive, send)
                return
            logger.warning("DENIED %s %s: %s", scope.get("method"), scope["path"], e.message)
            await error_response(e)(scope, receive, send)
            return

        state[STATE_PASS] = gate_pass
        if gate_pass.context is None:
            raise RuntimeError("Gate admitted a request without binding a context")
        with ContextStore.bind(gate_pass.context):
            await self.app(scope, receive, send)


# ── Dependencies ─────────────────────────────────────────────────


def get_gate_pass(request: Request) -> GatePass:
    """The request's GatePass; Unauthenticated when the middleware did not admit it."""
    gate_pass = getattr(request.state, STATE_PASS, None)
    if gate_pass is None:
        raise Unauthenticated()
    return gate_pass


def _check_route_params(request: Request, gate_pass: GatePass) -> None:
    context = gate_pass.context
    for param, key in TENANT_PATH_PARAMS.items():
        value = request.path_params.get(param)
        if value and context is not None and str(value) != (context.tenant_value(key) or ""):
            raise TenantResolutionError(f"Path {param} does not match the bound tenant", field=key)


async def _run_requirement(request: Request, requirement: RouteRequirement) -> Optional[Decision]:
    mode = getattr(request.state, STATE_MODE, EnforcementMode.ENFORCE)
    if mode == EnforcementMode.OFF:
        return None
    try:
        gate_pass = get_gate_pass(request)
        _check_route_params(request, gate_pass)
        gate: AuthorizationGate = getattr(request.state, STATE_GATE)
        return await gate.authorize(gate_pass, requirement)
    except IamError as e:
        if mode == EnforcementMode.WARN:
            logger.warning("WARN_DENIED %s %s: %s (would block in enforce mode)", request.method, request.url.path, e.message)
            return None
        raise


async def _resolve_quota(request: Request, quota: Optional[QuotaSource]) -> Optional[QuotaRequest]:
    if quota is None or isinstance(quota, QuotaRequest):
        return quota
    value = quota(request)
    if inspect.isawaitable(value):
        value = await value
    return value


def authorize(source: str, action: str, *, quota: Optional[QuotaSource] = None) -> Callable[..., Awaitable[Optional[Decision]]]:
    """Dependency requiring ``(source, action)``.

    ``quota`` is either a fixed QuotaRequest or a callable building one from
    the request (e.g. the discount percent in the query string).
    """

    async def dependency(request: Request) -> Optional[Decision]:
        requirement = RouteRequirement(source, action, quota=await _resolve_quota(request, quota))
        return await _run_requirement(request, requirement)

    return dependency


def require_roles(*names: str) -> Callable[..., Awaitable[None]]:
    """Dependency requiring any one of ``names`` among the effective roles."""
    if not names:
        raise ValueError("require_roles() needs at least one role name")
    requirement = RouteRequirement(roles=tuple(names))

    async def dependency(request: Request) -> None:
        await _run_requirement(request, requirement)

    return dependency


def current_context_fields(request: Request) -> dict[str, Any]:
    """Bound tenant of the request, for handlers that echo it."""
    gate_pass = get_gate_pass(request)
    return gate_pass.context.as_log_fields() if gate_pass.context else {}


__all__ = [
    "TenantContextMiddleware",
    "authorize",
    "require_roles",
    "get_gate_pass",
    "current_context_fields",
    "install_error_handlers",
    "error_response",
    "TENANT_PATH_PARAMS",
]
