"""Authorization gate — the per-request state machine behind every transport.

Provides:
- ``GateState`` — UNAUTHENTICATED → AUTHENTICATED → CONTEXT_BOUND → AUTHORIZED.
- ``RouteRequirement`` — what a route or RPC needs (permission, roles, quota).
- ``GatePass`` — one request's progress through the gate.
- ``AuthorizationGate`` — authenticate, resolve tenant, authorize.

Transports (``security.http``, ``security.interceptors``) extract the bearer
token and tenant hints, drive the gate, and bind ``GatePass.context`` in
ContextStore for as long as the request runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Mapping, Optional
from uuid import uuid4

from ..context import RoleScope, TenantContext
from ..exceptions import PermissionDenied, TenantResolutionError, Unauthenticated
from ..permissions.models import User, UserStatus
from ..permissions.resolver import Decision, PermissionResolver, QuotaRequest
from ..storage.policy_store import PolicyStore
from ..tokens import TENANT_CLAIMS, AccessClaims, TokenIssuer

logger = logging.getLogger(__name__)


# ── State ────────────────────────────────────────────────────────


class GateState(str, Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    AUTHENTICATED = "AUTHENTICATED"
    CONTEXT_BOUND = "CONTEXT_BOUND"
    AUTHORIZED = "AUTHORIZED"


_NEXT = {
    GateState.UNAUTHENTICATED: (GateState.AUTHENTICATED,),
    GateState.AUTHENTICATED: (GateState.CONTEXT_BOUND,),
    GateState.CONTEXT_BOUND: (GateState.AUTHORIZED,),
    GateState.AUTHORIZED: (),
}


@dataclass(frozen=True)
class RouteRequirement:
    """What a route needs before its handler runs.

    Attributes:
        source, action: permission to resolve; both or neither.
        roles: any-of role names (checked against effective roles).
        quota: amount checked against effective role limits.
        tenant_scoped: whether the route needs a bound company.
    """

    source: Optional[str] = None
    action: Optional[str] = None
    roles: tuple[str, ...] = ()
    quota: Optional[QuotaRequest] = None
    tenant_scoped: bool = True

    def __post_init__(self) -> None:
        if bool(self.source) != bool(self.action):
            raise ValueError("RouteRequirement needs both source and action, or neither")
        if self.quota is not None and not self.source:
            raise ValueError("A quota needs a permission to gate")


@dataclass
class GatePass:
    """Progress of one request through the gate."""

    state: GateState = GateState.UNAUTHENTICATED
    claims: Optional[AccessClaims] = None
    user: Optional[User] = None
    context: Optional[TenantContext] = None
    decisions: list[Decision] = field(default_factory=list)

    def advance(self, target: GateState) -> None:
        if target not in _NEXT[self.state]:
            raise RuntimeError(f"Gate cannot move from {self.state.value} to {target.value}")
        self.state = target


# ── Gate ─────────────────────────────────────────────────────────


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class AuthorizationGate:
    """Runs the three gate stages for any transport.

    Args:
        issuer: verifies bearer tokens.
        policy: source of users and business units.
        resolver: permission resolver over the loaded catalog.
    """

    def __init__(self, issuer: TokenIssuer, policy: PolicyStore, resolver: PermissionResolver) -> None:
        self.issuer = issuer
        self.policy = policy
        self.resolver = resolver

    # Stage 1 ---------------------------------------------------------------

    async def authenticate(self, gate_pass: GatePass, token: Optional[str]) -> User:
        """Verify the bearer token and load a usable user.

        Raises:
            Unauthenticated: missing/invalid/expired token, unknown, deleted,
                blocked or inactive user, or a token older than the last
                password change.
        """
        if gate_pass.state != GateState.UNAUTHENTICATED:
            raise RuntimeError("Request is already authenticated")
        if not token:
            raise Unauthenticated("Missing bearer token")

        claims = self.issuer.verify(token)
        user = await self.policy.get_user(claims.user_id)
        if user is None:
            raise Unauthenticated("Unknown user")
        if user.is_deleted:
            raise Unauthenticated("Account has been deleted")
        if user.status == UserStatus.BLOCKED:
            raise Unauthenticated("Account is blocked")
        if user.status != UserStatus.ACTIVE:
            raise Unauthenticated("Account is inactive")
        if user.password_changed_at is not None:
            changed = _as_utc(user.password_changed_at).replace(microsecond=0)
            if claims.issued_at < changed:
                raise Unauthenticated("Password changed after token was issued; please sign in again")

        gate_pass.claims = claims
        gate_pass.user = user
        gate_pass.advance(GateState.AUTHENTICATED)
        return user

    # Stage 2 ---------------------------------------------------------------

    async def bind_context(
        self,
        gate_pass: GatePass,
        hints: Optional[Mapping[str, str]] = None,
        route_params: Optional[Mapping[str, str]] = None,
        *,
        tenant_scoped: bool = True,
        request_id: Optional[str] = None,
    ) -> TenantContext:
        """Resolve the request's tenant and build its TenantContext.

        The context is returned and stored on ``gate_pass``; the transport
        binds it in ContextStore.

        Raises:
            TenantResolutionError: claims and hints disagree, the business unit
                is unknown or belongs to another company, or a tenant-scoped
                route has no company.
            PermissionDenied: the user holds no role admissible in that tenant.
        """
        if gate_pass.user is None or gate_pass.claims is None:
            raise RuntimeError("bind_context() before authenticate()")
        user = gate_pass.user

        tenant = self._reconcile(gate_pass.claims, hints or {}, route_params or {})

        if tenant.get("business_unit"):
            unit = await self.policy.get_business_unit(tenant["business_unit"])
            if unit is None:
                raise TenantResolutionError("Unknown business unit", business_unit=tenant["business_unit"])
            if tenant.get("company") and tenant["company"] != unit.company:
                raise TenantResolutionError("Business unit does not belong to the requested company")
            tenant["company"] = unit.company

        if tenant_scoped and not tenant.get("company"):
            raise TenantResolutionError("Tenant is required for this route")

        provisional = TenantContext(
            company=tenant.get("company"),
            business_unit=tenant.get("business_unit"),
            outlet=tenant.get("outlet"),
            user_id=user.id,
            request_id=request_id or uuid4().hex,
        )
        scope = self.resolver.scope_level(user, provisional)
        if scope is None and provisional.company:
            logger.warning(
                "User %s has no role admissible in company=%s business_unit=%s outlet=%s",
                user.id,
                provisional.company,
                provisional.business_unit,
                provisional.outlet,
            )
            raise PermissionDenied("No role admissible for the requested tenant")

        context = TenantContext(
            company=provisional.company,
            business_unit=provisional.business_unit,
            outlet=provisional.outlet,
            user_id=user.id,
            scope_level=scope or RoleScope.SELF,
            request_id=provisional.request_id,
        )
        gate_pass.context = context
        gate_pass.advance(GateState.CONTEXT_BOUND)
        return context

    @staticmethod
    def _reconcile(
        claims: AccessClaims,
        hints: Mapping[str, str],
        route_params: Mapping[str, str],
    ) -> dict[str, str]:
        tenant: dict[str, str] = {}
        claimed = claims.tenant_claims()
        for key in TENANT_CLAIMS:
            values = {v for v in (claimed.get(key), hints.get(key), route_params.get(key)) if v}
            if len(values) > 1:
                raise TenantResolutionError(f"Conflicting {key} between token and request", field=key)
            if values:
                tenant[key] = values.pop()
        return tenant

    # Stage 3 ---------------------------------------------------------------

    async def authorize(self, gate_pass: GatePass, requirement: RouteRequirement) -> Optional[Decision]:
        """Check role and permission requirements.

        Raises:
            PermissionDenied / UnknownPermission: with an explainable reason.
        """
        if gate_pass.state not in (GateState.CONTEXT_BOUND, GateState.AUTHORIZED):
            raise RuntimeError("authorize() before bind_context()")
        user = gate_pass.user
        context = gate_pass.context
        if user is None or context is None:
            raise RuntimeError("authorize() on a pass without user or context")

        if requirement.roles:
            held = {r.name for r in self.resolver.effective_roles(user, context)}
            if not held.intersection(requirement.roles):
                logger.warning("User %s lacks any of roles %s", user.id, ", ".join(requirement.roles))
                raise PermissionDenied(
                    f"Requires one of roles: {', '.join(requirement.roles)}",
                    roles=list(requirement.roles),
                )

        decision: Optional[Decision] = None
        if requirement.source and requirement.action:
            decision = await self.resolver.authorize(
                user,
                requirement.source,
                requirement.action,
                quota=requirement.quota,
                context=context,
            )
            gate_pass.decisions.append(decision)

        # stacked route checks add decisions to an already authorized pass
        if gate_pass.state != GateState.AUTHORIZED:
            gate_pass.advance(GateState.AUTHORIZED)
        return decision

    # All stages ------------------------------------------------------------

    async def run(
        self,
        token: Optional[str],
        requirement: RouteRequirement,
        hints: Optional[Mapping[str, str]] = None,
        route_params: Optional[Mapping[str, str]] = None,
        request_id: Optional[str] = None,
    ) -> GatePass:
        """Drive a fresh GatePass through every stage."""
        gate_pass = GatePass()
        await self.authenticate(gate_pass, token)
        await self.bind_context(
            gate_pass,
            hints,
            route_params,
            tenant_scoped=requirement.tenant_scoped,
            request_id=request_id,
        )
        await self.authorize(gate_pass, requirement)
        return gate_pass


__all__ = [
    "GateState",
    "RouteRequirement",
    "GatePass",
    "AuthorizationGate",
]
