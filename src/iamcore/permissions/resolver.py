"""Permission resolution.

``PermissionResolver.resolve(user, source, action)`` answers one question:
may this principal perform ``action`` on ``source`` in the tenant bound to the
current request? The answer is a Decision that explains itself.

Resolution order:
1. A pair missing from the catalog is denied outright.
2. Roles are filtered by scope admissibility in the bound tenant, then
   expanded with the roles they inherit. No admissible role means deny,
   whatever direct permissions the user carries.
3. Every role contributes its implicit group and its permission groups
   (expanded through ``inherit_from``); direct user permissions form the
   ``__direct__`` override group.
4. Each group votes with its strategy; override votes short-circuit, then
   priority, then hierarchy level (lower wins) rank the rest.
5. When every group abstains, any ``deny`` fallback denies.
6. An allowed, quota-gated request must also fit the effective role limits.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, replace
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional, Sequence, Union

from ..context import ContextStore, RoleScope, TenantContext, _NoContext
from ..exceptions import PermissionDenied, UnknownPermission
from .catalog import PermissionCatalog
from .conditions import evaluate_conditions
from .limits import LimitCheck, LimitEvaluator
from .models import Effect, PermissionGroup, ResolverConfig, ResolveStrategy, Role, User
from .strategies import Vote, apply_strategy

if TYPE_CHECKING:
    from ..cache import DecisionCache

logger = logging.getLogger(__name__)

DIRECT_GROUP = "__direct__"

ContextLike = Union[TenantContext, _NoContext, None]


@dataclass(frozen=True)
class QuotaRequest:
    """Amount a quota-gated action asks for, e.g. ("financial.max_discount_percent", 15)."""

    path: str
    amount: float


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str
    source: str
    action: str
    group: Optional[str] = None
    strategy: Optional[str] = None
    role: Optional[str] = None
    unknown: bool = False
    limit: Optional[LimitCheck] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Decision":
        payload = dict(data)
        limit = payload.pop("limit", None)
        return cls(**payload, limit=LimitCheck(**limit) if limit else None)


@dataclass(frozen=True)
class _Candidate:
    group: PermissionGroup
    hierarchy_level: int
    role: Optional[str]

    @property
    def priority(self) -> float:
        return self.group.resolver.priority

    @property
    def rank(self) -> tuple[float, int]:
        return (-self.priority, self.hierarchy_level)


def role_admissible(scope: RoleScope, context: ContextLike) -> bool:
    """Whether a role of ``scope`` may act in ``context``."""
    scope = RoleScope(scope)
    if scope == RoleScope.GLOBAL:
        return True
    if not isinstance(context, TenantContext):
        return False
    if scope == RoleScope.ORGANIZATION:
        return bool(context.company)
    if scope == RoleScope.BUSINESS:
        return bool(context.business_unit)
    if scope == RoleScope.OUTLET:
        return bool(context.outlet)
    return bool(context.user_id and context.company)


def assignment_matches(assignment: Any, context: ContextLike) -> bool:
    """An assignment applies when its anchor equals the bound tenant at every level it names."""
    if not isinstance(context, TenantContext) or not context.company:
        return False
    if assignment.company != context.company:
        return False
    if assignment.business_unit and assignment.business_unit != context.business_unit:
        return False
    if assignment.outlet and assignment.outlet != context.outlet:
        return False
    return True


class PermissionResolver:
    """Resolve (source, action) requests against a PermissionCatalog."""

    def __init__(
        self,
        catalog: PermissionCatalog,
        limits: Optional[LimitEvaluator] = None,
        cache: Optional["DecisionCache"] = None,
    ) -> None:
        self.catalog = catalog
        self.limits = limits or LimitEvaluator()
        self.cache = cache
        if cache is not None:
            catalog.on_change(cache.invalidate)

    # -- roles --------------------------------------------------------------

    def held_roles(self, user: User, context: ContextLike = None) -> tuple[str, ...]:
        """Role names the user holds in ``context`` before inheritance.

        ``User.roles`` carry no tenant anchor, so only GLOBAL roles count from
        there; tenant-scoped roles are held through a matching assignment.
        """
        context = self._context(context)
        graph = self.catalog.graph
        names: dict[str, None] = {}
        for name in user.roles:
            if graph.has_role(name) and RoleScope(graph.role(name).role_scope) == RoleScope.GLOBAL:
                names.setdefault(name, None)
        for assignment in user.assignments:
            if not graph.has_role(assignment.role) or not assignment_matches(assignment, context):
                continue
            if role_admissible(graph.role(assignment.role).role_scope, context):
                names.setdefault(assignment.role, None)
        return tuple(names)

    def effective_roles(self, user: User, context: ContextLike = None) -> tuple[Role, ...]:
        """Held roles plus inherited ones, active only, in resolution order."""
        graph = self.catalog.graph
        return tuple(graph.role(n) for n in graph.expand_roles(self.held_roles(user, context)))

    def scope_level(self, user: User, context: ContextLike = None) -> Optional[RoleScope]:
        """Broadest scope among the roles the user holds in ``context``."""
        graph = self.catalog.graph
        scopes = [RoleScope(graph.role(n).role_scope) for n in self.held_roles(user, context)]
        if not scopes:
            return None
        return max(scopes, key=lambda s: s.breadth)

    # -- resolution ---------------------------------------------------------

    def resolve(
        self,
        user: User,
        source: str,
        action: str,
        env: Optional[Mapping[str, Any]] = None,
        quota: Optional[QuotaRequest] = None,
        context: ContextLike = None,
    ) -> Decision:
        context = self._context(context)

        if not self.catalog.is_known(source, action):
            return Decision(False, f"unknown permission {source}:{action}", source, action, unknown=True)

        roles = self.effective_roles(user, context)
        if not roles:
            return Decision(False, "no role admissible in this context", source, action)
        direct = tuple(p for p in user.direct_permissions if self.catalog.permission(p) is not None)

        candidates = self._candidates(roles, direct)
        environment = self._environment(user, roles, context, env)
        decision = self._combine(candidates, source, action, environment)

        if decision.allowed and quota is not None:
            check = self.limits.check(roles, quota.path, quota.amount)
            if not check.allowed:
                return Decision(
                    False,
                    check.reason,
                    source,
                    action,
                    group=decision.group,
                    strategy=decision.strategy,
                    role=decision.role,
                    limit=check,
                )
            decision = replace(decision, limit=check)
        return decision

    async def aresolve(
        self,
        user: User,
        source: str,
        action: str,
        env: Optional[Mapping[str, Any]] = None,
        quota: Optional[QuotaRequest] = None,
        context: ContextLike = None,
    ) -> Decision:
        """Like resolve(), reading and filling the decision cache when possible.

        Requests with an evaluation environment or a quota are never cached.
        """
        context = self._context(context)
        if self.cache is None or env is not None or quota is not None:
            return self.resolve(user, source, action, env=env, quota=quota, context=context)

        key = self.cache.key_for(user, self.held_roles(user, context), context, source, action, self.catalog.version)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached
        decision = self.resolve(user, source, action, context=context)
        await self.cache.set(key, decision)
        return decision

    async def authorize(
        self,
        user: User,
        source: str,
        action: str,
        env: Optional[Mapping[str, Any]] = None,
        quota: Optional[QuotaRequest] = None,
        context: ContextLike = None,
    ) -> Decision:
        """Resolve and raise on deny.

        Raises:
            UnknownPermission: the pair is not in the catalog.
            PermissionDenied: any other deny.
        """
        decision = await self.aresolve(user, source, action, env=env, quota=quota, context=context)
        if decision.allowed:
            return decision
        logger.warning(
            "Permission denied: user=%s %s:%s (%s)",
            user.id,
            source,
            action,
            decision.reason,
        )
        if decision.unknown:
            raise UnknownPermission(decision.reason, permission=f"{source}:{action}")
        raise PermissionDenied(decision.reason, permission=f"{source}:{action}")

    # -- internals ----------------------------------------------------------

    @staticmethod
    def _context(context: ContextLike) -> Union[TenantContext, _NoContext]:
        return ContextStore.current() if context is None else context

    def _candidates(self, roles: Sequence[Role], direct: Sequence[str]) -> list[_Candidate]:
        graph = self.catalog.graph
        by_group: dict[str, _Candidate] = {}
        for role in roles:
            for group in graph.groups_for_role(role.name):
                seen = by_group.get(group.name)
                if seen is None or role.hierarchy_level < seen.hierarchy_level:
                    by_group[group.name] = _Candidate(group, role.hierarchy_level, role.name)

        candidates = list(by_group.values())
        if direct:
            direct_group = PermissionGroup(
                name=DIRECT_GROUP,
                permissions=tuple(direct),
                resolver=ResolverConfig(
                    strategy=ResolveStrategy.MOST_SPECIFIC,
                    priority=math.inf,
                    override=True,
                    fallback=Effect.DENY,
                ),
            )
            candidates.insert(0, _Candidate(direct_group, 0, None))
        return candidates

    @staticmethod
    def _environment(
        user: User,
        roles: Iterable[Role],
        context: Union[TenantContext, _NoContext],
        env: Optional[Mapping[str, Any]],
    ) -> dict[str, Any]:
        environment: dict[str, Any] = {
            "user": {"id": user.id, "email": user.email, "roles": [r.name for r in roles]},
            "tenant": {},
        }
        if isinstance(context, TenantContext):
            environment["tenant"] = {
                "company": context.company,
                "business_unit": context.business_unit,
                "outlet": context.outlet,
                "scope_level": RoleScope(context.scope_level).value,
            }
        if env:
            environment.update(env)
        return environment

    def _vote(self, candidate: _Candidate, source: str, action: str, env: Mapping[str, Any]) -> Vote:
        matches = [
            p
            for p in self.catalog.graph.permissions_of(candidate.group)
            if p.is_active and p.covers(source, action) and evaluate_conditions(p.conditions, env)
        ]
        return apply_strategy(candidate.group.resolver.strategy, matches)

    def _combine(
        self,
        candidates: Sequence[_Candidate],
        source: str,
        action: str,
        env: Mapping[str, Any],
    ) -> Decision:
        votes = [(c, self._vote(c, source, action, env)) for c in candidates]
        cast_votes = [(c, v) for c, v in votes if not v.abstained]

        overrides = [(c, v) for c, v in cast_votes if c.group.resolver.override]
        ranked = overrides or cast_votes
        if ranked:
            return self._pick(ranked, source, action, via_override=bool(overrides))

        if not candidates:
            return Decision(False, "no permission groups", source, action)
        if any(Effect(c.group.resolver.fallback) == Effect.DENY for c in candidates):
            return Decision(False, "no group decided; fallback deny", source, action)
        return Decision(True, "no group decided; fallback allow", source, action)

    @staticmethod
    def _pick(
        ranked: Sequence[tuple[_Candidate, Vote]],
        source: str,
        action: str,
        via_override: bool,
    ) -> Decision:
        ordered = sorted(ranked, key=lambda cv: cv[0].rank)
        top_rank = ordered[0][0].rank
        leaders = [(c, v) for c, v in ordered if c.rank == top_rank]

        effects = {v.effect for _, v in leaders}
        if len(effects) > 1:
            candidate, vote = next((c, v) for c, v in leaders if v.effect == Effect.DENY)
            reason = f"conflicting votes at priority {candidate.priority}; deny wins"
        else:
            candidate, vote = leaders[0]
            prefix = "override " if via_override else ""
            reason = f"{prefix}group {candidate.group.name}: {vote.reason}"

        return Decision(
            allowed=vote.effect == Effect.ALLOW,
            reason=reason,
            source=source,
            action=action,
            group=candidate.group.name,
            strategy=ResolveStrategy(candidate.group.resolver.strategy).value,
            role=candidate.role,
        )


__all__ = [
    "DIRECT_GROUP",
    "Decision",
    "QuotaRequest",
    "PermissionResolver",
    "role_admissible",
    "assignment_matches",
]
