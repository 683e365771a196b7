"""Group and role inheritance, compiled once per catalog version.

Provides:
- ``PermissionGraph`` — validated, cycle-free view of a catalog snapshot.
- ``role_group_name()`` — name of the implicit group holding a role's direct
  permissions.

A group lists parents in ``resolver.inherit_from``; a role lists parents in
``inherited_roles``. Expansion is transitive and order-preserving: the node
itself first, then parents breadth-first, each name once.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Iterable, Mapping

from ..exceptions import InvalidPermissionGraph
from .models import Effect, Permission, PermissionGroup, ResolverConfig, ResolveStrategy, Role

logger = logging.getLogger(__name__)

ROLE_GROUP_PREFIX = "role:"


def role_group_name(role_name: str) -> str:
    return f"{ROLE_GROUP_PREFIX}{role_name}"


def _topological_order(kind: str, edges: Mapping[str, Iterable[str]]) -> list[str]:
    """Kahn's algorithm over ``child -> parents`` edges; raises on cycles."""
    parents = {node: tuple(dict.fromkeys(ps)) for node, ps in edges.items()}
    indegree = {node: 0 for node in parents}
    children: dict[str, list[str]] = {node: [] for node in parents}
    for node, ps in parents.items():
        for parent in ps:
            indegree[node] += 1
            children[parent].append(node)

    queue = deque(sorted(n for n, d in indegree.items() if d == 0))
    order: list[str] = []
    while queue:
        node = queue.popleft()
        order.append(node)
        for child in children[node]:
            indegree[child] -= 1
            if indegree[child] == 0:
                queue.append(child)

    if len(order) != len(parents):
        cyclic = sorted(n for n, d in indegree.items() if d > 0)
        logger.critical("Cyclic %s inheritance: %s", kind, ", ".join(cyclic))
        raise InvalidPermissionGraph(f"Cyclic {kind} inheritance", nodes=cyclic)
    return order


def _closure(start: str, edges: Mapping[str, Iterable[str]]) -> tuple[str, ...]:
    seen: dict[str, None] = {start: None}
    queue = deque([start])
    while queue:
        node = queue.popleft()
        for parent in edges.get(node, ()):
            if parent not in seen:
                seen[parent] = None
                queue.append(parent)
    return tuple(seen)


class PermissionGraph:
    """Immutable compiled snapshot of permissions, groups and roles.

    Raises InvalidPermissionGraph (logged at CRITICAL) when any group or role
    inheritance is cyclic or any reference is unknown.
    """

    def __init__(
        self,
        permissions: Mapping[str, Permission],
        groups: Mapping[str, PermissionGroup],
        roles: Mapping[str, Role],
        version: int = 1,
    ) -> None:
        self.version = version
        self._permissions = dict(permissions)
        self._groups = dict(groups)
        self._roles = dict(roles)

        self._check_references()

        group_edges = {name: g.resolver.inherit_from for name, g in self._groups.items()}
        role_edges = {name: r.inherited_roles for name, r in self._roles.items()}
        self.group_order = _topological_order("group", group_edges)
        self.role_order = _topological_order("role", role_edges)

        self._role_groups = {name: self._implicit_group(role) for name, role in self._roles.items()}
        self._active_group_edges = {n: g.resolver.inherit_from for n, g in self._groups.items() if g.is_active}
        self._active_role_edges = {n: r.inherited_roles for n, r in self._roles.items() if r.is_active}

    def _check_references(self) -> None:
        missing: list[str] = []
        for group in self._groups.values():
            missing += [f"group {group.name} -> permission {p}" for p in group.permissions if p not in self._permissions]
            missing += [f"group {group.name} -> group {g}" for g in group.resolver.inherit_from if g not in self._groups]
        for role in self._roles.values():
            missing += [f"role {role.name} -> permission {p}" for p in role.permissions if p not in self._permissions]
            missing += [f"role {role.name} -> group {g}" for g in role.permission_groups if g not in self._groups]
            missing += [f"role {role.name} -> role {r}" for r in role.inherited_roles if r not in self._roles]
        if missing:
            logger.critical("Unknown references in permission graph: %s", "; ".join(missing))
            raise InvalidPermissionGraph("Unknown references in permission graph", references=missing)

    @staticmethod
    def _implicit_group(role: Role) -> PermissionGroup:
        return PermissionGroup(
            name=role_group_name(role.name),
            permissions=role.permissions,
            resolver=ResolverConfig(
                strategy=ResolveStrategy.MOST_SPECIFIC,
                priority=0,
                override=False,
                fallback=Effect.DENY,
            ),
        )

    # -- lookups ------------------------------------------------------------

    def has_role(self, name: str) -> bool:
        return name in self._roles

    def role(self, name: str) -> Role:
        return self._roles[name]

    def group(self, name: str) -> PermissionGroup:
        if name.startswith(ROLE_GROUP_PREFIX) and name not in self._groups:
            return self._role_groups[name[len(ROLE_GROUP_PREFIX):]]
        return self._groups[name]

    def permission(self, permission_id: str) -> Permission:
        return self._permissions[permission_id]

    def permissions_of(self, group: PermissionGroup) -> tuple[Permission, ...]:
        """Permissions of ``group`` in declared order; unknown ids are skipped."""
        return tuple(self._permissions[p] for p in group.permissions if p in self._permissions)

    # -- expansion ----------------------------------------------------------

    def expand_roles(self, names: Iterable[str]) -> tuple[str, ...]:
        """Known, active roles in ``names`` plus the active roles they inherit.

        An inactive role grants nothing, including what it would inherit.
        """
        return self._expand(names, self._active_role_edges)

    def expand_groups(self, names: Iterable[str]) -> tuple[str, ...]:
        """Active groups in ``names`` plus their active ``inherit_from`` ancestors."""
        return self._expand(names, self._active_group_edges)

    @staticmethod
    def _expand(names: Iterable[str], active_edges: Mapping[str, Iterable[str]]) -> tuple[str, ...]:
        expanded: dict[str, None] = {}
        for name in names:
            if name in active_edges and name not in expanded:
                reachable = _closure(name, active_edges)
                expanded.update((n, None) for n in reachable if n in active_edges)
        return tuple(expanded)

    def groups_for_role(self, role_name: str) -> tuple[PermissionGroup, ...]:
        """Implicit role group (when the role lists permissions) followed by its expanded groups."""
        role = self._roles[role_name]
        groups = [self._role_groups[role_name]] if role.permissions else []
        groups.extend(self._groups[g] for g in self.expand_groups(role.permission_groups))
        return tuple(groups)


__all__ = ["PermissionGraph", "role_group_name", "ROLE_GROUP_PREFIX"]
