"""In-process permission catalog.

Holds permissions by id, groups and roles by name, and the set of exact
``(source, action)`` pairs the system knows about. Every successful change
bumps ``version`` and recompiles the PermissionGraph; a change that would
produce an invalid graph is rolled back and raised.

Usage:
    catalog = PermissionCatalog(
        permissions=[Permission(source="order", action="create")],
        groups=[PermissionGroup(name="pos-basic", permissions=("order:create",),
                                resolver=ResolverConfig(strategy="cumulative"))],
        roles=[Role(name="Cashier", permission_groups=("pos-basic",), role_scope="BUSINESS")],
    )
    graph = catalog.graph
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from ..exceptions import ConfigurationError, InvalidPermissionGraph, PermissionInUse
from .inheritance import PermissionGraph
from .models import Permission, PermissionGroup, Role, User

logger = logging.getLogger(__name__)

ChangeListener = Callable[[int], None]


class PermissionCatalog:
    def __init__(
        self,
        permissions: Iterable[Permission] = (),
        groups: Iterable[PermissionGroup] = (),
        roles: Iterable[Role] = (),
        version: int = 1,
    ) -> None:
        self._permissions: dict[str, Permission] = {p.id: p for p in permissions}
        self._groups: dict[str, PermissionGroup] = {g.name: g for g in groups}
        self._roles: dict[str, Role] = {r.name: r for r in roles}
        self._listeners: list[ChangeListener] = []
        self.version = version
        self._graph = self._compile()

    # -- read side ----------------------------------------------------------

    @property
    def graph(self) -> PermissionGraph:
        return self._graph

    @property
    def known_pairs(self) -> frozenset[tuple[str, str]]:
        return self._known_pairs

    def is_known(self, source: str, action: str) -> bool:
        """True only for exact catalogued pairs; wildcards never make a pair known."""
        return (source, action) in self._known_pairs

    def permission(self, permission_id: str) -> Optional[Permission]:
        return self._permissions.get(permission_id)

    def group(self, name: str) -> Optional[PermissionGroup]:
        return self._groups.get(name)

    def role(self, name: str) -> Optional[Role]:
        return self._roles.get(name)

    @property
    def roles(self) -> tuple[Role, ...]:
        return tuple(self._roles.values())

    def on_change(self, listener: ChangeListener) -> None:
        """Register ``listener(version)``, called after every successful change."""
        self._listeners.append(listener)

    # -- write side ---------------------------------------------------------

    def put_permission(self, permission: Permission) -> None:
        current = self._permissions.get(permission.id)
        if current is not None and current != permission:
            in_use = self.references_to_permission(permission.id)
            if in_use and (current.source, current.action, current.effect) != (
                permission.source,
                permission.action,
                permission.effect,
            ):
                raise PermissionInUse(
                    f"Permission {permission.id} is referenced and cannot change its pair or effect",
                    permission_id=permission.id,
                )
        self._apply(lambda: self._permissions.__setitem__(permission.id, permission))

    def remove_permission(self, permission_id: str, users: Iterable[User] = ()) -> None:
        refs = self.references_to_permission(permission_id, users)
        if refs:
            raise PermissionInUse(
                f"Permission {permission_id} is still referenced",
                permission_id=permission_id,
                referenced_by=refs,
            )
        self._apply(lambda: self._permissions.pop(permission_id, None))

    def put_group(self, group: PermissionGroup) -> None:
        current = self._groups.get(group.name)
        if (
            current is not None
            and current.permissions
            and current.resolver.strategy != group.resolver.strategy
            and group.version <= current.version
        ):
            raise ConfigurationError(
                f"Strategy of group {group.name} cannot change without a new version",
                group=group.name,
                version=current.version,
            )
        self._apply(lambda: self._groups.__setitem__(group.name, group))

    def remove_group(self, name: str) -> None:
        refs = [f"role:{r.name}" for r in self._roles.values() if name in r.permission_groups]
        refs += [f"group:{g.name}" for g in self._groups.values() if name in g.resolver.inherit_from]
        if refs:
            raise PermissionInUse(f"Group {name} is still referenced", group=name, referenced_by=refs)
        self._apply(lambda: self._groups.pop(name, None))

    def put_role(self, role: Role) -> None:
        self._apply(lambda: self._roles.__setitem__(role.name, role))

    def remove_role(self, name: str) -> None:
        refs = [f"role:{r.name}" for r in self._roles.values() if name in r.inherited_roles]
        if refs:
            raise PermissionInUse(f"Role {name} is still inherited", role=name, referenced_by=refs)
        self._apply(lambda: self._roles.pop(name, None))

    def references_to_permission(self, permission_id: str, users: Iterable[User] = ()) -> list[str]:
        refs = [f"group:{g.name}" for g in self._groups.values() if permission_id in g.permissions]
        refs += [f"role:{r.name}" for r in self._roles.values() if permission_id in r.permissions]
        refs += [f"user:{u.id}" for u in users if permission_id in u.direct_permissions]
        return refs

    def replace(
        self,
        permissions: Iterable[Permission],
        groups: Iterable[PermissionGroup],
        roles: Iterable[Role],
    ) -> None:
        """Swap the whole catalog (used when reloading from storage)."""
        new_permissions = {p.id: p for p in permissions}
        new_groups = {g.name: g for g in groups}
        new_roles = {r.name: r for r in roles}

        def swap() -> None:
            self._permissions, self._groups, self._roles = new_permissions, new_groups, new_roles

        self._apply(swap)

    # -- internals ----------------------------------------------------------

    def _compile(self) -> PermissionGraph:
        graph = PermissionGraph(self._permissions, self._groups, self._roles, version=self.version)
        self._known_pairs = self._exact_pairs()
        return graph

    def _exact_pairs(self) -> frozenset[tuple[str, str]]:
        return frozenset((p.source, p.action) for p in self._permissions.values() if p.is_exact)

    def _apply(self, mutate: Callable[[], None]) -> None:
        snapshot = (dict(self._permissions), dict(self._groups), dict(self._roles))
        mutate()
        self.version += 1
        try:
            self._graph = self._compile()
        except InvalidPermissionGraph:
            self._permissions, self._groups, self._roles = snapshot
            self.version -= 1
            self._known_pairs = self._exact_pairs()
            raise
        logger.info("Permission catalog updated to version %d", self.version)
        for listener in self._listeners:
            listener(self.version)


__all__ = ["PermissionCatalog", "ChangeListener"]
