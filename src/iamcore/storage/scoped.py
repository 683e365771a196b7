"""Tenant-scoped repository.

Every entity that belongs to a tenant is accessed through a ScopedRepository
configured with the names of its tenant fields. Filters for the tenant bound
in ContextStore are added to every read and write; inserts are stamped with
it. Repositories never hand-roll tenant filters.

    orders = ScopedRepository(store, "orders", ScopeConfig(business_unit_field="business_unit"))

    with ContextStore.bind(TenantContext(company="acme", business_unit="BU-1")):
        await orders.insert_one({"total": 12})     # stamped business_unit="BU-1"
        await orders.find({})                      # BU-1 orders only

Platform jobs that must read across tenants use ``cross_tenant()``, which is
audited on the ``iamcore.audit`` logger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from ..context import ContextStore, TenantContext
from ..exceptions import ContextMissing, PermissionDenied
from ..logging import get_audit_logger
from .interfaces import Document, DocumentStore, Filter
from .memory import matches

logger = logging.getLogger(__name__)
audit = get_audit_logger()

_NO_MATCH = object()


@dataclass(frozen=True)
class ScopeConfig:
    """Tenant field names of an entity; ``None`` means the entity has no such field.

    ``include_global`` widens reads to documents whose tenant field is unset
    (shared templates, system records). Writes are never widened.
    """

    company_field: Optional[str] = None
    business_unit_field: Optional[str] = None
    outlet_field: Optional[str] = None
    include_global: bool = False

    def fields(self) -> list[tuple[str, str]]:
        """(context key, document field) for each configured tenant field."""
        pairs = [
            ("company", self.company_field),
            ("business_unit", self.business_unit_field),
            ("outlet", self.outlet_field),
        ]
        return [(key, name) for key, name in pairs if name]

    @property
    def is_scoped(self) -> bool:
        return bool(self.fields())


UNSCOPED = ScopeConfig()


class ScopedRepository:
    def __init__(self, store: DocumentStore, collection: str, scope: Optional[ScopeConfig] = None) -> None:
        self.store = store
        self.collection = collection
        self.scope = scope or UNSCOPED

    # -- scoping ------------------------------------------------------------

    def _bound(self) -> Optional[TenantContext]:
        if not self.scope.is_scoped:
            return None
        ctx = ContextStore.current()
        if not isinstance(ctx, TenantContext):
            raise ContextMissing(f"No tenant context bound for {self.collection}", collection=self.collection)
        return ctx

    def _tenant_filter(self, widen: bool = False) -> dict[str, Any]:
        ctx = self._bound()
        if ctx is None:
            return {}
        tenant: dict[str, Any] = {}
        for key, field in self.scope.fields():
            value = ctx.tenant_value(key)
            if value:
                tenant[field] = {"$in": [value, None]} if widen and self.scope.include_global else value
        if not tenant:
            raise ContextMissing(
                f"Bound context carries no tenant for {self.collection}",
                collection=self.collection,
            )
        return tenant

    def _scoped(self, filter: Optional[Filter], widen: bool = False) -> Any:
        """Caller filter AND tenant filter, or _NO_MATCH when they contradict."""
        merged = dict(filter or {})
        for field, tenant_value in self._tenant_filter(widen).items():
            if field in merged:
                probe = tenant_value if not isinstance(tenant_value, Mapping) else tenant_value["$in"][0]
                if not matches({field: probe}, {field: merged[field]}):
                    return _NO_MATCH
            merged[field] = tenant_value
        return merged

    def _stamp(self, document: Mapping[str, Any]) -> Document:
        ctx = self._bound()
        stamped = dict(document)
        if ctx is None:
            return stamped
        for key, field in self.scope.fields():
            value = ctx.tenant_value(key)
            if not value:
                raise ContextMissing(
                    f"Cannot stamp {field} on {self.collection}: no {key} bound",
                    collection=self.collection,
                    field=field,
                )
            supplied = stamped.get(field)
            if supplied is not None and supplied != value:
                logger.warning(
                    "Tenant spoofing attempt on %s: %s=%r overwritten with bound %r (user=%s)",
                    self.collection,
                    field,
                    supplied,
                    value,
                    ctx.user_id,
                )
            stamped[field] = value
        return stamped

    def _guard_changes(self, changes: Mapping[str, Any]) -> None:
        ctx = self._bound()
        if ctx is None:
            return
        for key, field in self.scope.fields():
            if field in changes and changes[field] != ctx.tenant_value(key):
                raise PermissionDenied(
                    f"Tenant field {field} of {self.collection} cannot be changed",
                    collection=self.collection,
                    field=field,
                )

    # -- reads --------------------------------------------------------------

    async def find(self, filter: Optional[Filter] = None, limit: Optional[int] = None) -> list[Document]:
        scoped = self._scoped(filter, widen=True)
        if scoped is _NO_MATCH:
            return []
        return await self.store.find(self.collection, scoped, limit=limit)

    async def find_one(self, filter: Optional[Filter] = None) -> Optional[Document]:
        scoped = self._scoped(filter, widen=True)
        if scoped is _NO_MATCH:
            return None
        return await self.store.find_one(self.collection, scoped)

    async def count(self, filter: Optional[Filter] = None) -> int:
        scoped = self._scoped(filter, widen=True)
        if scoped is _NO_MATCH:
            return 0
        return await self.store.count(self.collection, scoped)

    # -- writes -------------------------------------------------------------

    async def insert_one(self, document: Mapping[str, Any]) -> Document:
        return await self.store.insert_one(self.collection, self._stamp(document))

    async def insert_many(self, documents: list[Mapping[str, Any]]) -> list[Document]:
        stamped = [self._stamp(d) for d in documents]
        return await self.store.insert_many(self.collection, stamped)

    async def update_one(self, filter: Optional[Filter], changes: Mapping[str, Any]) -> int:
        self._guard_changes(changes)
        scoped = self._scoped(filter)
        if scoped is _NO_MATCH:
            return 0
        return await self.store.update_one(self.collection, scoped, changes)

    async def update_many(self, filter: Optional[Filter], changes: Mapping[str, Any]) -> int:
        self._guard_changes(changes)
        scoped = self._scoped(filter)
        if scoped is _NO_MATCH:
            return 0
        return await self.store.update_many(self.collection, scoped, changes)

    async def delete_one(self, filter: Optional[Filter] = None) -> int:
        scoped = self._scoped(filter)
        if scoped is _NO_MATCH:
            return 0
        return await self.store.delete_one(self.collection, scoped)

    async def delete_many(self, filter: Optional[Filter] = None) -> int:
        scoped = self._scoped(filter)
        if scoped is _NO_MATCH:
            return 0
        return await self.store.delete_many(self.collection, scoped)

    # -- escape hatch -------------------------------------------------------

    def cross_tenant(self, reason: str, actor: Optional[str] = None) -> "ScopedRepository":
        """Unscoped view of the same collection.

        Allowed with no bound context (background jobs) or for a platform
        principal (``scope_level == GLOBAL``). Every call is audited.

        Raises:
            ValueError: ``reason`` is empty.
            PermissionDenied: a non-platform principal is bound.
        """
        if not reason or not reason.strip():
            raise ValueError("cross_tenant() requires a reason")
        ctx = ContextStore.current()
        if isinstance(ctx, TenantContext) and not ctx.is_platform:
            audit.warning(
                "Cross-tenant access refused on %s for %s: %s",
                self.collection,
                actor or ctx.user_id,
                reason,
                collection=self.collection,
                actor=actor or ctx.user_id,
                outcome="refused",
            )
            raise PermissionDenied(
                "Cross-tenant access requires a platform-level principal",
                collection=self.collection,
            )
        audit.warning(
            "Cross-tenant access on %s by %s: %s",
            self.collection,
            actor or (ctx.user_id if ctx else "system"),
            reason,
            collection=self.collection,
            actor=actor or (ctx.user_id if ctx else "system"),
            reason=reason,
            outcome="granted",
        )
        return ScopedRepository(self.store, self.collection, UNSCOPED)


__all__ = ["ScopeConfig", "ScopedRepository", "UNSCOPED"]
