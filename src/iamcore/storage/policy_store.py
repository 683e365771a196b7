"""Loads IAM state from the document store.

Collections read: ``permissions``, ``permission_groups``, ``roles``, ``users``
and ``business_units``. These are platform collections and are accessed
without tenant scoping.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from ..exceptions import ConfigurationError
from ..permissions.catalog import PermissionCatalog
from ..permissions.models import BusinessUnit, Permission, PermissionGroup, Role, User
from .interfaces import Document, DocumentStore

logger = logging.getLogger(__name__)

PERMISSIONS = "permissions"
PERMISSION_GROUPS = "permission_groups"
ROLES = "roles"
USERS = "users"
BUSINESS_UNITS = "business_units"


def _strip(document: Document) -> Document:
    return {k: v for k, v in document.items() if k != "_id"}


class PolicyStore:
    """Bridge between persisted IAM documents and the in-process catalog."""

    def __init__(self, store: DocumentStore, catalog: Optional[PermissionCatalog] = None) -> None:
        self.store = store
        self.catalog = catalog or PermissionCatalog()

    async def load(self) -> PermissionCatalog:
        """Read permissions, groups and roles and swap them into the catalog.

        Raises:
            ConfigurationError: a stored document does not validate.
            InvalidPermissionGraph: the stored graph is cyclic or dangling.
        """
        try:
            permissions = [Permission.model_validate(_strip(d)) for d in await self.store.find(PERMISSIONS, {})]
            groups = [PermissionGroup.model_validate(_strip(d)) for d in await self.store.find(PERMISSION_GROUPS, {})]
            roles = [Role.model_validate(_strip(d)) for d in await self.store.find(ROLES, {})]
        except ValidationError as e:
            logger.critical("Stored IAM document failed validation: %s", e)
            raise ConfigurationError("Stored IAM document failed validation", errors=e.errors()) from e

        self.catalog.replace(permissions, groups, roles)
        logger.info(
            "Loaded %d permissions, %d groups, %d roles (catalog version %d)",
            len(permissions),
            len(groups),
            len(roles),
            self.catalog.version,
        )
        return self.catalog

    # -- principals ---------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[User]:
        document = await self.store.find_one(USERS, {"id": user_id})
        return User.model_validate(_strip(document)) if document else None

    async def get_business_unit(self, business_unit_id: str) -> Optional[BusinessUnit]:
        document = await self.store.find_one(BUSINESS_UNITS, {"id": business_unit_id})
        return BusinessUnit.model_validate(_strip(document)) if document else None

    async def save_user(self, user: User) -> None:
        data = user.model_dump(mode="json")
        if not await self.store.update_one(USERS, {"id": user.id}, data):
            await self.store.insert_one(USERS, data)

    async def save_business_unit(self, business_unit: BusinessUnit) -> None:
        data = business_unit.model_dump(mode="json")
        if not await self.store.update_one(BUSINESS_UNITS, {"id": business_unit.id}, data):
            await self.store.insert_one(BUSINESS_UNITS, data)

    # -- catalog writes (validated in memory first, then persisted) ----------

    async def save_permission(self, permission: Permission) -> None:
        self.catalog.put_permission(permission)
        await self._upsert(PERMISSIONS, "id", permission.id, permission.model_dump(mode="json"))

    async def save_group(self, group: PermissionGroup) -> None:
        self.catalog.put_group(group)
        await self._upsert(PERMISSION_GROUPS, "name", group.name, group.model_dump(mode="json"))

    async def save_role(self, role: Role) -> None:
        self.catalog.put_role(role)
        await self._upsert(ROLES, "name", role.name, role.model_dump(mode="json"))

    async def delete_permission(self, permission_id: str) -> None:
        """Delete an unreferenced permission.

        Raises:
            PermissionInUse: a group, role or user still references it.
        """
        users = [User.model_validate(_strip(d)) for d in await self.store.find(USERS, {})]
        self.catalog.remove_permission(permission_id, users=users)
        await self.store.delete_one(PERMISSIONS, {"id": permission_id})

    async def delete_group(self, name: str) -> None:
        self.catalog.remove_group(name)
        await self.store.delete_one(PERMISSION_GROUPS, {"name": name})

    async def delete_role(self, name: str) -> None:
        self.catalog.remove_role(name)
        await self.store.delete_one(ROLES, {"name": name})

    async def _upsert(self, collection: str, key: str, value: str, data: Document) -> None:
        if not await self.store.update_one(collection, {key: value}, data):
            await self.store.insert_one(collection, data)


__all__ = [
    "PolicyStore",
    "PERMISSIONS",
    "PERMISSION_GROUPS",
    "ROLES",
    "USERS",
    "BUSINESS_UNITS",
]
