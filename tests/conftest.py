"""Shared fixtures: a small retail catalog with one company and two business units.

Roles:
    Cashier      BUSINESS  pos-basic group, discount up to 10%
    Supervisor   BUSINESS  inherits Cashier, may refund, discount up to 25%
    CompanyAdmin ORGANIZATION  everything
    PlatformAdmin GLOBAL   everything

Users:
    alice  Cashier in acme / BU-1
    bob    Supervisor in acme / BU-1
    carol  CompanyAdmin in acme
    root   PlatformAdmin
"""

from __future__ import annotations

from typing import Optional

import pytest

from iamcore.config import AuthConfig
from iamcore.context import RoleScope, TenantContext
from iamcore.permissions import (
    Permission,
    PermissionCatalog,
    PermissionGroup,
    PermissionResolver,
    ResolverConfig,
    Role,
    RoleLimits,
    TenantAssignment,
    User,
)
from iamcore.security.gate import AuthorizationGate
from iamcore.storage import InMemoryDocumentStore, PolicyStore
from iamcore.storage.policy_store import BUSINESS_UNITS, USERS
from iamcore.tokens import TokenIssuer

SECRET = "test-secret-key-with-enough-length-for-hs256"


def make_permissions() -> list[Permission]:
    return [
        Permission(source="order", action="create"),
        Permission(source="order", action="read"),
        Permission(source="order", action="refund"),
        Permission(source="discount", action="apply"),
        Permission(source="report", action="export"),
        Permission(source="*", action="*"),
    ]


def make_groups() -> list[PermissionGroup]:
    return [
        PermissionGroup(
            name="pos-basic",
            permissions=("order:create", "order:read", "discount:apply"),
            resolver=ResolverConfig(strategy="cumulative", priority=10),
        ),
        PermissionGroup(
            name="admin-all",
            permissions=("*:*",),
            resolver=ResolverConfig(strategy="first-match", priority=100),
        ),
    ]


def make_roles() -> list[Role]:
    return [
        Role(
            name="Cashier",
            permission_groups=("pos-basic",),
            role_scope=RoleScope.BUSINESS,
            hierarchy_level=50,
            limits=RoleLimits.model_validate({"financial": {"max_discount_percent": 10}}),
        ),
        Role(
            name="Supervisor",
            permissions=("order:refund",),
            inherited_roles=("Cashier",),
            role_scope=RoleScope.BUSINESS,
            hierarchy_level=20,
            limits=RoleLimits.model_validate({"financial": {"max_discount_percent": 25}}),
        ),
        Role(
            name="CompanyAdmin",
            permission_groups=("admin-all",),
            role_scope=RoleScope.ORGANIZATION,
            hierarchy_level=5,
        ),
        Role(
            name="PlatformAdmin",
            permission_groups=("admin-all",),
            role_scope=RoleScope.GLOBAL,
            hierarchy_level=1,
        ),
    ]


def make_users() -> list[User]:
    return [
        User(
            id="alice",
            email="Alice@Example.com",
            assignments=(TenantAssignment(company="acme", business_unit="BU-1", role="Cashier"),),
        ),
        User(
            id="bob",
            assignments=(TenantAssignment(company="acme", business_unit="BU-1", role="Supervisor"),),
        ),
        User(
            id="carol",
            assignments=(TenantAssignment(company="acme", role="CompanyAdmin"),),
        ),
        User(id="root", roles=("PlatformAdmin",)),
    ]


BUSINESS_UNIT_DOCS = [
    {"id": "BU-1", "company": "acme"},
    {"id": "BU-2", "company": "acme"},
    {"id": "BU-9", "company": "globex"},
]


def ctx(
    company: Optional[str] = "acme",
    business_unit: Optional[str] = "BU-1",
    outlet: Optional[str] = None,
    user_id: Optional[str] = "alice",
    scope_level: RoleScope = RoleScope.BUSINESS,
) -> TenantContext:
    return TenantContext(
        company=company,
        business_unit=business_unit,
        outlet=outlet,
        user_id=user_id,
        scope_level=scope_level,
    )


@pytest.fixture
def catalog() -> PermissionCatalog:
    return PermissionCatalog(make_permissions(), make_groups(), make_roles())


@pytest.fixture
def users() -> dict[str, User]:
    return {u.id: u for u in make_users()}


@pytest.fixture
def resolver(catalog) -> PermissionResolver:
    return PermissionResolver(catalog)


@pytest.fixture
def store(users) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(
        {
            USERS: [u.model_dump(mode="json") for u in users.values()],
            BUSINESS_UNITS: list(BUSINESS_UNIT_DOCS),
        }
    )


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(jwt_secret=SECRET)


@pytest.fixture
def issuer(auth_config) -> TokenIssuer:
    return TokenIssuer(auth_config)


@pytest.fixture
def gate(issuer, store, catalog) -> AuthorizationGate:
    return AuthorizationGate(issuer, PolicyStore(store, catalog), PermissionResolver(catalog))
