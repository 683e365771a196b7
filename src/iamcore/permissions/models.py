"""Persisted IAM shapes: permissions, groups, roles, limits, users.

Every model validates on load from the ``permissions``, ``permission_groups``,
``roles``, ``users`` and ``business_units`` collections. Permissions and
groups are frozen once built; the catalog replaces them wholesale.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..context import RoleScope

WILDCARD = "*"


class Effect(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class ResolveStrategy(str, Enum):
    """How a single group turns its matching permissions into one vote."""

    FIRST_MATCH = "first-match"
    MOST_SPECIFIC = "most-specific"
    PRIORITY_BASED = "priority-based"
    CUMULATIVE = "cumulative"


class ConditionOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not-in"
    CONTAINS = "contains"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLOCKED = "blocked"


class PermissionCondition(BaseModel):
    """ABAC predicate ``env[field] <operator> value``.

    ``field`` is a dotted path into the evaluation environment, e.g.
    ``resource.owner_id`` or ``tenant.business_unit``. The operator is kept as
    a plain string so that stored documents with an unsupported operator still
    load; such a condition never matches.
    """

    model_config = ConfigDict(frozen=True)

    field: str
    operator: str
    value: Any = None


class Permission(BaseModel):
    """Atomic ``(source, action)`` grant or denial.

    ``action == "*"`` matches every action of ``source``; ``source == "*"``
    together with ``action == "*"`` matches everything.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = ""
    source: str = Field(min_length=1)
    action: str = Field(min_length=1)
    effect: Effect = Effect.ALLOW
    priority: int = 0
    conditions: tuple[PermissionCondition, ...] = ()
    description: str = ""
    is_active: bool = True

    @model_validator(mode="before")
    @classmethod
    def default_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id") and data.get("source") and data.get("action"):
            data = {**data, "id": f"{data['source']}:{data['action']}"}
        return data

    @model_validator(mode="after")
    def check_wildcards(self) -> "Permission":
        if self.source == WILDCARD and self.action != WILDCARD:
            raise ValueError("a global wildcard permission needs action '*'")
        return self

    @property
    def specificity(self) -> int:
        """2 for an exact pair, 1 for ``source:*``, 0 for ``*:*``."""
        if self.source == WILDCARD:
            return 0
        if self.action == WILDCARD:
            return 1
        return 2

    @property
    def is_exact(self) -> bool:
        return self.specificity == 2

    def covers(self, source: str, action: str) -> bool:
        """True when this permission's pattern covers ``(source, action)``."""
        if self.source == WILDCARD:
            return True
        if self.source != source:
            return False
        return self.action == WILDCARD or self.action == action


class ResolverConfig(BaseModel):
    """How a group votes and how its vote ranks against other groups."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    strategy: ResolveStrategy
    priority: float = 0
    inherit_from: tuple[str, ...] = ()
    override: bool = False
    fallback: Effect = Effect.DENY


class PermissionGroup(BaseModel):
    """Named, ordered set of permission ids with a resolver."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(min_length=1)
    permissions: tuple[str, ...] = ()
    resolver: ResolverConfig
    description: str = ""
    version: int = Field(default=1, ge=1)
    is_active: bool = True


# ---- Limits -----------------------------------------------------------------
#
# Every limit field is tagged with how values from several roles combine:
# "max" for ceilings (most generous wins), "any" for restrictions (any role
# imposing it imposes it).


def _ceiling(**kwargs: Any) -> Any:
    return Field(default=0, ge=0, json_schema_extra={"combine": "max"}, **kwargs)


def _restriction(**kwargs: Any) -> Any:
    return Field(default=False, json_schema_extra={"combine": "any"}, **kwargs)


class FinancialLimits(BaseModel):
    max_discount_percent: float = _ceiling(le=100)
    max_refund_amount: float = _ceiling()
    max_credit_limit: float = _ceiling()
    max_cash_transaction: float = _ceiling()


class DataAccessLimits(BaseModel):
    max_records: int = _ceiling()
    max_export_records: int = _ceiling()


class SecurityLimits(BaseModel):
    max_sessions: int = _ceiling()
    ip_whitelist_enabled: bool = _restriction()
    login_time_restricted: bool = _restriction()
    two_factor_required: bool = _restriction()


class ApprovalLimits(BaseModel):
    max_approval_amount: float = _ceiling()
    requires_approval_for_refund: bool = _restriction()


class RoleLimits(BaseModel):
    """Quota struct attached to a role. All-zero/false is the fail-closed default."""

    financial: FinancialLimits = Field(default_factory=FinancialLimits)
    data_access: DataAccessLimits = Field(default_factory=DataAccessLimits)
    security: SecurityLimits = Field(default_factory=SecurityLimits)
    approval: ApprovalLimits = Field(default_factory=ApprovalLimits)


class Role(BaseModel):
    """Named bundle of permissions, groups and limits.

    ``hierarchy_level`` ranks seniority: lower is more senior and wins ties
    between equally prioritized groups.
    """

    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, max_length=100, pattern=r"^[A-Za-z0-9_\- ]+$")
    description: str = ""
    permissions: tuple[str, ...] = ()
    permission_groups: tuple[str, ...] = ()
    inherited_roles: tuple[str, ...] = ()
    role_scope: RoleScope = RoleScope.SELF
    hierarchy_level: int = Field(default=1, ge=1, le=100)
    limits: RoleLimits = Field(default_factory=RoleLimits)
    is_active: bool = True
    is_system_role: bool = False

    @model_validator(mode="after")
    def not_self_inherited(self) -> "Role":
        if self.name in self.inherited_roles:
            raise ValueError("Role cannot inherit from itself")
        return self


class TenantAssignment(BaseModel):
    """Grants ``role`` to a user only inside the given tenant."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    company: str
    business_unit: Optional[str] = None
    outlet: Optional[str] = None
    role: str

    @model_validator(mode="after")
    def outlet_needs_business_unit(self) -> "TenantAssignment":
        if self.outlet and not self.business_unit:
            raise ValueError("an outlet assignment needs its business_unit")
        return self


class User(BaseModel):
    """Principal record.

    ``roles`` are unanchored and only GLOBAL roles among them take effect;
    tenant-scoped roles are granted through ``assignments``.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    email: str = ""
    roles: tuple[str, ...] = ()
    assignments: tuple[TenantAssignment, ...] = ()
    direct_permissions: tuple[str, ...] = ()
    status: UserStatus = UserStatus.ACTIVE
    is_deleted: bool = False
    password_changed_at: Optional[datetime] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def is_usable(self) -> bool:
        return not self.is_deleted and self.status == UserStatus.ACTIVE


class BusinessUnit(BaseModel):
    """Directory entry linking a business unit to its company."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    company: str
    slug: Optional[str] = None


__all__ = [
    "WILDCARD",
    "Effect",
    "ResolveStrategy",
    "ConditionOperator",
    "UserStatus",
    "PermissionCondition",
    "Permission",
    "ResolverConfig",
    "PermissionGroup",
    "FinancialLimits",
    "DataAccessLimits",
    "SecurityLimits",
    "ApprovalLimits",
    "RoleLimits",
    "Role",
    "TenantAssignment",
    "User",
    "BusinessUnit",
    "RoleScope",
]
