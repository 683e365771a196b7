"""Roles, permission groups and their resolution.

Defines:
- Permission, PermissionGroup, Role, User: persisted shapes
- PermissionCatalog: versioned in-process registry
- PermissionGraph: compiled group/role inheritance
- PermissionResolver: (source, action) decisions for a principal
- LimitEvaluator: effective quotas across roles
"""

from .catalog import PermissionCatalog
from .conditions import evaluate_conditions
from .inheritance import PermissionGraph, role_group_name
from .limits import LimitCheck, LimitEvaluator, combine_limits
from .models import (
    WILDCARD,
    ApprovalLimits,
    BusinessUnit,
    ConditionOperator,
    DataAccessLimits,
    Effect,
    FinancialLimits,
    Permission,
    PermissionCondition,
    PermissionGroup,
    ResolverConfig,
    ResolveStrategy,
    Role,
    RoleLimits,
    RoleScope,
    SecurityLimits,
    TenantAssignment,
    User,
    UserStatus,
)
from .resolver import DIRECT_GROUP, Decision, PermissionResolver, QuotaRequest, role_admissible
from .strategies import STRATEGIES, Vote, apply_strategy

__all__ = [
    "WILDCARD",
    "DIRECT_GROUP",
    "ApprovalLimits",
    "BusinessUnit",
    "ConditionOperator",
    "DataAccessLimits",
    "Decision",
    "Effect",
    "FinancialLimits",
    "LimitCheck",
    "LimitEvaluator",
    "Permission",
    "PermissionCatalog",
    "PermissionCondition",
    "PermissionGraph",
    "PermissionGroup",
    "PermissionResolver",
    "QuotaRequest",
    "ResolverConfig",
    "ResolveStrategy",
    "Role",
    "RoleLimits",
    "RoleScope",
    "STRATEGIES",
    "SecurityLimits",
    "TenantAssignment",
    "User",
    "UserStatus",
    "Vote",
    "apply_strategy",
    "combine_limits",
    "evaluate_conditions",
    "role_admissible",
    "role_group_name",
]
