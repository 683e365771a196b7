from .config import AuthConfig, EnforcementMode, IamConfig, LogLevel, TenancyConfig, load_config_from_env
from .context import NO_CONTEXT, ContextStore, RoleScope, TenantContext
from .exceptions import (
    ContextAlreadyBound,
    ContextMissing,
    IamError,
    InvalidPermissionGraph,
    PermissionDenied,
    TenantResolutionError,
    Unauthenticated,
    UnknownPermission,
)
from .logging import (
    IamFormatter,
    IamLoggerAdapter,
    get_audit_logger,
    get_logger,
    redact_secrets,
    safe_log_value,
    safe_preview,
    setup_logging,
)
from .permissions import (
    Decision,
    Permission,
    PermissionCatalog,
    PermissionGroup,
    PermissionResolver,
    QuotaRequest,
    ResolverConfig,
    Role,
    RoleLimits,
    User,
)
from .storage import InMemoryDocumentStore, PolicyStore, ScopeConfig, ScopedRepository
from .tokens import AccessClaims, TokenIssuer

__all__ = [
    'IamConfig',
    'AuthConfig',
    'TenancyConfig',
    'EnforcementMode',
    'LogLevel',
    'load_config_from_env',
    'TenantContext',
    'ContextStore',
    'RoleScope',
    'NO_CONTEXT',
    'IamError',
    'Unauthenticated',
    'TenantResolutionError',
    'ContextMissing',
    'ContextAlreadyBound',
    'PermissionDenied',
    'UnknownPermission',
    'InvalidPermissionGraph',
    'safe_preview',
    'redact_secrets',
    'safe_log_value',
    'IamFormatter',
    'IamLoggerAdapter',
    'setup_logging',
    'get_logger',
    'get_audit_logger',
    'Permission',
    'PermissionGroup',
    'ResolverConfig',
    'Role',
    'RoleLimits',
    'User',
    'PermissionCatalog',
    'PermissionResolver',
    'Decision',
    'QuotaRequest',
    'InMemoryDocumentStore',
    'PolicyStore',
    'ScopeConfig',
    'ScopedRepository',
    'AccessClaims',
    'TokenIssuer',
]
