"""Request-scoped tenant context.

The tenant a request acts for is bound once, by the authorization gate, and
read by everything downstream (scoped repositories, the permission resolver,
log formatting) without being passed around explicitly.

Storage is a ``contextvars.ContextVar`` so the binding follows asyncio
continuations and never leaks between interleaved requests:

    ctx = TenantContext(company="acme", business_unit="BU-1", user_id="u1")

    with ContextStore.bind(ctx):
        await orders.find({})          # filtered to BU-1

    await ContextStore.arun(ctx, handler, request)

A bound context is immutable. Binding again inside the same call chain raises
ContextAlreadyBound; leaving the block (normally, by exception, or by task
cancellation) always releases it.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar, Union
from uuid import uuid4

from .exceptions import ContextAlreadyBound, ContextMissing

T = TypeVar("T")


class RoleScope(str, Enum):
    """Breadth of the tenant a role may act in, broadest first."""

    GLOBAL = "GLOBAL"
    ORGANIZATION = "ORGANIZATION"
    BUSINESS = "BUSINESS"
    OUTLET = "OUTLET"
    SELF = "SELF"

    @property
    def breadth(self) -> int:
        """Higher is broader (GLOBAL=4 ... SELF=0)."""
        return _BREADTH[self]


_BREADTH = {
    RoleScope.GLOBAL: 4,
    RoleScope.ORGANIZATION: 3,
    RoleScope.BUSINESS: 2,
    RoleScope.OUTLET: 1,
    RoleScope.SELF: 0,
}


@dataclass(frozen=True)
class TenantContext:
    """Tenant and principal a request acts for.

    Attributes:
        company: Organization id.
        business_unit: Business unit id within the company.
        outlet: Outlet (store/branch) id within the business unit.
        user_id: Authenticated principal.
        scope_level: Broadest role scope the principal holds in this tenant.
        request_id: Correlation id for logs.
    """

    company: Optional[str] = None
    business_unit: Optional[str] = None
    outlet: Optional[str] = None
    user_id: Optional[str] = None
    scope_level: RoleScope = RoleScope.SELF
    request_id: str = field(default_factory=lambda: uuid4().hex)

    @property
    def is_platform(self) -> bool:
        return self.scope_level == RoleScope.GLOBAL

    def tenant_value(self, key: str) -> Optional[str]:
        """Bound value for "company", "business_unit" or "outlet"."""
        if key not in ("company", "business_unit", "outlet"):
            raise KeyError(key)
        return getattr(self, key)

    def as_log_fields(self) -> dict[str, str]:
        """Non-empty identifiers for structured log records."""
        fields = {
            "company": self.company,
            "business_unit": self.business_unit,
            "outlet": self.outlet,
            "user_id": self.user_id,
            "request_id": self.request_id,
        }
        return {k: v for k, v in fields.items() if v}


class _NoContext:
    """Sentinel returned by ContextStore.current() outside a request."""

    _instance: Optional["_NoContext"] = None

    def __new__(cls) -> "_NoContext":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_CONTEXT"


NO_CONTEXT = _NoContext()

_current: ContextVar[Optional[TenantContext]] = ContextVar("iamcore_tenant_context", default=None)


class ContextStore:
    """Bind, read and release the request's TenantContext."""

    @staticmethod
    def current() -> Union[TenantContext, _NoContext]:
        ctx = _current.get()
        return ctx if ctx is not None else NO_CONTEXT

    @staticmethod
    def require() -> TenantContext:
        ctx = _current.get()
        if ctx is None:
            raise ContextMissing()
        return ctx

    @staticmethod
    def is_bound() -> bool:
        return _current.get() is not None

    @staticmethod
    @contextmanager
    def bind(context: TenantContext) -> Iterator[TenantContext]:
        """Bind ``context`` for the duration of the ``with`` block."""
        if not isinstance(context, TenantContext):
            raise TypeError(f"Expected TenantContext, got {type(context).__name__}")
        if _current.get() is not None:
            raise ContextAlreadyBound()
        token = _current.set(context)
        try:
            yield context
        finally:
            _current.reset(token)

    @staticmethod
    def run(context: TenantContext, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``fn`` with ``context`` bound."""
        with ContextStore.bind(context):
            return fn(*args, **kwargs)

    @staticmethod
    async def arun(
        context: TenantContext,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Await ``fn`` with ``context`` bound.

        The binding is released when the coroutine finishes, raises or is
        cancelled.
        """
        with ContextStore.bind(context):
            return await fn(*args, **kwargs)


__all__ = [
    "RoleScope",
    "TenantContext",
    "ContextStore",
    "NO_CONTEXT",
]
