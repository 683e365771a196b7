"""Tests for iamcore.context module."""

from __future__ import annotations

import asyncio
from dataclasses import FrozenInstanceError

import pytest

from iamcore.context import NO_CONTEXT, ContextStore, RoleScope, TenantContext
from iamcore.exceptions import ContextAlreadyBound, ContextMissing


class TestRoleScope:
    """RoleScope ordering tests."""

    def test_breadth_order(self):
        ordered = sorted(RoleScope, key=lambda s: s.breadth, reverse=True)
        assert ordered == [
            RoleScope.GLOBAL,
            RoleScope.ORGANIZATION,
            RoleScope.BUSINESS,
            RoleScope.OUTLET,
            RoleScope.SELF,
        ]

    def test_from_string(self):
        assert RoleScope("BUSINESS") is RoleScope.BUSINESS


class TestTenantContext:
    """TenantContext value tests."""

    def test_frozen(self):
        ctx = TenantContext(company="acme")
        with pytest.raises(FrozenInstanceError):
            ctx.company = "globex"  # type: ignore[misc]

    def test_request_id_generated(self):
        a = TenantContext()
        b = TenantContext()
        assert a.request_id and b.request_id
        assert a.request_id != b.request_id

    def test_is_platform(self):
        assert TenantContext(scope_level=RoleScope.GLOBAL).is_platform is True
        assert TenantContext(scope_level=RoleScope.ORGANIZATION).is_platform is False

    def test_tenant_value(self):
        ctx = TenantContext(company="acme", business_unit="BU-1")
        assert ctx.tenant_value("company") == "acme"
        assert ctx.tenant_value("business_unit") == "BU-1"
        assert ctx.tenant_value("outlet") is None

    def test_tenant_value_rejects_other_keys(self):
        with pytest.raises(KeyError):
            TenantContext().tenant_value("user_id")

    def test_log_fields_skip_empty(self):
        ctx = TenantContext(company="acme", user_id="u1", request_id="r1")
        assert ctx.as_log_fields() == {"company": "acme", "user_id": "u1", "request_id": "r1"}


class TestNoContext:
    """NO_CONTEXT sentinel tests."""

    def test_falsy(self):
        assert not NO_CONTEXT
        assert repr(NO_CONTEXT) == "NO_CONTEXT"

    def test_current_outside_request(self):
        assert ContextStore.current() is NO_CONTEXT
        assert ContextStore.is_bound() is False

    def test_require_outside_request(self):
        with pytest.raises(ContextMissing):
            ContextStore.require()


class TestContextStoreBind:
    """ContextStore.bind tests."""

    def test_bind_and_release(self):
        ctx = TenantContext(company="acme")
        with ContextStore.bind(ctx) as bound:
            assert bound is ctx
            assert ContextStore.current() is ctx
            assert ContextStore.require() is ctx
        assert ContextStore.current() is NO_CONTEXT

    def test_released_on_exception(self):
        with pytest.raises(RuntimeError):
            with ContextStore.bind(TenantContext(company="acme")):
                raise RuntimeError("boom")
        assert ContextStore.is_bound() is False

    def test_rebinding_rejected(self):
        with ContextStore.bind(TenantContext(company="acme")):
            with pytest.raises(ContextAlreadyBound):
                with ContextStore.bind(TenantContext(company="globex")):
                    pass
            assert ContextStore.require().company == "acme"

    def test_bind_requires_tenant_context(self):
        with pytest.raises(TypeError):
            with ContextStore.bind({"company": "acme"}):  # type: ignore[arg-type]
                pass

    def test_run(self):
        ctx = TenantContext(company="acme")
        assert ContextStore.run(ctx, lambda: ContextStore.require().company) == "acme"
        assert ContextStore.is_bound() is False


class TestContextStoreAsync:
    """Async isolation tests."""

    @pytest.mark.asyncio
    async def test_arun(self):
        async def read():
            await asyncio.sleep(0)
            return ContextStore.require().business_unit

        result = await ContextStore.arun(TenantContext(company="acme", business_unit="BU-1"), read)
        assert result == "BU-1"
        assert ContextStore.is_bound() is False

    @pytest.mark.asyncio
    async def test_interleaved_requests_isolated(self):
        seen: dict[str, list[str]] = {"BU-1": [], "BU-2": []}

        async def handler(unit: str):
            for _ in range(5):
                await asyncio.sleep(0)
                seen[unit].append(ContextStore.require().business_unit)

        await asyncio.gather(
            ContextStore.arun(TenantContext(company="acme", business_unit="BU-1"), handler, "BU-1"),
            ContextStore.arun(TenantContext(company="acme", business_unit="BU-2"), handler, "BU-2"),
        )
        assert seen["BU-1"] == ["BU-1"] * 5
        assert seen["BU-2"] == ["BU-2"] * 5

    @pytest.mark.asyncio
    async def test_released_on_cancellation(self):
        started = asyncio.Event()
        observed: list[bool] = []

        async def slow():
            started.set()
            await asyncio.sleep(10)

        async def request():
            try:
                await ContextStore.arun(TenantContext(company="acme"), slow)
            finally:
                observed.append(ContextStore.is_bound())

        task = asyncio.create_task(request())
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert observed == [False]
        assert ContextStore.is_bound() is False

    @pytest.mark.asyncio
    async def test_child_task_copies_binding_at_creation(self):
        async def sibling():
            return ContextStore.is_bound()

        with ContextStore.bind(TenantContext(company="acme")):
            inherited = await asyncio.create_task(sibling())
        outside = await asyncio.create_task(sibling())
        # Tasks copy the context at creation time.
        assert inherited is True
        assert outside is False
