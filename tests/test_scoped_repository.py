"""Tests for tenant-scoped data access."""

from __future__ import annotations

import asyncio
import logging

import pytest
from conftest import ctx

from iamcore.context import ContextStore, RoleScope, TenantContext
from iamcore.exceptions import ContextMissing, PermissionDenied
from iamcore.logging import AUDIT_LOGGER_NAME
from iamcore.permissions import TenantAssignment, User
from iamcore.storage import InMemoryDocumentStore, ScopeConfig, ScopedRepository

ORDERS = ScopeConfig(company_field="company", business_unit_field="business_unit")

SEED = {
    "orders": [
        {"id": "o1", "company": "acme", "business_unit": "BU-1", "total": 10},
        {"id": "o2", "company": "acme", "business_unit": "BU-1", "total": 20},
        {"id": "o3", "company": "acme", "business_unit": "BU-2", "total": 30},
        {"id": "o4", "company": "globex", "business_unit": "BU-9", "total": 40},
    ],
    "templates": [
        {"id": "t1", "company": "acme", "name": "acme receipt"},
        {"id": "t2", "company": None, "name": "default receipt"},
        {"id": "t3", "company": "globex", "name": "globex receipt"},
    ],
}


@pytest.fixture
def store():
    return InMemoryDocumentStore(SEED)


@pytest.fixture
def orders(store):
    return ScopedRepository(store, "orders", ORDERS)


def ids(documents):
    return sorted(d["id"] for d in documents)


class TestScopedReads:
    """Reads only see the bound tenant."""

    @pytest.mark.asyncio
    async def test_find_filtered_to_business_unit(self, orders):
        with ContextStore.bind(ctx("acme", "BU-1")):
            assert ids(await orders.find()) == ["o1", "o2"]
            assert await orders.count() == 2

    @pytest.mark.asyncio
    async def test_other_unit_invisible_by_id(self, orders):
        with ContextStore.bind(ctx("acme", "BU-1")):
            assert await orders.find_one({"id": "o3"}) is None

    @pytest.mark.asyncio
    async def test_contradicting_filter_returns_nothing(self, orders):
        with ContextStore.bind(ctx("acme", "BU-1")):
            assert await orders.find({"business_unit": "BU-2"}) == []
            assert await orders.count({"company": "globex"}) == 0

    @pytest.mark.asyncio
    async def test_company_level_context_sees_all_units(self, orders):
        with ContextStore.bind(ctx("acme", None, scope_level=RoleScope.ORGANIZATION)):
            assert ids(await orders.find()) == ["o1", "o2", "o3"]

    @pytest.mark.asyncio
    async def test_no_context_raises(self, orders):
        with pytest.raises(ContextMissing):
            await orders.find()

    @pytest.mark.asyncio
    async def test_context_without_tenant_raises(self, orders):
        with ContextStore.bind(TenantContext(user_id="u1")):
            with pytest.raises(ContextMissing):
                await orders.find()

    @pytest.mark.asyncio
    async def test_include_global_widens_reads(self, store):
        templates = ScopedRepository(store, "templates", ScopeConfig(company_field="company", include_global=True))
        with ContextStore.bind(ctx("acme", None)):
            assert ids(await templates.find()) == ["t1", "t2"]

    @pytest.mark.asyncio
    async def test_unscoped_collection(self, store):
        everything = ScopedRepository(store, "orders")
        assert len(await everything.find()) == 4


class TestScopedWrites:
    """Writes are stamped and confined to the bound tenant."""

    @pytest.mark.asyncio
    async def test_insert_stamped(self, orders):
        with ContextStore.bind(ctx("acme", "BU-1")):
            created = await orders.insert_one({"id": "o5", "total": 5})
        assert created["company"] == "acme"
        assert created["business_unit"] == "BU-1"

    @pytest.mark.asyncio
    async def test_spoofed_tenant_overwritten(self, orders, caplog):
        with ContextStore.bind(ctx("acme", "BU-1")):
            created = await orders.insert_one({"id": "o5", "business_unit": "BU-2"})
        assert created["business_unit"] == "BU-1"
        assert "Tenant spoofing attempt" in caplog.text

    @pytest.mark.asyncio
    async def test_insert_many_stamped(self, orders):
        with ContextStore.bind(ctx("acme", "BU-2")):
            created = await orders.insert_many([{"id": "o5"}, {"id": "o6"}])
            assert {d["business_unit"] for d in created} == {"BU-2"}
            assert await orders.count() == 3

    @pytest.mark.asyncio
    async def test_insert_needs_every_tenant_field(self, orders):
        with ContextStore.bind(ctx("acme", None)):
            with pytest.raises(ContextMissing):
                await orders.insert_one({"id": "o5"})

    @pytest.mark.asyncio
    async def test_update_confined(self, orders, store):
        with ContextStore.bind(ctx("acme", "BU-1")):
            assert await orders.update_many({}, {"total": 0}) == 2
            assert await orders.update_one({"id": "o3"}, {"total": 0}) == 0
        untouched = await store.find_one("orders", {"id": "o3"})
        assert untouched["total"] == 30

    @pytest.mark.asyncio
    async def test_update_cannot_move_tenant(self, orders):
        with ContextStore.bind(ctx("acme", "BU-1")):
            with pytest.raises(PermissionDenied):
                await orders.update_one({"id": "o1"}, {"business_unit": "BU-2"})

    @pytest.mark.asyncio
    async def test_delete_confined(self, orders, store):
        with ContextStore.bind(ctx("acme", "BU-2")):
            assert await orders.delete_many({}) == 1
            assert await orders.delete_one({"id": "o1"}) == 0
        assert await store.count("orders", {}) == 3


class TestCrossTenant:
    """Audited escape hatch tests."""

    @pytest.mark.asyncio
    async def test_background_job_allowed_and_audited(self, orders, caplog):
        with caplog.at_level(logging.WARNING, logger=AUDIT_LOGGER_NAME):
            unscoped = orders.cross_tenant("nightly revenue rollup", actor="scheduler")
        assert len(await unscoped.find()) == 4
        record = next(r for r in caplog.records if r.name == AUDIT_LOGGER_NAME)
        assert record.outcome == "granted"
        assert record.actor == "scheduler"

    @pytest.mark.asyncio
    async def test_platform_principal_allowed(self, orders):
        with ContextStore.bind(ctx("acme", "BU-1", user_id="root", scope_level=RoleScope.GLOBAL)):
            unscoped = orders.cross_tenant("support ticket 4411")
            assert len(await unscoped.find()) == 4

    def test_tenant_principal_refused(self, orders, caplog):
        with ContextStore.bind(ctx("acme", "BU-1")):
            with pytest.raises(PermissionDenied):
                orders.cross_tenant("curious")
        record = next(r for r in caplog.records if r.name == AUDIT_LOGGER_NAME)
        assert record.outcome == "refused"

    def test_reason_required(self, orders):
        with pytest.raises(ValueError):
            orders.cross_tenant("  ")


class TestConcurrentRequests:
    """Interleaved requests for different business units."""

    @pytest.mark.asyncio
    async def test_cashier_creates_while_other_unit_lists(self, resolver, users):
        orders = ScopedRepository(InMemoryDocumentStore(), "orders", ORDERS)
        erin = User(id="erin", assignments=(TenantAssignment(company="acme", business_unit="BU-2", role="Cashier"),))
        created_first = asyncio.Event()

        async def create_in_bu1():
            await resolver.authorize(users["alice"], "order", "create")
            created = await orders.insert_one({"id": "o-new", "total": 12})
            created_first.set()
            return created

        async def list_in_bu2():
            await created_first.wait()
            await resolver.authorize(erin, "order", "read")
            return await orders.find()

        created, listed = await asyncio.gather(
            ContextStore.arun(ctx("acme", "BU-1", user_id="alice"), create_in_bu1),
            ContextStore.arun(ctx("acme", "BU-2", user_id="erin"), list_in_bu2),
        )
        assert created["business_unit"] == "BU-1"
        assert listed == []
        with ContextStore.bind(ctx("acme", "BU-1")):
            assert ids(await orders.find()) == ["o-new"]
