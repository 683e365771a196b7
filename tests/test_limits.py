"""Tests for role limit reconciliation."""

from __future__ import annotations

import pytest

from iamcore.permissions import LimitEvaluator, Role, RoleLimits


def role(name, **limits):
    return Role(name=name, limits=RoleLimits.model_validate(limits))


CASHIER = role(
    "Cashier",
    financial={"max_discount_percent": 10, "max_refund_amount": 50},
    security={"two_factor_required": True, "max_sessions": 1},
)
SUPERVISOR = role(
    "Supervisor",
    financial={"max_discount_percent": 25},
    security={"max_sessions": 3},
    approval={"requires_approval_for_refund": True},
)


class TestLimitEvaluator:
    """LimitEvaluator tests."""

    def setup_method(self):
        self.limits = LimitEvaluator()

    def test_ceilings_take_max(self):
        effective = self.limits.effective([CASHIER, SUPERVISOR])
        assert effective.financial.max_discount_percent == 25
        assert effective.financial.max_refund_amount == 50
        assert effective.security.max_sessions == 3

    def test_restrictions_take_any(self):
        effective = self.limits.effective([CASHIER, SUPERVISOR])
        assert effective.security.two_factor_required is True
        assert effective.approval.requires_approval_for_refund is True
        assert effective.security.ip_whitelist_enabled is False

    def test_no_roles_is_all_zero(self):
        assert self.limits.effective([]) == RoleLimits()

    def test_check_within_and_over(self):
        within = self.limits.check([CASHIER], "financial.max_discount_percent", 10)
        over = self.limits.check([CASHIER], "financial.max_discount_percent", 15)
        assert within.allowed is True
        assert over.allowed is False
        assert over.limit == 10
        assert "exceeds limit" in over.reason

    def test_check_uses_most_generous_role(self):
        assert self.limits.check([CASHIER, SUPERVISOR], "financial.max_discount_percent", 15).allowed

    def test_check_without_roles_refuses(self):
        assert self.limits.check([], "financial.max_discount_percent", 0).allowed is False

    def test_unknown_path(self):
        with pytest.raises(KeyError):
            self.limits.check([CASHIER], "financial.max_tip", 1)
        with pytest.raises(KeyError):
            self.limits.check([CASHIER], "payroll.max_salary", 1)

    def test_restriction_is_not_a_ceiling(self):
        with pytest.raises(ValueError):
            self.limits.check([CASHIER], "security.two_factor_required", 1)

    def test_restricted(self):
        assert self.limits.restricted([CASHIER, SUPERVISOR], "security.two_factor_required") is True
        assert self.limits.restricted([SUPERVISOR], "security.two_factor_required") is False

    def test_restricted_unknown_path(self):
        with pytest.raises(KeyError):
            self.limits.restricted([CASHIER], "security.face_id_required")
        with pytest.raises(KeyError):
            self.limits.restricted([CASHIER], "payroll.locked")

    def test_ceiling_is_not_a_restriction(self):
        with pytest.raises(ValueError):
            self.limits.restricted([CASHIER], "financial.max_discount_percent")
