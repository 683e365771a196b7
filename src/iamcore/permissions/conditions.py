"""ABAC condition evaluation.

A permission with conditions only matches when every condition holds against
the evaluation environment, a nested mapping such as::

    {
        "user": {"id": "u1", "roles": ["Cashier"]},
        "tenant": {"company": "acme", "business_unit": "BU-1"},
        "resource": {"owner_id": "u1", "amount": 120},
    }
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from .models import ConditionOperator, PermissionCondition

logger = logging.getLogger(__name__)

_MISSING = object()


def get_path(env: Any, path: str) -> Any:
    """Resolve a dotted path through mappings and attributes."""
    current = env
    for key in path.split("."):
        if current is None or current is _MISSING:
            return _MISSING
        if isinstance(current, Mapping):
            current = current.get(key, _MISSING)
        else:
            current = getattr(current, key, _MISSING)
    return current


def _ordered(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def compare(actual: Any, expected: Any) -> bool:
        try:
            return bool(op(actual, expected))
        except TypeError:
            return False

    return compare


def _is_collection(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQ.value: lambda a, e: a == e,
    ConditionOperator.NEQ.value: lambda a, e: a != e,
    ConditionOperator.GT.value: _ordered(lambda a, e: a > e),
    ConditionOperator.GTE.value: _ordered(lambda a, e: a >= e),
    ConditionOperator.LT.value: _ordered(lambda a, e: a < e),
    ConditionOperator.LTE.value: _ordered(lambda a, e: a <= e),
    ConditionOperator.IN.value: lambda a, e: _is_collection(e) and a in e,
    ConditionOperator.NOT_IN.value: lambda a, e: _is_collection(e) and a not in e,
    ConditionOperator.CONTAINS.value: lambda a, e: _is_collection(a) and e in a,
}


def evaluate_condition(condition: PermissionCondition, env: Any) -> bool:
    compare = _OPERATORS.get(condition.operator)
    if compare is None:
        logger.warning("Unsupported permission operator %r on field %s", condition.operator, condition.field)
        return False
    actual = get_path(env, condition.field)
    if actual is _MISSING:
        actual = None
    return compare(actual, condition.value)


def evaluate_conditions(conditions: Iterable[PermissionCondition], env: Any) -> bool:
    """True when every condition holds (vacuously true for none)."""
    return all(evaluate_condition(c, env) for c in conditions)


__all__ = ["get_path", "evaluate_condition", "evaluate_conditions"]
