"""Effective role limits across several roles.

A user holding several roles gets the most generous ceiling of any of them
(``max``) and every restriction any of them imposes (logical OR). Which rule
applies is declared on each RoleLimits field through
``json_schema_extra={"combine": ...}``.

With no roles at all every ceiling is 0 and every restriction is off, and
``check`` refuses regardless of the requested amount.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence, Type, TypeVar

from pydantic import BaseModel

from .models import Role, RoleLimits

M = TypeVar("M", bound=BaseModel)

COMBINE_MAX = "max"
COMBINE_ANY = "any"


@dataclass(frozen=True)
class LimitCheck:
    allowed: bool
    limit: Any
    requested: Any
    path: str = ""

    @property
    def reason(self) -> str:
        if self.allowed:
            return f"{self.path} {self.requested} within limit {self.limit}"
        return f"{self.path} {self.requested} exceeds limit {self.limit}"


def _combine_mode(model: Type[BaseModel], name: str) -> str | None:
    extra = model.model_fields[name].json_schema_extra
    if isinstance(extra, dict):
        return extra.get("combine")  # type: ignore[return-value]
    return None


def combine_limits(model: Type[M], parts: Sequence[M]) -> M:
    """Fold ``parts`` field by field according to each field's combine mode."""
    values: dict[str, Any] = {}
    for name, info in model.model_fields.items():
        items = [getattr(p, name) for p in parts]
        annotation = info.annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            values[name] = combine_limits(annotation, items)
            continue
        if not items:
            continue
        mode = _combine_mode(model, name)
        if mode == COMBINE_MAX:
            values[name] = max(items)
        elif mode == COMBINE_ANY:
            values[name] = any(items)
        else:
            raise TypeError(f"{model.__name__}.{name} declares no combine mode")
    return model(**values)


def _limit_field(path: str, mode: str) -> tuple[str, str]:
    """Split a dotted limit path, checking it names a field combined by ``mode``."""
    section, _, field_name = path.partition(".")
    if section not in RoleLimits.model_fields:
        raise KeyError(f"Unknown limit section: {section}")
    section_model = RoleLimits.model_fields[section].annotation
    if field_name not in section_model.model_fields:  # type: ignore[union-attr]
        raise KeyError(f"Unknown limit: {path}")
    if _combine_mode(section_model, field_name) != mode:  # type: ignore[arg-type]
        kind = "ceiling" if mode == COMBINE_MAX else "restriction"
        raise ValueError(f"{path} is not a {kind}")
    return section, field_name


class LimitEvaluator:
    """Reconcile RoleLimits of several roles."""

    def effective(self, roles: Iterable[Role]) -> RoleLimits:
        return combine_limits(RoleLimits, [r.limits for r in roles])

    def check(self, roles: Iterable[Role], path: str, requested: float) -> LimitCheck:
        """Compare ``requested`` against the effective ceiling at ``path``.

        ``path`` is dotted, e.g. ``"financial.max_discount_percent"``; it must
        name a ceiling field.
        """
        roles = list(roles)
        section, field_name = _limit_field(path, COMBINE_MAX)
        limit = getattr(getattr(self.effective(roles), section), field_name)
        allowed = bool(roles) and requested <= limit
        return LimitCheck(allowed=allowed, limit=limit, requested=requested, path=path)

    def restricted(self, roles: Iterable[Role], path: str) -> bool:
        """True when any role imposes the restriction at ``path``."""
        section, field_name = _limit_field(path, COMBINE_ANY)
        return bool(getattr(getattr(self.effective(roles), section), field_name))


__all__ = ["LimitCheck", "LimitEvaluator", "combine_limits"]
