"""Per-group resolver strategies.

Each strategy is a pure function from the group's matching permissions (active,
covering the requested pair, conditions satisfied, in declared order) to a
single Vote. A vote with ``effect=None`` abstains and lets the combiner fall
through to other groups or to the fallback.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .models import Effect, Permission, ResolveStrategy


@dataclass(frozen=True)
class Vote:
    effect: Optional[Effect]
    permission: Optional[Permission] = None
    reason: str = ""

    @property
    def abstained(self) -> bool:
        return self.effect is None


def _abstain(reason: str) -> Vote:
    return Vote(effect=None, reason=reason)


def first_match(matches: Sequence[Permission]) -> Vote:
    if not matches:
        return _abstain("no matching permission")
    winner = matches[0]
    return Vote(winner.effect, winner, f"first match {winner.id}")


def most_specific(matches: Sequence[Permission]) -> Vote:
    if not matches:
        return _abstain("no matching permission")
    top = max(p.specificity for p in matches)
    leaders = [p for p in matches if p.specificity == top]
    if len({p.effect for p in leaders}) > 1:
        return _abstain(f"conflicting effects at specificity {top}")
    winner = leaders[0]
    return Vote(winner.effect, winner, f"most specific {winner.id}")


def priority_based(matches: Sequence[Permission]) -> Vote:
    if not matches:
        return _abstain("no matching permission")
    top = max(p.priority for p in matches)
    leaders = [p for p in matches if p.priority == top]
    if len({p.effect for p in leaders}) > 1:
        deny = next(p for p in leaders if p.effect == Effect.DENY)
        return Vote(Effect.DENY, deny, f"conflicting effects at priority {top}")
    winner = leaders[0]
    return Vote(winner.effect, winner, f"highest priority {winner.id}")


def cumulative(matches: Sequence[Permission]) -> Vote:
    for permission in matches:
        if permission.effect == Effect.ALLOW:
            return Vote(Effect.ALLOW, permission, f"granted by {permission.id}")
    return _abstain("no allowing permission")


STRATEGIES: dict[ResolveStrategy, Callable[[Sequence[Permission]], Vote]] = {
    ResolveStrategy.FIRST_MATCH: first_match,
    ResolveStrategy.MOST_SPECIFIC: most_specific,
    ResolveStrategy.PRIORITY_BASED: priority_based,
    ResolveStrategy.CUMULATIVE: cumulative,
}


def apply_strategy(strategy: ResolveStrategy, matches: Sequence[Permission]) -> Vote:
    return STRATEGIES[ResolveStrategy(strategy)](matches)


__all__ = [
    "Vote",
    "STRATEGIES",
    "apply_strategy",
    "first_match",
    "most_specific",
    "priority_based",
    "cumulative",
]
