"""Authorization decision cache.

Decisions are cached per (user, held roles, direct permissions, tenant,
source, action) under the catalog version that produced them, so a catalog
change makes every older entry unreachable.

Backends:
- MemoryDecisionCache: per-process, size-bounded LRU with TTL (default)
- RedisDecisionCache: shared across workers via ``redis.asyncio``

Cache failures never change a decision: Redis read/write errors are logged
and treated as a miss.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Iterable, Optional, Union

from .context import TenantContext, _NoContext
from .permissions.models import User
from .permissions.resolver import Decision

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "iamcore:decision"
DEFAULT_TTL = 3600  # seconds
DEFAULT_MAXSIZE = 10_000


class DecisionCache(ABC):
    def __init__(self, ttl_seconds: int = DEFAULT_TTL, prefix: str = DEFAULT_PREFIX) -> None:
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def key_for(
        self,
        user: User,
        roles: Iterable[str],
        context: Union[TenantContext, _NoContext],
        source: str,
        action: str,
        version: int,
    ) -> str:
        grants = json.dumps([sorted(roles), sorted(user.direct_permissions)])
        digest = hashlib.sha256(grants.encode()).hexdigest()[:16]
        tenant = ":".join(
            (getattr(context, k, None) or "-") for k in ("company", "business_unit", "outlet")
        )
        return f"{self.prefix}:v{version}:{user.id}:{digest}:{tenant}:{source}:{action}"

    @abstractmethod
    async def get(self, key: str) -> Optional[Decision]:
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, decision: Decision) -> None:
        raise NotImplementedError

    @abstractmethod
    async def clear(self) -> None:
        raise NotImplementedError

    def invalidate(self, version: int) -> None:
        """Called on catalog change; entries of older versions are already unreachable."""


class MemoryDecisionCache(DecisionCache):
    """Per-process LRU holding at most ``maxsize`` decisions.

    When full, expired entries are swept first, then the least recently used
    ones are evicted.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL,
        prefix: str = DEFAULT_PREFIX,
        maxsize: int = DEFAULT_MAXSIZE,
    ) -> None:
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        super().__init__(ttl_seconds, prefix)
        self.maxsize = maxsize
        self._entries: OrderedDict[str, tuple[float, Decision]] = OrderedDict()

    async def get(self, key: str) -> Optional[Decision]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, decision = entry
        if expires_at <= time.monotonic():
            self._entries.pop(key, None)
            return None
        self._entries.move_to_end(key)
        return decision

    async def set(self, key: str, decision: Decision) -> None:
        if self.ttl_seconds <= 0:
            return
        now = time.monotonic()
        self._entries[key] = (now + self.ttl_seconds, decision)
        self._entries.move_to_end(key)
        if len(self._entries) > self.maxsize:
            self._sweep(now)
        while len(self._entries) > self.maxsize:
            self._entries.popitem(last=False)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    async def clear(self) -> None:
        self._entries.clear()

    def invalidate(self, version: int) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisDecisionCache(DecisionCache):
    """Shared cache; the client is created lazily from ``redis_url``."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        ttl_seconds: int = DEFAULT_TTL,
        prefix: str = DEFAULT_PREFIX,
        client: Any = None,
    ) -> None:
        super().__init__(ttl_seconds, prefix)
        self.redis_url = redis_url
        self._client = client

    def _redis(self) -> Any:
        if self._client is None:
            import redis.asyncio as aioredis

            self._client = aioredis.from_url(self.redis_url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> Optional[Decision]:
        try:
            raw = await self._redis().get(key)
        except Exception as e:
            logger.warning("Decision cache read failed for %s: %s", key, e)
            return None
        if not raw:
            return None
        try:
            return Decision.from_dict(json.loads(raw))
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Invalid cached decision for %s: %s", key, e)
            return None

    async def set(self, key: str, decision: Decision) -> None:
        if self.ttl_seconds <= 0:
            return
        try:
            await self._redis().setex(key, self.ttl_seconds, json.dumps(decision.to_dict()))
        except Exception as e:
            logger.warning("Decision cache write failed for %s: %s", key, e)

    async def clear(self) -> None:
        try:
            client = self._redis()
            async for key in client.scan_iter(match=f"{self.prefix}:*"):
                await client.delete(key)
        except Exception as e:
            logger.warning("Decision cache clear failed: %s", e)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_decision_cache(redis_url: Optional[str], ttl_seconds: int = DEFAULT_TTL) -> Optional[DecisionCache]:
    """Redis cache when a URL is configured, memory otherwise; None when TTL is 0."""
    if ttl_seconds <= 0:
        return None
    if redis_url:
        return RedisDecisionCache(redis_url, ttl_seconds=ttl_seconds)
    return MemoryDecisionCache(ttl_seconds=ttl_seconds)


__all__ = [
    "DecisionCache",
    "MemoryDecisionCache",
    "RedisDecisionCache",
    "build_decision_cache",
    "DEFAULT_TTL",
    "DEFAULT_MAXSIZE",
]
