"""In-process query cache with a declared mutation → query-key graph.

Cached reads are keyed by tuples ``(entity, *params)``.  Mutations never
invalidate keys by hand: inside a transaction they call
:meth:`QueryCache.invalidate_after_commit` with their registered name, and
:data:`INVALIDATION_GRAPH` decides which key prefixes depend on the mutated
entity.  A mutation missing from the graph is a programming error and raises
``KeyError``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Hashable, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from timeloo.common.constants import (
    ALL_USERS_WITH_ROLES,
    CURRENT_USER_ROLE,
    LEAVE_BALANCE,
    LEAVE_TYPES,
)
from timeloo.database import run_after_commit

logger = logging.getLogger(__name__)

QueryKey = tuple[Hashable, ...]


# ── Declared dependency graph ───────────────────────────────────────

INVALIDATION_GRAPH: dict[str, Callable[..., list[QueryKey]]] = {
    "update-role": lambda *, user_id: [
        (ALL_USERS_WITH_ROLES,),
        (CURRENT_USER_ROLE, user_id),
    ],
    "review-application": lambda *, user_id: [
        (LEAVE_BALANCE, user_id),
    ],
    "submit-application": lambda *, user_id: [
        (LEAVE_BALANCE, user_id),
    ],
    "upsert-balance": lambda *, user_id, leave_type_id: [
        (LEAVE_BALANCE, user_id, leave_type_id),
    ],
    "upsert-leave-type": lambda: [
        (LEAVE_TYPES,),
        (LEAVE_BALANCE,),
    ],
}


def _matches(key: QueryKey, prefix: QueryKey) -> bool:
    return key[: len(prefix)] == prefix


class QueryCache:
    """Read-through cache that shares in-flight loads between callers."""

    def __init__(self) -> None:
        self._values: dict[QueryKey, Any] = {}
        self._inflight: dict[QueryKey, asyncio.Task] = {}
        self.fetch_count = 0

    def __contains__(self, key: QueryKey) -> bool:
        return key in self._values

    def get(self, key: QueryKey, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: QueryKey, value: Any) -> None:
        self._values[key] = value

    def keys(self) -> list[QueryKey]:
        return list(self._values)

    async def fetch(self, key: QueryKey, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for ``key`` or run ``loader`` exactly once.

        Concurrent callers for the same key await the same load.  Failed
        loads are not cached.
        """
        if key in self._values:
            return self._values[key]

        task = self._inflight.get(key)
        if task is None:
            self.fetch_count += 1
            task = asyncio.ensure_future(loader())
            self._inflight[key] = task
            try:
                value = await task
            finally:
                # Invalidated while loading: serve the value but do not cache it
                still_current = self._inflight.get(key) is task
                if still_current:
                    del self._inflight[key]
            if still_current:
                self._values[key] = value
            return value

        return await asyncio.shield(task)

    def invalidate(self, prefixes: Iterable[QueryKey]) -> int:
        """Drop every cached key starting with one of ``prefixes``."""
        prefixes = list(prefixes)
        stale = [k for k in self._values if any(_matches(k, p) for p in prefixes)]
        for key in stale:
            del self._values[key]
        for key in [k for k in self._inflight if any(_matches(k, p) for p in prefixes)]:
            del self._inflight[key]
        return len(stale)

    def invalidate_for(self, mutation: str, **params: Any) -> int:
        """Invalidate the keys that ``mutation`` is declared to affect."""
        prefixes = INVALIDATION_GRAPH[mutation](**params)
        dropped = self.invalidate(prefixes)
        logger.debug("Mutation %s invalidated %d cached queries", mutation, dropped)
        return dropped

    def invalidate_after_commit(
        self,
        session: AsyncSession,
        mutation: str,
        **params: Any,
    ) -> None:
        """Defer :meth:`invalidate_for` until ``session`` commits.

        Dropping keys before the commit would let a concurrent reader load
        the previous row and cache it again.  Nothing is invalidated when the
        transaction rolls back.
        """
        if mutation not in INVALIDATION_GRAPH:
            raise KeyError(mutation)
        run_after_commit(session, lambda: self.invalidate_for(mutation, **params))

    def retain_only(self, prefix: QueryKey, keep: QueryKey) -> int:
        """Drop every key under ``prefix`` except ``keep``."""
        stale = [k for k in self._values if _matches(k, prefix) and k != keep]
        for key in stale:
            del self._values[key]
        for key in [k for k in self._inflight if _matches(k, prefix) and k != keep]:
            del self._inflight[key]
        return len(stale)

    def clear(self) -> None:
        self._values.clear()
