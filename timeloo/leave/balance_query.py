"""Per-session balance loader.

A :class:`BalanceQuery` belongs to one client session.  Every distinct
``(leave_type_id, refresh_trigger)`` pair is fetched from the backend once
(shared through the application ``QueryCache``), and when loads overlap only
the most recently started one may publish its result to :attr:`state`.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Awaitable, Callable, Hashable, Optional

from timeloo.common.cache import QueryCache
from timeloo.common.constants import LEAVE_BALANCE
from timeloo.common.exceptions import AppException
from timeloo.leave.schemas import BalanceOut, BalanceState

logger = logging.getLogger(__name__)

BalanceFetcher = Callable[[uuid.UUID, int], Awaitable[BalanceOut]]

LOAD_ERROR_MESSAGE = "Failed to load balance"


class BalanceQuery:
    """Balance state for one user session."""

    def __init__(
        self,
        cache: QueryCache,
        user_id: str,
        fetch: BalanceFetcher,
        *,
        year: Optional[int] = None,
    ) -> None:
        self._cache = cache
        self._user_id = user_id
        self._fetch = fetch
        self._year = year or date.today().year
        self._generation = 0
        self.state = BalanceState()

    def key(self, leave_type_id: uuid.UUID, refresh_trigger: Hashable = None) -> tuple:
        return (LEAVE_BALANCE, self._user_id, leave_type_id, self._year, refresh_trigger)

    async def load(
        self,
        leave_type_id: uuid.UUID,
        refresh_trigger: Hashable = None,
    ) -> BalanceState:
        """Load the balance for ``leave_type_id``; returns the current state.

        A new ``refresh_trigger`` value forces a fresh backend fetch.  On
        failure the state carries an error and no balance.
        """
        self._generation += 1
        generation = self._generation
        self.state = BalanceState(loading=True)

        key = self.key(leave_type_id, refresh_trigger)
        # Only the latest trigger of a balance stays cached
        evicted = self._cache.retain_only(key[:-1], key)
        if evicted:
            logger.debug("Dropped %d superseded balance entries", evicted)

        try:
            balance = await self._cache.fetch(
                key,
                lambda: self._fetch(leave_type_id, self._year),
            )
            outcome = BalanceState(balance=balance)
        except AppException as exc:
            logger.error("Error fetching leave balance: %s", exc.detail)
            outcome = BalanceState(error=LOAD_ERROR_MESSAGE)

        # A newer load started meanwhile and owns the state now
        if generation == self._generation:
            self.state = outcome
        return self.state
