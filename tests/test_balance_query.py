"""BalanceQuery — per-session balance loading over the shared QueryCache."""

from __future__ import annotations

import asyncio
import uuid
from decimal import Decimal

from timeloo.common.cache import QueryCache
from timeloo.common.exceptions import QueryFailedException
from timeloo.leave.balance_query import LOAD_ERROR_MESSAGE, BalanceQuery
from timeloo.leave.schemas import BalanceOut

USER_ID = "user_alice"
YEAR = 2025


def _balance(leave_type_id: uuid.UUID, allocated: str = "5") -> BalanceOut:
    return BalanceOut(
        user_id=USER_ID,
        leave_type_id=leave_type_id,
        year=YEAR,
        allocated=Decimal(allocated),
        available=Decimal(allocated),
        can_apply=True,
    )


class RecordingFetcher:
    """Fetcher double that records calls and can be held open per type."""

    def __init__(self) -> None:
        self.calls: list[tuple[uuid.UUID, int]] = []
        self.gates: dict[uuid.UUID, asyncio.Event] = {}
        self.failures: set[uuid.UUID] = set()

    def hold(self, leave_type_id: uuid.UUID) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[leave_type_id] = gate
        return gate

    async def __call__(self, leave_type_id: uuid.UUID, year: int) -> BalanceOut:
        self.calls.append((leave_type_id, year))
        gate = self.gates.get(leave_type_id)
        if gate is not None:
            await gate.wait()
        if leave_type_id in self.failures:
            raise QueryFailedException("Failed to load balance")
        return _balance(leave_type_id)


# ═════════════════════════════════════════════════════════════════════
# 1. FETCH SHARING
# ═════════════════════════════════════════════════════════════════════


class TestFetchSharing:
    """One backend fetch per (leave type, refresh trigger)."""

    async def test_repeat_load_is_served_from_cache(self):
        cache, fetcher = QueryCache(), RecordingFetcher()
        query = BalanceQuery(cache, USER_ID, fetcher, year=YEAR)
        lt = uuid.uuid4()

        first = await query.load(lt)
        second = await query.load(lt)

        assert first.balance == second.balance
        assert fetcher.calls == [(lt, YEAR)]
        assert cache.fetch_count == 1

    async def test_sessions_share_the_fetch(self):
        cache, fetcher = QueryCache(), RecordingFetcher()
        lt = uuid.uuid4()
        gate = fetcher.hold(lt)
        a = BalanceQuery(cache, USER_ID, fetcher, year=YEAR)
        b = BalanceQuery(cache, USER_ID, fetcher, year=YEAR)

        pending = asyncio.gather(a.load(lt), b.load(lt))
        await asyncio.sleep(0)
        gate.set()
        state_a, state_b = await pending

        assert len(fetcher.calls) == 1
        assert state_a.balance.leave_type_id == lt
        assert state_b.balance.leave_type_id == lt

    async def test_new_refresh_trigger_refetches(self):
        cache, fetcher = QueryCache(), RecordingFetcher()
        query = BalanceQuery(cache, USER_ID, fetcher, year=YEAR)
        lt = uuid.uuid4()

        await query.load(lt, "t1")
        await query.load(lt, "t1")
        await query.load(lt, "t2")

        assert len(fetcher.calls) == 2

    async def test_superseded_triggers_are_evicted(self):
        cache, fetcher = QueryCache(), RecordingFetcher()
        query = BalanceQuery(cache, USER_ID, fetcher, year=YEAR)
        other_user = BalanceQuery(cache, "user_bob", fetcher, year=YEAR)
        lt, other_type = uuid.uuid4(), uuid.uuid4()
        await query.load(other_type)
        await other_user.load(lt)

        for trigger in range(200):
            await query.load(lt, trigger)

        assert len(fetcher.calls) == 202
        assert sorted(cache.keys(), key=str) == sorted(
            [query.key(lt, 199), query.key(other_type), other_user.key(lt)], key=str,
        )

    async def test_returning_to_an_old_trigger_refetches(self):
        cache, fetcher = QueryCache(), RecordingFetcher()
        query = BalanceQuery(cache, USER_ID, fetcher, year=YEAR)
        lt = uuid.uuid4()

        await query.load(lt, "t1")
        await query.load(lt, "t2")
        await query.load(lt, "t1")

        assert len(fetcher.calls) == 3
        assert cache.keys() == [query.key(lt, "t1")]

    async def test_invalidation_forces_refetch(self):
        cache, fetcher = QueryCache(), RecordingFetcher()
        query = BalanceQuery(cache, USER_ID, fetcher, year=YEAR)
        lt = uuid.uuid4()

        await query.load(lt)
        cache.invalidate_for("upsert-balance", user_id=USER_ID, leave_type_id=lt)
        await query.load(lt)

        assert len(fetcher.calls) == 2

    async def test_key_shape(self):
        query = BalanceQuery(QueryCache(), USER_ID, RecordingFetcher(), year=YEAR)
        lt = uuid.uuid4()
        assert query.key(lt, 3) == ("leave-balance", USER_ID, lt, YEAR, 3)


# ═════════════════════════════════════════════════════════════════════
# 2. STATE TRANSITIONS
# ═════════════════════════════════════════════════════════════════════


class TestStateTransitions:
    """Loading, failure and out-of-order completion."""

    async def test_loading_while_in_flight(self):
        fetcher = RecordingFetcher()
        query = BalanceQuery(QueryCache(), USER_ID, fetcher, year=YEAR)
        lt = uuid.uuid4()
        gate = fetcher.hold(lt)

        task = asyncio.create_task(query.load(lt))
        await asyncio.sleep(0)
        assert query.state.loading is True
        assert query.state.balance is None

        gate.set()
        state = await task
        assert state.loading is False
        assert state.balance.allocated == Decimal("5")

    async def test_failure_sets_error_without_balance(self):
        cache, fetcher = QueryCache(), RecordingFetcher()
        query = BalanceQuery(cache, USER_ID, fetcher, year=YEAR)
        lt = uuid.uuid4()
        fetcher.failures.add(lt)

        state = await query.load(lt)

        assert state.error == LOAD_ERROR_MESSAGE
        assert state.balance is None
        assert state.loading is False

        # Failures are not cached; the next load goes to the backend again
        fetcher.failures.clear()
        state = await query.load(lt)
        assert state.error is None
        assert len(fetcher.calls) == 2

    async def test_last_started_load_wins(self):
        fetcher = RecordingFetcher()
        query = BalanceQuery(QueryCache(), USER_ID, fetcher, year=YEAR)
        slow, fast = uuid.uuid4(), uuid.uuid4()
        gate = fetcher.hold(slow)

        slow_task = asyncio.create_task(query.load(slow))
        await asyncio.sleep(0)
        await query.load(fast)
        assert query.state.balance.leave_type_id == fast

        # The older load finishes last but must not overwrite the state
        gate.set()
        await slow_task
        assert query.state.balance.leave_type_id == fast

    async def test_stale_failure_is_discarded(self):
        fetcher = RecordingFetcher()
        query = BalanceQuery(QueryCache(), USER_ID, fetcher, year=YEAR)
        slow, fast = uuid.uuid4(), uuid.uuid4()
        gate = fetcher.hold(slow)
        fetcher.failures.add(slow)

        slow_task = asyncio.create_task(query.load(slow))
        await asyncio.sleep(0)
        await query.load(fast)
        gate.set()
        await slow_task

        assert query.state.error is None
        assert query.state.balance.leave_type_id == fast
