"""In-process change feed for leave-application updates.

Each subscriber owns an ``asyncio.Queue``; changes published for a user are
appended to the queues of that user's subscriptions in publish order.
Closing a subscription detaches it from the feed immediately.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import Request, WebSocket

from timeloo.leave.schemas import LeaveApplicationOut

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaveApplicationChange:
    """An update to one ``leave_applied_users`` row."""

    old: LeaveApplicationOut
    new: LeaveApplicationOut

    @property
    def user_id(self) -> str:
        return self.new.user_id


class Subscription:
    """Inbound event queue of one subscriber."""

    def __init__(self, feed: ChangeFeed, user_id: str) -> None:
        self.user_id = user_id
        self._feed = feed
        self._queue: asyncio.Queue[Optional[LeaveApplicationChange]] = asyncio.Queue()
        self.closed = False

    def deliver(self, change: LeaveApplicationChange) -> None:
        if not self.closed:
            self._queue.put_nowait(change)

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> Optional[LeaveApplicationChange]:
        """Next change, or None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._detach(self)
        # Wake a consumer blocked in get()
        self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[LeaveApplicationChange]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[LeaveApplicationChange]:
        while True:
            change = await self.get()
            if change is None:
                return
            yield change


class ChangeFeed:
    """Per-user publish/subscribe broker."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscription]] = defaultdict(list)

    def subscribe(self, user_id: str) -> Subscription:
        subscription = Subscription(self, user_id)
        self._subscribers[user_id].append(subscription)
        logger.debug("Subscribed to leave changes of %s", user_id)
        return subscription

    def publish(self, change: LeaveApplicationChange) -> int:
        """Deliver ``change`` to its user's subscribers; returns how many."""
        subscribers = list(self._subscribers.get(change.user_id, ()))
        for subscription in subscribers:
            subscription.deliver(change)
        return len(subscribers)

    def subscriber_count(self, user_id: Optional[str] = None) -> int:
        if user_id is not None:
            return len(self._subscribers.get(user_id, ()))
        return sum(len(subs) for subs in self._subscribers.values())

    def _detach(self, subscription: Subscription) -> None:
        subs = self._subscribers.get(subscription.user_id)
        if not subs:
            return
        if subscription in subs:
            subs.remove(subscription)
        if not subs:
            del self._subscribers[subscription.user_id]


# ── FastAPI dependencies ────────────────────────────────────────────

def get_change_feed(request: Request) -> ChangeFeed:
    """The application's change feed."""
    return request.app.state.change_feed


def get_websocket_change_feed(websocket: WebSocket) -> ChangeFeed:
    return websocket.app.state.change_feed
