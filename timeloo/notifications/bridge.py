"""Change-notification bridge.

Turns leave-application updates from the :class:`ChangeFeed` into toasts for
one session.  The bridge is ``idle`` until :meth:`NotificationBridge.subscribe`
is called and holds at most one subscription at a time.

For every change that moves an application out of ``pending`` it, in order:

1. resolves the leave type's label (``"Leave"`` when that fails),
2. emits a toast through ``notify``,
3. hands the change to the chat relay without waiting for it,
4. calls ``on_leave_updated`` once.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from typing import Any, Awaitable, Callable, Literal, Optional, Union

from timeloo.common.constants import FALLBACK_LEAVE_LABEL, LeaveStatus
from timeloo.notifications.feed import ChangeFeed, LeaveApplicationChange, Subscription
from timeloo.notifications.relay import SlackRelay
from timeloo.notifications.schemas import Toast
from timeloo.notifications.service import build_review_toast

logger = logging.getLogger(__name__)

LabelResolver = Callable[[uuid.UUID], Awaitable[str]]
ToastSink = Callable[[Toast], Union[Awaitable[None], None]]

BridgeState = Literal["idle", "subscribed"]


def is_resolution(change: LeaveApplicationChange) -> bool:
    """True when the application just left ``pending``."""
    return (
        change.old.status == LeaveStatus.pending
        and change.new.status != LeaveStatus.pending
    )


class NotificationBridge:
    """Per-session consumer of leave-application changes."""

    def __init__(
        self,
        feed: ChangeFeed,
        resolve_label: LabelResolver,
        notify: ToastSink,
        *,
        relay: Optional[SlackRelay] = None,
        on_leave_updated: Optional[Callable[[], Any]] = None,
    ) -> None:
        self._feed = feed
        self._resolve_label = resolve_label
        self._notify = notify
        self._relay = relay
        self._on_leave_updated = on_leave_updated
        self._subscription: Optional[Subscription] = None
        self._relay_tasks: set[asyncio.Task] = set()

    # ── Subscription lifecycle ──────────────────────────────────────

    @property
    def state(self) -> BridgeState:
        return "subscribed" if self._subscription is not None else "idle"

    @property
    def user_id(self) -> Optional[str]:
        return self._subscription.user_id if self._subscription else None

    def subscribe(self, user_id: str) -> Subscription:
        """Listen for ``user_id``; a previous subscription is released first."""
        if self._subscription is not None:
            if self._subscription.user_id == user_id:
                return self._subscription
            self.unsubscribe()
        self._subscription = self._feed.subscribe(user_id)
        logger.info("Setting up leave notifications for user %s", user_id)
        return self._subscription

    def unsubscribe(self) -> None:
        """Release the channel; relays already started keep running."""
        if self._subscription is None:
            return
        logger.info("Cleaning up leave notifications for user %s", self._subscription.user_id)
        self._subscription.close()
        self._subscription = None

    async def run(self) -> None:
        """Handle changes until the subscription is released."""
        subscription = self._subscription
        if subscription is None:
            raise RuntimeError("NotificationBridge.run() called while idle")
        async for change in subscription:
            await self.handle(change)

    # ── Event handling ──────────────────────────────────────────────

    async def handle(self, change: LeaveApplicationChange) -> Optional[Toast]:
        """Process one change; returns the toast emitted, if any."""
        if not is_resolution(change):
            return None

        new = change.new
        label = await self._label_for(new.leave_type_id)

        toast = build_review_toast(label, new.start_date, new.end_date, new.status)
        result = self._notify(toast)
        if inspect.isawaitable(result):
            await result

        if self._relay is not None:
            task = asyncio.create_task(self._relay.send(new))
            self._relay_tasks.add(task)
            task.add_done_callback(self._relay_finished)

        if self._on_leave_updated is not None:
            result = self._on_leave_updated()
            if inspect.isawaitable(result):
                await result

        return toast

    async def drain(self) -> None:
        """Wait for relays started so far."""
        if self._relay_tasks:
            await asyncio.gather(*list(self._relay_tasks), return_exceptions=True)

    async def _label_for(self, leave_type_id: uuid.UUID) -> str:
        try:
            label = await self._resolve_label(leave_type_id)
        except Exception:
            logger.exception("Error fetching leave type %s", leave_type_id)
            return FALLBACK_LEAVE_LABEL
        return label or FALLBACK_LEAVE_LABEL

    def _relay_finished(self, task: asyncio.Task) -> None:
        self._relay_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Chat relay crashed: %r", exc)
