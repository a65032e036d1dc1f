"""Notification endpoints — list, mark read, live leave updates."""


import asyncio
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.websockets import WebSocketState

from timeloo.auth.dependencies import get_current_user
from timeloo.auth.models import Profile
from timeloo.auth.service import resolve_token
from timeloo.common.exceptions import AuthenticationRequiredException
from timeloo.common.pagination import PaginationParams
from timeloo.database import get_db, get_session_factory
from timeloo.leave.service import LeaveService
from timeloo.notifications.bridge import NotificationBridge
from timeloo.notifications.feed import ChangeFeed, get_websocket_change_feed
from timeloo.notifications.relay import SlackRelay
from timeloo.notifications.schemas import (
    NotificationListResponse,
    NotificationResponse,
    Toast,
)
from timeloo.notifications.service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["notifications"])


# ── GET / — list current user's notifications ───────────────────────

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    is_read: Optional[bool] = Query(default=None, description="Filter by read status"),
    pagination: PaginationParams = Depends(),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List notifications for the authenticated user (paginated)."""
    return await NotificationService.get_notifications(
        db,
        user_id=user.id,
        pagination=pagination,
        is_read=is_read,
    )


# ── GET /unread-count — badge count ─────────────────────────────────
# NOTE: registered before /{notification_id}/read so the literal path wins.

@router.get("/unread-count")
async def unread_count(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Return the number of unread notifications (for header badge)."""
    count = await NotificationService.get_unread_count(db, user.id)
    return {"data": {"count": count}}


# ── PUT /read-all — bulk mark all as read ───────────────────────────

@router.put("/read-all")
async def mark_all_read(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark all unread notifications as read for the authenticated user."""
    count = await NotificationService.mark_all_read(db, user.id)
    return {"message": "All notifications marked as read", "data": {"count": count}}


# ── PUT /{notification_id}/read — mark single as read ───────────────

@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: uuid.UUID,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark a single notification as read."""
    notification = await NotificationService.mark_read(db, notification_id, user.id)
    return {
        "message": "Notification marked as read",
        "data": NotificationResponse.model_validate(notification),
    }


# ── WS /ws — live leave status toasts ───────────────────────────────
# The socket holds no database session of its own: pooled connections are
# borrowed only for the token check and for each label lookup.

@router.websocket("/ws")
async def leave_updates(
    websocket: WebSocket,
    token: str = Query(...),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_websocket_change_feed),
):
    """Push a toast whenever one of the caller's applications is reviewed.

    Clients authenticate with ``?token=`` and receive ``toast`` messages
    followed by a ``leave-updated`` hint to refresh their balances.
    """
    try:
        async with session_factory() as db:
            user_id = (await resolve_token(db, token)).id
    except AuthenticationRequiredException as exc:
        logger.info("Rejected notification socket: %s", exc.detail)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async def resolve_label(leave_type_id: uuid.UUID) -> str:
        async with session_factory() as db:
            return await LeaveService.get_leave_type_label(db, leave_type_id)

    async def push(toast: Toast) -> None:
        await websocket.send_json({"type": "toast", "data": toast.model_dump(mode="json")})

    async def refresh() -> None:
        await websocket.send_json({"type": "leave-updated"})

    bridge = NotificationBridge(
        feed,
        resolve_label,
        push,
        relay=SlackRelay(),
        on_leave_updated=refresh,
    )
    # Subscribed before accept so no review slips in between
    bridge.subscribe(user_id)
    tasks: list[asyncio.Task] = []
    try:
        await websocket.accept()
        consumer = asyncio.create_task(bridge.run())
        tasks = [consumer, asyncio.create_task(_drain_inbound(websocket))]
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        if consumer.done() and not consumer.cancelled() and consumer.exception() is not None:
            logger.error(
                "Notification socket of %s failed: %r", user_id, consumer.exception(),
            )
            if websocket.client_state == WebSocketState.CONNECTED:
                await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        bridge.unsubscribe()
        for task in tasks:
            task.cancel()
        # Settle both tasks; a consumer failure was reported above
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("Notification socket of %s closed", user_id)


async def _drain_inbound(websocket: WebSocket) -> None:
    """Read frames until the client goes away; inbound frames are keep-alives."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return
