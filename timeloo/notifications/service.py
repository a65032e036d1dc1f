"""Notification service — CRUD operations and leave-review message building."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from timeloo.common.constants import LeaveStatus, NotificationVariant
from timeloo.common.exceptions import ForbiddenException, NotFoundException
from timeloo.common.pagination import PaginationParams, paginate
from timeloo.notifications.models import Notification
from timeloo.notifications.schemas import (
    NotificationListMeta,
    NotificationListResponse,
    NotificationResponse,
    Toast,
)

APPROVED_TITLE = "✅ Leave Approved!"
REJECTED_TITLE = "❌ Leave Rejected"


# ── Message building ────────────────────────────────────────────────

def format_date(value: date) -> str:
    """US-style short date without zero padding: 3/7/2026."""
    return f"{value.month}/{value.day}/{value.year}"


def build_review_toast(
    label: str,
    start_date: date,
    end_date: date,
    status: LeaveStatus,
) -> Toast:
    """Toast announcing that a leave application left ``pending``."""
    approved = status == LeaveStatus.approved
    return Toast(
        title=APPROVED_TITLE if approved else REJECTED_TITLE,
        description=(
            f"Your {label} application from {format_date(start_date)} "
            f"to {format_date(end_date)} has been {status.value}."
        ),
        variant=NotificationVariant.default if approved else NotificationVariant.destructive,
    )


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        recipient_id: str,
        title: str,
        message: str,
        variant: NotificationVariant = NotificationVariant.default,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            recipient_id=recipient_id,
            variant=variant,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def get_notifications(
        db: AsyncSession,
        user_id: str,
        pagination: PaginationParams,
        *,
        is_read: Optional[bool] = None,
    ) -> NotificationListResponse:
        """Return paginated notifications for a user, newest first."""
        query = (
            select(Notification)
            .where(Notification.recipient_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id)
        )
        if is_read is not None:
            query = query.where(Notification.is_read == is_read)

        rows, meta = await paginate(db, query, pagination)

        # Unread count for the badge, never filtered
        unread = await NotificationService.get_unread_count(db, user_id)

        return NotificationListResponse(
            data=[NotificationResponse.model_validate(n) for n in rows],
            meta=NotificationListMeta(**meta.model_dump(), unread=unread),
        )

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        notification_id: uuid.UUID,
        user_id: str,
    ) -> Notification:
        """Mark a single notification as read. Verifies ownership."""
        notification = await db.get(Notification, notification_id)
        if notification is None:
            raise NotFoundException("Notification", notification_id)

        if notification.recipient_id != user_id:
            raise ForbiddenException("You can only mark your own notifications as read.")

        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.flush()
        return notification

    @staticmethod
    async def mark_all_read(
        db: AsyncSession,
        user_id: str,
    ) -> int:
        """Bulk-mark all unread notifications as read. Returns count updated."""
        now = datetime.now(timezone.utc)
        result = await db.execute(
            update(Notification)
            .where(
                Notification.recipient_id == user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=now)
        )
        await db.flush()
        return result.rowcount  # type: ignore[return-value]

    @staticmethod
    async def get_unread_count(
        db: AsyncSession,
        user_id: str,
    ) -> int:
        """Return the number of unread notifications for a user."""
        result = await db.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.recipient_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()

    @staticmethod
    async def notify_leave_reviewed(
        db: AsyncSession,
        application,  # timeloo.leave.schemas.LeaveApplicationOut
        label: str,
    ) -> Notification:
        """Persist the review outcome for the requester."""
        toast = build_review_toast(
            label, application.start_date, application.end_date, application.status,
        )
        return await NotificationService.create_notification(
            db,
            recipient_id=application.user_id,
            title=toast.title,
            message=toast.description,
            variant=toast.variant,
            entity_type="leave_application",
            entity_id=str(application.id),
        )
