"""Notification Pydantic schemas for request / response validation."""


import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from timeloo.common.constants import TOAST_DURATION_MS, NotificationVariant
from timeloo.common.pagination import PaginationMeta


# ── Toasts (pushed over the websocket) ──────────────────────────────

class Toast(BaseModel):
    """Transient, user-visible notification."""

    title: str
    description: str
    variant: NotificationVariant = NotificationVariant.default
    duration_ms: int = TOAST_DURATION_MS


# ── Responses ───────────────────────────────────────────────────────

class NotificationResponse(BaseModel):
    """Single notification in API responses."""

    id: uuid.UUID
    variant: NotificationVariant
    title: str
    message: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationListMeta(PaginationMeta):
    """Extends standard pagination meta with unread count."""

    unread: int


class NotificationListResponse(BaseModel):
    """Paginated list of notifications with unread count in meta."""

    data: list[NotificationResponse]
    meta: NotificationListMeta
