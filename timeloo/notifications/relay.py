"""Outbound chat relay for leave status updates."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from timeloo.config import settings
from timeloo.leave.schemas import LeaveApplicationOut

logger = logging.getLogger(__name__)


def build_relay_payload(application: LeaveApplicationOut) -> dict[str, Any]:
    return {
        "leaveApplication": application.model_dump(mode="json"),
        "isApprovalUpdate": True,
        "sendToUser": True,
    }


class SlackRelay:
    """POSTs status updates to the chat-notification function.

    Delivery is best effort: :meth:`send` never raises for transport or HTTP
    errors, it logs them and returns ``False``.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url or settings.SLACK_NOTIFY_URL
        self.timeout = timeout or settings.SLACK_RELAY_TIMEOUT_SECONDS
        self._transport = transport

    async def send(self, application: LeaveApplicationOut) -> bool:
        payload = build_relay_payload(application)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport,
            ) as client:
                resp = await client.post(self.url, json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "Failed to send Slack notification for %s: %s", application.id, exc,
            )
            return False

        logger.info("Slack notification sent for leave application %s", application.id)
        return True
