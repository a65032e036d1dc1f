"""Slack verification webhook.

``GET`` is a liveness check.  ``POST`` answers Slack's ``url_verification``
handshake by echoing the challenge and acknowledges every other event with
a plain ``OK``.  Unsupported methods get the framework's 405.
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from timeloo.common.exceptions import AppException, MalformedRequestException
from timeloo.common.rate_limit import limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["slack"])

# Inbound bodies are logged up to this many characters
_LOG_BODY_LIMIT = 2000


# ── GET /verify ─────────────────────────────────────────────────────

@router.get("/verify")
async def verify_status():
    """Liveness check used when configuring the Slack app."""
    return {
        "status": "ok",
        "message": "Slack verification endpoint working",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ── POST /verify ────────────────────────────────────────────────────

@router.post("/verify")
@limiter.limit("60/minute")
async def verify_event(request: Request):
    """Echo ``url_verification`` challenges; acknowledge anything else."""
    try:
        return await _handle_event(request)
    except AppException:
        raise
    except Exception:
        logger.exception("Error handling Slack verification request")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to process the Slack event."},
        )


async def _handle_event(request: Request) -> Response:
    raw = await request.body()
    logger.info("Slack verify request: %s", raw[:_LOG_BODY_LIMIT].decode("utf-8", "replace"))

    if not raw.strip():
        raise MalformedRequestException("Request body is empty.")

    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise MalformedRequestException("Request body is not valid JSON.") from exc

    if isinstance(data, dict) and data.get("type") == "url_verification":
        challenge = data.get("challenge")
        if challenge is None or challenge == "":
            raise MalformedRequestException(
                "url_verification request is missing 'challenge'."
            )
        logger.info("URL verification challenge received")
        return PlainTextResponse(str(challenge))

    return PlainTextResponse("OK")
