"""Live leave-update socket (``/api/v1/notifications/ws``).

Runs the app through Starlette's TestClient so HTTP requests and the socket
share one event loop, as they do under a real server.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from timeloo.common.constants import LeaveStatus
from timeloo.database import Base, get_db, get_session_factory
from timeloo.notifications.service import APPROVED_TITLE
from tests.conftest import (
    _register_sqlite_functions,
    _seed_application,
    _seed_leave_type,
    _seed_profile,
    make_auth_headers,
)

WS_PATH = "/api/v1/notifications/ws"


def _token(headers: dict[str, str]) -> str:
    return headers["Authorization"].removeprefix("Bearer ")


@pytest.fixture
def relay():
    """Replaces the chat relay the socket hands resolved applications to."""
    with patch("timeloo.notifications.router.SlackRelay") as relay_cls:
        relay_cls.return_value.send = AsyncMock(return_value=True)
        yield relay_cls.return_value


@pytest.fixture
async def pending_application(db, test_user):
    leave_type = await _seed_leave_type(db, label="Bereavement Leave")
    application = await _seed_application(
        db,
        user_id=test_user.id,
        leave_type_id=leave_type.id,
        start_date=date(2025, 3, 7),
        end_date=date(2025, 3, 9),
    )
    await db.commit()
    return application


@pytest.fixture
async def bob_headers(db) -> dict[str, str]:
    await _seed_profile(db, id="user_bob", name="Bob")
    headers = await make_auth_headers(db, "user_bob")
    await db.commit()
    return headers


# ── Handshake ───────────────────────────────────────────────────────


class TestHandshake:

    def test_bad_token_is_closed_with_policy_violation(self, app, relay):
        with TestClient(app) as tc:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with tc.websocket_connect(f"{WS_PATH}?token=not-a-jwt"):
                    pass

        assert exc_info.value.code == 1008
        assert app.state.change_feed.subscriber_count() == 0

    def test_missing_token_is_refused(self, app, relay):
        with TestClient(app) as tc:
            with pytest.raises(WebSocketDisconnect):
                with tc.websocket_connect(WS_PATH):
                    pass

    def test_revoked_session_is_refused(self, app, relay, test_user, auth_headers):
        with TestClient(app) as tc:
            assert tc.post("/api/v1/auth/logout", headers=auth_headers).status_code == 204
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with tc.websocket_connect(f"{WS_PATH}?token={_token(auth_headers)}"):
                    pass

        assert exc_info.value.code == 1008


# ── Delivery ────────────────────────────────────────────────────────


class TestDelivery:

    def test_review_sends_toast_then_refresh_hint(
        self, app, relay, test_user, auth_headers, admin_headers, pending_application,
    ):
        with TestClient(app) as tc:
            with tc.websocket_connect(f"{WS_PATH}?token={_token(auth_headers)}") as ws:
                resp = tc.put(
                    f"/api/v1/leave/applications/{pending_application.id}/review",
                    json={"status": "approved"},
                    headers=admin_headers,
                )
                assert resp.status_code == 200

                toast = ws.receive_json()
                assert toast["type"] == "toast"
                assert toast["data"]["title"] == APPROVED_TITLE
                assert "Bereavement Leave" in toast["data"]["description"]
                assert toast["data"]["variant"] == "default"

                assert ws.receive_json() == {"type": "leave-updated"}

        relay.send.assert_called_once()
        (sent,), _ = relay.send.call_args
        assert sent.id == pending_application.id
        assert sent.status == LeaveStatus.approved

    def test_other_users_reviews_are_not_delivered(
        self, app, relay, admin_headers, bob_headers, pending_application,
    ):
        with TestClient(app) as tc:
            with tc.websocket_connect(f"{WS_PATH}?token={_token(bob_headers)}"):
                resp = tc.put(
                    f"/api/v1/leave/applications/{pending_application.id}/review",
                    json={"status": "rejected"},
                    headers=admin_headers,
                )
                assert resp.status_code == 200
                assert app.state.change_feed.subscriber_count("user_bob") == 1

        relay.send.assert_not_called()


# ── Lifecycle ───────────────────────────────────────────────────────


class TestLifecycle:

    def test_disconnect_releases_subscription(self, app, relay, test_user, auth_headers):
        feed = app.state.change_feed
        with TestClient(app) as tc:
            with tc.websocket_connect(f"{WS_PATH}?token={_token(auth_headers)}") as ws:
                assert feed.subscriber_count(test_user.id) == 1
                ws.send_text("ping")

            assert feed.subscriber_count(test_user.id) == 0

    def test_consumer_failure_closes_socket(
        self, app, relay, test_user, auth_headers, caplog,
    ):
        feed = app.state.change_feed
        failing_run = AsyncMock(side_effect=RuntimeError("bridge crashed"))
        with patch("timeloo.notifications.router.NotificationBridge.run", failing_run):
            with caplog.at_level(logging.ERROR, logger="timeloo.notifications.router"):
                with TestClient(app) as tc:
                    with tc.websocket_connect(f"{WS_PATH}?token={_token(auth_headers)}") as ws:
                        with pytest.raises(WebSocketDisconnect) as exc_info:
                            ws.receive_json()

        assert exc_info.value.code == 1011
        assert feed.subscriber_count(test_user.id) == 0
        assert "bridge crashed" in caplog.text


# ── Connection pool ─────────────────────────────────────────────────


@pytest.fixture
async def pooled(tmp_path) -> AsyncGenerator[tuple, None]:
    """A file database behind a single-connection pool, with a signed-in user."""
    pooled_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'pool.db'}",
        poolclass=AsyncAdaptedQueuePool,
        pool_size=1,
        max_overflow=0,
        pool_timeout=2,
    )
    event.listen(pooled_engine.sync_engine, "connect", _register_sqlite_functions)
    async with pooled_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(pooled_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        await _seed_profile(session, id="user_carol", name="Carol")
        headers = await make_auth_headers(session, "user_carol")
        await session.commit()

    yield pooled_engine, factory, headers
    await pooled_engine.dispose()


class TestConnectionPool:

    def test_open_socket_does_not_hold_a_connection(self, app, relay, pooled):
        pooled_engine, factory, headers = pooled

        async def _pooled_get_db() -> AsyncGenerator[AsyncSession, None]:
            async with factory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        app.dependency_overrides[get_db] = _pooled_get_db
        app.dependency_overrides[get_session_factory] = lambda: factory

        with TestClient(app) as tc:
            with tc.websocket_connect(f"{WS_PATH}?token={_token(headers)}"):
                assert pooled_engine.sync_engine.pool.checkedout() == 0

                resp = tc.get("/api/v1/auth/me", headers=headers)
                assert resp.status_code == 200
                assert resp.json()["id"] == "user_carol"
