"""Async SQLAlchemy engine and session management."""

import logging
from typing import Callable

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Session

from timeloo.config import settings

logger = logging.getLogger(__name__)

# Async engine for FastAPI
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
)

# Async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncSession:
    """FastAPI dependency: yield an async database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker:
    """FastAPI dependency for endpoints that open their own short sessions."""
    return async_session_factory


# ── Post-commit callbacks ───────────────────────────────────────────
# Side effects visible outside the transaction (cache invalidation, change
# feed) are queued on the session and only run once the data is committed.

_AFTER_COMMIT = "after_commit_callbacks"


def run_after_commit(session: AsyncSession, callback: Callable[[], object]) -> None:
    """Run ``callback`` when ``session`` commits; drop it on rollback."""
    session.info.setdefault(_AFTER_COMMIT, []).append(callback)


@event.listens_for(Session, "after_commit")
def _run_after_commit(session: Session) -> None:
    for callback in session.info.pop(_AFTER_COMMIT, []):
        try:
            callback()
        except Exception:
            # The transaction is already committed; report and keep going
            logger.exception("Post-commit callback %r failed", callback)


@event.listens_for(Session, "after_transaction_end")
def _discard_after_commit(session: Session, transaction) -> None:
    # Runs after after_commit; whatever is left belongs to a rolled back
    # or closed transaction
    if transaction.parent is None:
        session.info.pop(_AFTER_COMMIT, None)
