from __future__ import annotations

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from vanplane.persistence.db import SessionLocal, get_session
from vanplane.services.certs.pipeline import SessionFactory
from vanplane.services.sync.handlers import SyncController


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_session_factory() -> SessionFactory:
    # Routes that run several independent units of work open their own sessions.
    return SessionLocal


_controller: SyncController | None = None


def get_sync_controller() -> SyncController:
    global _controller
    if _controller is None:
        _controller = SyncController(session_factory=SessionLocal)
    return _controller
