"""Persistence of navigation session history."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.common.db import get_sessionmaker

from .models import NavigationSessionRecord
from .session import NavigationSession


class SessionRepository:
    """Stores the latest state of each session, one row per session id."""

    def __init__(
        self, sessionmaker: async_sessionmaker[AsyncSession] | None = None
    ) -> None:
        self._sessionmaker = sessionmaker or get_sessionmaker()

    async def save(self, session: NavigationSession) -> None:
        async with self._sessionmaker() as db:
            record = await db.get(NavigationSessionRecord, session.id)
            if record is None:
                record = NavigationSessionRecord(id=session.id)
                db.add(record)
            record.user_id = session.user_id
            record.group_session_id = session.group_session_id
            record.status = session.status.value
            record.route = session.route.to_dict()
            record.current_step_index = session.current_step_index
            record.distance_traveled_m = session.distance_traveled_m
            record.elapsed_s = session.elapsed_s
            record.started_at = session.started_at
            record.ended_at = session.ended_at
            await db.commit()

    async def get(self, session_id: str) -> NavigationSessionRecord | None:
        async with self._sessionmaker() as db:
            return await db.get(NavigationSessionRecord, session_id)
