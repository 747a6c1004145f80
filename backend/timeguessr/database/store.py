from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..services.session import GameSessionSnapshot
from .models import SessionSnapshot

logger = structlog.get_logger()


class SnapshotStore:
    """Keyed store of game session snapshots, one row per game."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_hours: float = 24,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self._session_factory = session_factory
        self._ttl = timedelta(hours=ttl_hours)
        self._clock = clock

    async def save(self, snapshot: GameSessionSnapshot) -> None:
        """Insert or replace the snapshot of a game."""
        async with self._session_factory() as db:
            row = await db.get(SessionSnapshot, snapshot.game_session_id)
            payload = snapshot.model_dump_json()
            if row is None:
                db.add(SessionSnapshot(
                    game_session_id=snapshot.game_session_id,
                    payload=payload,
                    updated_at=self._clock()
                ))
            else:
                row.payload = payload
                row.updated_at = self._clock()
            await db.commit()

    async def load(self, game_session_id: str) -> Optional[GameSessionSnapshot]:
        """Return the stored snapshot, or None if missing or expired."""
        async with self._session_factory() as db:
            row = await db.get(SessionSnapshot, game_session_id)
            if row is None:
                return None
            if self._clock() - row.updated_at > self._ttl:
                logger.info("discarding expired snapshot", game_session_id=game_session_id)
                await db.delete(row)
                await db.commit()
                return None
            return GameSessionSnapshot.model_validate_json(row.payload)

    async def delete(self, game_session_id: str) -> bool:
        async with self._session_factory() as db:
            row = await db.get(SessionSnapshot, game_session_id)
            if row is None:
                return False
            await db.delete(row)
            await db.commit()
            return True
