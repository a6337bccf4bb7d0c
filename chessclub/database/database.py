from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from chessclub.config import Config
from chessclub.constants import PlayerConstants
from chessclub.database.models import Base, Player
from chessclub.utils.logger import setup_logger

# Placeholder roster rows every club database carries: (id, name, grade)
SYSTEM_PLAYERS = (
    (PlayerConstants.UNKNOWN_OPPONENT_ID, PlayerConstants.UNKNOWN_OPPONENT_NAME, PlayerConstants.UNKNOWN_GRADE),
)


class Database:
    """Async engine and session scopes for one club database."""

    def __init__(self, database_url: Optional[str] = None, **engine_kwargs):
        self.logger = setup_logger(__name__)
        self.database_url = Config.async_database_url(database_url)
        self.engine_kwargs = engine_kwargs
        self.engine = None
        self.async_session: Optional[async_sessionmaker] = None

    async def initialize(self):
        """Open the engine, create missing tables and seed the system players."""
        self.engine = create_async_engine(self.database_url, echo=Config.DEBUG, **self.engine_kwargs)
        self.async_session = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await self.seed_system_players()
        self.logger.info(f"Club database ready at {self.engine.url.render_as_string(hide_password=True)}")

    @property
    def session_factory(self) -> async_sessionmaker:
        return self.async_session

    async def seed_system_players(self) -> int:
        """Insert any missing system placeholder player. Returns how many were added."""
        added = 0
        async with self.transaction() as session:
            for player_id, name, grade in SYSTEM_PLAYERS:
                if await session.get(Player, player_id) is None:
                    session.add(Player(id=player_id, name=name, grade=grade, is_system=True))
                    added += 1
        if added:
            self.logger.info(f"Seeded {added} system player(s)")
        return added

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """Read scope. Nothing is committed; a failure rolls back whatever was pending."""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Write scope: commit when the block exits cleanly, roll back when it raises."""
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self):
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
