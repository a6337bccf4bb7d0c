"""
Session-owning base for services that write outside the game ledger.

The ledger wraps its own sessions; workflows such as ownership claims read
and write several rows inside one transaction, so they get a committed
session scope plus a retry loop for SQLite lock contention.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class BaseService:
    """Transactional session scope and lock-retry for multi-row workflows."""

    retry_attempts = 3
    retry_base_delay = 0.1

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """Commit on clean exit, roll back on any exception."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def execute_with_retry(self, work: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``work`` and retry it when the database reports an operational
        error such as ``database is locked``. Delays double per attempt.
        Validation and ownership errors are never retried.
        """
        attempt = 1
        while True:
            try:
                return await work()
            except OperationalError as e:
                if attempt >= self.retry_attempts:
                    logger.error(f"{work.__name__} failed after {attempt} attempt(s): {e}")
                    raise
                delay = self.retry_base_delay * (2 ** (attempt - 1))
                logger.warning(f"{work.__name__} hit {e.orig!r}; retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
                attempt += 1
