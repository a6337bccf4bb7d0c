"""
Engine wiring.

ClubEngine builds the ledger, cache, quota guard and the operations on top
of them, and exposes the administrative actions shared by the HTTP app and
the admin cog.
"""

import asyncio
import time
from typing import List, Optional

from chessclub.config import Config
from chessclub.constants import CacheKeys, CacheTags
from chessclub.data_models.reports import CacheWarmReport, RecalcReport
from chessclub.database.database import Database
from chessclub.database.ledger import GameLedger
from chessclub.operations.consistency import AmbiguityPolicy, ConsistencyCoordinator
from chessclub.operations.game_operations import GameOperations
from chessclub.operations.ownership import OwnershipOperations
from chessclub.operations.rating_engine import RatingEngine
from chessclub.services.cache_store import CacheStore
from chessclub.services.ladder import LadderAggregator
from chessclub.services.post_write import PostWriteRunner, PostWriteTask
from chessclub.services.quota_guard import GuardedRead, QuotaGuard
from chessclub.utils.exceptions import ValidationError
from chessclub.utils.logger import setup_logger

logger = setup_logger(__name__)


class ClubEngine:
    """Rating, ranking and cache-consistency engine for one club database."""

    def __init__(self, database: Database, cache: Optional[CacheStore] = None,
                 guard: Optional[QuotaGuard] = None, timeout: Optional[float] = None,
                 ambiguity_policy: AmbiguityPolicy = AmbiguityPolicy.SKIP):
        self.db = database
        self.cache = cache if cache is not None else CacheStore()
        self.guard = guard if guard is not None else QuotaGuard()
        self.post_write = PostWriteRunner()

        self.ledger = GameLedger(database, timeout)
        self.ratings = RatingEngine(self.ledger, self.cache, self.post_write)
        self.ladder = LadderAggregator(self.ledger, self.cache, self.guard)
        self.games = GameOperations(self.ledger, self.ratings, self.cache, self.guard, self.post_write)
        self.consistency = ConsistencyCoordinator(
            self.ledger, self.ratings, self.cache, self.post_write, ambiguity_policy
        )
        self.ownership = OwnershipOperations(database.session_factory, self.ledger)

    @classmethod
    async def create(cls, database_url: Optional[str] = None, **kwargs) -> "ClubEngine":
        """Initialize the database, pick a cache backend and seed missing ratings."""
        database = Database(database_url)
        await database.initialize()
        cache = await CacheStore.create()
        engine = cls(database, cache=cache, **kwargs)
        await engine.ratings.initialize_all()
        logger.info("Club engine ready")
        return engine

    async def read_members(self) -> GuardedRead:
        """Cached roster view without system players."""
        async def produce():
            roster = await self.ledger.list_roster(include_system=False)
            return [entry.to_payload() for entry in roster]

        return await self.guard.read(
            self.cache, CacheKeys.MEMBERS, Config.CACHE_TTL_MEMBERS, (CacheTags.MEMBERS,), produce
        )

    async def recalc_ratings(self, admin_id: Optional[str] = None) -> RecalcReport:
        """Full replay; rating and ranking views are invalidated afterwards."""
        report = await self.ratings.recalc_all()
        if admin_id:
            self.post_write.dispatch([
                PostWriteTask(
                    "audit recalculation",
                    lambda: self.ledger.record_audit(
                        admin_id, "rating_recalc", "ratings", None,
                        {'processed': report.processed, 'errors': report.errors, 'skipped': report.skipped}
                    )
                ),
            ])
        return report

    async def invalidate_cache(self, tag: Optional[str] = None, key: Optional[str] = None) -> List[str]:
        """Invalidate by exactly one of tag or key. Returns the keys removed."""
        if bool(tag) == bool(key):
            raise ValidationError("Provide exactly one of tag or key")
        if tag:
            return await self.cache.invalidate_by_tags([tag])
        removed = await self.cache.invalidate_key(key)
        return [key] if removed else []

    def quota_status(self) -> dict:
        return self.guard.status()

    async def reset_quota(self, admin_id: Optional[str] = None) -> dict:
        was_open = self.guard.reset()
        if admin_id:
            self.post_write.dispatch([
                PostWriteTask(
                    "audit quota reset",
                    lambda: self.ledger.record_audit(admin_id, "quota_reset", "quota", None, {'wasOpen': was_open})
                ),
            ])
        return {'success': True, 'wasOpen': was_open, **self.guard.status()}

    async def warm_cache(self) -> CacheWarmReport:
        """Populate the rankings, members and all-time standings views concurrently."""
        started = time.monotonic()
        views = {
            'rankings': self.ladder.rankings(),
            'members': self.read_members(),
            'standings': self.ladder.read_standings(),
        }
        results = await asyncio.gather(*views.values(), return_exceptions=True)

        report = CacheWarmReport()
        for name, result in zip(views, results):
            if isinstance(result, Exception):
                logger.warning(f"Cache warm-up failed for {name}: {result}")
                report.failed.append(name)
            else:
                report.warmed.append(name)
        report.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"Cache warm-up complete in {report.duration_ms}ms: {report.warmed}")
        return report

    async def close(self):
        await self.post_write.cleanup()
        await self.db.close()
