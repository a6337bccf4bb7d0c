"""
Game Operations Module

Business logic for recording, editing, verifying and deleting ledger rows.
Every write is validated before it reaches the ledger, and the cache
invalidation it triggers runs as post-write tasks that can never fail the
write itself.
"""

from typing import Any, Dict, Optional, Union

from chessclub.config import Config
from chessclub.constants import CacheKeys, CacheTags
from chessclub.data_models.games import (
    GameDraft, GameFilter, GameRecord, GameResult, GameType, parse_date
)
from chessclub.database.models import utcnow
from chessclub.services.post_write import PostWriteTask
from chessclub.services.quota_guard import GuardedRead
from chessclub.utils.exceptions import ClubError, QuotaExceededError, ValidationError
from chessclub.utils.logger import setup_logger

logger = setup_logger(__name__)

# Fields whose change makes stored ratings stale
RATING_FIELDS = frozenset({'player1_id', 'player2_id', 'result', 'game_date', 'is_verified'})

# Request field name -> (ledger column, parser)
EDITABLE_FIELDS = {
    'result': ('result', GameResult.parse),
    'gameType': ('game_type', GameType.parse),
    'gameDate': ('game_date', lambda v: parse_date(v, 'gameDate')),
    'opening': ('opening', lambda v: v or None),
    'endgame': ('endgame', lambda v: v or None),
    'notes': ('notes', lambda v: v or None),
}


class GameOperations:
    """Business logic for ledger writes and the cached games view."""

    def __init__(self, ledger, rating_engine, cache, guard, post_write):
        self.ledger = ledger
        self.rating_engine = rating_engine
        self.cache = cache
        self.guard = guard
        self.post_write = post_write

    def _invalidation_tasks(self, *player_ids: str):
        tasks = [
            PostWriteTask(
                "invalidate ledger views",
                lambda: self.cache.invalidate_by_tags(CacheTags.LEDGER_WRITE)
            ),
        ]
        for player_id in player_ids:
            tasks.append(PostWriteTask(
                f"touch last active {player_id}",
                lambda pid=player_id: self._touch_last_active(pid)
            ))
        return tasks

    async def _touch_last_active(self, player_id: str):
        player = await self.ledger.find_player(player_id)
        if player is not None and not player.is_system:
            await self.ledger.update_player(player_id, last_active=utcnow())

    async def _rate_incrementally(self, record: GameRecord) -> GameRecord:
        """
        Rate a freshly verified game. The game is already committed, so a
        failure here is logged and left for the next full recalculation.
        """
        try:
            if await self.rating_engine.apply_game(record) is None:
                return record
            return await self.ledger.get_game(record.id)
        except ClubError as e:
            if isinstance(e, QuotaExceededError):
                self.guard.trip(str(e))
            logger.error(f"Game {record.id} saved but not rated: {e}")
            return record

    async def record_game(self, draft: Union[GameDraft, Dict[str, Any]]) -> GameRecord:
        """
        Validate and append one game.

        Both players must exist in the roster (the unknown-opponent system
        player included); their names are snapshotted onto the row. A
        verified game is rated immediately.
        """
        if isinstance(draft, dict):
            draft = GameDraft.from_payload(draft)

        player1 = await self.ledger.get_player(draft.player1_id)
        player2 = await self.ledger.get_player(draft.player2_id)
        draft.player1_name = player1.name
        draft.player2_name = player2.name

        record = await self.ledger.add_game(draft)

        if record.is_verified:
            record = await self._rate_incrementally(record)

        self.post_write.dispatch(self._invalidation_tasks(record.player1_id, record.player2_id))
        return record

    async def edit_game(self, game_id: str, changes: Dict[str, Any]) -> GameRecord:
        """Apply an admin edit. Player changes resolve names from the roster."""
        fields = {}
        for request_field, value in changes.items():
            if request_field in ('player1Id', 'player2Id'):
                player = await self.ledger.get_player(str(value).strip())
                side = request_field[:7]
                fields[f'{side}_id'] = player.id
                fields[f'{side}_name'] = player.name
            elif request_field in EDITABLE_FIELDS:
                column, parse = EDITABLE_FIELDS[request_field]
                fields[column] = parse(value)
            else:
                raise ValidationError(f"Field '{request_field}' cannot be edited")

        if not fields:
            raise ValidationError("No changes supplied")

        record = await self.ledger.update_game(game_id, **fields)
        if RATING_FIELDS & set(fields) and record.is_verified:
            logger.warning(f"Game {game_id} edited; stored ratings are stale until the next recalculation")

        self.post_write.dispatch(self._invalidation_tasks())
        return record

    async def verify_game(self, game_id: str, verified_by: str) -> GameRecord:
        """Mark a game verified and rate it if it has not been rated yet."""
        if not verified_by:
            raise ValidationError("verifiedBy is required")

        current = await self.ledger.get_game(game_id)
        if current.is_verified:
            return current

        record = await self.ledger.update_game(
            game_id,
            is_verified=True,
            verified_by=verified_by,
            verified_at=utcnow()
        )
        if record.rating_change is None:
            record = await self._rate_incrementally(record)

        logger.info(f"Game {game_id} verified by {verified_by}")
        self.post_write.dispatch(self._invalidation_tasks())
        return record

    async def delete_game(self, game_id: str, admin_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Physically delete one game.

        Ratings are not replayed; the response says whether they are stale
        so the caller can run a recalculation.
        """
        record = await self.ledger.delete_game(game_id)
        ratings_stale = record.rating_change is not None

        tasks = self._invalidation_tasks()
        if admin_id:
            tasks.append(PostWriteTask(
                "audit game delete",
                lambda: self.ledger.record_audit(admin_id, "game_delete", "game", game_id, record.to_payload())
            ))
        self.post_write.dispatch(tasks)

        return {
            'deleted': game_id,
            'ratingsStale': ratings_stale,
            'message': (
                "Game deleted. Run a rating recalculation to update ratings."
                if ratings_stale else "Game deleted."
            ),
        }

    async def list_games(self, game_filter: Optional[GameFilter] = None) -> GuardedRead:
        """Cached games view. Degrades to an empty list when the backing store is unavailable."""
        game_filter = game_filter or GameFilter()

        async def produce():
            games = await self.ledger.list_games(game_filter)
            return [g.to_payload() for g in games]

        return await self.guard.read(
            self.cache, CacheKeys.games(game_filter.cache_key()), Config.CACHE_TTL_GAMES,
            (CacheTags.GAMES,), produce, empty=[]
        )
