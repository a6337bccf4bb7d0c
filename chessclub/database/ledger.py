"""
Game ledger accessor.

The ledger is the append-only store of game results and the roster it
references; every derived view (ratings, ladder standings, cached payloads)
is rebuilt from what this module returns. All backing-store calls are
bounded by a timeout, and backing-store failures are translated into the
engine's exception taxonomy at this boundary:

- timeouts and rate-limit signatures -> QuotaExceededError
- any other SQLAlchemy failure -> PersistenceError
"""

import asyncio
import json
import uuid
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from sqlalchemy import select, update, delete, or_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chessclub.config import Config
from chessclub.data_models.games import GameDraft, GameFilter, GameRecord, RatingDelta
from chessclub.data_models.standings import PlayerRatingState, RosterEntry
from chessclub.database.models import Player, Game, TournamentResult, Attendance, AdminAuditLog, utcnow
from chessclub.utils.exceptions import (
    ClubError, NotFoundError, PersistenceError, QuotaExceededError, ValidationError, is_quota_error
)
from chessclub.utils.logger import setup_logger

logger = setup_logger(__name__)

GAME_UPDATABLE_FIELDS = frozenset({
    'player1_id', 'player1_name', 'player2_id', 'player2_name', 'result',
    'game_date', 'game_type', 'is_verified', 'verified_by', 'verified_at',
    'opening', 'endgame', 'notes', 'rating_change',
})

PLAYER_UPDATABLE_FIELDS = frozenset({
    'name', 'grade', 'elo_rating', 'games_counted', 'last_active',
})

# Auxiliary per-player tables that follow a player through merges
AUXILIARY_TABLES = {
    'tournament_results': TournamentResult,
    'attendance': Attendance,
}


def _to_record(row: Game) -> GameRecord:
    rating_change = None
    if row.player1_rating_change is not None and row.player2_rating_change is not None:
        rating_change = RatingDelta(row.player1_rating_change, row.player2_rating_change)
    return GameRecord(
        id=row.id,
        ledger_seq=row.ledger_seq,
        player1_id=row.player1_id,
        player1_name=row.player1_name,
        player2_id=row.player2_id,
        player2_name=row.player2_name,
        result=row.result,
        game_date=row.game_date,
        game_type=row.game_type,
        is_verified=bool(row.is_verified),
        recorded_by=row.recorded_by,
        recorded_at=row.recorded_at,
        rating_change=rating_change,
        opening=row.opening,
        endgame=row.endgame,
        notes=row.notes,
        verified_by=row.verified_by,
        verified_at=row.verified_at,
    )


def _to_roster_entry(row: Player) -> RosterEntry:
    return RosterEntry(
        id=row.id,
        name=row.name,
        grade=row.grade,
        is_system=bool(row.is_system),
        elo_rating=row.elo_rating,
        games_counted=row.games_counted or 0,
    )


class GameLedger:
    """Read/write accessor over the persisted game ledger and roster."""
    
    def __init__(self, database, timeout: Optional[float] = None):
        """
        Args:
            database: Initialized Database instance
            timeout: Per-call bound in seconds (defaults to Config.BACKING_STORE_TIMEOUT_SECONDS)
        """
        self.db = database
        self.timeout = timeout if timeout is not None else Config.BACKING_STORE_TIMEOUT_SECONDS
    
    async def _run(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[Any]],
        write: bool = False
    ) -> Any:
        """Run ``work`` inside a session, bounded by the timeout, translating failures."""
        async def _execute():
            context = self.db.transaction() if write else self.db.get_session()
            async with context as session:
                return await work(session)
        
        try:
            return await asyncio.wait_for(_execute(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Ledger {operation} timed out after {self.timeout}s")
            raise QuotaExceededError(f"{operation} exceeded {self.timeout}s", timed_out=True)
        except ClubError:
            raise
        except Exception as e:
            if is_quota_error(e):
                logger.warning(f"Ledger {operation} hit backing store quota: {e}")
                raise QuotaExceededError(str(e)) from e
            if isinstance(e, SQLAlchemyError):
                logger.error(f"Ledger {operation} failed: {e}")
                raise PersistenceError(operation, str(e)) from e
            raise
    
    # ------------------------------------------------------------------
    # Games
    # ------------------------------------------------------------------
    
    async def list_games(self, game_filter: Optional[GameFilter] = None) -> List[GameRecord]:
        """List ledger rows matching ``game_filter`` in insertion order."""
        game_filter = game_filter or GameFilter()
        
        async def work(session):
            query = select(Game)
            if game_filter.date_from:
                query = query.where(Game.game_date >= game_filter.date_from)
            if game_filter.date_to:
                query = query.where(Game.game_date <= game_filter.date_to)
            if game_filter.game_type:
                query = query.where(Game.game_type == game_filter.game_type)
            if game_filter.is_verified is not None:
                query = query.where(Game.is_verified == game_filter.is_verified)
            if game_filter.player_id:
                query = query.where(or_(
                    Game.player1_id == game_filter.player_id,
                    Game.player2_id == game_filter.player_id
                ))
            if game_filter.game_ids is not None:
                query = query.where(Game.id.in_(list(game_filter.game_ids)))
            result = await session.execute(query.order_by(Game.ledger_seq))
            return [_to_record(row) for row in result.scalars().all()]
        
        return await self._run("list_games", work)
    
    async def get_game(self, game_id: str) -> GameRecord:
        async def work(session):
            result = await session.execute(select(Game).where(Game.id == game_id))
            row = result.scalar_one_or_none()
            if row is None:
                raise NotFoundError("Game", game_id)
            return _to_record(row)
        
        return await self._run("get_game", work)
    
    async def count_games_referencing(self, player_id: str) -> int:
        async def work(session):
            query = select(func.count(Game.ledger_seq)).where(or_(
                Game.player1_id == player_id,
                Game.player2_id == player_id
            ))
            return await session.scalar(query) or 0
        
        return await self._run("count_games_referencing", work)
    
    async def add_game(self, draft: GameDraft) -> GameRecord:
        """Append a validated game. Names must already be resolved on the draft."""
        if draft.player1_id == draft.player2_id:
            raise ValidationError("Players must be different")
        if not draft.player1_name or not draft.player2_name:
            raise ValidationError("Player names must be resolved before recording")
        
        async def work(session):
            now = utcnow()
            row = Game(
                id=f"game_{uuid.uuid4().hex}",
                player1_id=draft.player1_id,
                player1_name=draft.player1_name,
                player2_id=draft.player2_id,
                player2_name=draft.player2_name,
                result=draft.result,
                game_date=draft.game_date,
                game_type=draft.game_type,
                is_verified=draft.is_verified,
                verified_by=draft.recorded_by if draft.is_verified else None,
                verified_at=now if draft.is_verified else None,
                opening=draft.opening,
                endgame=draft.endgame,
                notes=draft.notes,
                recorded_by=draft.recorded_by,
                recorded_at=now,
            )
            session.add(row)
            await session.flush()
            return _to_record(row)
        
        record = await self._run("add_game", work, write=True)
        logger.info(f"Recorded game {record.id}: {record.player1_id} vs {record.player2_id} ({record.result.value})")
        return record
    
    async def update_game(self, game_id: str, **fields) -> GameRecord:
        """Update whitelisted fields on one game. ``rating_change`` takes a RatingDelta or None."""
        unknown = set(fields) - GAME_UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update game fields: {', '.join(sorted(unknown))}")
        
        async def work(session):
            result = await session.execute(select(Game).where(Game.id == game_id))
            row = result.scalar_one_or_none()
            if row is None:
                raise NotFoundError("Game", game_id)
            
            for key, value in fields.items():
                if key == 'rating_change':
                    row.player1_rating_change = value.player1 if value else None
                    row.player2_rating_change = value.player2 if value else None
                else:
                    setattr(row, key, value)
            
            if row.player1_id == row.player2_id:
                raise ValidationError("Players must be different")
            
            row.updated_at = utcnow()
            await session.flush()
            return _to_record(row)
        
        return await self._run("update_game", work, write=True)
    
    async def delete_game(self, game_id: str) -> GameRecord:
        async def work(session):
            result = await session.execute(select(Game).where(Game.id == game_id))
            row = result.scalar_one_or_none()
            if row is None:
                raise NotFoundError("Game", game_id)
            record = _to_record(row)
            await session.delete(row)
            return record
        
        record = await self._run("delete_game", work, write=True)
        logger.info(f"Deleted game {game_id}")
        return record
    
    async def set_rating_changes(self, changes: Dict[str, Optional[RatingDelta]]) -> int:
        """Overwrite the rating change of every listed game in one transaction."""
        if not changes:
            return 0
        
        async def work(session):
            count = 0
            for game_id, delta in changes.items():
                result = await session.execute(
                    update(Game)
                    .where(Game.id == game_id)
                    .values(
                        player1_rating_change=delta.player1 if delta else None,
                        player2_rating_change=delta.player2 if delta else None
                    )
                )
                count += result.rowcount or 0
            return count
        
        return await self._run("set_rating_changes", work, write=True)
    
    # ------------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------------
    
    async def list_roster(self, include_system: bool = True) -> List[RosterEntry]:
        async def work(session):
            query = select(Player).order_by(Player.name, Player.id)
            if not include_system:
                query = query.where(Player.is_system == False)
            result = await session.execute(query)
            return [_to_roster_entry(row) for row in result.scalars().all()]
        
        return await self._run("list_roster", work)
    
    async def find_player(self, player_id: str) -> Optional[RosterEntry]:
        async def work(session):
            row = await session.get(Player, player_id)
            return _to_roster_entry(row) if row else None
        
        return await self._run("find_player", work)
    
    async def get_player(self, player_id: str) -> RosterEntry:
        player = await self.find_player(player_id)
        if player is None:
            raise NotFoundError("Player", player_id)
        return player
    
    async def add_player(self, player_id: str, name: str, grade: str = 'Unknown',
                         is_system: bool = False) -> RosterEntry:
        if not player_id or not name:
            raise ValidationError("Player id and name are required")
        
        async def work(session):
            if await session.get(Player, player_id) is not None:
                raise ValidationError(f"Player '{player_id}' already exists")
            row = Player(id=player_id, name=name, grade=grade, is_system=is_system)
            session.add(row)
            await session.flush()
            return _to_roster_entry(row)
        
        return await self._run("add_player", work, write=True)
    
    async def update_player(self, player_id: str, **fields) -> RosterEntry:
        unknown = set(fields) - PLAYER_UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update player fields: {', '.join(sorted(unknown))}")
        
        async def work(session):
            row = await session.get(Player, player_id)
            if row is None:
                raise NotFoundError("Player", player_id)
            for key, value in fields.items():
                setattr(row, key, value)
            await session.flush()
            return _to_roster_entry(row)
        
        return await self._run("update_player", work, write=True)
    
    async def initialize_missing_ratings(self, default_rating: int) -> int:
        """Give every non-system player without a rating the default. Returns rows changed."""
        async def work(session):
            result = await session.execute(
                update(Player)
                .where(Player.elo_rating.is_(None), Player.is_system == False)
                .values(elo_rating=default_rating, games_counted=0)
            )
            return result.rowcount or 0
        
        return await self._run("initialize_missing_ratings", work, write=True)
    
    async def save_rating_states(self, states: Iterable[PlayerRatingState]) -> int:
        """Overwrite rating state for every listed player that exists in the roster."""
        states = list(states)
        if not states:
            return 0
        
        async def work(session):
            count = 0
            for state in states:
                result = await session.execute(
                    update(Player)
                    .where(Player.id == state.player_id)
                    .values(elo_rating=state.current_rating, games_counted=state.games_counted)
                )
                count += result.rowcount or 0
            return count
        
        return await self._run("save_rating_states", work, write=True)
    
    # ------------------------------------------------------------------
    # Auxiliary tables and audit
    # ------------------------------------------------------------------
    
    async def repoint_auxiliary(self, table: str, source_id: str, target_id: str, target_name: str) -> int:
        """Move rows of an auxiliary per-player table from one player to another."""
        model = AUXILIARY_TABLES.get(table)
        if model is None:
            raise ValidationError(f"Unknown auxiliary table '{table}'")
        
        async def work(session):
            result = await session.execute(
                update(model)
                .where(model.player_id == source_id)
                .values(player_id=target_id, player_name=target_name)
            )
            return result.rowcount or 0
        
        return await self._run(f"repoint_{table}", work, write=True)
    
    async def record_audit(self, admin_id: str, action_type: str, target_type: Optional[str] = None,
                           target_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        async def work(session):
            session.add(AdminAuditLog(
                admin_id=str(admin_id),
                action_type=action_type,
                target_type=target_type,
                target_id=target_id,
                details=json.dumps(details or {}, default=str),
                created_at=utcnow(),
            ))
        
        await self._run("record_audit", work, write=True)
        logger.info(f"Admin audit log created: {action_type} by {admin_id} on {target_type}:{target_id}")
