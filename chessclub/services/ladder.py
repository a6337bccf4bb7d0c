"""
Ladder standings aggregation.

Standings are folded from the ledger on demand and never stored as ground
truth. Each participant earns one point per game, one more for a win and
half a point more for a draw (win 2, draw 1.5, loss 1).

Sort order: points desc, win rate desc, name asc (case-insensitive).
Rank is 1-based and assigned after sorting.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from chessclub.config import Config
from chessclub.constants import CacheKeys, CacheTags, LadderConstants, PlayerConstants
from chessclub.data_models.games import GameFilter, GameRecord, GameResult, GameType
from chessclub.data_models.standings import LadderStanding, RosterEntry, player_payload
from chessclub.services.quota_guard import GuardedRead

logger = logging.getLogger(__name__)


@dataclass
class _Tally:
    player_id: str
    name: str
    grade: str
    is_system: bool
    games_played: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    points: float = 0.0
    last_active: Optional[date] = None

    def record(self, outcome: str, game_date: date):
        self.games_played += 1
        self.points += LadderConstants.PARTICIPATION_POINTS
        if outcome == 'win':
            self.wins += 1
            self.points += LadderConstants.WIN_BONUS
        elif outcome == 'loss':
            self.losses += 1
        else:
            self.draws += 1
            self.points += LadderConstants.DRAW_BONUS
        if self.last_active is None or game_date > self.last_active:
            self.last_active = game_date

    def freeze(self) -> LadderStanding:
        return LadderStanding(
            player_id=self.player_id,
            name=self.name,
            grade=self.grade,
            games_played=self.games_played,
            wins=self.wins,
            losses=self.losses,
            draws=self.draws,
            points=self.points,
            is_system=self.is_system,
            last_active=self.last_active,
        )


def is_system_player(player_id: str, name: str = None) -> bool:
    return player_id in PlayerConstants.SYSTEM_PLAYER_IDS or name == PlayerConstants.UNKNOWN_OPPONENT_NAME


def _outcomes(result: GameResult):
    if result is GameResult.PLAYER1:
        return 'win', 'loss'
    if result is GameResult.PLAYER2:
        return 'loss', 'win'
    return 'draw', 'draw'


def rank_standings(standings: Iterable[LadderStanding]) -> List[LadderStanding]:
    """Sort standings and assign 1-based ranks."""
    ordered = sorted(
        standings,
        key=lambda s: (-s.points, -s.win_rate, s.name.casefold(), s.player_id)
    )
    return [standing.with_rank(index + 1) for index, standing in enumerate(ordered)]


def aggregate_standings(
    games: Iterable[GameRecord],
    roster: Iterable[RosterEntry],
    game_type: Optional[GameType] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    active_only: bool = False
) -> List[LadderStanding]:
    """
    Fold games into ranked standings.

    Roster players without games in the window are included with zero
    stats unless ``active_only`` is set. Players seen only in games keep
    the name snapshot from the game and an unknown grade.
    """
    window = GameFilter(date_from=date_from, date_to=date_to, game_type=game_type)
    tallies: Dict[str, _Tally] = {}

    for entry in roster:
        tallies[entry.id] = _Tally(
            player_id=entry.id,
            name=entry.name,
            grade=entry.grade,
            is_system=entry.is_system or is_system_player(entry.id),
        )

    for game in games:
        if not window.matches(game):
            continue
        outcome1, outcome2 = _outcomes(game.result)
        for player_id, name, outcome in (
            (game.player1_id, game.player1_name, outcome1),
            (game.player2_id, game.player2_name, outcome2),
        ):
            tally = tallies.get(player_id)
            if tally is None:
                tally = _Tally(
                    player_id=player_id,
                    name=name,
                    grade=PlayerConstants.UNKNOWN_GRADE,
                    is_system=is_system_player(player_id, name),
                )
                tallies[player_id] = tally
            tally.record(outcome, game.game_date)

    standings = [tally.freeze() for tally in tallies.values()]
    if active_only:
        standings = [s for s in standings if s.games_played > 0]
    return rank_standings(standings)


def public_view(standings: Iterable[LadderStanding],
                all_time_points: Mapping[str, float]) -> List[LadderStanding]:
    """Drop system players and players with no all-time points, then re-rank."""
    visible = [
        s for s in standings
        if not s.is_system and all_time_points.get(s.player_id, 0) > 0
    ]
    return rank_standings(visible)


class LadderAggregator:
    """Ladder and rankings views over the ledger, read through the cache and quota guard."""

    def __init__(self, ledger, cache, guard, today: Callable[[], date] = date.today):
        self.ledger = ledger
        self.cache = cache
        self.guard = guard
        self.today = today

    async def standings(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        game_type: Optional[GameType] = GameType.LADDER,
        active_only: bool = False
    ) -> List[LadderStanding]:
        """Raw ranked standings for the window, system players included."""
        game_filter = GameFilter(date_from=date_from, date_to=date_to, game_type=game_type)
        games = await self.ledger.list_games(game_filter)
        roster = await self.ledger.list_roster()
        return aggregate_standings(games, roster, game_type, date_from, date_to, active_only)

    async def public_standings(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        game_type: Optional[GameType] = GameType.LADDER,
        active_only: bool = False
    ) -> List[LadderStanding]:
        window = await self.standings(date_from, date_to, game_type, active_only)
        if date_from is None and date_to is None:
            all_time = window
        else:
            all_time = await self.standings(game_type=game_type)
        return public_view(window, {s.player_id: s.points for s in all_time})

    async def read_standings(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        game_type: Optional[GameType] = GameType.LADDER,
        active_only: bool = False
    ) -> GuardedRead:
        type_value = game_type.value if game_type else None
        key = CacheKeys.standings(date_from, date_to, type_value, active_only)

        async def produce():
            standings = await self.public_standings(date_from, date_to, game_type, active_only)
            return [s.to_payload() for s in standings]

        return await self.guard.read(
            self.cache, key, Config.CACHE_TTL_LADDER,
            (CacheTags.LADDER, CacheTags.RANKINGS), produce
        )

    async def ladder_for_date(self, day: Optional[date] = None,
                              game_type: Optional[GameType] = GameType.LADDER) -> GuardedRead:
        """Games played on ``day`` plus the all-time public standings."""
        day = day or self.today()
        type_value = game_type.value if game_type else None

        async def produce():
            games = await self.ledger.list_games(
                GameFilter(date_from=day, date_to=day, game_type=game_type)
            )
            players = await self.public_standings(game_type=game_type)
            logger.info(f"Ladder for {day.isoformat()}: {len(games)} game(s), {len(players)} player(s)")
            return {
                'date': day.isoformat(),
                'games': [g.to_payload() for g in games],
                'players': [p.to_payload() for p in players],
            }

        return await self.guard.read(
            self.cache, CacheKeys.ladder(day.isoformat(), type_value), Config.CACHE_TTL_LADDER,
            (CacheTags.LADDER, CacheTags.GAMES, CacheTags.RANKINGS), produce
        )

    async def rankings(self) -> GuardedRead:
        """All-time rankings across every game type, with current ratings."""
        async def produce():
            games = await self.ledger.list_games(GameFilter())
            roster = await self.ledger.list_roster()
            standings = aggregate_standings(games, roster)
            visible = public_view(standings, {s.player_id: s.points for s in standings})
            ratings = {entry.id: entry.elo_rating for entry in roster}
            return [player_payload(s, ratings.get(s.player_id)) for s in visible]

        return await self.guard.read(
            self.cache, CacheKeys.RANKINGS, Config.CACHE_TTL_RANKINGS,
            (CacheTags.RANKINGS, CacheTags.RATINGS), produce
        )
