"""
Rating Engine Module

Computes Elo rating deltas per game and replays the whole ledger into a
rating snapshot.

Key functionality:
- initialize_all(): give unrated roster players the default rating (idempotent)
- compute_for_game(): delta for one game against a ratings snapshot
- replay(): pure, deterministic fold over the ledger
- recalc_all(): replay and persist, then invalidate rating views
- apply_game(): incremental update after a new verified game

The full replay is the source of truth. Incremental updates that are
missed or applied twice are corrected by the next recalculation, because
every rating and every per-game rating change is rewritten wholesale.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional

from chessclub.config import Config
from chessclub.constants import CacheTags
from chessclub.data_models.games import GameFilter, GameRecord, RatingDelta
from chessclub.data_models.reports import RecalcReport
from chessclub.data_models.standings import PlayerRatingState, RosterEntry
from chessclub.services.ladder import is_system_player
from chessclub.services.post_write import PostWriteTask
from chessclub.utils.elo import EloCalculator
from chessclub.utils.logger import setup_logger

logger = setup_logger(__name__)


def replay_order_key(game: GameRecord):
    """Chronological replay order: game date, then recorded time, then ledger insertion order."""
    return (game.game_date, game.recorded_at or datetime.min, game.ledger_seq)


@dataclass
class ReplayResult:
    """Outcome of folding the ledger into ratings. Nothing is persisted."""
    states: Dict[str, PlayerRatingState] = field(default_factory=dict)
    changes: Dict[str, Optional[RatingDelta]] = field(default_factory=dict)
    report: RecalcReport = field(default_factory=RecalcReport)

    def ratings(self) -> Dict[str, int]:
        return {player_id: state.current_rating for player_id, state in self.states.items()}


class RatingEngine:
    """Elo rating computation and full ledger replay."""

    def __init__(self, ledger, cache=None, post_write=None, default_rating: int = None):
        self.ledger = ledger
        self.cache = cache
        self.post_write = post_write
        self.default_rating = default_rating if default_rating is not None else Config.DEFAULT_RATING

    async def initialize_all(self, default_rating: int = None) -> int:
        """
        Set the default rating on every roster player that has none.

        Players that already carry a rating are untouched, so a second call
        with the same roster changes nothing.

        Returns:
            Number of players initialized
        """
        rating = default_rating if default_rating is not None else self.default_rating
        count = await self.ledger.initialize_missing_ratings(rating)
        logger.info(f"Initialized {count} player rating(s) at {rating}")
        return count

    def is_rated(self, game: GameRecord) -> bool:
        """Unverified games and games against system placeholders never move ratings."""
        if not game.is_verified:
            return False
        return not (
            is_system_player(game.player1_id, game.player1_name)
            or is_system_player(game.player2_id, game.player2_name)
        )

    def compute_for_game(self, game: GameRecord,
                         ratings_snapshot: Mapping[str, int]) -> Optional[RatingDelta]:
        """
        Rating delta for one game.

        Args:
            game: Ledger row
            ratings_snapshot: Current ratings by player id; unseen players start at the default

        Returns:
            RatingDelta, or None when the game is excluded from rating math
        """
        if not self.is_rated(game):
            return None
        player1_rating = ratings_snapshot.get(game.player1_id, self.default_rating)
        player2_rating = ratings_snapshot.get(game.player2_id, self.default_rating)
        player1_change, player2_change = EloCalculator.calculate_match_elo_changes(
            player1_rating, player2_rating, game.result
        )
        return RatingDelta(player1_change, player2_change)

    def replay(self, games: Iterable[GameRecord], roster: Iterable[RosterEntry]) -> ReplayResult:
        """
        Replay verified games in chronological order from the default rating.

        A game whose player is missing from the roster is rejected on its
        own (logged and counted as an error); the replay carries on.
        """
        result = ReplayResult()
        known = {}
        for entry in roster:
            known[entry.id] = entry
            if not entry.is_system:
                result.states[entry.id] = PlayerRatingState(entry.id, self.default_rating, 0)

        ratings = result.ratings()
        counted: Dict[str, int] = {player_id: 0 for player_id in result.states}

        for game in sorted(games, key=replay_order_key):
            result.changes[game.id] = None
            if not game.is_verified:
                continue
            if not self.is_rated(game):
                result.report.skipped += 1
                continue

            missing = [
                player_id for player_id in (game.player1_id, game.player2_id)
                if not player_id or player_id not in known
            ]
            if missing:
                logger.warning(f"Skipping game {game.id} in replay: unknown player(s) {', '.join(repr(m) for m in missing)}")
                result.report.errors += 1
                continue

            delta = self.compute_for_game(game, ratings)
            ratings[game.player1_id] = ratings.get(game.player1_id, self.default_rating) + delta.player1
            ratings[game.player2_id] = ratings.get(game.player2_id, self.default_rating) + delta.player2
            counted[game.player1_id] = counted.get(game.player1_id, 0) + 1
            counted[game.player2_id] = counted.get(game.player2_id, 0) + 1
            result.changes[game.id] = delta
            result.report.processed += 1

        result.states = {
            player_id: PlayerRatingState(player_id, rating, counted.get(player_id, 0))
            for player_id, rating in ratings.items()
        }
        result.report.players_rated = len(result.states)
        return result

    async def recalc_all(self, games: Optional[List[GameRecord]] = None) -> RecalcReport:
        """
        Replay the full ledger and persist the snapshot.

        Every player's rating and every game's rating change is rewritten,
        including clearing changes on games that are no longer rated.
        Safe to re-run at any time; a restart simply recomputes from scratch.
        """
        if games is None:
            games = await self.ledger.list_games(GameFilter())
        roster = await self.ledger.list_roster()

        result = self.replay(games, roster)

        await self.ledger.save_rating_states(result.states.values())
        await self.ledger.set_rating_changes(result.changes)

        logger.info(
            f"Rating recalculation complete: {result.report.processed} processed, "
            f"{result.report.errors} error(s), {result.report.skipped} skipped"
        )
        await self._after_rating_write()
        return result.report

    async def apply_game(self, game: GameRecord) -> Optional[RatingDelta]:
        """Incrementally apply one newly recorded game to the stored ratings."""
        if not self.is_rated(game):
            return None

        player1 = await self.ledger.find_player(game.player1_id)
        player2 = await self.ledger.find_player(game.player2_id)
        if player1 is None or player2 is None:
            logger.warning(f"Not rating game {game.id}: player missing from roster")
            return None

        snapshot = {
            player1.id: player1.elo_rating if player1.elo_rating is not None else self.default_rating,
            player2.id: player2.elo_rating if player2.elo_rating is not None else self.default_rating,
        }
        delta = self.compute_for_game(game, snapshot)

        await self.ledger.save_rating_states([
            PlayerRatingState(player1.id, snapshot[player1.id] + delta.player1, player1.games_counted + 1),
            PlayerRatingState(player2.id, snapshot[player2.id] + delta.player2, player2.games_counted + 1),
        ])
        await self.ledger.update_game(game.id, rating_change=delta)
        logger.info(
            f"Rated game {game.id}: {game.player1_id} {EloCalculator.format_elo_change(delta.player1)}, "
            f"{game.player2_id} {EloCalculator.format_elo_change(delta.player2)}"
        )
        return delta

    async def _after_rating_write(self):
        if self.cache is None or self.post_write is None:
            return
        self.post_write.dispatch([
            PostWriteTask(
                "invalidate rating views",
                lambda: self.cache.invalidate_by_tags((CacheTags.RATINGS, CacheTags.RANKINGS))
            ),
        ])
