"""
Roster, rating and ladder data models.

Provides immutable data transfer objects for the derived views. None of
these are authored directly: they are folded from the ledger on demand.
"""

from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class RosterEntry:
    """Roster member as seen by the engine."""
    id: str
    name: str
    grade: str
    is_system: bool = False
    elo_rating: Optional[int] = None
    games_counted: int = 0

    def to_payload(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'grade': self.grade,
            'isSystemPlayer': self.is_system,
            'eloRating': self.elo_rating,
        }


@dataclass(frozen=True)
class PlayerRatingState:
    """Rating of one player after replaying the ledger."""
    player_id: str
    current_rating: int
    games_counted: int = 0

    def to_payload(self) -> Dict[str, Any]:
        return {
            'playerId': self.player_id,
            'currentRating': self.current_rating,
            'gamesCounted': self.games_counted,
        }


@dataclass(frozen=True)
class LadderStanding:
    """Single ladder row, scoped to the aggregation window."""
    player_id: str
    name: str
    grade: str
    games_played: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    points: float = 0.0
    rank: int = 0
    is_system: bool = False
    last_active: Optional[date] = None

    @property
    def win_rate(self) -> float:
        if self.games_played == 0:
            return 0.0
        return self.wins / self.games_played

    def with_rank(self, rank: int) -> "LadderStanding":
        return replace(self, rank=rank)

    def to_payload(self) -> Dict[str, Any]:
        return {
            'id': self.player_id,
            'name': self.name,
            'grade': self.grade,
            'gamesPlayed': self.games_played,
            'wins': self.wins,
            'losses': self.losses,
            'draws': self.draws,
            'points': self.points,
            'rank': self.rank,
            'isSystemPlayer': self.is_system,
            'lastActive': self.last_active.isoformat() if self.last_active else None,
        }


def player_payload(standing: LadderStanding, elo_rating: Optional[int]) -> Dict[str, Any]:
    """Persisted/cached payload shape for a player on the rankings view."""
    return {
        'id': standing.player_id,
        'name': standing.name,
        'grade': standing.grade,
        'eloRating': elo_rating,
        'wins': standing.wins,
        'losses': standing.losses,
        'draws': standing.draws,
        'points': standing.points,
        'rank': standing.rank,
        'lastActive': standing.last_active.isoformat() if standing.last_active else None,
    }
