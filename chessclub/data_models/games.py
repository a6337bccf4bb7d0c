"""
Game ledger data models.

Closed enums for result and game type, plus immutable transfer objects for
ledger rows. Free-form strings are rejected at the ingestion boundary by
the ``parse`` helpers.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

from chessclub.utils.exceptions import ValidationError


class GameResult(Enum):
    PLAYER1 = "player1"
    PLAYER2 = "player2"
    DRAW = "draw"

    @classmethod
    def parse(cls, value) -> "GameResult":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid result '{value}'. Must be player1, player2, or draw"
            )


class GameType(Enum):
    LADDER = "ladder"
    TOURNAMENT = "tournament"
    FRIENDLY = "friendly"
    PRACTICE = "practice"

    @classmethod
    def parse(cls, value) -> "GameType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(t.value for t in cls)
            raise ValidationError(f"Invalid game type '{value}'. Must be one of: {allowed}")

    @classmethod
    def parse_optional(cls, value) -> Optional["GameType"]:
        if value is None or value == "" or value == "all":
            return None
        return cls.parse(value)


def parse_date(value, field_name: str = "date") -> date:
    """Parse an ISO calendar date, accepting date/datetime instances as-is."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(f"Invalid {field_name} '{value}'. Expected YYYY-MM-DD")


_FLAG_STRINGS = {"true": True, "false": False}


def parse_flag(value, field_name: str = "flag", default: bool = False) -> bool:
    """Accept a real boolean or the strings "true"/"false" in any case. None means ``default``."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _FLAG_STRINGS:
        return _FLAG_STRINGS[value.strip().lower()]
    raise ValidationError(f"Invalid {field_name} '{value}'. Expected true or false")


def parse_optional_date(value, field_name: str = "date") -> Optional[date]:
    if value is None or value == "":
        return None
    return parse_date(value, field_name)


@dataclass(frozen=True)
class RatingDelta:
    """Rating change applied to each side of one game."""
    player1: int
    player2: int

    def to_payload(self) -> Dict[str, int]:
        return {'player1': self.player1, 'player2': self.player2}


@dataclass(frozen=True)
class GameRecord:
    """One row of the ledger."""
    id: str
    ledger_seq: int
    player1_id: str
    player1_name: str
    player2_id: str
    player2_name: str
    result: GameResult
    game_date: date
    game_type: GameType
    is_verified: bool
    recorded_by: str
    recorded_at: Optional[datetime] = None
    rating_change: Optional[RatingDelta] = None
    opening: Optional[str] = None
    endgame: Optional[str] = None
    notes: Optional[str] = None
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None

    def involves(self, player_id: str) -> bool:
        return self.player1_id == player_id or self.player2_id == player_id

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready representation used by the cache and the HTTP layer."""
        return {
            'id': self.id,
            'player1Id': self.player1_id,
            'player1Name': self.player1_name,
            'player2Id': self.player2_id,
            'player2Name': self.player2_name,
            'result': self.result.value,
            'gameDate': self.game_date.isoformat(),
            'gameType': self.game_type.value,
            'isVerified': self.is_verified,
            'ratingChange': self.rating_change.to_payload() if self.rating_change else None,
            'recordedBy': self.recorded_by,
            'recordedAt': self.recorded_at.isoformat() if self.recorded_at else None,
            'opening': self.opening,
            'endgame': self.endgame,
            'notes': self.notes,
        }


@dataclass
class GameDraft:
    """Validated input for a new ledger row."""
    player1_id: str
    player2_id: str
    result: GameResult
    game_date: date
    game_type: GameType
    recorded_by: str
    is_verified: bool = False
    player1_name: Optional[str] = None
    player2_name: Optional[str] = None
    opening: Optional[str] = None
    endgame: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "GameDraft":
        """Build a draft from loosely-typed request data, validating every field."""
        player1_id = str(payload.get('player1Id') or '').strip()
        player2_id = str(payload.get('player2Id') or '').strip()
        if not player1_id or not player2_id or not payload.get('result'):
            raise ValidationError("Missing required fields: player1Id, player2Id, result")
        if player1_id == player2_id:
            raise ValidationError("Players must be different")
        recorded_by = str(payload.get('recordedBy') or '').strip()
        if not recorded_by:
            raise ValidationError("Missing required field: recordedBy")
        return cls(
            player1_id=player1_id,
            player2_id=player2_id,
            result=GameResult.parse(payload['result']),
            game_date=parse_date(payload.get('gameDate') or date.today(), 'gameDate'),
            game_type=GameType.parse(payload.get('gameType') or GameType.LADDER),
            recorded_by=recorded_by,
            is_verified=parse_flag(payload.get('isVerified'), 'isVerified'),
            opening=payload.get('opening') or None,
            endgame=payload.get('endgame') or None,
            notes=payload.get('notes') or None,
        )


@dataclass(frozen=True)
class GameFilter:
    """Ledger query filter. Unset fields do not restrict the result."""
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    game_type: Optional[GameType] = None
    is_verified: Optional[bool] = None
    player_id: Optional[str] = None
    game_ids: Optional[frozenset] = field(default=None)

    def __post_init__(self):
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValidationError("dateFrom must not be after dateTo")

    def matches(self, game: GameRecord) -> bool:
        if self.date_from and game.game_date < self.date_from:
            return False
        if self.date_to and game.game_date > self.date_to:
            return False
        if self.game_type and game.game_type is not self.game_type:
            return False
        if self.is_verified is not None and game.is_verified != self.is_verified:
            return False
        if self.player_id and not game.involves(self.player_id):
            return False
        if self.game_ids is not None and game.id not in self.game_ids:
            return False
        return True

    def cache_key(self) -> str:
        parts = []
        if self.date_from:
            parts.append(f"from={self.date_from.isoformat()}")
        if self.date_to:
            parts.append(f"to={self.date_to.isoformat()}")
        if self.game_type:
            parts.append(f"type={self.game_type.value}")
        if self.is_verified is not None:
            parts.append(f"verified={int(self.is_verified)}")
        if self.player_id:
            parts.append(f"player={self.player_id}")
        if self.game_ids is not None:
            parts.append("ids=" + ",".join(sorted(self.game_ids)))
        return "&".join(parts)
