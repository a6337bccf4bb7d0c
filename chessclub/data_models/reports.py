"""
Report data models for admin batch operations.

Batch operations never return a bare boolean: every one of them reports
counts, and partial failures carry the per-row errors.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


@dataclass
class RowError:
    """One failed row inside a batch."""
    row_id: str
    error: str


@dataclass
class BatchReport:
    """Count-based outcome of a batch; a partial failure when ``failed`` > 0."""
    updated: int = 0
    failed: int = 0
    errors: List[RowError] = field(default_factory=list)

    def record_success(self, count: int = 1):
        self.updated += count

    def record_failure(self, row_id: str, error: Exception):
        self.failed += 1
        self.errors.append(RowError(row_id=str(row_id), error=str(error)))

    @property
    def is_partial_failure(self) -> bool:
        return self.failed > 0

    def to_payload(self) -> Dict[str, Any]:
        return {
            'updated': self.updated,
            'failed': self.failed,
            'errors': [asdict(e) for e in self.errors],
        }


@dataclass
class RecalcReport:
    """Outcome of a full rating replay."""
    processed: int = 0
    errors: int = 0
    skipped: int = 0
    players_rated: int = 0

    def to_payload(self) -> Dict[str, int]:
        return {'processed': self.processed, 'errors': self.errors}


@dataclass(frozen=True)
class MergePreview:
    source_id: str
    target_id: str
    games_to_update: int

    def to_payload(self) -> Dict[str, Any]:
        return {'gamesToUpdate': self.games_to_update}


@dataclass
class MergeReport:
    """Outcome of merging one player's records into another."""
    source_id: str
    target_id: str
    target_name: str
    games: BatchReport = field(default_factory=BatchReport)
    auxiliary_updated: Dict[str, int] = field(default_factory=dict)
    auxiliary_warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.games.is_partial_failure

    @property
    def message(self) -> str:
        if self.success:
            return f"Successfully merged player {self.source_id} into {self.target_id}"
        return (
            f"Merged player {self.source_id} into {self.target_id} with "
            f"{self.games.failed} failed game update(s)"
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'message': self.message,
            'games': self.games.to_payload(),
            'auxiliaryUpdated': dict(self.auxiliary_updated),
            'warnings': list(self.auxiliary_warnings),
        }


@dataclass(frozen=True)
class MergeCandidate:
    """A player id seen in the ledger, with whether the roster knows it."""
    player_id: str
    name: str
    game_count: int
    is_in_roster: bool

    def to_payload(self) -> Dict[str, Any]:
        return {
            'id': self.player_id,
            'name': self.name,
            'gameCount': self.game_count,
            'isInStudents': self.is_in_roster,
        }


@dataclass(frozen=True)
class PlayerRef:
    id: str
    name: str


@dataclass(frozen=True)
class ReconciliationProposal:
    """Proposed identity rewrite for one game."""
    game_id: str
    game_date: str
    player1_current: PlayerRef
    player2_current: PlayerRef
    player1_new: Optional[PlayerRef] = None
    player2_new: Optional[PlayerRef] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            'gameId': self.game_id,
            'gameDate': self.game_date,
            'player1Current': asdict(self.player1_current),
            'player1New': asdict(self.player1_new) if self.player1_new else None,
            'player2Current': asdict(self.player2_current),
            'player2New': asdict(self.player2_new) if self.player2_new else None,
        }


@dataclass(frozen=True)
class AmbiguousName:
    """A first name shared by more than one roster member."""
    first_name: str
    candidates: List[PlayerRef]
    affected_games: int

    def to_payload(self) -> Dict[str, Any]:
        return {
            'firstName': self.first_name,
            'candidates': [asdict(c) for c in self.candidates],
            'affectedGames': self.affected_games,
        }


@dataclass
class ReconciliationPreview:
    """Proposed diff; nothing has been written when this is returned."""
    plan_id: str
    total_games: int
    proposals: List[ReconciliationProposal]
    ambiguous: List[AmbiguousName]
    preview_limit: int

    @property
    def games_to_update(self) -> int:
        return len(self.proposals)

    def to_payload(self) -> Dict[str, Any]:
        return {
            'planId': self.plan_id,
            'totalGames': self.total_games,
            'gamesToUpdate': self.games_to_update,
            'preview': [p.to_payload() for p in self.proposals[:self.preview_limit]],
            'totalPreviewCount': len(self.proposals),
            'ambiguous': [a.to_payload() for a in self.ambiguous],
        }


@dataclass
class ReconciliationReport:
    """Outcome of applying a previewed reconciliation plan."""
    plan_id: str
    games: BatchReport = field(default_factory=BatchReport)
    player1_updates: int = 0
    player2_updates: int = 0
    games_not_changed: int = 0

    def to_payload(self) -> Dict[str, Any]:
        return {
            'planId': self.plan_id,
            'gamesUpdated': self.games.updated,
            'player1Updates': self.player1_updates,
            'player2Updates': self.player2_updates,
            'gamesNotChanged': self.games_not_changed,
            'failed': self.games.failed,
            'errors': [asdict(e) for e in self.games.errors],
            'message': f"Batch update completed. {self.games.updated} game(s) updated.",
        }


@dataclass
class CacheWarmReport:
    duration_ms: int = 0
    warmed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {'durationMs': self.duration_ms, 'success': self.warmed, 'failed': self.failed}
