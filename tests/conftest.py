"""Shared fixtures: a file-backed SQLite database per test and an engine with a controllable clock."""

from datetime import date, datetime
from typing import Optional

import pytest

from chessclub.data_models.games import GameRecord, GameResult, GameType
from chessclub.data_models.standings import RosterEntry
from chessclub.database.database import Database
from chessclub.engine import ClubEngine
from chessclub.services.cache_store import CacheStore, InMemoryCacheBackend
from chessclub.services.quota_guard import QuotaGuard


class FakeClock:
    """Manually advanced clock shared by the cache and the quota guard."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'club.db'}")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
async def engine(database, clock):
    cache = CacheStore(InMemoryCacheBackend(max_entries=100, stale_retention=3600, clock=clock), clock=clock)
    guard = QuotaGuard(cooldown_seconds=300, clock=clock)
    club = ClubEngine(database, cache=cache, guard=guard)
    yield club
    await club.post_write.drain()
    await club.post_write.cleanup()


@pytest.fixture
async def roster(engine):
    """Alice, Bob, Carol and Dave, unrated."""
    players = {}
    for player_id, name, grade in (
        ('alice', 'Alice Smith', '5'),
        ('bob', 'Bob Jones', '6'),
        ('carol', 'Carol White', '4'),
        ('dave', 'Dave Brown', '5'),
    ):
        players[player_id] = await engine.ledger.add_player(player_id, name, grade)
    return players


async def record(engine, player1_id, player2_id, result='player1', game_date='2024-03-01',
                 game_type='ladder', verified=True):
    """Record one game through the public operation and wait for its side effects."""
    game = await engine.games.record_game({
        'player1Id': player1_id,
        'player2Id': player2_id,
        'result': result,
        'gameDate': game_date,
        'gameType': game_type,
        'isVerified': verified,
        'recordedBy': 'coach',
    })
    await engine.post_write.drain()
    return game


def make_game(game_id: str, seq: int, player1: str, player2: str, result: str = 'player1',
              game_date: str = '2024-03-01', verified: bool = True,
              recorded_at: Optional[datetime] = None, game_type: str = 'ladder') -> GameRecord:
    return GameRecord(
        id=game_id,
        ledger_seq=seq,
        player1_id=player1,
        player1_name=player1.title(),
        player2_id=player2,
        player2_name=player2.title(),
        result=GameResult(result),
        game_date=date.fromisoformat(game_date),
        game_type=GameType(game_type),
        is_verified=verified,
        recorded_by='coach',
        recorded_at=recorded_at or datetime(2024, 3, 1, 12, 0, 0),
    )


def make_roster(*player_ids: str, system: tuple = ()) -> list:
    entries = [RosterEntry(id=pid, name=pid.title(), grade='5') for pid in player_ids]
    entries.extend(RosterEntry(id=pid, name=pid.title(), grade='Unknown', is_system=True) for pid in system)
    return entries
