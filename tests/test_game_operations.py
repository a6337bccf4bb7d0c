"""Game writes: validation, immediate rating, invalidation and the games view."""

import pytest

from chessclub.constants import CacheKeys, PlayerConstants
from chessclub.data_models.games import GameFilter, GameType, RatingDelta
from chessclub.utils.exceptions import (
    NotFoundError, PersistenceError, QuotaExceededError, ValidationError
)

from conftest import record


def _payload(**overrides):
    payload = {
        'player1Id': 'alice',
        'player2Id': 'bob',
        'result': 'player1',
        'gameDate': '2024-03-01',
        'recordedBy': 'coach',
    }
    payload.update(overrides)
    return payload


async def test_record_snapshots_names_and_defaults_to_ladder(engine, roster):
    game = await engine.games.record_game(_payload())

    assert game.player1_name == 'Alice Smith'
    assert game.player2_name == 'Bob Jones'
    assert game.game_type is GameType.LADDER
    assert game.is_verified is False
    assert game.rating_change is None


@pytest.mark.parametrize('overrides', [
    {'player2Id': 'alice'},
    {'result': 'win'},
    {'gameType': 'blitz'},
    {'gameDate': '03/01/2024'},
    {'recordedBy': ''},
    {'player1Id': ''},
])
async def test_record_rejects_invalid_input(engine, roster, overrides):
    with pytest.raises(ValidationError):
        await engine.games.record_game(_payload(**overrides))
    assert await engine.ledger.list_games() == []


async def test_record_rejects_unknown_player(engine, roster):
    with pytest.raises(NotFoundError):
        await engine.games.record_game(_payload(player2Id='ghost'))


async def test_verified_game_is_rated_immediately(engine, roster):
    await engine.ratings.initialize_all(1000)
    game = await record(engine, 'alice', 'bob', 'player1')

    assert game.rating_change == RatingDelta(16, -16)
    assert (await engine.ledger.get_player('alice')).elo_rating == 1016
    assert (await engine.ledger.get_player('bob')).elo_rating == 984


async def test_game_against_unknown_opponent_is_recorded_but_not_rated(engine, roster):
    game = await record(engine, 'alice', PlayerConstants.UNKNOWN_OPPONENT_ID, 'player1')

    assert game.player2_name == PlayerConstants.UNKNOWN_OPPONENT_NAME
    assert game.rating_change is None
    assert (await engine.ledger.get_player('alice')).games_counted == 0


async def test_write_invalidates_cached_views(engine, roster):
    await record(engine, 'alice', 'bob')
    await engine.ladder.rankings()
    await engine.games.list_games()
    assert await engine.cache.lookup(CacheKeys.RANKINGS) is not None

    await record(engine, 'carol', 'dave')

    assert await engine.cache.lookup(CacheKeys.RANKINGS) is None
    assert await engine.cache.lookup(CacheKeys.games('')) is None


async def test_invalidation_failure_does_not_fail_the_write(engine, roster, monkeypatch):
    async def broken(tags):
        raise ConnectionError("cache down")

    monkeypatch.setattr(engine.cache.backend, 'delete_tagged', broken)
    game = await record(engine, 'alice', 'bob')

    assert (await engine.ledger.get_game(game.id)).id == game.id


async def test_rating_failure_after_commit_keeps_the_game_and_invalidates(engine, roster, monkeypatch):
    await engine.ratings.initialize_all(1000)
    await record(engine, 'alice', 'bob')
    await engine.ladder.rankings()

    async def broken(states):
        raise PersistenceError('save_rating_states', 'disk I/O error')

    monkeypatch.setattr(engine.ledger, 'save_rating_states', broken)
    game = await record(engine, 'carol', 'dave')

    assert game.rating_change is None
    assert len(await engine.ledger.list_games()) == 2
    assert await engine.cache.lookup(CacheKeys.RANKINGS) is None
    read = await engine.ladder.rankings()
    assert {row['id'] for row in read.data} == {'alice', 'bob', 'carol', 'dave'}

    monkeypatch.undo()
    await engine.ratings.recalc_all()
    assert (await engine.ledger.get_player('carol')).elo_rating == 1016


async def test_rating_timeout_on_verify_trips_the_breaker(engine, roster, monkeypatch):
    game = await record(engine, 'alice', 'bob', verified=False)

    async def slow(game_record):
        raise QuotaExceededError('apply_game', timed_out=True)

    monkeypatch.setattr(engine.ratings, 'apply_game', slow)
    verified = await engine.games.verify_game(game.id, 'admin')

    assert verified.is_verified is True
    assert verified.rating_change is None
    assert engine.guard.is_open()


@pytest.mark.parametrize('flag, expected', [
    (True, True),
    ('false', False),
    ('TRUE', True),
])
async def test_record_parses_verified_flag(engine, roster, flag, expected):
    game = await engine.games.record_game(_payload(isVerified=flag))
    assert game.is_verified is expected


@pytest.mark.parametrize('flag', ['no', 1, ''])
async def test_record_rejects_non_boolean_verified_flag(engine, roster, flag):
    with pytest.raises(ValidationError):
        await engine.games.record_game(_payload(isVerified=flag))


async def test_edit_game_resolves_player_names(engine, roster):
    game = await record(engine, 'alice', 'bob', verified=False)

    edited = await engine.games.edit_game(game.id, {'player2Id': 'carol', 'result': 'draw', 'notes': 'rematch'})

    assert edited.player2_id == 'carol'
    assert edited.player2_name == 'Carol White'
    assert edited.result.value == 'draw'
    assert edited.notes == 'rematch'


async def test_edit_game_rejects_unknown_fields_and_same_players(engine, roster):
    game = await record(engine, 'alice', 'bob', verified=False)

    with pytest.raises(ValidationError):
        await engine.games.edit_game(game.id, {'recordedBy': 'someone'})
    with pytest.raises(ValidationError):
        await engine.games.edit_game(game.id, {'player2Id': 'alice'})
    with pytest.raises(ValidationError):
        await engine.games.edit_game(game.id, {})


async def test_verify_game_rates_it_once(engine, roster):
    await engine.ratings.initialize_all(1000)
    game = await record(engine, 'alice', 'bob', verified=False)

    verified = await engine.games.verify_game(game.id, 'admin')
    again = await engine.games.verify_game(game.id, 'admin')

    assert verified.is_verified is True
    assert verified.verified_by == 'admin'
    assert verified.rating_change == RatingDelta(16, -16)
    assert again.rating_change == RatingDelta(16, -16)
    assert (await engine.ledger.get_player('alice')).elo_rating == 1016


async def test_delete_reports_stale_ratings(engine, roster):
    rated = await record(engine, 'alice', 'bob')
    unrated = await record(engine, 'carol', 'dave', verified=False)

    first = await engine.games.delete_game(rated.id, admin_id='admin')
    second = await engine.games.delete_game(unrated.id)

    assert first['deleted'] == rated.id
    assert first['ratingsStale'] is True
    assert second['ratingsStale'] is False
    with pytest.raises(NotFoundError):
        await engine.ledger.get_game(rated.id)


async def test_list_games_filters_and_caches(engine, roster):
    await record(engine, 'alice', 'bob', game_date='2024-03-01')
    await record(engine, 'carol', 'dave', game_date='2024-03-05', verified=False)

    verified = await engine.games.list_games(GameFilter(is_verified=True))
    again = await engine.games.list_games(GameFilter(is_verified=True))

    assert [g['player1Id'] for g in verified.data] == ['alice']
    assert verified.from_cache is False
    assert again.from_cache is True


async def test_list_games_degrades_to_empty_when_quota_exhausted(engine, roster, monkeypatch):
    async def limited(game_filter=None):
        raise QuotaExceededError("Read requests per minute exceeded")

    monkeypatch.setattr(engine.ledger, 'list_games', limited)
    read = await engine.games.list_games()

    assert read.data == []
    assert read.quota_exceeded is True
    assert engine.guard.is_open()
