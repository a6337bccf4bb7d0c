"""Rating replay: ordering, exclusions, idempotence and persistence."""

from datetime import datetime

from chessclub.constants import PlayerConstants
from chessclub.data_models.games import GameFilter, GameResult, RatingDelta
from chessclub.operations.rating_engine import RatingEngine, replay_order_key

from conftest import make_game, make_roster, record


def _engine():
    return RatingEngine(ledger=None, default_rating=1000)


def test_single_verified_game():
    result = _engine().replay([make_game('g1', 1, 'alice', 'bob')], make_roster('alice', 'bob'))

    assert result.ratings() == {'alice': 1016, 'bob': 984}
    assert result.changes['g1'] == RatingDelta(16, -16)
    assert result.report.processed == 1
    assert result.report.errors == 0
    assert result.states['alice'].games_counted == 1


def test_unverified_games_are_ignored():
    games = [make_game('g1', 1, 'alice', 'bob', verified=False)]
    result = _engine().replay(games, make_roster('alice', 'bob'))

    assert result.ratings() == {'alice': 1000, 'bob': 1000}
    assert result.changes['g1'] is None
    assert result.report.processed == 0
    assert result.report.skipped == 0


def test_games_against_system_player_are_skipped_not_errors():
    unknown = PlayerConstants.UNKNOWN_OPPONENT_ID
    games = [make_game('g1', 1, 'alice', unknown)]
    result = _engine().replay(games, make_roster('alice', system=(unknown,)))

    assert result.ratings() == {'alice': 1000}
    assert unknown not in result.states
    assert result.report.skipped == 1
    assert result.report.errors == 0


def test_missing_player_rejects_only_that_game():
    games = [
        make_game('g1', 1, 'alice', 'ghost'),
        make_game('g2', 2, 'alice', 'bob', recorded_at=datetime(2024, 3, 1, 13, 0)),
    ]
    result = _engine().replay(games, make_roster('alice', 'bob'))

    assert result.report.errors == 1
    assert result.report.processed == 1
    assert result.changes['g1'] is None
    assert result.ratings() == {'alice': 1016, 'bob': 984}


def test_replay_order_is_date_then_recorded_at_then_sequence():
    early = make_game('late-seq', 9, 'alice', 'bob', game_date='2024-01-01')
    same_day_first = make_game('a', 3, 'alice', 'bob', game_date='2024-02-01',
                               recorded_at=datetime(2024, 2, 1, 9, 0))
    same_day_tie_low = make_game('b', 4, 'alice', 'bob', game_date='2024-02-01',
                                 recorded_at=datetime(2024, 2, 1, 10, 0))
    same_day_tie_high = make_game('c', 5, 'alice', 'bob', game_date='2024-02-01',
                                  recorded_at=datetime(2024, 2, 1, 10, 0))

    ordered = sorted([same_day_tie_high, same_day_first, early, same_day_tie_low], key=replay_order_key)
    assert [g.id for g in ordered] == ['late-seq', 'a', 'b', 'c']


def test_replay_is_independent_of_input_order():
    stamp = datetime(2024, 3, 1, 12, 0)
    games = [
        make_game('g1', 1, 'alice', 'bob', recorded_at=stamp),
        make_game('g2', 2, 'bob', 'carol', result='draw', recorded_at=stamp),
        make_game('g3', 3, 'carol', 'alice', result='player1', recorded_at=stamp),
        make_game('g4', 4, 'alice', 'bob', result='player2', game_date='2024-03-02'),
    ]
    roster = make_roster('alice', 'bob', 'carol')

    forward = _engine().replay(games, roster)
    backward = _engine().replay(list(reversed(games)), roster)

    assert forward.states == backward.states
    assert forward.changes == backward.changes


def test_compute_for_game_uses_default_for_unseen_players():
    delta = _engine().compute_for_game(make_game('g1', 1, 'new1', 'new2', result='draw'), {})
    assert delta == RatingDelta(0, 0)


async def test_initialize_all_is_idempotent(engine, roster):
    assert await engine.ratings.initialize_all(1000) == 4
    assert await engine.ratings.initialize_all(1000) == 0

    players = await engine.ledger.list_roster(include_system=False)
    assert {p.elo_rating for p in players} == {1000}

    system = await engine.ledger.get_player(PlayerConstants.UNKNOWN_OPPONENT_ID)
    assert system.elo_rating is None


async def test_recalc_all_is_idempotent(engine, roster):
    await record(engine, 'alice', 'bob', 'player1', '2024-03-01')
    await record(engine, 'bob', 'carol', 'draw', '2024-03-02')
    await record(engine, 'carol', 'alice', 'player1', '2024-03-03')

    first = await engine.ratings.recalc_all()
    snapshot = {p.id: (p.elo_rating, p.games_counted) for p in await engine.ledger.list_roster()}
    second = await engine.ratings.recalc_all()
    again = {p.id: (p.elo_rating, p.games_counted) for p in await engine.ledger.list_roster()}

    assert first.to_payload() == second.to_payload() == {'processed': 3, 'errors': 0}
    assert snapshot == again


async def test_recalc_all_rewrites_changes_of_unrated_games(engine, roster):
    game = await record(engine, 'alice', 'bob', 'player1')
    assert game.rating_change == RatingDelta(16, -16)

    await engine.ledger.update_game(game.id, is_verified=False)
    report = await engine.ratings.recalc_all()

    assert report.processed == 0
    refreshed = await engine.ledger.get_game(game.id)
    assert refreshed.rating_change is None
    alice = await engine.ledger.get_player('alice')
    assert alice.elo_rating == 1000


async def test_recalc_corrects_duplicated_incremental_update(engine, roster):
    game = await record(engine, 'alice', 'bob', 'player1')
    # Simulate an incremental update applied twice
    await engine.ratings.apply_game(game)
    assert (await engine.ledger.get_player('alice')).elo_rating != 1016

    await engine.ratings.recalc_all()
    assert (await engine.ledger.get_player('alice')).elo_rating == 1016
    assert (await engine.ledger.get_player('bob')).elo_rating == 984


async def test_recalc_invalidates_rating_views(engine, roster):
    await engine.cache.set('rankings:all', ['stale'], 3600, ['rankings'])
    await engine.ratings.recalc_all()
    await engine.post_write.drain()

    assert await engine.cache.lookup('rankings:all') is None


async def test_recalc_only_counts_verified_games(engine, roster):
    await record(engine, 'alice', 'bob', 'player1', verified=True)
    await record(engine, 'alice', 'carol', 'player2', verified=False)

    report = await engine.ratings.recalc_all()
    games = await engine.ledger.list_games(GameFilter(is_verified=False))

    assert report.processed == 1
    assert len(games) == 1
    assert games[0].result is GameResult.PLAYER2
    assert games[0].rating_change is None
