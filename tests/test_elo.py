"""Elo math: expected score, rounding and per-game deltas."""

import pytest

from chessclub.config import Config
from chessclub.data_models.games import GameResult
from chessclub.utils.elo import EloCalculator


def test_expected_score_is_symmetric():
    expected = EloCalculator.calculate_expected_score(1200, 1000)
    assert expected == pytest.approx(0.7597, abs=1e-4)
    assert expected + EloCalculator.calculate_expected_score(1000, 1200) == pytest.approx(1.0)


def test_equal_ratings_decisive_game():
    assert EloCalculator.calculate_match_elo_changes(1000, 1000, GameResult.PLAYER1) == (16, -16)
    assert EloCalculator.calculate_match_elo_changes(1000, 1000, GameResult.PLAYER2) == (-16, 16)


def test_equal_ratings_draw_moves_nothing():
    assert EloCalculator.calculate_match_elo_changes(1000, 1000, GameResult.DRAW) == (0, 0)


def test_upset_win():
    player1_change, player2_change = EloCalculator.calculate_match_elo_changes(1000, 1200, GameResult.PLAYER1)
    assert player1_change == 24
    assert player2_change == -24


def test_rounding_is_half_up(monkeypatch):
    monkeypatch.setattr(Config, 'K_FACTOR', 1)
    # 1 * (1 - 0.5) = 0.5 rounds up, 1 * (0 - 0.5) = -0.5 rounds up to zero
    assert EloCalculator.calculate_elo_change(1000, 1000, 1.0) == 1
    assert EloCalculator.calculate_elo_change(1000, 1000, 0.0) == 0


def test_actual_scores():
    assert EloCalculator.actual_scores(GameResult.PLAYER1) == (1.0, 0.0)
    assert EloCalculator.actual_scores(GameResult.PLAYER2) == (0.0, 1.0)
    assert EloCalculator.actual_scores(GameResult.DRAW) == (0.5, 0.5)


def test_format_elo_change():
    assert EloCalculator.format_elo_change(12) == "+12"
    assert EloCalculator.format_elo_change(-7) == "-7"
    assert EloCalculator.format_elo_change(0) == "±0"
