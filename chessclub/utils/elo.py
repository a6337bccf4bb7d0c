"""
Standard Elo arithmetic for two-player club games.

One K-factor (``Config.K_FACTOR``) applies to everyone. Deltas are rounded
half up, so each side of a game is rounded on its own and the two deltas
need not sum to zero.
"""

import math
from typing import Tuple

from chessclub.config import Config
from chessclub.data_models.games import GameResult

_RESULT_SCORES = {
    GameResult.PLAYER1: (1.0, 0.0),
    GameResult.PLAYER2: (0.0, 1.0),
    GameResult.DRAW: (0.5, 0.5),
}


class EloCalculator:

    @staticmethod
    def calculate_expected_score(rating_a: int, rating_b: int) -> float:
        """Probability-like score in [0, 1] that ``rating_a`` is expected to take off ``rating_b``."""
        return 1 / (1 + 10 ** ((rating_b - rating_a) / 400))

    @staticmethod
    def get_k_factor() -> int:
        return Config.K_FACTOR

    @staticmethod
    def actual_scores(result: GameResult) -> Tuple[float, float]:
        try:
            return _RESULT_SCORES[result]
        except KeyError:
            raise ValueError(f"Unknown game result: {result!r}") from None

    @staticmethod
    def calculate_elo_change(current_rating: int, opponent_rating: int, actual_score: float) -> int:
        """K * (score - expected), rounded half up: 7.5 -> 8, -7.5 -> -7."""
        expected = EloCalculator.calculate_expected_score(current_rating, opponent_rating)
        return math.floor(EloCalculator.get_k_factor() * (actual_score - expected) + 0.5)

    @staticmethod
    def calculate_match_elo_changes(player1_rating: int, player2_rating: int,
                                    result: GameResult) -> Tuple[int, int]:
        """Deltas for (player1, player2), both computed from the pre-game ratings."""
        score1, score2 = EloCalculator.actual_scores(result)
        return (
            EloCalculator.calculate_elo_change(player1_rating, player2_rating, score1),
            EloCalculator.calculate_elo_change(player2_rating, player1_rating, score2),
        )

    @staticmethod
    def calculate_win_probability(rating_a: int, rating_b: int) -> float:
        return EloCalculator.calculate_expected_score(rating_a, rating_b) * 100

    @staticmethod
    def format_elo_change(elo_change: int) -> str:
        if elo_change == 0:
            return "±0"
        return f"{elo_change:+d}"
