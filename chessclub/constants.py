"""
Engine-wide constants for the chess club rating and ladder engine.

Identifiers shared between the ledger, the aggregators and the cache layer
live here so that every module agrees on them.
"""

class PlayerConstants:
    """Constants for roster and placeholder players."""
    
    # Synthetic opponent used when the real opponent was not recorded
    UNKNOWN_OPPONENT_ID = "unknown_opponent"
    UNKNOWN_OPPONENT_NAME = "Unknown Opponent"
    UNKNOWN_GRADE = "Unknown"
    
    SYSTEM_PLAYER_IDS = frozenset({UNKNOWN_OPPONENT_ID})

class LadderConstants:
    """Point values for the ladder."""
    
    PARTICIPATION_POINTS = 1.0
    WIN_BONUS = 1.0
    DRAW_BONUS = 0.5

class CacheTags:
    """Tags used for tag-scoped cache invalidation."""
    
    RANKINGS = "rankings"
    RATINGS = "ratings"
    GAMES = "games"
    MEMBERS = "members"
    LADDER = "ladder"
    
    # Everything a change to the ledger can make stale
    LEDGER_WRITE = (GAMES, RANKINGS, RATINGS, LADDER)
    # Everything a roster change can make stale
    ROSTER_WRITE = (MEMBERS, RANKINGS, RATINGS, LADDER)

class CacheKeys:
    """Cache key builders."""
    
    RANKINGS = "rankings:all"
    RATINGS = "ratings:all"
    MEMBERS = "members:all"
    
    @staticmethod
    def standings(date_from, date_to, game_type, active_only) -> str:
        return f"standings:{date_from or '*'}:{date_to or '*'}:{game_type or 'all'}:{int(bool(active_only))}"
    
    @staticmethod
    def ladder(date, game_type) -> str:
        return f"ladder:{date}:{game_type or 'all'}"
    
    @staticmethod
    def games(filter_key: str) -> str:
        return f"games:filtered:{filter_key}" if filter_key else "games:all"

class ReconciliationConstants:
    """Limits for batch identity reconciliation."""
    
    # Preview payloads only carry the first N proposals
    PREVIEW_LIMIT = 100
