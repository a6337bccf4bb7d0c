from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Boolean, Text, Float,
    Enum as SQLEnum, CheckConstraint, Index
)
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
from enum import Enum

from chessclub.data_models.games import GameResult, GameType

Base = declarative_base()

def utcnow() -> datetime:
    """Naive UTC timestamp, matching how SQLite stores DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)

class OwnershipStatus(Enum):
    UNCLAIMED = "unclaimed"
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"

class Player(Base):
    """Roster member. Rating columns are derived and rewritten by full replays."""
    __tablename__ = 'players'
    
    id = Column(String(100), primary_key=True)
    name = Column(String(200), nullable=False)
    grade = Column(String(50), nullable=False, default='Unknown')
    is_system = Column(Boolean, default=False, nullable=False)
    
    # Derived rating state (null until initialized or replayed)
    elo_rating = Column(Integer, nullable=True)
    games_counted = Column(Integer, default=0, nullable=False)
    
    # Metadata
    registered_at = Column(DateTime, default=utcnow)
    last_active = Column(DateTime, default=utcnow)
    
    def __repr__(self):
        return f"<Player(id='{self.id}', name='{self.name}', elo={self.elo_rating})>"

class Game(Base):
    """Ledger row. ``ledger_seq`` is the insertion order used as the last replay tie-break."""
    __tablename__ = 'games'
    
    ledger_seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), nullable=False, unique=True, index=True)
    
    player1_id = Column(String(100), nullable=False, index=True)
    player1_name = Column(String(200), nullable=False)
    player2_id = Column(String(100), nullable=False, index=True)
    player2_name = Column(String(200), nullable=False)
    
    result = Column(SQLEnum(GameResult, values_callable=lambda e: [m.value for m in e]), nullable=False)
    game_date = Column(Date, nullable=False, index=True)
    game_type = Column(SQLEnum(GameType, values_callable=lambda e: [m.value for m in e]), nullable=False)
    
    # Rating changes are null until the rating engine processes the game
    player1_rating_change = Column(Integer, nullable=True)
    player2_rating_change = Column(Integer, nullable=True)
    
    is_verified = Column(Boolean, default=False, nullable=False)
    verified_by = Column(String(100), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    
    opening = Column(String(200), nullable=True)
    endgame = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    
    # Audit
    recorded_by = Column(String(100), nullable=False)
    recorded_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    
    __table_args__ = (
        CheckConstraint('player1_id <> player2_id', name='ck_games_distinct_players'),
        Index('ix_games_replay_order', 'game_date', 'recorded_at', 'ledger_seq'),
    )
    
    def __repr__(self):
        return f"<Game(id='{self.id}', {self.player1_id} vs {self.player2_id}, result={self.result})>"

class TournamentResult(Base):
    """Auxiliary per-player table repointed on merges."""
    __tablename__ = 'tournament_results'
    
    id = Column(Integer, primary_key=True)
    tournament_id = Column(String(100), nullable=False, index=True)
    player_id = Column(String(100), nullable=False, index=True)
    player_name = Column(String(200), nullable=False)
    points = Column(Float, default=0.0)
    created_at = Column(DateTime, default=utcnow)

class Attendance(Base):
    """Auxiliary per-player table repointed on merges."""
    __tablename__ = 'attendance'
    
    id = Column(Integer, primary_key=True)
    meet_id = Column(String(100), nullable=False, index=True)
    player_id = Column(String(100), nullable=False, index=True)
    player_name = Column(String(200), nullable=False)
    created_at = Column(DateTime, default=utcnow)

class PlayerOwnership(Base):
    """Claim record for a roster player."""
    __tablename__ = 'player_ownership'
    
    id = Column(Integer, primary_key=True)
    player_id = Column(String(100), nullable=False, unique=True, index=True)
    owner_id = Column(String(100), nullable=True)
    pending_owner_id = Column(String(100), nullable=True)
    status = Column(SQLEnum(OwnershipStatus), default=OwnershipStatus.UNCLAIMED, nullable=False)
    claimed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    
    def __repr__(self):
        return f"<PlayerOwnership(player='{self.player_id}', owner='{self.owner_id}', status={self.status})>"

class AdminAuditLog(Base):
    """Audit trail for administrative batch actions"""
    __tablename__ = 'admin_audit_log'
    
    id = Column(Integer, primary_key=True)
    admin_id = Column(String(100), nullable=False)
    action_type = Column(String(50), nullable=False, index=True)
    target_type = Column(String(50), nullable=True)
    target_id = Column(String(100), nullable=True)
    details = Column(Text, nullable=True)  # JSON
    created_at = Column(DateTime, default=utcnow)
