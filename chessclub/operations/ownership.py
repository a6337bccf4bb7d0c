"""
Player ownership claims.

A roster player can be claimed by an account. Claims move through an
explicit state machine:

    unclaimed --claim--> approved            (nobody holds the player)
    approved  --claim--> pending             (someone else holds it)
    pending   --respond(approve)--> approved (ownership transfers)
    pending   --respond(deny)-->    denied   (current holder keeps it)
    denied    --claim--> pending

Only the current holder may resolve a pending claim; the requester never can.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import select

from chessclub.database.models import OwnershipStatus, PlayerOwnership, utcnow
from chessclub.services.base import BaseService
from chessclub.utils.exceptions import OwnershipError, ValidationError
from chessclub.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class OwnershipRecord:
    player_id: str
    status: OwnershipStatus
    owner_id: Optional[str] = None
    pending_owner_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            'playerId': self.player_id,
            'status': self.status.value,
            'ownerId': self.owner_id,
            'pendingOwnerId': self.pending_owner_id,
        }


def _to_record(row: PlayerOwnership) -> OwnershipRecord:
    return OwnershipRecord(
        player_id=row.player_id,
        status=row.status,
        owner_id=row.owner_id,
        pending_owner_id=row.pending_owner_id,
    )


class OwnershipOperations(BaseService):
    """Claim and approval workflow for roster players."""

    def __init__(self, session_factory, ledger):
        super().__init__(session_factory)
        self.ledger = ledger

    async def _load(self, session, player_id: str) -> PlayerOwnership:
        result = await session.execute(
            select(PlayerOwnership).where(PlayerOwnership.player_id == player_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = PlayerOwnership(player_id=player_id, status=OwnershipStatus.UNCLAIMED)
            session.add(row)
        return row

    async def get_ownership(self, player_id: str) -> OwnershipRecord:
        await self.ledger.get_player(player_id)
        async with self.get_session() as session:
            result = await session.execute(
                select(PlayerOwnership).where(PlayerOwnership.player_id == player_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return OwnershipRecord(player_id=player_id, status=OwnershipStatus.UNCLAIMED)
            return _to_record(row)

    async def request_claim(self, player_id: str, requester_id: str) -> OwnershipRecord:
        """Claim a player. Granted immediately when nobody holds it, otherwise left pending."""
        if not requester_id:
            raise ValidationError("A requester is required to claim a player")
        player = await self.ledger.get_player(player_id)
        if player.is_system:
            raise ValidationError("System players cannot be claimed")

        async def claim():
            async with self.get_session() as session:
                row = await self._load(session, player_id)

                if row.status is OwnershipStatus.PENDING:
                    raise ValidationError(f"A claim for {player_id} is already pending")

                if row.owner_id is None:
                    row.owner_id = requester_id
                    row.status = OwnershipStatus.APPROVED
                    row.claimed_at = utcnow()
                    logger.info(f"Player {player_id} claimed by {requester_id}")
                elif row.owner_id == requester_id:
                    pass
                else:
                    row.pending_owner_id = requester_id
                    row.status = OwnershipStatus.PENDING
                    logger.info(f"Claim for player {player_id} by {requester_id} pending approval from {row.owner_id}")

                await session.flush()
                return _to_record(row)

        return await self.execute_with_retry(claim)

    async def respond(self, player_id: str, actor_id: str, approve: bool) -> OwnershipRecord:
        """Resolve a pending claim. Only the current holder may do this."""
        async def resolve():
            async with self.get_session() as session:
                result = await session.execute(
                    select(PlayerOwnership).where(PlayerOwnership.player_id == player_id)
                )
                row = result.scalar_one_or_none()
                if row is None or row.status is not OwnershipStatus.PENDING:
                    raise ValidationError(f"No pending claim for {player_id}")
                if actor_id != row.owner_id:
                    raise OwnershipError("Only the current owner can respond to this claim")

                if approve:
                    logger.info(f"Claim for {player_id} approved: {row.owner_id} -> {row.pending_owner_id}")
                    row.owner_id = row.pending_owner_id
                    row.status = OwnershipStatus.APPROVED
                    row.claimed_at = utcnow()
                else:
                    logger.info(f"Claim for {player_id} by {row.pending_owner_id} denied by {actor_id}")
                    row.status = OwnershipStatus.DENIED
                row.pending_owner_id = None

                await session.flush()
                return _to_record(row)

        return await self.execute_with_retry(resolve)
