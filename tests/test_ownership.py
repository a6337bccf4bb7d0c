"""Ownership claim state machine."""

import pytest

from chessclub.constants import PlayerConstants
from chessclub.database.models import OwnershipStatus
from chessclub.utils.exceptions import NotFoundError, OwnershipError, ValidationError


async def test_unclaimed_by_default(engine, roster):
    record = await engine.ownership.get_ownership('alice')
    assert record.status is OwnershipStatus.UNCLAIMED
    assert record.owner_id is None


async def test_first_claim_is_approved_immediately(engine, roster):
    record = await engine.ownership.request_claim('alice', 'user1')

    assert record.status is OwnershipStatus.APPROVED
    assert record.owner_id == 'user1'
    assert (await engine.ownership.get_ownership('alice')).to_payload() == {
        'playerId': 'alice', 'status': 'approved', 'ownerId': 'user1', 'pendingOwnerId': None
    }


async def test_repeat_claim_by_owner_changes_nothing(engine, roster):
    await engine.ownership.request_claim('alice', 'user1')
    record = await engine.ownership.request_claim('alice', 'user1')

    assert record.status is OwnershipStatus.APPROVED
    assert record.pending_owner_id is None


async def test_competing_claim_waits_for_owner(engine, roster):
    await engine.ownership.request_claim('alice', 'user1')
    record = await engine.ownership.request_claim('alice', 'user2')

    assert record.status is OwnershipStatus.PENDING
    assert record.owner_id == 'user1'
    assert record.pending_owner_id == 'user2'

    with pytest.raises(ValidationError):
        await engine.ownership.request_claim('alice', 'user3')


async def test_owner_approval_transfers_ownership(engine, roster):
    await engine.ownership.request_claim('alice', 'user1')
    await engine.ownership.request_claim('alice', 'user2')

    record = await engine.ownership.respond('alice', 'user1', approve=True)

    assert record.status is OwnershipStatus.APPROVED
    assert record.owner_id == 'user2'
    assert record.pending_owner_id is None


async def test_owner_denial_keeps_ownership_and_allows_new_claims(engine, roster):
    await engine.ownership.request_claim('alice', 'user1')
    await engine.ownership.request_claim('alice', 'user2')

    denied = await engine.ownership.respond('alice', 'user1', approve=False)
    assert denied.status is OwnershipStatus.DENIED
    assert denied.owner_id == 'user1'

    again = await engine.ownership.request_claim('alice', 'user3')
    assert again.status is OwnershipStatus.PENDING
    assert again.pending_owner_id == 'user3'


async def test_only_owner_may_respond(engine, roster):
    await engine.ownership.request_claim('alice', 'user1')
    await engine.ownership.request_claim('alice', 'user2')

    with pytest.raises(OwnershipError):
        await engine.ownership.respond('alice', 'user2', approve=True)
    assert (await engine.ownership.get_ownership('alice')).status is OwnershipStatus.PENDING


async def test_respond_without_pending_claim(engine, roster):
    with pytest.raises(ValidationError):
        await engine.ownership.respond('alice', 'user1', approve=True)


async def test_invalid_claims(engine, roster):
    with pytest.raises(ValidationError):
        await engine.ownership.request_claim(PlayerConstants.UNKNOWN_OPPONENT_ID, 'user1')
    with pytest.raises(ValidationError):
        await engine.ownership.request_claim('alice', '')
    with pytest.raises(NotFoundError):
        await engine.ownership.request_claim('nobody', 'user1')
