import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from application.dtos.affiliates import RedeemInviteCommand
from application.services.invite_service import InviteService
from domain.affiliate.exceptions import InviteIdentityMismatchException
from domain.affiliate.redemption import NO_LONGER_AVAILABLE, Exhausted, Expired, NotFound, Redeemed


@pytest.fixture
def service(make_uow):
    return InviteService(make_uow)


async def _usages(make_uow, invite_id):
    async with make_uow(readonly=True) as uow:
        return await uow.invites.list_usages(invite_id)


@pytest.mark.asyncio
async def test_single_use_invite_two_redeemers(service, make_uow):
    invite = await service.create_invite(max_uses=1)
    first, second = await asyncio.gather(
        service.redeem_invite(RedeemInviteCommand(invite_id=invite.id, affiliate_id="aff-a")),
        service.redeem_invite(RedeemInviteCommand(invite_id=invite.id, affiliate_id="aff-b")),
    )
    outcomes = sorted([first, second], key=lambda o: o.success, reverse=True)
    assert isinstance(outcomes[0], Redeemed)
    assert isinstance(outcomes[1], Exhausted)
    assert outcomes[1].error == NO_LONGER_AVAILABLE
    current = await service.get_invite_by_code(invite.invite_code)
    assert current.times_used == 1
    assert len(await _usages(make_uow, invite.id)) == 1


@pytest.mark.asyncio
async def test_ten_concurrent_redemptions_one_winner(service):
    invite = await service.create_invite(max_uses=1)
    results = await asyncio.gather(
        *[
            service.redeem(RedeemInviteCommand(invite_id=invite.id, affiliate_id=f"aff-{i}"))
            for i in range(10)
        ]
    )
    assert sum(1 for r in results if r.success) == 1
    failures = [r for r in results if not r.success]
    assert len(failures) == 9
    assert all(r.error == NO_LONGER_AVAILABLE for r in failures)


@pytest.mark.asyncio
async def test_multi_use_and_unlimited(service, make_uow):
    limited = await service.create_invite(max_uses=3)
    for i in range(3):
        assert (await service.redeem_invite(RedeemInviteCommand(invite_id=limited.id, affiliate_id=f"a{i}"))).success
    assert isinstance(await service.redeem_invite(RedeemInviteCommand(invite_id=limited.id, affiliate_id="a4")), Exhausted)

    unlimited = await service.create_invite(max_uses=None)
    for i in range(5):
        outcome = await service.redeem_invite(RedeemInviteCommand(invite_id=unlimited.id, affiliate_id=f"u{i}"))
        assert outcome.success
    assert outcome.invite.times_used == 5
    usages = await _usages(make_uow, unlimited.id)
    assert [u.affiliate_id for u in usages] == [f"u{i}" for i in range(5)]


@pytest.mark.asyncio
async def test_expired_and_missing(service):
    expired = await service.create_invite(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    outcome = await service.redeem_invite(RedeemInviteCommand(invite_id=expired.id, affiliate_id="a"))
    assert isinstance(outcome, Expired)
    assert outcome.error == NO_LONGER_AVAILABLE

    missing = await service.redeem(RedeemInviteCommand(invite_id="nope", affiliate_id="a"))
    assert missing.outcome == NotFound.outcome
    assert not missing.success


@pytest.mark.asyncio
async def test_identity_mismatch_does_not_consume(service):
    invite = await service.create_invite(target_email="Person@Example.com", invite_code="vip01")
    assert invite.invite_code == "VIP01"
    with pytest.raises(InviteIdentityMismatchException):
        await service.redeem_invite(RedeemInviteCommand(invite_id=invite.id, affiliate_id="a", email="other@example.com"))
    assert (await service.get_invite_by_code("vip01")).times_used == 0

    outcome = await service.redeem_invite(
        RedeemInviteCommand(invite_id=invite.id, affiliate_id="a", email=" person@EXAMPLE.com ")
    )
    assert outcome.success
