from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from application.services.commission_service import CommissionService
from core.settings import AffiliateSettings
from domain.affiliate.commission import BalanceDelta, compute_commission, resolve_rate
from domain.affiliate.entity import Affiliate, AffiliateStatus, CommissionType, ReferralStatus
from domain.affiliate.exceptions import ReferralStateException
from domain.common.exceptions import DomainValidationException
from domain.order.entity import OrderStatus
from infrastructure.models import AffiliateModel
from infrastructure.repositories.affiliate_repository import SQLAlchemyReferralRepository


@pytest.fixture
def config():
    return AffiliateSettings(default_commission_type="PERCENT", default_commission_value=10, approval_days=14)


@pytest.fixture
def service(make_uow, config):
    return CommissionService(make_uow, config=config)


def test_compute_commission_rounding():
    assert compute_commission(10000, CommissionType.PERCENT, 10) == 1000
    assert compute_commission(1005, CommissionType.PERCENT, 10) == 101  # 100.5 rounds half up
    assert compute_commission(500, CommissionType.FIXED, 700) == 500
    with pytest.raises(DomainValidationException):
        compute_commission(-1, CommissionType.PERCENT, 10)


def test_rate_precedence():
    plain = Affiliate(id="a", affiliate_code="A")
    custom = Affiliate(id="b", affiliate_code="B", commission_type=CommissionType.FIXED, commission_value=250)
    assert resolve_rate(plain, default_type="PERCENT", default_value=10) == (CommissionType.PERCENT, 10)
    assert resolve_rate(custom, default_type="PERCENT", default_value=10) == (CommissionType.FIXED, 250)
    assert resolve_rate(
        custom, default_type="PERCENT", default_value=10, friends_family=True, ff_type="PERCENT", ff_value=5
    ) == (CommissionType.PERCENT, 5)


def test_balance_deltas_keep_invariant():
    affiliate = Affiliate(id="a", affiliate_code="A")
    BalanceDelta.for_creation(1000).apply_to(affiliate)
    BalanceDelta.for_creation(500).apply_to(affiliate)
    BalanceDelta.for_approval(1000).apply_to(affiliate)
    assert affiliate.approved_balance == 1000
    BalanceDelta.for_payout(1000).apply_to(affiliate)
    BalanceDelta.for_reversal(500, ReferralStatus.PENDING).apply_to(affiliate)
    assert (affiliate.total_earnings, affiliate.pending_balance, affiliate.paid_balance) == (1000, 0, 1000)
    with pytest.raises(DomainValidationException):
        BalanceDelta.for_reversal(100, ReferralStatus.PAID)


@pytest.mark.asyncio
async def test_record_commission_is_idempotent(service, seed):
    affiliate = await seed.affiliate("CAROL")
    order = await seed.order(20000)
    first = await service.record_commission(order.id, affiliate_id=affiliate.id)
    second = await service.record_commission(order.id, affiliate_id=affiliate.id)
    assert first.created and not second.created
    assert first.referral.id == second.referral.id
    assert first.referral.commission_amount == 2000

    refreshed = await seed.get_affiliate(affiliate.id)
    assert (refreshed.total_earnings, refreshed.pending_balance, refreshed.paid_balance) == (2000, 2000, 0)
    assert (refreshed.total_referrals, refreshed.total_sales) == (1, 20000)


@pytest.mark.asyncio
async def test_rate_change_does_not_touch_existing_commission(service, seed, make_uow):
    affiliate = await seed.affiliate("DAVE")
    order = await seed.order(10000)
    result = await service.record_commission(order.id, affiliate_id=affiliate.id)

    async with make_uow() as uow:
        await uow.session.execute(
            update(AffiliateModel).where(AffiliateModel.id == affiliate.id).values(commission_type="PERCENT", commission_value=50)
        )

    async with make_uow(readonly=True) as uow:
        stored = await uow.referrals.get_by_id(result.referral.id)
    assert (stored.commission_rate, stored.commission_amount) == (10, 1000)

    later = await seed.order(10000)
    assert (await service.record_commission(later.id, affiliate_id=affiliate.id)).referral.commission_amount == 5000


@pytest.mark.asyncio
async def test_unpaid_or_unattributed_orders(service, seed):
    unpaid = await seed.order(1000, status=OrderStatus.PENDING, payment_reference=None)
    with pytest.raises(DomainValidationException):
        await service.record_commission(unpaid.id)

    paid = await seed.order(1000)
    assert await service.record_commission(paid.id) is None

    suspended = await seed.affiliate("EVE", status=AffiliateStatus.SUSPENDED)
    assert await service.record_commission(paid.id, affiliate_id=suspended.id) is None


@pytest.mark.asyncio
async def test_friends_family_code_on_order(service, seed):
    await seed.affiliate("FRANK")
    order = await seed.order(10000, affiliate_code="ffFRANK")
    result = await service.record_commission(order.id)
    assert result.referral.commission_rate == 5
    assert result.referral.commission_amount == 500


@pytest.mark.asyncio
async def test_approve_and_reverse(service, seed):
    affiliate = await seed.affiliate("GRACE")
    order = await seed.order(10000)
    referral = (await service.record_commission(order.id, affiliate_id=affiliate.id)).referral

    approved = await service.approve_commission(referral.id, actor="admin")
    assert approved.status == "approved"
    with pytest.raises(ReferralStateException):
        await service.approve_commission(referral.id)
    balance = await service.get_balance(affiliate.id)
    assert (balance.pending_balance, balance.approved_balance) == (0, 1000)
    assert [r.id for r in await service.list_approved_unpaid(affiliate.id)] == [referral.id]

    reversed_ = await service.reverse_commission(referral.id, "chargeback", actor="admin")
    assert reversed_.status == "reversed"
    balance = await service.get_balance(affiliate.id)
    assert (balance.total_earnings, balance.approved_balance) == (0, 0)
    refreshed = await seed.get_affiliate(affiliate.id)
    assert (refreshed.total_referrals, refreshed.total_sales) == (1, 10000)


@pytest.mark.asyncio
async def test_auto_approve_after_window(service, seed):
    affiliate = await seed.affiliate("HEIDI", total_earnings=300, pending_balance=300)
    now = datetime.now(timezone.utc)
    old = await seed.referral(affiliate.id, 100, status=ReferralStatus.PENDING, created_at=now - timedelta(days=20))
    recent = await seed.referral(affiliate.id, 200, status=ReferralStatus.PENDING, created_at=now - timedelta(days=2))

    assert await service.auto_approve_commissions(now=now) == 1
    approved = {r.id for r in await service.list_approved_unpaid(affiliate.id)}
    assert approved == {old.id}
    assert recent.id not in approved
    balance = await service.get_balance(affiliate.id)
    assert (balance.pending_balance, balance.approved_balance) == (200, 100)


@pytest.mark.asyncio
async def test_auto_approve_skips_rows_approved_concurrently(service, seed, monkeypatch):
    affiliate = await seed.affiliate("IVAN", total_earnings=1000, pending_balance=1000)
    now = datetime.now(timezone.utc)
    referral = await seed.referral(affiliate.id, 1000, status=ReferralStatus.PENDING, created_at=now - timedelta(days=20))
    snapshot = [referral]

    async def stale_listing(self, cutoff):
        return snapshot

    # the scan read the row before a manual approval committed
    await service.approve_commission(referral.id, actor="admin")
    monkeypatch.setattr(SQLAlchemyReferralRepository, "list_pending_created_before", stale_listing)
    assert await service.auto_approve_commissions(now=now) == 0

    balance = await service.get_balance(affiliate.id)
    assert (balance.pending_balance, balance.approved_balance) == (0, 1000)


@pytest.mark.asyncio
async def test_conditional_update_refuses_stale_status(seed, make_uow):
    affiliate = await seed.affiliate("JUDY", total_earnings=1000)
    referral = await seed.referral(affiliate.id, 1000, status=ReferralStatus.APPROVED)
    referral.status = ReferralStatus.REVERSED
    async with make_uow() as uow:
        assert await uow.referrals.update(referral, expected=ReferralStatus.PENDING) is False
        assert await uow.referrals.update(referral, expected=ReferralStatus.APPROVED) is True
    async with make_uow(readonly=True) as uow:
        assert (await uow.referrals.get_by_id(referral.id)).status is ReferralStatus.REVERSED
