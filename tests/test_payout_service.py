from datetime import datetime, timedelta, timezone

import pytest

from application.services.payout_service import (
    PayoutBatchService,
    iso_week_batch_id,
    payout_idempotency_key,
    select_referrals,
)
from application.services.commission_service import CommissionService
from core.settings import AffiliateSettings
from domain.affiliate.commission import BalanceDelta
from domain.affiliate.entity import (
    AffiliateReferral,
    AffiliateStatus,
    CommissionType,
    PayoutItemStatus,
    PayoutStatus,
    ReferralStatus,
)
from domain.affiliate.exceptions import PayoutRequestException, ReferralStateException
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentTimeoutError

BATCH = "BATCH-2026-W10"


@pytest.fixture
def config():
    return AffiliateSettings(minimum_payout=1000, payout_country="US")


@pytest.fixture
def service(make_uow, gateway, config):
    return PayoutBatchService(make_uow, gateway, config=config, currency="usd")


async def _scenario_affiliate(seed):
    """earnings 5000: 3000 approved across two referrals, 2000 still pending"""
    affiliate = await seed.affiliate("PAYME", total_earnings=5000, pending_balance=2000)
    start = datetime.now(timezone.utc) - timedelta(days=30)
    first = await seed.referral(affiliate.id, 1000, created_at=start)
    second = await seed.referral(affiliate.id, 2000, created_at=start + timedelta(days=1))
    await seed.referral(affiliate.id, 2000, status=ReferralStatus.PENDING, created_at=start + timedelta(days=2))
    await seed.payout_account(affiliate.id)
    return affiliate, [first.id, second.id]


async def _statuses(make_uow, ids):
    async with make_uow(readonly=True) as uow:
        return [(await uow.referrals.get_by_id(i)).status for i in ids]


def test_helpers():
    assert iso_week_batch_id(datetime(2026, 3, 4, tzinfo=timezone.utc)) == "BATCH-2026-W10"
    assert payout_idempotency_key("B1", "aff") == "payout-B1-aff"
    refs = [
        AffiliateReferral(id=str(i), affiliate_id="a", order_id=str(i), order_amount=1, commission_type=CommissionType.FIXED,
                          commission_rate=1, commission_amount=amount)
        for i, amount in enumerate([1000, 2000, 500])
    ]
    # stops at the first referral that would overshoot
    assert [r.id for r in select_referrals(refs, 2500)] == ["0"]
    assert [r.id for r in select_referrals(refs, 3500)] == ["0", "1", "2"]


@pytest.mark.asyncio
async def test_successful_payout_moves_approved_to_paid(service, seed, gateway, make_uow):
    affiliate, referral_ids = await _scenario_affiliate(seed)
    summary = await service.run_payout_batch(batch_id=BATCH, initiator="cron")

    assert (summary.total_payouts, summary.success_count, summary.paid_amount) == (1, 1, 3000)
    assert gateway.transfer_requests[0].idempotency_key == payout_idempotency_key(BATCH, affiliate.id)
    assert gateway.transfer_requests[0].amount == 3000
    refreshed = await seed.get_affiliate(affiliate.id)
    assert (refreshed.paid_balance, refreshed.pending_balance, refreshed.approved_balance) == (3000, 2000, 0)
    assert await _statuses(make_uow, referral_ids) == [ReferralStatus.PAID, ReferralStatus.PAID]

    rerun = await service.run_payout_batch(batch_id=BATCH)
    assert len(gateway.transfer_requests) == 1
    assert rerun.already_paid_count == 1
    assert (await seed.get_affiliate(affiliate.id)).paid_balance == 3000

    detail = await service.get_batch(BATCH)
    assert (detail.total_payouts, detail.paid_count, detail.total_amount) == (1, 1, 3000)
    assert sorted(detail.payouts[0].referral_ids) == sorted(referral_ids)

    async with make_uow(readonly=True) as uow:
        audit = await uow.audit_logs.list_for_entity("payout_batch", BATCH)
    assert len(audit) == 2
    assert audit[0].metadata["success_count"] == 1


@pytest.mark.asyncio
async def test_failed_transfer_leaves_referrals_approved(service, seed, gateway, make_uow):
    affiliate, referral_ids = await _scenario_affiliate(seed)
    gateway.transfer_error = PaymentProviderError("account closed", provider="stub")
    summary = await service.run_payout_batch(batch_id=BATCH)

    assert (summary.failure_count, summary.success_count) == (1, 0)
    assert summary.results[0].status == "failed"
    assert await _statuses(make_uow, referral_ids) == [ReferralStatus.APPROVED, ReferralStatus.APPROVED]
    assert (await seed.get_affiliate(affiliate.id)).approved_balance == 3000

    # retrying the batch reuses the recorded referral set and key
    gateway.transfer_error = None
    retry = await service.run_payout_batch(batch_id=BATCH)
    assert retry.success_count == 1
    assert [r.idempotency_key for r in gateway.transfer_requests] == [payout_idempotency_key(BATCH, affiliate.id)] * 2
    assert await _statuses(make_uow, referral_ids) == [ReferralStatus.PAID, ReferralStatus.PAID]


@pytest.mark.asyncio
async def test_timeout_keeps_payout_pending(service, seed, gateway, make_uow):
    affiliate, referral_ids = await _scenario_affiliate(seed)
    gateway.transfer_error = PaymentTimeoutError("slow", provider="stub")
    summary = await service.run_payout_batch(batch_id=BATCH)
    assert summary.results[0].status == "pending"
    assert summary.failure_count == 1
    detail = await service.get_batch(BATCH)
    assert detail.pending_count == 1
    assert await _statuses(make_uow, referral_ids) == [ReferralStatus.APPROVED, ReferralStatus.APPROVED]
    assert (await seed.get_affiliate(affiliate.id)).paid_balance == 0


@pytest.mark.asyncio
async def test_dry_run_writes_nothing(service, seed, gateway, make_uow):
    affiliate, _ = await _scenario_affiliate(seed)
    summary = await service.run_payout_batch(batch_id=BATCH, dry_run=True)
    assert summary.dry_run
    assert summary.results[0].status == "dry_run"
    assert (summary.total_payouts, summary.total_amount, summary.paid_amount) == (1, 3000, 0)
    assert gateway.transfer_requests == []
    assert (await service.get_batch(BATCH)).total_payouts == 0
    async with make_uow(readonly=True) as uow:
        assert await uow.audit_logs.list_for_entity("payout_batch", BATCH) == []


@pytest.mark.asyncio
async def test_ineligible_accounts_are_skipped(service, seed, gateway):
    no_account = await seed.affiliate("NOACCT", total_earnings=2000)
    await seed.referral(no_account.id, 2000)
    disabled = await seed.affiliate("DISABLED", total_earnings=2000)
    await seed.referral(disabled.id, 2000)
    await seed.payout_account(disabled.id, payouts_enabled=False)
    foreign = await seed.affiliate("FOREIGN", total_earnings=2000)
    await seed.referral(foreign.id, 2000)
    await seed.payout_account(foreign.id, country="DE", currency="eur")
    small = await seed.affiliate("SMALL", total_earnings=500)
    await seed.referral(small.id, 500)
    await seed.payout_account(small.id)

    summary = await service.run_payout_batch(batch_id=BATCH)
    reasons = {r.affiliate_id: r.reason for r in summary.results}
    assert reasons == {
        no_account.id: "payout account not connected",
        disabled.id: "payouts not enabled",
        foreign.id: "unsupported payout country or currency",
    }
    assert summary.skipped_count == 3
    assert summary.total_payouts == 0
    assert gateway.transfer_requests == []


@pytest.mark.asyncio
async def test_payout_request_caps_batch_amount(service, seed, gateway):
    affiliate, _ = await _scenario_affiliate(seed)
    with pytest.raises(PayoutRequestException):
        await service.request_payout(affiliate.id, 500)
    with pytest.raises(PayoutRequestException):
        await service.request_payout(affiliate.id, 4000)
    request = await service.request_payout(affiliate.id, 1500)
    with pytest.raises(PayoutRequestException):
        await service.request_payout(affiliate.id, 1000)

    summary = await service.run_payout_batch(batch_id=BATCH)
    item = summary.results[0]
    assert item.payout_id == request.id
    assert item.amount == 1000
    assert gateway.transfer_requests[0].amount == 1000
    assert (await seed.get_affiliate(affiliate.id)).approved_balance == 2000


@pytest.mark.asyncio
async def test_inactive_affiliate_cannot_request(service, seed):
    affiliate = await seed.affiliate("IDLE", status=AffiliateStatus.SUSPENDED, total_earnings=5000)
    with pytest.raises(PayoutRequestException):
        await service.request_payout(affiliate.id, 2000)


@pytest.mark.asyncio
async def test_timed_out_payout_holds_referrals_until_settled(service, seed, gateway, make_uow):
    affiliate, referral_ids = await _scenario_affiliate(seed)
    gateway.transfer_error = PaymentTimeoutError("slow", provider="stub")
    first = await service.run_payout_batch(batch_id=BATCH)
    assert first.results[0].status is PayoutItemStatus.PENDING
    gateway.transfer_error = None

    # the next week must not pay the referrals held by the unsettled transfer
    later = await service.run_payout_batch(batch_id="BATCH-2026-W11")
    assert len(gateway.transfer_requests) == 1
    assert later.results[0].status is PayoutItemStatus.SKIPPED
    assert later.total_payouts == 0

    payout = (await service.get_batch(BATCH)).payouts[0]
    async with make_uow() as uow:
        settled = await service.apply_transfer_status(uow, transfer_id="tr_late", payout_id=payout.id, failed=False)
    assert settled.status is PayoutStatus.PAID
    assert await _statuses(make_uow, referral_ids) == [ReferralStatus.PAID, ReferralStatus.PAID]
    refreshed = await seed.get_affiliate(affiliate.id)
    assert (refreshed.paid_balance, refreshed.approved_balance) == (3000, 0)

    async with make_uow() as uow:
        assert await service.apply_transfer_status(uow, transfer_id="tr_late", payout_id=payout.id, failed=False) is None
    assert (await seed.get_affiliate(affiliate.id)).paid_balance == 3000


@pytest.mark.asyncio
async def test_reversed_transfer_event_releases_referrals(service, seed, gateway, make_uow):
    affiliate, referral_ids = await _scenario_affiliate(seed)
    gateway.transfer_status = "pending"
    first = await service.run_payout_batch(batch_id=BATCH)
    assert first.results[0].transfer_reference == "tr_1"

    async with make_uow() as uow:
        failed = await service.apply_transfer_status(uow, transfer_id="tr_1", payout_id=None, failed=True, raw_status="reversed")
    assert failed.status is PayoutStatus.FAILED
    assert failed.failure_reason == "transfer reversed"
    assert await _statuses(make_uow, referral_ids) == [ReferralStatus.APPROVED, ReferralStatus.APPROVED]

    gateway.transfer_status = "paid"
    later = await service.run_payout_batch(batch_id="BATCH-2026-W11")
    assert later.results[0].status is PayoutItemStatus.PAID
    assert (await seed.get_affiliate(affiliate.id)).paid_balance == 3000


@pytest.mark.asyncio
async def test_reversal_during_transfer_is_refused(service, seed, gateway, make_uow):
    affiliate, referral_ids = await _scenario_affiliate(seed)
    commissions = CommissionService(make_uow)
    refused = []
    create_transfer = gateway.create_transfer

    async def reversing_transfer(req):
        with pytest.raises(ReferralStateException) as exc_info:
            await commissions.reverse_commission(referral_ids[0], "chargeback")
        refused.append(exc_info.value.details["status"])
        return await create_transfer(req)

    gateway.create_transfer = reversing_transfer
    summary = await service.run_payout_batch(batch_id=BATCH)
    assert refused == ["in_payout"]
    assert summary.results[0].status is PayoutItemStatus.PAID
    assert await _statuses(make_uow, referral_ids) == [ReferralStatus.PAID, ReferralStatus.PAID]


@pytest.mark.asyncio
async def test_paid_balance_follows_referrals_actually_paid(service, seed, gateway, make_uow):
    affiliate, referral_ids = await _scenario_affiliate(seed)
    create_transfer = gateway.create_transfer

    async def transfer_with_concurrent_reversal(req):
        # a reversal that committed while the transfer was in flight
        async with make_uow() as uow:
            referral = await uow.referrals.get_by_id(referral_ids[0])
            referral.status = ReferralStatus.REVERSED
            assert await uow.referrals.update(referral, expected=ReferralStatus.APPROVED)
            await uow.affiliates.apply_balance_delta(
                affiliate.id, BalanceDelta.for_reversal(referral.commission_amount, ReferralStatus.APPROVED)
            )
        return await create_transfer(req)

    gateway.create_transfer = transfer_with_concurrent_reversal
    await service.run_payout_batch(batch_id=BATCH)

    refreshed = await seed.get_affiliate(affiliate.id)
    assert (refreshed.total_earnings, refreshed.pending_balance, refreshed.paid_balance) == (4000, 2000, 2000)
    assert refreshed.total_earnings >= refreshed.pending_balance + refreshed.paid_balance
    assert await _statuses(make_uow, referral_ids) == [ReferralStatus.REVERSED, ReferralStatus.PAID]
