import asyncio
from datetime import datetime, timezone

import pytest

from application.dtos.refunds import CreateRefundCommand
from application.services.commission_service import CommissionService
from application.services.refund_service import RefundService, refund_idempotency_key
from core.settings import AffiliateSettings
from domain.affiliate.entity import AffiliatePayout, AffiliateReferral, CommissionType, PayoutStatus, ReferralStatus
from domain.common.exceptions import DomainValidationException
from domain.order.entity import OrderStatus
from domain.order.exceptions import RefundError, RefundErrorCode
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentTimeoutError


@pytest.fixture
def service(make_uow, gateway, notifier):
    commissions = CommissionService(make_uow, config=AffiliateSettings())
    return RefundService(make_uow, gateway, notifier=notifier, commissions=commissions)


async def _refund_rows(make_uow, order_id):
    async with make_uow(readonly=True) as uow:
        return await uow.refunds.list_by_order_id(order_id)


@pytest.mark.asyncio
async def test_partial_refund_updates_payment_status(service, seed, gateway, notifier, make_uow):
    order = await seed.order(10000)
    outcome = await service.create_processor_refund(
        CreateRefundCommand(order_id=order.id, amount=3000, reason_code="requested_by_customer", actor="admin")
    )
    assert outcome.refund.status == "processed"
    assert outcome.payment_status == "partially_refunded"
    assert outcome.refundable_amount == 7000
    assert (await seed.get_order(order.id)).payment_status.value == "partially_refunded"
    assert gateway.refund_requests[0].payment_reference == "pi_test"
    assert notifier.calls == [(outcome.refund.id, order.id, 3000)]

    async with make_uow(readonly=True) as uow:
        audit = await uow.audit_logs.list_for_entity("refund", outcome.refund.id)
    assert audit[0].action == "refund.created"
    assert audit[0].metadata["raw_status"] == "succeeded"
    assert audit[0].metadata["order_total"] == 10000


@pytest.mark.asyncio
async def test_exceeding_refund_rejected_before_any_write(service, seed, gateway, make_uow):
    order = await seed.order(10000)
    with pytest.raises(RefundError) as exc_info:
        await service.create_processor_refund(CreateRefundCommand(order_id=order.id, amount=15000))
    assert exc_info.value.error_code is RefundErrorCode.EXCEEDS_REFUNDABLE
    assert exc_info.value.status_code == 400
    assert gateway.refund_requests == []
    assert await _refund_rows(make_uow, order.id) == []


@pytest.mark.asyncio
async def test_concurrent_refunds_cannot_exceed_order_total(service, seed, gateway, make_uow):
    order = await seed.order(10000)
    create_refund = gateway.create_refund

    async def slow_refund(req):
        await asyncio.sleep(0.05)
        return await create_refund(req)

    gateway.create_refund = slow_refund
    results = await asyncio.gather(
        service.create_processor_refund(CreateRefundCommand(order_id=order.id, amount=6000)),
        service.create_processor_refund(CreateRefundCommand(order_id=order.id, amount=6000)),
        return_exceptions=True,
    )
    errors = [r for r in results if isinstance(r, RefundError)]
    assert len(errors) == 1
    assert errors[0].error_code is RefundErrorCode.EXCEEDS_REFUNDABLE
    assert len(gateway.refund_requests) == 1
    assert sum(r.amount for r in await _refund_rows(make_uow, order.id)) == 6000
    assert (await seed.get_order(order.id)).payment_status.value == "partially_refunded"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "amount,reason,expected",
    [
        (0, None, RefundErrorCode.INVALID_AMOUNT),
        (-5, None, RefundErrorCode.INVALID_AMOUNT),
        (10.5, None, RefundErrorCode.INVALID_AMOUNT),
        (True, None, RefundErrorCode.INVALID_AMOUNT),
        (100, "because", RefundErrorCode.INVALID_REASON_CODE),
    ],
)
async def test_invalid_input_rejected(service, seed, amount, reason, expected):
    order = await seed.order(10000)
    with pytest.raises(RefundError) as exc_info:
        await service.create_processor_refund(CreateRefundCommand(order_id=order.id, amount=amount, reason_code=reason))
    assert exc_info.value.error_code is expected


@pytest.mark.asyncio
async def test_validation_order(service, seed):
    with pytest.raises(RefundError) as exc_info:
        await service.create_processor_refund(CreateRefundCommand(order_id="missing", amount=1))
    assert exc_info.value.error_code is RefundErrorCode.ORDER_NOT_FOUND

    manual_only = await seed.order(5000, payment_reference=None)
    with pytest.raises(RefundError) as exc_info:
        await service.create_processor_refund(CreateRefundCommand(order_id=manual_only.id, amount=-1))
    assert exc_info.value.error_code is RefundErrorCode.NOT_PROCESSOR_PAID

    unpaid = await seed.order(5000, status=OrderStatus.PENDING, payment_reference=None)
    with pytest.raises(RefundError) as exc_info:
        await service.create_manual_refund(CreateRefundCommand(order_id=unpaid.id, amount=100))
    assert exc_info.value.error_code is RefundErrorCode.ORDER_NOT_PAID


@pytest.mark.asyncio
async def test_provider_failure_writes_nothing(service, seed, gateway, make_uow):
    order = await seed.order(10000)
    gateway.refund_error = PaymentProviderError("card_declined", provider="stub")
    with pytest.raises(RefundError) as exc_info:
        await service.create_processor_refund(CreateRefundCommand(order_id=order.id, amount=1000))
    assert exc_info.value.error_code is RefundErrorCode.PROCESSOR_REFUND_FAILED
    assert await _refund_rows(make_uow, order.id) == []
    assert (await seed.get_order(order.id)).payment_status.value == "unpaid"


@pytest.mark.asyncio
async def test_timeout_reports_idempotency_key(service, seed, gateway):
    order = await seed.order(10000)
    requested_at = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    gateway.refund_error = PaymentTimeoutError("slow", provider="stub")
    cmd = CreateRefundCommand(order_id=order.id, amount=1000, requested_at=requested_at)
    with pytest.raises(RefundError) as exc_info:
        await service.create_processor_refund(cmd)
    key = refund_idempotency_key(order.id, 1000, requested_at)
    assert exc_info.value.error_code is RefundErrorCode.PROCESSOR_TIMEOUT
    assert exc_info.value.details["idempotency_key"] == key

    # the retry reuses the same key
    gateway.refund_error = None
    await service.create_processor_refund(cmd)
    assert [r.idempotency_key for r in gateway.refund_requests] == [key, key]


@pytest.mark.asyncio
async def test_missing_gateway(make_uow, seed):
    order = await seed.order(10000)
    service = RefundService(make_uow, None)
    with pytest.raises(RefundError) as exc_info:
        await service.create_processor_refund(CreateRefundCommand(order_id=order.id, amount=100))
    assert exc_info.value.error_code is RefundErrorCode.PROCESSOR_NOT_CONFIGURED


@pytest.mark.asyncio
async def test_pending_processor_refund_settled_later(service, seed, gateway, notifier, make_uow):
    order = await seed.order(10000)
    gateway.refund_status = "pending"
    outcome = await service.create_processor_refund(CreateRefundCommand(order_id=order.id, amount=4000))
    assert outcome.payment_status == "refund_pending"
    assert outcome.refundable_amount == 6000
    assert notifier.calls == []

    async with make_uow() as uow:
        event = await service.apply_provider_refund_status(uow, outcome.refund.provider_refund_id, "succeeded")
    assert event is not None and event.amount == 4000
    summary = await service.get_refund_summary(order.id)
    assert summary.payment_status == "partially_refunded"
    assert summary.refunded_amount == 4000

    # terminal refunds ignore later deliveries
    async with make_uow() as uow:
        assert await service.apply_provider_refund_status(uow, outcome.refund.provider_refund_id, "failed") is None
    assert (await service.list_refunds(order.id))[0].status == "processed"


@pytest.mark.asyncio
async def test_manual_refund_lifecycle(service, seed, notifier):
    order = await seed.order(8000, payment_reference=None)
    created = await service.create_manual_refund(
        CreateRefundCommand(order_id=order.id, amount=8000, reason_code="other", actor="ops")
    )
    assert created.refund.status == "pending"
    assert created.refund.refund_type == "full"
    assert created.payment_status == "refund_pending"
    assert created.refundable_amount == 0

    with pytest.raises(DomainValidationException):
        await service.resolve_manual_refund(created.refund.id, "failed")

    resolved = await service.resolve_manual_refund(created.refund.id, "processed", actor="ops")
    assert resolved.payment_status == "refunded"
    assert notifier.calls == [(created.refund.id, order.id, 8000)]

    with pytest.raises(RefundError) as exc_info:
        await service.resolve_manual_refund(created.refund.id, "rejected")
    assert exc_info.value.error_code is RefundErrorCode.REFUND_NOT_PENDING


@pytest.mark.asyncio
async def test_rejected_manual_refund_restores_capacity(service, seed):
    order = await seed.order(5000)
    created = await service.create_manual_refund(CreateRefundCommand(order_id=order.id, amount=5000))
    resolved = await service.resolve_manual_refund(created.refund.id, "rejected")
    assert resolved.payment_status == "refund_failed"
    assert resolved.refundable_amount == 5000


@pytest.mark.asyncio
async def test_full_refund_reverses_commission(service, seed, make_uow):
    affiliate = await seed.affiliate("BOB", total_earnings=1000, pending_balance=1000)
    order = await seed.order(10000)
    async with make_uow() as uow:
        await uow.referrals.create(
            AffiliateReferral(
                id="ref-1",
                affiliate_id=affiliate.id,
                order_id=order.id,
                order_amount=10000,
                commission_type=CommissionType.PERCENT,
                commission_rate=10,
                commission_amount=1000,
            )
        )

    await service.create_processor_refund(CreateRefundCommand(order_id=order.id, amount=4000))
    async with make_uow(readonly=True) as uow:
        assert (await uow.referrals.get_by_id("ref-1")).status is ReferralStatus.PENDING

    await service.create_processor_refund(CreateRefundCommand(order_id=order.id, amount=6000))
    async with make_uow(readonly=True) as uow:
        referral = await uow.referrals.get_by_id("ref-1")
    assert referral.status is ReferralStatus.REVERSED
    refreshed = await seed.get_affiliate(affiliate.id)
    assert (refreshed.total_earnings, refreshed.pending_balance) == (0, 0)


@pytest.mark.asyncio
async def test_notifier_failure_does_not_fail_refund(make_uow, seed, gateway):
    class Broken:
        def notify_refund_processed(self, refund_id, order_id, amount):
            raise RuntimeError("queue down")

    order = await seed.order(1000)
    service = RefundService(make_uow, gateway, notifier=Broken())
    outcome = await service.create_processor_refund(CreateRefundCommand(order_id=order.id, amount=1000))
    assert outcome.payment_status == "refunded"


@pytest.mark.asyncio
async def test_refund_leaves_commission_held_by_open_payout(service, seed, make_uow):
    affiliate = await seed.affiliate("CARL", total_earnings=1000)
    referral = await seed.referral(affiliate.id, 1000, status=ReferralStatus.APPROVED)
    async with make_uow() as uow:
        await uow.payouts.create(
            AffiliatePayout(
                id="payout-1",
                affiliate_id=affiliate.id,
                amount=1000,
                status=PayoutStatus.PENDING,
                batch_id="BATCH-2026-W10",
                referral_ids=[referral.id],
            )
        )

    outcome = await service.create_processor_refund(CreateRefundCommand(order_id=referral.order_id, amount=10000))
    assert outcome.payment_status == "refunded"
    async with make_uow(readonly=True) as uow:
        assert (await uow.referrals.get_by_id(referral.id)).status is ReferralStatus.APPROVED
        audit = await uow.audit_logs.list_for_entity("affiliate_referral", referral.id)
    assert [e.action for e in audit] == ["referral.reversal_blocked"]
    assert (await seed.get_affiliate(affiliate.id)).total_earnings == 1000
