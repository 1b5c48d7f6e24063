import pytest

from application.dtos.payments import WebhookEvent
from application.dtos.refunds import CreateRefundCommand
from application.services.payout_service import PayoutBatchService
from application.services.refund_service import RefundService
from application.services.webhook_service import WebhookService
from core.settings import AffiliateSettings
from infrastructure.external.payments.exceptions import PaymentTimeoutError


def _refund_event(event_id, refund_id, status, event_type="refund.updated"):
    return WebhookEvent(
        id=event_id,
        type=event_type,
        provider="stub",
        data={"object": {"object": "refund", "id": refund_id, "status": status}},
    )


@pytest.fixture
def refunds(make_uow, gateway, notifier):
    return RefundService(make_uow, gateway, notifier=notifier)


@pytest.fixture
def webhooks(make_uow, gateway, refunds):
    return WebhookService(make_uow, gateway, refunds)


async def _pending_refund(refunds, seed, gateway, amount=4000):
    order = await seed.order(10000)
    gateway.refund_status = "pending"
    outcome = await refunds.create_processor_refund(CreateRefundCommand(order_id=order.id, amount=amount))
    return order, outcome.refund


@pytest.mark.asyncio
async def test_redelivered_event_applies_once(webhooks, refunds, seed, gateway, notifier, make_uow):
    order, refund = await _pending_refund(refunds, seed, gateway)
    event = _refund_event("evt_1", refund.provider_refund_id, "succeeded")

    assert await webhooks.apply(event) is True
    assert await webhooks.apply(event) is False

    assert notifier.calls == [(refund.id, order.id, 4000)]
    assert (await seed.get_order(order.id)).payment_status.value == "partially_refunded"
    async with make_uow(readonly=True) as uow:
        audit = await uow.audit_logs.list_for_entity("refund", refund.id)
    assert [e.action for e in audit].count("refund.status_synced") == 1


@pytest.mark.asyncio
async def test_late_failure_after_success_is_ignored(webhooks, refunds, seed, gateway, make_uow):
    order, refund = await _pending_refund(refunds, seed, gateway)
    await webhooks.apply(_refund_event("evt_1", refund.provider_refund_id, "succeeded"))
    assert await webhooks.apply(_refund_event("evt_2", refund.provider_refund_id, "failed")) is True

    async with make_uow(readonly=True) as uow:
        stored = await uow.refunds.get_by_id(refund.id)
    assert stored.status.value == "processed"


@pytest.mark.asyncio
async def test_charge_refunded_carries_refund_list(webhooks, refunds, seed, gateway):
    order, refund = await _pending_refund(refunds, seed, gateway, amount=10000)
    event = WebhookEvent(
        id="evt_charge",
        type="charge.refunded",
        provider="stub",
        data={"object": {"object": "charge", "refunds": {"data": [{"id": refund.provider_refund_id, "status": "succeeded"}]}}},
    )
    assert await webhooks.apply(event) is True
    assert (await seed.get_order(order.id)).payment_status.value == "refunded"


@pytest.mark.asyncio
async def test_unrelated_event_is_recorded_and_ignored(webhooks, gateway, notifier):
    event = WebhookEvent(id="evt_other", type="customer.created", provider="stub", data={"object": {}})
    gateway.events.append(event)
    assert await webhooks.handle({}, b"{}") is True
    assert await webhooks.apply(event) is False
    assert notifier.calls == []


@pytest.mark.asyncio
async def test_failed_effect_leaves_event_unrecorded(webhooks, refunds, seed, gateway, monkeypatch):
    order, refund = await _pending_refund(refunds, seed, gateway)
    event = _refund_event("evt_retry", refund.provider_refund_id, "succeeded")

    async def boom(*args, **kwargs):
        raise RuntimeError("db hiccup")

    monkeypatch.setattr(refunds, "apply_provider_refund_status", boom)
    with pytest.raises(RuntimeError):
        await webhooks.apply(event)
    monkeypatch.undo()

    assert await webhooks.apply(event) is True
    assert (await seed.get_order(order.id)).payment_status.value == "partially_refunded"


@pytest.mark.asyncio
async def test_transfer_event_settles_timed_out_payout(make_uow, gateway, refunds, seed):
    payouts = PayoutBatchService(make_uow, gateway, config=AffiliateSettings(minimum_payout=1000, payout_country="US"), currency="usd")
    webhooks = WebhookService(make_uow, gateway, refunds, payouts)
    affiliate = await seed.affiliate("PAYME", total_earnings=3000)
    await seed.referral(affiliate.id, 3000)
    await seed.payout_account(affiliate.id)
    gateway.transfer_error = PaymentTimeoutError("slow", provider="stub")
    summary = await payouts.run_payout_batch(batch_id="BATCH-2026-W10")
    payout_id = summary.results[0].payout_id

    event = WebhookEvent(
        id="evt_tr_1",
        type="transfer.created",
        provider="stub",
        data={"object": {"object": "transfer", "id": "tr_9", "reversed": False, "metadata": {"payout_id": payout_id}}},
    )
    assert await webhooks.apply(event) is True
    assert await webhooks.apply(event) is False

    detail = await payouts.get_batch("BATCH-2026-W10")
    assert (detail.paid_count, detail.payouts[0].transfer_reference) == (1, "tr_9")
    assert (await seed.get_affiliate(affiliate.id)).paid_balance == 3000
