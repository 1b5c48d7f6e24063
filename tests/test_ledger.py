from datetime import datetime, timedelta, timezone

import pytest

from domain.order import ledger
from domain.order.entity import Order, OrderStatus, PaymentStatus, Refund, RefundSource, RefundStatus

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _order(total=10000, **kwargs):
    kwargs.setdefault("status", OrderStatus.PAID)
    return Order(id="o1", total_amount=total, **kwargs)


def _refund(amount, status, minutes=0, rid=None):
    return Refund(
        id=rid or f"r{amount}{status}{minutes}",
        order_id="o1",
        amount=amount,
        status=status,
        source=RefundSource.PROCESSOR,
        provider_refund_id="re_x",
        created_at=T0 + timedelta(minutes=minutes),
    )


def test_paid_order_without_refunds():
    order = _order()
    assert ledger.payment_status(order, []) is PaymentStatus.PAID
    assert ledger.refundable_amount(order, []) == 10000


def test_partial_processed_refund():
    order = _order()
    refunds = [_refund(3000, RefundStatus.PROCESSED)]
    summary = ledger.refund_summary(order, refunds)
    assert summary.payment_status is PaymentStatus.PARTIALLY_REFUNDED
    assert summary.refunded_amount == 3000
    assert ledger.refundable_amount(order, refunds) == 7000


def test_pending_refund_reserves_capacity():
    order = _order()
    refunds = [_refund(3000, RefundStatus.PROCESSED), _refund(4000, RefundStatus.PENDING, 1)]
    assert ledger.payment_status(order, refunds) is PaymentStatus.REFUND_PENDING
    assert ledger.refundable_amount(order, refunds) == 3000


def test_full_refund_and_failed_only():
    order = _order()
    assert ledger.payment_status(order, [_refund(10000, RefundStatus.PROCESSED)]) is PaymentStatus.REFUNDED
    failed = [_refund(2000, RefundStatus.FAILED), _refund(1000, RefundStatus.REJECTED, 1)]
    assert ledger.payment_status(order, failed) is PaymentStatus.REFUND_FAILED
    assert ledger.refundable_amount(order, failed) == 10000


def test_unpaid_order_stays_unpaid():
    order = Order(id="o1", total_amount=10000, status=OrderStatus.PENDING)
    assert not ledger.is_paid(order)
    assert ledger.payment_status(order, []) is PaymentStatus.UNPAID
    assert not ledger.is_refund_eligible(order)


def test_processor_charge_or_stored_status_counts_as_paid():
    assert ledger.is_paid(Order(id="o1", total_amount=100, payment_reference="pi_1"))
    stored = Order(id="o1", total_amount=100, payment_status=PaymentStatus.PARTIALLY_REFUNDED)
    assert not ledger.is_paid(stored)
    assert ledger.is_refund_eligible(stored)


def test_latest_refund_uses_creation_time():
    refunds = [_refund(100, RefundStatus.FAILED, 5), _refund(200, RefundStatus.PROCESSED, 1)]
    assert ledger.latest_refund(refunds).amount == 100
    assert ledger.refund_summary(_order(), refunds).latest_refund_status is RefundStatus.FAILED
    assert ledger.latest_refund([]) is None


@pytest.mark.parametrize(
    "refunds",
    [
        [],
        [(3000, RefundStatus.PROCESSED)],
        [(3000, RefundStatus.PROCESSED), (4000, RefundStatus.PENDING)],
        [(2000, RefundStatus.FAILED), (500, RefundStatus.REJECTED)],
        [(10000, RefundStatus.PROCESSED), (100, RefundStatus.FAILED)],
        [(6000, RefundStatus.PROCESSED), (6000, RefundStatus.PROCESSED)],
    ],
)
def test_summary_components_rederive_same_status(refunds):
    order = _order()
    rows = [_refund(a, s, i) for i, (a, s) in enumerate(refunds)]
    direct = ledger.payment_status(order, rows)
    assert direct is ledger.payment_status(order, rows)
    assert ledger.payment_status_from_summary(order, ledger.refund_summary(order, rows)) is direct
    assert ledger.refundable_amount(order, rows) >= 0


def test_refundable_amount_monotonic():
    order = _order()
    rows = []
    previous = ledger.refundable_amount(order, rows)
    for i, status in enumerate([RefundStatus.PROCESSED, RefundStatus.FAILED, RefundStatus.PENDING, RefundStatus.REJECTED]):
        rows.append(_refund(2000, status, i))
        current = ledger.refundable_amount(order, rows)
        if status in (RefundStatus.FAILED, RefundStatus.REJECTED):
            assert current == previous
        else:
            assert current <= previous
        previous = current
    assert previous == 6000
