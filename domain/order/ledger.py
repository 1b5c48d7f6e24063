"""
Money ledger primitives.

Pure functions over an order and its complete refund set. Nothing here touches
the database or a provider; every value is derived from the arguments so the
result always agrees with the refund rows it was given.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from .entity import (
    PAID_ORDER_STATUSES,
    Order,
    PaymentStatus,
    Refund,
    RefundStatus,
    RefundType,
)

# Refunds that consume refundable capacity
ACTIVE_REFUND_STATUSES = frozenset({RefundStatus.PROCESSED, RefundStatus.PENDING})
UNSUCCESSFUL_REFUND_STATUSES = frozenset({RefundStatus.FAILED, RefundStatus.REJECTED})

# Stored payment statuses that allow a refund even without a fulfilment status
REFUNDABLE_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED})

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class RefundSummary:
    payment_status: PaymentStatus
    refunded_amount: int
    refund_count: int
    latest_refund_status: Optional[RefundStatus]
    pending_amount: int = 0
    unsuccessful_count: int = 0


def is_paid(order: Order) -> bool:
    """An order is paid once it carries a processor charge or a paid fulfilment status."""
    return order.has_processor_charge or order.status in PAID_ORDER_STATUSES


def is_refund_eligible(order: Order) -> bool:
    return is_paid(order) or order.payment_status in REFUNDABLE_PAYMENT_STATUSES


def refundable_amount(order: Order, refunds: Iterable[Refund]) -> int:
    """Order total minus processed and pending refunds, floored at zero.

    Failed and rejected attempts never reduce capacity, so a failed refund can be
    retried without being counted twice.
    """
    committed = sum(r.amount for r in refunds if r.status in ACTIVE_REFUND_STATUSES)
    return max(0, order.total_amount - committed)


def _derive_status(
    *,
    paid: bool,
    total_amount: int,
    processed_amount: int,
    pending_count: int,
    unsuccessful_count: int,
    refund_count: int,
) -> PaymentStatus:
    if not paid:
        return PaymentStatus.UNPAID
    if refund_count == 0:
        return PaymentStatus.PAID
    if processed_amount > 0 and processed_amount >= total_amount:
        return PaymentStatus.REFUNDED
    # a pending refund can still move the order into another bucket
    if pending_count:
        return PaymentStatus.REFUND_PENDING
    if 0 < processed_amount < total_amount:
        return PaymentStatus.PARTIALLY_REFUNDED
    if unsuccessful_count == refund_count:
        return PaymentStatus.REFUND_FAILED
    return PaymentStatus.PAID


def payment_status(order: Order, refunds: Sequence[Refund]) -> PaymentStatus:
    processed = sum(r.amount for r in refunds if r.status is RefundStatus.PROCESSED)
    return _derive_status(
        paid=is_paid(order),
        total_amount=order.total_amount,
        processed_amount=processed,
        pending_count=sum(1 for r in refunds if r.status is RefundStatus.PENDING),
        unsuccessful_count=sum(1 for r in refunds if r.status in UNSUCCESSFUL_REFUND_STATUSES),
        refund_count=len(refunds),
    )


def latest_refund(refunds: Iterable[Refund]) -> Optional[Refund]:
    """Refund with the greatest creation time; ties resolve on id."""
    ordered = sorted(refunds, key=lambda r: (r.created_at or _EPOCH, r.id))
    return ordered[-1] if ordered else None


def refund_summary(order: Order, refunds: Sequence[Refund]) -> RefundSummary:
    latest = latest_refund(refunds)
    return RefundSummary(
        payment_status=payment_status(order, refunds),
        refunded_amount=sum(r.amount for r in refunds if r.status is RefundStatus.PROCESSED),
        refund_count=len(refunds),
        latest_refund_status=latest.status if latest else None,
        pending_amount=sum(r.amount for r in refunds if r.status is RefundStatus.PENDING),
        unsuccessful_count=sum(1 for r in refunds if r.status in UNSUCCESSFUL_REFUND_STATUSES),
    )


def payment_status_from_summary(order: Order, summary: RefundSummary) -> PaymentStatus:
    """Re-derive the payment status from a summary's components."""
    return _derive_status(
        paid=is_paid(order),
        total_amount=order.total_amount,
        processed_amount=summary.refunded_amount,
        pending_count=1 if summary.pending_amount else 0,
        unsuccessful_count=summary.unsuccessful_count,
        refund_count=summary.refund_count,
    )


def refund_type(order: Order, amount: int) -> RefundType:
    return RefundType.FULL if amount >= order.total_amount else RefundType.PARTIAL
