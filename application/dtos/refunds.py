"""
Refund use-case DTOs.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from domain.order.entity import Refund
from domain.order.ledger import RefundSummary


class CreateRefundCommand(BaseModel):
    """Refund request as received from the admin surface.

    ``amount`` and ``reason_code`` are validated by the orchestrator, not here,
    so every rejection carries a stable refund error code.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    order_id: str
    amount: Any
    reason_code: Optional[str] = None
    reason: Optional[str] = None
    actor: Optional[str] = None
    # part of the provider idempotency key; reuse it when retrying after a timeout
    requested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RefundDTO(BaseModel):
    id: str
    order_id: str
    amount: int
    status: str
    source: str
    refund_type: str
    reason_code: Optional[str] = None
    reason: Optional[str] = None
    provider_refund_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, refund: Refund) -> "RefundDTO":
        return cls(
            id=refund.id,
            order_id=refund.order_id,
            amount=refund.amount,
            status=refund.status.value,
            source=refund.source.value,
            refund_type=refund.refund_type.value,
            reason_code=refund.reason_code.value if refund.reason_code else None,
            reason=refund.reason,
            provider_refund_id=refund.provider_refund_id,
            created_by=refund.created_by,
            created_at=refund.created_at,
            processed_at=refund.processed_at,
        )


class RefundOutcome(BaseModel):
    refund: RefundDTO
    payment_status: str
    refundable_amount: int


class RefundSummaryDTO(BaseModel):
    order_id: str
    payment_status: str
    refunded_amount: int
    refund_count: int
    latest_refund_status: Optional[str] = None
    refundable_amount: int

    @classmethod
    def build(cls, order_id: str, summary: RefundSummary, refundable: int) -> "RefundSummaryDTO":
        return cls(
            order_id=order_id,
            payment_status=summary.payment_status.value,
            refunded_amount=summary.refunded_amount,
            refund_count=summary.refund_count,
            latest_refund_status=summary.latest_refund_status.value if summary.latest_refund_status else None,
            refundable_amount=refundable,
        )
