"""
Refund admin routes. Thin: validation and state live in RefundService.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.dependencies import get_actor, get_services
from application.dtos.refunds import CreateRefundCommand
from core.response import success_response
from infrastructure.composition import Services


router = APIRouter(prefix="/orders", tags=["Refunds"])


class RefundBody(BaseModel):
    amount: Any
    reason_code: Optional[str] = None
    reason: Optional[str] = None
    # reuse when retrying after a processor timeout so the idempotency key repeats
    requested_at: Optional[datetime] = None


class ResolveBody(BaseModel):
    outcome: Literal["processed", "rejected"]


def _command(order_id: str, body: RefundBody, actor: Optional[str]) -> CreateRefundCommand:
    data = body.model_dump(exclude_none=True)
    return CreateRefundCommand(order_id=order_id, actor=actor, **data)


@router.post("/{order_id}/refunds", summary="Refund through the payment processor")
async def create_processor_refund(
    order_id: str,
    body: RefundBody,
    services: Services = Depends(get_services),
    actor: Optional[str] = Depends(get_actor),
):
    outcome = await services.refunds.create_processor_refund(_command(order_id, body, actor))
    return success_response(data=outcome.model_dump(mode="json"), message="Refund created")


@router.post("/{order_id}/manual-refunds", summary="Record a manual refund for review")
async def create_manual_refund(
    order_id: str,
    body: RefundBody,
    services: Services = Depends(get_services),
    actor: Optional[str] = Depends(get_actor),
):
    outcome = await services.refunds.create_manual_refund(_command(order_id, body, actor))
    return success_response(data=outcome.model_dump(mode="json"), message="Manual refund recorded")


@router.post("/refunds/{refund_id}/resolve", summary="Resolve a pending manual refund")
async def resolve_manual_refund(
    refund_id: str,
    body: ResolveBody,
    services: Services = Depends(get_services),
    actor: Optional[str] = Depends(get_actor),
):
    outcome = await services.refunds.resolve_manual_refund(refund_id, body.outcome, actor)
    return success_response(data=outcome.model_dump(mode="json"), message="Refund resolved")


@router.get("/{order_id}/refunds", summary="Refund summary and history")
async def get_refunds(order_id: str, services: Services = Depends(get_services)):
    summary = await services.refunds.get_refund_summary(order_id)
    refunds = await services.refunds.list_refunds(order_id)
    return success_response(
        data={
            "summary": summary.model_dump(mode="json"),
            "refunds": [r.model_dump(mode="json") for r in refunds],
        }
    )
