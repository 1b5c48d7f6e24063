"""
佣金打款接口
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.dependencies import get_actor, get_services
from core.response import success_response
from infrastructure.composition import Services


router = APIRouter(prefix="/payouts", tags=["Payouts"])


class RunBatchBody(BaseModel):
    dry_run: bool = False
    batch_id: Optional[str] = None


class PayoutRequestBody(BaseModel):
    affiliate_id: str
    amount: int


@router.post("/batches", summary="执行打款批次")
async def run_batch(
    body: RunBatchBody,
    services: Services = Depends(get_services),
    actor: Optional[str] = Depends(get_actor),
):
    summary = await services.payouts.run_payout_batch(dry_run=body.dry_run, initiator=actor, batch_id=body.batch_id)
    return success_response(data=summary.model_dump(mode="json"))


@router.get("/batches/{batch_id}", summary="查询打款批次")
async def get_batch(batch_id: str, services: Services = Depends(get_services)):
    detail = await services.payouts.get_batch(batch_id)
    return success_response(data=detail.model_dump(mode="json"))


@router.post("/requests", summary="推广者申请打款")
async def request_payout(
    body: PayoutRequestBody,
    services: Services = Depends(get_services),
    actor: Optional[str] = Depends(get_actor),
):
    payout = await services.payouts.request_payout(body.affiliate_id, body.amount, requested_by=actor)
    return success_response(data=payout.model_dump(mode="json"), message="Payout requested")
