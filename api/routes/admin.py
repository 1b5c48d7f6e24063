"""
管理端接口：佣金审核/冲销、订单批量删除、支付配置刷新
"""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.dependencies import get_actor, get_services
from core.response import success_response
from infrastructure.composition import Services
from infrastructure.external.payments import provider_config_resolver


router = APIRouter(prefix="/admin", tags=["Admin"])


class ReverseBody(BaseModel):
    reason: str = Field(min_length=1)


class BulkDeleteBody(BaseModel):
    order_ids: List[str] = Field(min_length=1)


@router.post("/referrals/{referral_id}/approve", summary="审核通过佣金")
async def approve_commission(
    referral_id: str,
    services: Services = Depends(get_services),
    actor: Optional[str] = Depends(get_actor),
):
    referral = await services.commissions.approve_commission(referral_id, actor)
    return success_response(data=referral.model_dump(mode="json"))


@router.post("/referrals/{referral_id}/reverse", summary="冲销佣金")
async def reverse_commission(
    referral_id: str,
    body: ReverseBody,
    services: Services = Depends(get_services),
    actor: Optional[str] = Depends(get_actor),
):
    referral = await services.commissions.reverse_commission(referral_id, body.reason, actor)
    return success_response(data=referral.model_dump(mode="json"))


@router.post("/orders/bulk-delete", summary="批量删除订单")
async def bulk_delete_orders(
    body: BulkDeleteBody,
    services: Services = Depends(get_services),
    actor: Optional[str] = Depends(get_actor),
):
    deleted = await services.order_admin.bulk_delete_orders(body.order_ids, actor)
    return success_response(data={"deleted": deleted})


@router.post("/payments/config/invalidate", summary="刷新支付服务配置缓存")
async def invalidate_payment_config():
    provider_config_resolver.invalidate()
    return success_response(message="Payment configuration cache cleared")
