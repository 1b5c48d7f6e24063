"""
推广者点击追踪与统计接口
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from api.dependencies import get_services
from api.middleware import get_client_ip
from application.dtos.affiliates import TrackClickCommand
from core.config import settings
from core.response import success_response
from core.settings import affiliate_settings
from infrastructure.composition import Services


router = APIRouter(prefix="/affiliates", tags=["Affiliates"])


class ClickBody(BaseModel):
    affiliate_code: str
    landing_url: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None


@router.post("/clicks", summary="记录推广点击并下发归因 cookie")
async def track_click(
    body: ClickBody,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
):
    cookie_name = affiliate_settings.cookie_name
    result = await services.attribution.track_click(
        TrackClickCommand(
            **body.model_dump(),
            ip_address=get_client_ip() or (request.client.host if request.client else None),
            user_agent=request.headers.get("User-Agent"),
            referrer=request.headers.get("Referer"),
            existing_cookie=request.cookies.get(cookie_name),
        )
    )
    if result.cookie_value is not None:
        response.set_cookie(
            cookie_name,
            result.cookie_value,
            max_age=result.cookie_max_age,
            httponly=True,
            samesite="lax",
            secure=settings.is_production,
        )
    return success_response(
        data={
            "affiliate_id": result.affiliate_id,
            "session_id": result.session_id,
            "friends_family": result.friends_family,
            "cookie_issued": result.cookie_value is not None,
        }
    )


@router.get("/{affiliate_id}/stats", summary="点击与转化统计")
async def get_stats(affiliate_id: str, services: Services = Depends(get_services)):
    stats = await services.attribution.get_affiliate_stats(affiliate_id)
    return success_response(data=stats.model_dump(mode="json"))


@router.get("/{affiliate_id}/balance", summary="佣金余额")
async def get_balance(affiliate_id: str, services: Services = Depends(get_services)):
    balance = await services.commissions.get_balance(affiliate_id)
    return success_response(data=balance.model_dump(mode="json"))


@router.get("/{affiliate_id}/referrals/approved", summary="已审核未支付的佣金")
async def list_approved_unpaid(affiliate_id: str, services: Services = Depends(get_services)):
    referrals = await services.commissions.list_approved_unpaid(affiliate_id)
    return success_response(data=[r.model_dump(mode="json") for r in referrals])
