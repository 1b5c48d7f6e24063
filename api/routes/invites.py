"""
邀请码接口
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.dependencies import get_actor, get_services
from application.dtos.affiliates import RedeemInviteCommand
from core.response import success_response
from infrastructure.composition import Services


router = APIRouter(prefix="/invites", tags=["Invites"])


class CreateInviteBody(BaseModel):
    max_uses: Optional[int] = Field(default=1, ge=1)
    target_email: Optional[str] = None
    target_phone: Optional[str] = None
    expires_at: Optional[datetime] = None
    invite_code: Optional[str] = None


class RedeemBody(BaseModel):
    affiliate_id: str
    email: Optional[str] = None
    phone: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


@router.post("", summary="创建邀请码")
async def create_invite(
    body: CreateInviteBody,
    services: Services = Depends(get_services),
    actor: Optional[str] = Depends(get_actor),
):
    invite = await services.invites.create_invite(**body.model_dump(), created_by=actor)
    return success_response(data=invite.model_dump(mode="json"), message="Invite created")


@router.get("/by-code/{invite_code}", summary="按邀请码查询")
async def get_invite(invite_code: str, services: Services = Depends(get_services)):
    invite = await services.invites.get_invite_by_code(invite_code)
    return success_response(data=invite.model_dump(mode="json"))


@router.post("/{invite_id}/redeem", summary="兑换邀请码")
async def redeem_invite(invite_id: str, body: RedeemBody, services: Services = Depends(get_services)):
    result = await services.invites.redeem(RedeemInviteCommand(invite_id=invite_id, **body.model_dump()))
    return success_response(data=result.model_dump(mode="json"), message="OK" if result.success else result.outcome)
