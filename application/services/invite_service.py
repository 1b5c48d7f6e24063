"""
邀请码兑换应用服务

兑换只依赖一条条件 UPDATE 的受影响行数判断成败；耗尽和过期是并发下的
常态结果，以 RedemptionOutcome 返回而不是抛出异常。
"""
from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from application.dtos.affiliates import InviteDTO, RedeemInviteCommand, RedeemInviteResponse
from core.logging_config import get_logger
from domain.affiliate.entity import AffiliateInvite, InviteUsage
from domain.affiliate.exceptions import InviteIdentityMismatchException
from domain.affiliate.redemption import Exhausted, Expired, NotFound, Redeemed, RedemptionOutcome
from domain.common.exceptions import NotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork

logger = get_logger(__name__)


def _check_identity(invite: AffiliateInvite, email: Optional[str], phone: Optional[str]) -> None:
    if not invite.matches_identity(email=email, phone=phone):
        raise InviteIdentityMismatchException(invite.id, "email" if invite.target_email else "phone")


class InviteService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._uow_factory = uow_factory
        self._clock = clock

    async def redeem_invite(self, cmd: RedeemInviteCommand) -> RedemptionOutcome:
        """
        兑换邀请码

        身份校验在原子自增之前完成，校验失败不会消耗次数。
        """
        # 只读预检与写事务分开，预检不持有写锁
        async with self._uow_factory(readonly=True) as uow:
            invite = await uow.invites.get_by_id(cmd.invite_id)
        if invite is None:
            logger.info("invite_redeem_not_found", invite_id=cmd.invite_id)
            return NotFound(cmd.invite_id)
        _check_identity(invite, cmd.email, cmd.phone)

        now = self._clock()
        async with self._uow_factory() as uow:
            consumed = await uow.invites.try_consume(cmd.invite_id, cmd.affiliate_id, now)
            if consumed:
                await uow.invites.add_usage(
                    InviteUsage(
                        id=str(uuid.uuid4()),
                        invite_id=cmd.invite_id,
                        affiliate_id=cmd.affiliate_id,
                        redeemed_at=now,
                        metadata=dict(cmd.metadata),
                    )
                )
            current = await uow.invites.get_by_id(cmd.invite_id)

        if consumed:
            logger.info(
                "invite_redeemed",
                invite_id=cmd.invite_id,
                affiliate_id=cmd.affiliate_id,
                times_used=current.times_used,
                max_uses=current.max_uses,
            )
            return Redeemed(current)
        if current is None:
            logger.info("invite_redeem_not_found", invite_id=cmd.invite_id)
            return NotFound(cmd.invite_id)
        if current.is_expired(now):
            logger.info("invite_redeem_expired", invite_id=cmd.invite_id, affiliate_id=cmd.affiliate_id)
            return Expired(cmd.invite_id)
        logger.info(
            "invite_redeem_exhausted",
            invite_id=cmd.invite_id,
            affiliate_id=cmd.affiliate_id,
            times_used=current.times_used,
        )
        return Exhausted(cmd.invite_id)

    async def redeem(self, cmd: RedeemInviteCommand) -> RedeemInviteResponse:
        """面向接口层的布尔结果"""
        outcome = await self.redeem_invite(cmd)
        return RedeemInviteResponse(
            success=outcome.success,
            outcome=outcome.outcome,
            invite=InviteDTO.from_entity(outcome.invite) if isinstance(outcome, Redeemed) else None,
            error=outcome.error,
        )

    async def create_invite(
        self,
        *,
        max_uses: Optional[int] = 1,
        target_email: Optional[str] = None,
        target_phone: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        created_by: Optional[str] = None,
        invite_code: Optional[str] = None,
    ) -> InviteDTO:
        code = (invite_code or secrets.token_urlsafe(9)).upper()
        async with self._uow_factory() as uow:
            invite = await uow.invites.create(
                AffiliateInvite(
                    id=str(uuid.uuid4()),
                    invite_code=code,
                    max_uses=max_uses,
                    target_email=target_email.strip().lower() if target_email else None,
                    target_phone=target_phone,
                    expires_at=expires_at,
                    created_by=created_by,
                )
            )
        logger.info("invite_created", invite_id=invite.id, max_uses=max_uses, created_by=created_by)
        return InviteDTO.from_entity(invite)

    async def get_invite_by_code(self, invite_code: str) -> InviteDTO:
        async with self._uow_factory(readonly=True) as uow:
            invite = await uow.invites.get_by_code(invite_code.strip().upper())
        if invite is None:
            raise NotFoundException("Invite", invite_code)
        return InviteDTO.from_entity(invite)
