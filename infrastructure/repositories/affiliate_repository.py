"""
联盟推广仓储实现 - 使用SQLAlchemy实现数据访问

计数器与邀请码次数一律使用 SQL 表达式原子更新，不做“读-改-写”。
"""
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.affiliate.commission import BalanceDelta
from domain.affiliate.entity import (
    Affiliate,
    AffiliateClick,
    AffiliateInvite,
    AffiliatePayout,
    AffiliateReferral,
    AffiliateStatus,
    InviteUsage,
    PayoutAccount,
    PayoutStatus,
    ReferralStatus,
)
from domain.affiliate.exceptions import (
    DuplicateInviteCodeException,
    DuplicatePayoutException,
    DuplicateReferralException,
)
from domain.affiliate.repository import (
    AffiliateRepository,
    ClickRepository,
    InviteRepository,
    PayoutRepository,
    ReferralRepository,
)
from infrastructure.models.affiliate import (
    AffiliateClickModel,
    AffiliateInviteModel,
    AffiliateInviteUsageModel,
    AffiliateModel,
    AffiliatePayoutAccountModel,
    AffiliatePayoutModel,
    AffiliatePayoutReferralModel,
    AffiliateReferralModel,
)

logger = get_logger(__name__)


class SQLAlchemyAffiliateRepository(AffiliateRepository):
    """推广者仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: AffiliateModel) -> Affiliate:
        return Affiliate(
            id=model.id,
            affiliate_code=model.affiliate_code,
            status=model.status,
            customer_id=model.customer_id,
            email=model.email,
            commission_type=model.commission_type,
            commission_value=model.commission_value,
            total_earnings=model.total_earnings,
            pending_balance=model.pending_balance,
            paid_balance=model.paid_balance,
            total_clicks=model.total_clicks,
            total_referrals=model.total_referrals,
            total_sales=model.total_sales,
            created_at=model.created_at,
        )

    async def create(self, affiliate: Affiliate) -> Affiliate:
        db_affiliate = AffiliateModel(
            id=affiliate.id,
            affiliate_code=affiliate.affiliate_code.upper(),
            status=affiliate.status.value,
            customer_id=affiliate.customer_id,
            email=affiliate.email,
            commission_type=affiliate.commission_type.value if affiliate.commission_type else None,
            commission_value=affiliate.commission_value,
            total_earnings=affiliate.total_earnings,
            pending_balance=affiliate.pending_balance,
            paid_balance=affiliate.paid_balance,
            total_clicks=affiliate.total_clicks,
            total_referrals=affiliate.total_referrals,
            total_sales=affiliate.total_sales,
        )
        self.session.add(db_affiliate)
        await self.session.flush()
        return self._to_entity(db_affiliate)

    async def get_by_id(self, affiliate_id: str) -> Optional[Affiliate]:
        result = await self.session.execute(
            select(AffiliateModel).where(AffiliateModel.id == affiliate_id).execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_code(self, affiliate_code: str) -> Optional[Affiliate]:
        result = await self.session.execute(
            select(AffiliateModel).where(AffiliateModel.affiliate_code == affiliate_code)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def list_with_approved_balance(self, minimum: int) -> List[Affiliate]:
        approved = AffiliateModel.total_earnings - AffiliateModel.pending_balance - AffiliateModel.paid_balance
        result = await self.session.execute(
            select(AffiliateModel)
            .where(
                AffiliateModel.status == AffiliateStatus.ACTIVE.value,
                approved > 0,
                approved >= minimum,
            )
            .order_by(AffiliateModel.created_at.asc(), AffiliateModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def increment_clicks(self, affiliate_id: str) -> None:
        await self.session.execute(
            update(AffiliateModel)
            .where(AffiliateModel.id == affiliate_id)
            .values(total_clicks=AffiliateModel.total_clicks + 1)
            .execution_options(synchronize_session=False)
        )

    async def apply_balance_delta(
        self,
        affiliate_id: str,
        delta: BalanceDelta,
        *,
        referrals: int = 0,
        sales: int = 0,
    ) -> None:
        if delta.is_zero and not referrals and not sales:
            return
        await self.session.execute(
            update(AffiliateModel)
            .where(AffiliateModel.id == affiliate_id)
            .values(
                total_earnings=AffiliateModel.total_earnings + delta.total_earnings,
                pending_balance=AffiliateModel.pending_balance + delta.pending_balance,
                paid_balance=AffiliateModel.paid_balance + delta.paid_balance,
                total_referrals=AffiliateModel.total_referrals + referrals,
                total_sales=AffiliateModel.total_sales + sales,
            )
            .execution_options(synchronize_session=False)
        )
        logger.debug(
            "affiliate_balance_adjusted",
            affiliate_id=affiliate_id,
            total_earnings=delta.total_earnings,
            pending_balance=delta.pending_balance,
            paid_balance=delta.paid_balance,
        )

    async def get_payout_account(self, affiliate_id: str) -> Optional[PayoutAccount]:
        result = await self.session.execute(
            select(AffiliatePayoutAccountModel).where(AffiliatePayoutAccountModel.affiliate_id == affiliate_id)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return PayoutAccount(
            affiliate_id=model.affiliate_id,
            external_account_id=model.external_account_id,
            payouts_enabled=model.payouts_enabled,
            details_submitted=model.details_submitted,
            country=model.country,
            currency=model.currency,
        )

    async def save_payout_account(self, account: PayoutAccount) -> PayoutAccount:
        result = await self.session.execute(
            select(AffiliatePayoutAccountModel).where(AffiliatePayoutAccountModel.affiliate_id == account.affiliate_id)
        )
        model = result.scalar_one_or_none()
        if model is None:
            model = AffiliatePayoutAccountModel(affiliate_id=account.affiliate_id)
            self.session.add(model)
        model.external_account_id = account.external_account_id
        model.payouts_enabled = account.payouts_enabled
        model.details_submitted = account.details_submitted
        model.country = account.country
        model.currency = account.currency
        await self.session.flush()
        return account


class SQLAlchemyClickRepository(ClickRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: AffiliateClickModel) -> AffiliateClick:
        return AffiliateClick(
            id=model.id,
            affiliate_id=model.affiliate_id,
            session_id=model.session_id,
            ip_hash=model.ip_hash,
            user_agent=model.user_agent,
            landing_url=model.landing_url,
            referrer=model.referrer,
            utm_source=model.utm_source,
            utm_medium=model.utm_medium,
            utm_campaign=model.utm_campaign,
            friends_family=model.friends_family,
            created_at=model.created_at,
        )

    async def create(self, click: AffiliateClick) -> AffiliateClick:
        model = AffiliateClickModel(
            id=click.id,
            affiliate_id=click.affiliate_id,
            session_id=click.session_id,
            ip_hash=click.ip_hash,
            user_agent=click.user_agent,
            landing_url=click.landing_url,
            referrer=click.referrer,
            utm_source=click.utm_source,
            utm_medium=click.utm_medium,
            utm_campaign=click.utm_campaign,
            friends_family=click.friends_family,
        )
        self.session.add(model)
        await self.session.flush()
        return self._to_entity(model)

    async def get_by_session_id(self, session_id: str) -> Optional[AffiliateClick]:
        result = await self.session.execute(
            select(AffiliateClickModel).where(AffiliateClickModel.session_id == session_id)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None


class SQLAlchemyInviteRepository(InviteRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: AffiliateInviteModel) -> AffiliateInvite:
        return AffiliateInvite(
            id=model.id,
            invite_code=model.invite_code,
            max_uses=model.max_uses,
            times_used=model.times_used,
            target_email=model.target_email,
            target_phone=model.target_phone,
            expires_at=model.expires_at,
            used_by_affiliate_id=model.used_by_affiliate_id,
            used_at=model.used_at,
            created_by=model.created_by,
            created_at=model.created_at,
        )

    async def create(self, invite: AffiliateInvite) -> AffiliateInvite:
        model = AffiliateInviteModel(
            id=invite.id,
            invite_code=invite.invite_code,
            max_uses=invite.max_uses,
            times_used=invite.times_used,
            target_email=invite.target_email,
            target_phone=invite.target_phone,
            expires_at=invite.expires_at,
            created_by=invite.created_by,
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateInviteCodeException(invite.invite_code) from e
        return self._to_entity(model)

    async def get_by_id(self, invite_id: str) -> Optional[AffiliateInvite]:
        result = await self.session.execute(
            select(AffiliateInviteModel)
            .where(AffiliateInviteModel.id == invite_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_code(self, invite_code: str) -> Optional[AffiliateInvite]:
        result = await self.session.execute(
            select(AffiliateInviteModel).where(AffiliateInviteModel.invite_code == invite_code)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def try_consume(self, invite_id: str, affiliate_id: str, now: datetime) -> bool:
        stmt = (
            update(AffiliateInviteModel)
            .where(
                AffiliateInviteModel.id == invite_id,
                or_(
                    AffiliateInviteModel.max_uses.is_(None),
                    AffiliateInviteModel.times_used < AffiliateInviteModel.max_uses,
                ),
                or_(
                    AffiliateInviteModel.expires_at.is_(None),
                    AffiliateInviteModel.expires_at > now,
                ),
            )
            .values(
                times_used=AffiliateInviteModel.times_used + 1,
                used_by_affiliate_id=affiliate_id,
                used_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def add_usage(self, usage: InviteUsage) -> InviteUsage:
        self.session.add(
            AffiliateInviteUsageModel(
                id=usage.id,
                invite_id=usage.invite_id,
                affiliate_id=usage.affiliate_id,
                redeemed_at=usage.redeemed_at,
                extra_metadata=usage.metadata,
            )
        )
        await self.session.flush()
        return usage

    async def list_usages(self, invite_id: str) -> List[InviteUsage]:
        result = await self.session.execute(
            select(AffiliateInviteUsageModel)
            .where(AffiliateInviteUsageModel.invite_id == invite_id)
            .order_by(AffiliateInviteUsageModel.redeemed_at.asc())
        )
        return [
            InviteUsage(
                id=m.id,
                invite_id=m.invite_id,
                affiliate_id=m.affiliate_id,
                redeemed_at=m.redeemed_at,
                metadata=m.extra_metadata or {},
            )
            for m in result.scalars().all()
        ]


def _in_flight_referral_ids():
    """已被 pending/approved 打款占用的佣金 id 子查询"""
    return (
        select(AffiliatePayoutReferralModel.referral_id)
        .join(AffiliatePayoutModel, AffiliatePayoutModel.id == AffiliatePayoutReferralModel.payout_id)
        .where(AffiliatePayoutModel.status.in_([PayoutStatus.PENDING.value, PayoutStatus.APPROVED.value]))
    )


class SQLAlchemyReferralRepository(ReferralRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: AffiliateReferralModel) -> AffiliateReferral:
        return AffiliateReferral(
            id=model.id,
            affiliate_id=model.affiliate_id,
            order_id=model.order_id,
            order_amount=model.order_amount,
            commission_type=model.commission_type,
            commission_rate=model.commission_rate,
            commission_amount=model.commission_amount,
            status=model.status,
            click_id=model.click_id,
            attribution_type=model.attribution_type,
            friends_family=model.friends_family,
            approved_at=model.approved_at,
            paid_at=model.paid_at,
            reversed_at=model.reversed_at,
            reversal_reason=model.reversal_reason,
            created_at=model.created_at,
        )

    async def create(self, referral: AffiliateReferral) -> AffiliateReferral:
        model = AffiliateReferralModel(
            id=referral.id,
            affiliate_id=referral.affiliate_id,
            order_id=referral.order_id,
            click_id=referral.click_id,
            attribution_type=referral.attribution_type.value,
            friends_family=referral.friends_family,
            order_amount=referral.order_amount,
            commission_type=referral.commission_type.value,
            commission_rate=referral.commission_rate,
            commission_amount=referral.commission_amount,
            status=referral.status.value,
        )
        if referral.created_at is not None:
            model.created_at = referral.created_at
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.info("referral_create_conflict", order_id=referral.order_id)
            raise DuplicateReferralException(referral.order_id) from e
        return self._to_entity(model)

    async def get_by_id(self, referral_id: str) -> Optional[AffiliateReferral]:
        result = await self.session.execute(
            select(AffiliateReferralModel)
            .where(AffiliateReferralModel.id == referral_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_order_id(self, order_id: str) -> Optional[AffiliateReferral]:
        result = await self.session.execute(
            select(AffiliateReferralModel)
            .where(AffiliateReferralModel.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def list_by_order_ids(self, order_ids: Sequence[str], *, for_update: bool = False) -> List[AffiliateReferral]:
        if not order_ids:
            return []
        stmt = select(AffiliateReferralModel).where(AffiliateReferralModel.order_id.in_(list(order_ids)))
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return [self._to_entity(m) for m in result.scalars().all()]

    async def update(self, referral: AffiliateReferral, *, expected: ReferralStatus) -> bool:
        # 条件更新：状态已被并发事务改变时不写入；commission_* 列不在更新范围内
        result = await self.session.execute(
            update(AffiliateReferralModel)
            .where(
                AffiliateReferralModel.id == referral.id,
                AffiliateReferralModel.status == expected.value,
            )
            .values(
                status=referral.status.value,
                approved_at=referral.approved_at,
                paid_at=referral.paid_at,
                reversed_at=referral.reversed_at,
                reversal_reason=referral.reversal_reason,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_pending_created_before(self, cutoff: datetime) -> List[AffiliateReferral]:
        result = await self.session.execute(
            select(AffiliateReferralModel)
            .where(
                AffiliateReferralModel.status == ReferralStatus.PENDING.value,
                AffiliateReferralModel.created_at < cutoff,
            )
            .order_by(AffiliateReferralModel.created_at.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_approved_unpaid(self, affiliate_id: str, *, exclude_in_flight: bool = False) -> List[AffiliateReferral]:
        stmt = select(AffiliateReferralModel).where(
            AffiliateReferralModel.affiliate_id == affiliate_id,
            AffiliateReferralModel.status == ReferralStatus.APPROVED.value,
        )
        if exclude_in_flight:
            stmt = stmt.where(AffiliateReferralModel.id.not_in(_in_flight_referral_ids()))
        result = await self.session.execute(
            stmt.order_by(AffiliateReferralModel.created_at.asc(), AffiliateReferralModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def mark_paid(self, referral_ids: Sequence[str], paid_at: datetime) -> int:
        if not referral_ids:
            return 0
        rows = await self.session.execute(
            select(AffiliateReferralModel.id, AffiliateReferralModel.commission_amount).where(
                AffiliateReferralModel.id.in_(list(referral_ids)),
                AffiliateReferralModel.status == ReferralStatus.APPROVED.value,
            )
        )
        moved = 0
        for referral_id, amount in rows.all():
            result = await self.session.execute(
                update(AffiliateReferralModel)
                .where(
                    AffiliateReferralModel.id == referral_id,
                    AffiliateReferralModel.status == ReferralStatus.APPROVED.value,
                )
                .values(status=ReferralStatus.PAID.value, paid_at=paid_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                moved += amount
        return moved

    async def count_by_affiliate(self, affiliate_id: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(AffiliateReferralModel)
            .where(
                AffiliateReferralModel.affiliate_id == affiliate_id,
                AffiliateReferralModel.status != ReferralStatus.REVERSED.value,
            )
        )
        return int(result.scalar() or 0)

    async def delete_by_order_ids(self, order_ids: Sequence[str]) -> int:
        if not order_ids:
            return 0
        result = await self.session.execute(
            delete(AffiliateReferralModel).where(AffiliateReferralModel.order_id.in_(list(order_ids)))
        )
        return result.rowcount or 0


class SQLAlchemyPayoutRepository(PayoutRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _referral_ids(self, payout_id: str) -> List[str]:
        result = await self.session.execute(
            select(AffiliatePayoutReferralModel.referral_id)
            .where(AffiliatePayoutReferralModel.payout_id == payout_id)
            .order_by(AffiliatePayoutReferralModel.referral_id)
        )
        return list(result.scalars().all())

    async def _to_entity(self, model: AffiliatePayoutModel) -> AffiliatePayout:
        return AffiliatePayout(
            id=model.id,
            affiliate_id=model.affiliate_id,
            amount=model.amount,
            status=model.status,
            batch_id=model.batch_id,
            transfer_reference=model.transfer_reference,
            failure_reason=model.failure_reason,
            requested_by=model.requested_by,
            referral_ids=await self._referral_ids(model.id),
            processed_at=model.processed_at,
            created_at=model.created_at,
        )

    async def _replace_links(self, payout_id: str, referral_ids: Sequence[str]) -> None:
        await self.session.execute(
            delete(AffiliatePayoutReferralModel).where(AffiliatePayoutReferralModel.payout_id == payout_id)
        )
        for referral_id in dict.fromkeys(referral_ids):
            self.session.add(AffiliatePayoutReferralModel(payout_id=payout_id, referral_id=referral_id))

    async def create(self, payout: AffiliatePayout) -> AffiliatePayout:
        model = AffiliatePayoutModel(
            id=payout.id,
            affiliate_id=payout.affiliate_id,
            batch_id=payout.batch_id,
            amount=payout.amount,
            status=payout.status.value,
            transfer_reference=payout.transfer_reference,
            failure_reason=payout.failure_reason,
            requested_by=payout.requested_by,
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicatePayoutException(payout.batch_id or "", payout.affiliate_id) from e
        for referral_id in dict.fromkeys(payout.referral_ids):
            self.session.add(AffiliatePayoutReferralModel(payout_id=model.id, referral_id=referral_id))
        await self.session.flush()
        return await self._to_entity(model)

    async def get_by_id(self, payout_id: str) -> Optional[AffiliatePayout]:
        model = await self.session.get(AffiliatePayoutModel, payout_id)
        return await self._to_entity(model) if model else None

    async def get_by_batch_and_affiliate(self, batch_id: str, affiliate_id: str) -> Optional[AffiliatePayout]:
        result = await self.session.execute(
            select(AffiliatePayoutModel).where(
                AffiliatePayoutModel.batch_id == batch_id,
                AffiliatePayoutModel.affiliate_id == affiliate_id,
            )
        )
        model = result.scalar_one_or_none()
        return await self._to_entity(model) if model else None

    async def get_open_request(self, affiliate_id: str) -> Optional[AffiliatePayout]:
        result = await self.session.execute(
            select(AffiliatePayoutModel)
            .where(
                AffiliatePayoutModel.affiliate_id == affiliate_id,
                AffiliatePayoutModel.batch_id.is_(None),
                AffiliatePayoutModel.status.in_([PayoutStatus.PENDING.value, PayoutStatus.APPROVED.value]),
            )
            .order_by(AffiliatePayoutModel.created_at.asc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return await self._to_entity(model) if model else None

    async def list_by_batch(self, batch_id: str) -> List[AffiliatePayout]:
        result = await self.session.execute(
            select(AffiliatePayoutModel)
            .where(AffiliatePayoutModel.batch_id == batch_id)
            .order_by(AffiliatePayoutModel.created_at.asc(), AffiliatePayoutModel.id.asc())
        )
        return [await self._to_entity(m) for m in result.scalars().all()]

    async def get_by_transfer_reference(self, transfer_reference: str) -> Optional[AffiliatePayout]:
        result = await self.session.execute(
            select(AffiliatePayoutModel).where(AffiliatePayoutModel.transfer_reference == transfer_reference).limit(1)
        )
        model = result.scalar_one_or_none()
        return await self._to_entity(model) if model else None

    async def has_open_payout_for_referral(self, referral_id: str) -> bool:
        result = await self.session.execute(
            _in_flight_referral_ids().where(AffiliatePayoutReferralModel.referral_id == referral_id).limit(1)
        )
        return result.first() is not None

    async def update(self, payout: AffiliatePayout) -> AffiliatePayout:
        model = await self.session.get(AffiliatePayoutModel, payout.id)
        if model is None:
            raise ValueError(f"payout {payout.id} does not exist")
        model.batch_id = payout.batch_id
        model.amount = payout.amount
        model.status = payout.status.value
        model.transfer_reference = payout.transfer_reference
        model.failure_reason = payout.failure_reason
        model.processed_at = payout.processed_at
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicatePayoutException(payout.batch_id or "", payout.affiliate_id) from e
        if sorted(payout.referral_ids) != await self._referral_ids(payout.id):
            await self._replace_links(payout.id, payout.referral_ids)
            await self.session.flush()
        return payout

    async def delete_links_for_referrals(self, referral_ids: Sequence[str]) -> int:
        if not referral_ids:
            return 0
        result = await self.session.execute(
            delete(AffiliatePayoutReferralModel).where(
                AffiliatePayoutReferralModel.referral_id.in_(list(referral_ids))
            )
        )
        return result.rowcount or 0
