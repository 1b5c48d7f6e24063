"""
联盟推广仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from .commission import BalanceDelta
from .entity import (
    Affiliate,
    AffiliateClick,
    AffiliateInvite,
    AffiliatePayout,
    AffiliateReferral,
    InviteUsage,
    PayoutAccount,
    ReferralStatus,
)


class AffiliateRepository(ABC):
    """推广者仓储"""

    @abstractmethod
    async def create(self, affiliate: Affiliate) -> Affiliate:
        pass

    @abstractmethod
    async def get_by_id(self, affiliate_id: str) -> Optional[Affiliate]:
        pass

    @abstractmethod
    async def get_by_code(self, affiliate_code: str) -> Optional[Affiliate]:
        """按推广码精确查找（调用方负责大写化）"""
        pass

    @abstractmethod
    async def list_with_approved_balance(self, minimum: int) -> List[Affiliate]:
        """活跃且已批准未支付余额 >= minimum（且 > 0）的推广者"""
        pass

    @abstractmethod
    async def increment_clicks(self, affiliate_id: str) -> None:
        """原子自增点击计数"""
        pass

    @abstractmethod
    async def apply_balance_delta(
        self,
        affiliate_id: str,
        delta: BalanceDelta,
        *,
        referrals: int = 0,
        sales: int = 0,
    ) -> None:
        """以 SQL 自增方式原子更新余额计数器"""
        pass

    @abstractmethod
    async def get_payout_account(self, affiliate_id: str) -> Optional[PayoutAccount]:
        pass

    @abstractmethod
    async def save_payout_account(self, account: PayoutAccount) -> PayoutAccount:
        pass


class ClickRepository(ABC):

    @abstractmethod
    async def create(self, click: AffiliateClick) -> AffiliateClick:
        pass

    @abstractmethod
    async def get_by_session_id(self, session_id: str) -> Optional[AffiliateClick]:
        pass


class InviteRepository(ABC):

    @abstractmethod
    async def create(self, invite: AffiliateInvite) -> AffiliateInvite:
        pass

    @abstractmethod
    async def get_by_id(self, invite_id: str) -> Optional[AffiliateInvite]:
        pass

    @abstractmethod
    async def get_by_code(self, invite_code: str) -> Optional[AffiliateInvite]:
        pass

    @abstractmethod
    async def try_consume(self, invite_id: str, affiliate_id: str, now: datetime) -> bool:
        """
        单条条件 UPDATE：仅当未耗尽且未过期时 times_used + 1

        Returns:
            受影响行数是否为 1
        """
        pass

    @abstractmethod
    async def add_usage(self, usage: InviteUsage) -> InviteUsage:
        pass

    @abstractmethod
    async def list_usages(self, invite_id: str) -> List[InviteUsage]:
        pass


class ReferralRepository(ABC):

    @abstractmethod
    async def create(self, referral: AffiliateReferral) -> AffiliateReferral:
        """订单唯一；冲突抛出 DuplicateReferralException"""
        pass

    @abstractmethod
    async def get_by_id(self, referral_id: str) -> Optional[AffiliateReferral]:
        pass

    @abstractmethod
    async def get_by_order_id(self, order_id: str) -> Optional[AffiliateReferral]:
        pass

    @abstractmethod
    async def list_by_order_ids(self, order_ids: Sequence[str], *, for_update: bool = False) -> List[AffiliateReferral]:
        pass

    @abstractmethod
    async def update(self, referral: AffiliateReferral, *, expected: ReferralStatus) -> bool:
        """仅当库中状态仍为 expected 时写入，返回是否更新成功"""
        pass

    @abstractmethod
    async def list_pending_created_before(self, cutoff: datetime) -> List[AffiliateReferral]:
        pass

    @abstractmethod
    async def list_approved_unpaid(self, affiliate_id: str, *, exclude_in_flight: bool = False) -> List[AffiliateReferral]:
        """按创建时间升序（最早的优先打款）；exclude_in_flight 时排除已关联到未结打款的记录"""
        pass

    @abstractmethod
    async def mark_paid(self, referral_ids: Sequence[str], paid_at: datetime) -> int:
        """仅将仍为 approved 的记录置为 paid，返回实际转为 paid 的佣金合计"""
        pass

    @abstractmethod
    async def count_by_affiliate(self, affiliate_id: str) -> int:
        pass

    @abstractmethod
    async def delete_by_order_ids(self, order_ids: Sequence[str]) -> int:
        pass


class PayoutRepository(ABC):

    @abstractmethod
    async def create(self, payout: AffiliatePayout) -> AffiliatePayout:
        """写入打款及其覆盖的佣金关联；批次+推广者冲突抛出 DuplicatePayoutException"""
        pass

    @abstractmethod
    async def get_by_id(self, payout_id: str) -> Optional[AffiliatePayout]:
        pass

    @abstractmethod
    async def get_by_batch_and_affiliate(self, batch_id: str, affiliate_id: str) -> Optional[AffiliatePayout]:
        pass

    @abstractmethod
    async def get_open_request(self, affiliate_id: str) -> Optional[AffiliatePayout]:
        """推广者发起、尚未归入批次的提现申请"""
        pass

    @abstractmethod
    async def list_by_batch(self, batch_id: str) -> List[AffiliatePayout]:
        pass

    @abstractmethod
    async def get_by_transfer_reference(self, transfer_reference: str) -> Optional[AffiliatePayout]:
        pass

    @abstractmethod
    async def has_open_payout_for_referral(self, referral_id: str) -> bool:
        """佣金是否已被 pending/approved 状态的打款占用"""
        pass

    @abstractmethod
    async def update(self, payout: AffiliatePayout) -> AffiliatePayout:
        """更新状态/批次/转账引用，并同步关联的 referral_ids"""
        pass

    @abstractmethod
    async def delete_links_for_referrals(self, referral_ids: Sequence[str]) -> int:
        pass
