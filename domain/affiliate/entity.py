"""
联盟推广领域实体

余额规则：total_earnings >= pending_balance + paid_balance 始终成立；
已批准未支付余额只由三个计数器推导，不单独存储。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from domain.common.exceptions import DomainValidationException


class AffiliateStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class CommissionType(str, Enum):
    PERCENT = "PERCENT"
    FIXED = "FIXED"


class ReferralStatus(str, Enum):
    """佣金状态"""
    PENDING = "pending"      # 审核窗口内
    APPROVED = "approved"    # 可提现
    PAID = "paid"            # 已打款
    REVERSED = "reversed"    # 订单退款后冲销


class PayoutStatus(str, Enum):
    """提现状态"""
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"
    FAILED = "failed"

    @property
    def is_open(self) -> bool:
        return self in (PayoutStatus.PENDING, PayoutStatus.APPROVED)


class PayoutItemStatus(str, Enum):
    """批次报告中单个推广者的处理结果"""
    PAID = "paid"
    FAILED = "failed"
    PENDING = "pending"
    ALREADY_PAID = "already_paid"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"

    @property
    def is_attempted(self) -> bool:
        return self in (PayoutItemStatus.PAID, PayoutItemStatus.FAILED, PayoutItemStatus.PENDING, PayoutItemStatus.DRY_RUN)


class AttributionType(str, Enum):
    COOKIE = "cookie"
    COUPON = "coupon"
    MANUAL = "manual"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Affiliate:
    """推广者账户（余额计数器只通过 BalanceDelta 变更）"""

    id: str
    affiliate_code: str
    status: AffiliateStatus = AffiliateStatus.PENDING
    customer_id: Optional[str] = None
    email: Optional[str] = None
    commission_type: Optional[CommissionType] = None   # 为空时使用项目默认
    commission_value: Optional[int] = None
    total_earnings: int = 0
    pending_balance: int = 0
    paid_balance: int = 0
    total_clicks: int = 0
    total_referrals: int = 0
    total_sales: int = 0
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = AffiliateStatus(self.status)
        if self.commission_type is not None:
            self.commission_type = CommissionType(self.commission_type)
        self.created_at = _ensure_utc(self.created_at)

    @property
    def is_active(self) -> bool:
        return self.status is AffiliateStatus.ACTIVE

    @property
    def approved_balance(self) -> int:
        """已批准未支付余额"""
        return self.total_earnings - self.pending_balance - self.paid_balance

    def check_balances(self) -> None:
        if min(self.total_earnings, self.pending_balance, self.paid_balance) < 0 or self.approved_balance < 0:
            raise DomainValidationException(
                "推广者余额计数器不一致",
                field="balances",
                details={
                    "total_earnings": self.total_earnings,
                    "pending_balance": self.pending_balance,
                    "paid_balance": self.paid_balance,
                },
            )


@dataclass
class PayoutAccount:
    """推广者的收款账户（外部转账目标）"""

    affiliate_id: str
    external_account_id: Optional[str]
    payouts_enabled: bool = False
    details_submitted: bool = False
    country: Optional[str] = None
    currency: Optional[str] = None

    def is_payable(self, *, country: Optional[str] = None, currency: Optional[str] = None) -> bool:
        if not (self.external_account_id and self.payouts_enabled and self.details_submitted):
            return False
        if country and self.country and self.country.upper() != country.upper():
            return False
        if currency and self.currency and self.currency.lower() != currency.lower():
            return False
        return True


@dataclass
class AffiliateClick:
    """点击记录（只写一次）"""

    id: str
    affiliate_id: str
    session_id: str
    ip_hash: Optional[str] = None
    user_agent: Optional[str] = None
    landing_url: Optional[str] = None
    referrer: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    friends_family: bool = False
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.created_at = _ensure_utc(self.created_at)


@dataclass
class AffiliateInvite:
    """
    邀请码

    业务规则：times_used 单调递增且不超过 max_uses（max_uses 为空表示不限）
    """

    id: str
    invite_code: str
    max_uses: Optional[int] = 1
    times_used: int = 0
    target_email: Optional[str] = None
    target_phone: Optional[str] = None
    expires_at: Optional[datetime] = None
    used_by_affiliate_id: Optional[str] = None
    used_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.max_uses is not None and self.max_uses < 1:
            raise DomainValidationException(f"max_uses 必须大于 0: {self.max_uses}", field="max_uses")
        self.expires_at = _ensure_utc(self.expires_at)
        self.used_at = _ensure_utc(self.used_at)
        self.created_at = _ensure_utc(self.created_at)

    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.times_used >= self.max_uses

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= _ensure_utc(now)

    def matches_identity(self, *, email: Optional[str] = None, phone: Optional[str] = None) -> bool:
        """邮箱大小写不敏感；手机号只比较数字"""
        if self.target_email:
            if not email or email.strip().lower() != self.target_email.strip().lower():
                return False
        if self.target_phone:
            if not phone or _digits(phone) != _digits(self.target_phone):
                return False
        return True


def _digits(value: str) -> str:
    return "".join(ch for ch in value if ch.isdigit())


@dataclass(frozen=True)
class InviteUsage:
    """邀请码使用历史（不可变）"""

    id: str
    invite_id: str
    affiliate_id: str
    redeemed_at: datetime
    metadata: dict = field(default_factory=dict)


@dataclass
class AffiliateReferral:
    """
    推广佣金记录

    业务规则：
    1. 每个订单至多一条
    2. commission_rate / commission_amount 创建后不再重算
    """

    id: str
    affiliate_id: str
    order_id: str
    order_amount: int
    commission_type: CommissionType
    commission_rate: int
    commission_amount: int
    status: ReferralStatus = ReferralStatus.PENDING
    click_id: Optional[str] = None
    attribution_type: AttributionType = AttributionType.COOKIE
    friends_family: bool = False
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None
    reversal_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = ReferralStatus(self.status)
        self.commission_type = CommissionType(self.commission_type)
        self.attribution_type = AttributionType(self.attribution_type)
        if self.commission_amount < 0:
            raise DomainValidationException("佣金金额不能为负数", field="commission_amount")
        self.approved_at = _ensure_utc(self.approved_at)
        self.paid_at = _ensure_utc(self.paid_at)
        self.reversed_at = _ensure_utc(self.reversed_at)
        self.created_at = _ensure_utc(self.created_at)


@dataclass
class AffiliatePayout:
    """
    提现/打款记录：同一批次内每个推广者一条

    referral_ids 通过结构化关联表持久化
    """

    id: str
    affiliate_id: str
    amount: int
    status: PayoutStatus = PayoutStatus.PENDING
    batch_id: Optional[str] = None
    transfer_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    requested_by: Optional[str] = None
    referral_ids: List[str] = field(default_factory=list)
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = PayoutStatus(self.status)
        if self.amount < 0:
            raise DomainValidationException("打款金额不能为负数", field="amount")
        self.processed_at = _ensure_utc(self.processed_at)
        self.created_at = _ensure_utc(self.created_at)
