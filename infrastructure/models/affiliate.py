"""
联盟推广数据库模型
"""
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .base import Base, new_id, utcnow


class AffiliateModel(Base):
    __tablename__ = "affiliates"

    id = Column(String(36), primary_key=True, default=new_id)
    customer_id = Column(String(36), nullable=True, index=True)
    email = Column(String(255), nullable=True)
    affiliate_code = Column(String(64), nullable=False, unique=True, comment="推广码（大写）")
    status = Column(String(20), nullable=False, default="pending", comment="pending/active/suspended")
    commission_type = Column(String(10), nullable=True, comment="自定义佣金类型 PERCENT/FIXED")
    commission_value = Column(Integer, nullable=True, comment="自定义佣金比例或固定金额")

    # 余额计数器（最小货币单位）
    total_earnings = Column(BigInteger, nullable=False, default=0)
    pending_balance = Column(BigInteger, nullable=False, default=0)
    paid_balance = Column(BigInteger, nullable=False, default=0)

    # 统计
    total_clicks = Column(Integer, nullable=False, default=0)
    total_referrals = Column(Integer, nullable=False, default=0)
    total_sales = Column(BigInteger, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class AffiliatePayoutAccountModel(Base):
    __tablename__ = "affiliate_payout_accounts"

    id = Column(String(36), primary_key=True, default=new_id)
    affiliate_id = Column(String(36), ForeignKey("affiliates.id"), nullable=False, unique=True)
    external_account_id = Column(String(100), nullable=True, comment="渠道连接账户ID")
    payouts_enabled = Column(Boolean, nullable=False, default=False)
    details_submitted = Column(Boolean, nullable=False, default=False)
    country = Column(String(2), nullable=True)
    currency = Column(String(3), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class AffiliateClickModel(Base):
    __tablename__ = "affiliate_clicks"

    id = Column(String(36), primary_key=True, default=new_id)
    affiliate_id = Column(String(36), ForeignKey("affiliates.id"), nullable=False, index=True)
    session_id = Column(String(64), nullable=False, unique=True)
    ip_hash = Column(String(64), nullable=True, comment="加盐哈希后的 IP，不存原始 IP")
    user_agent = Column(Text, nullable=True)
    landing_url = Column(Text, nullable=True)
    referrer = Column(Text, nullable=True)
    utm_source = Column(String(255), nullable=True)
    utm_medium = Column(String(255), nullable=True)
    utm_campaign = Column(String(255), nullable=True)
    friends_family = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class AffiliateInviteModel(Base):
    __tablename__ = "affiliate_invites"

    id = Column(String(36), primary_key=True, default=new_id)
    invite_code = Column(String(64), nullable=False, unique=True)
    target_email = Column(String(255), nullable=True)
    target_phone = Column(String(50), nullable=True)
    max_uses = Column(Integer, nullable=True, default=1, comment="为空表示不限次数")
    times_used = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    used_by_affiliate_id = Column(String(36), nullable=True, comment="最近一次兑换者（仅供参考）")
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class AffiliateInviteUsageModel(Base):
    """兑换历史，只追加"""
    __tablename__ = "affiliate_invite_usages"

    id = Column(String(36), primary_key=True, default=new_id)
    invite_id = Column(String(36), ForeignKey("affiliate_invites.id"), nullable=False, index=True)
    affiliate_id = Column(String(36), nullable=False)
    redeemed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    extra_metadata = Column("metadata", JSON, nullable=True)


class AffiliateReferralModel(Base):
    __tablename__ = "affiliate_referrals"

    id = Column(String(36), primary_key=True, default=new_id)
    affiliate_id = Column(String(36), ForeignKey("affiliates.id"), nullable=False)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, unique=True, comment="每个订单至多一条佣金")
    click_id = Column(String(36), nullable=True)
    attribution_type = Column(String(20), nullable=False, default="cookie")
    friends_family = Column(Boolean, nullable=False, default=False)
    order_amount = Column(BigInteger, nullable=False)
    commission_type = Column(String(10), nullable=False)
    commission_rate = Column(Integer, nullable=False, comment="创建时的比例/固定额，不再重算")
    commission_amount = Column(BigInteger, nullable=False)
    status = Column(String(20), nullable=False, default="pending", comment="pending/approved/paid/reversed")
    approved_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    reversed_at = Column(DateTime(timezone=True), nullable=True)
    reversal_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_affiliate_referrals_affiliate_status", "affiliate_id", "status", "created_at"),
        Index("ix_affiliate_referrals_status_created", "status", "created_at"),
    )


class AffiliatePayoutModel(Base):
    __tablename__ = "affiliate_payouts"

    id = Column(String(36), primary_key=True, default=new_id)
    affiliate_id = Column(String(36), ForeignKey("affiliates.id"), nullable=False, index=True)
    batch_id = Column(String(50), nullable=True, index=True, comment="打款批次ID，提现申请未归批时为空")
    amount = Column(BigInteger, nullable=False)
    status = Column(String(20), nullable=False, default="pending", comment="pending/approved/paid/rejected/failed")
    transfer_reference = Column(String(200), nullable=True, comment="渠道转账ID")
    failure_reason = Column(Text, nullable=True)
    requested_by = Column(String(100), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("batch_id", "affiliate_id", name="uq_affiliate_payouts_batch_affiliate"),
    )


class AffiliatePayoutReferralModel(Base):
    """打款覆盖的佣金（结构化关联）"""
    __tablename__ = "affiliate_payout_referrals"

    payout_id = Column(String(36), ForeignKey("affiliate_payouts.id"), primary_key=True)
    referral_id = Column(String(36), ForeignKey("affiliate_referrals.id"), primary_key=True, index=True)
