"""
Affiliate program DTOs: click tracking, invites, commissions and payouts.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from domain.affiliate.entity import AffiliateInvite, AffiliatePayout, AffiliateReferral, PayoutItemStatus


class TrackClickCommand(BaseModel):
    affiliate_code: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    landing_url: Optional[str] = None
    referrer: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    existing_cookie: Optional[str] = None


class TrackClickResult(BaseModel):
    affiliate_id: str
    session_id: str
    friends_family: bool = False
    # encoded cookie to set, or None when an unexpired attribution already exists
    cookie_value: Optional[str] = None
    cookie_max_age: Optional[int] = None


class AffiliateStats(BaseModel):
    affiliate_id: str
    total_clicks: int
    total_conversions: int
    conversion_rate: float
    total_sales: int


class InviteDTO(BaseModel):
    id: str
    invite_code: str
    max_uses: Optional[int] = None
    times_used: int
    target_email: Optional[str] = None
    target_phone: Optional[str] = None
    expires_at: Optional[datetime] = None
    used_by_affiliate_id: Optional[str] = None
    used_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, invite: AffiliateInvite) -> "InviteDTO":
        return cls(
            id=invite.id,
            invite_code=invite.invite_code,
            max_uses=invite.max_uses,
            times_used=invite.times_used,
            target_email=invite.target_email,
            target_phone=invite.target_phone,
            expires_at=invite.expires_at,
            used_by_affiliate_id=invite.used_by_affiliate_id,
            used_at=invite.used_at,
        )


class RedeemInviteCommand(BaseModel):
    invite_id: str
    affiliate_id: str
    email: Optional[str] = None
    phone: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RedeemInviteResponse(BaseModel):
    success: bool
    outcome: str
    invite: Optional[InviteDTO] = None
    error: Optional[str] = None


class ReferralDTO(BaseModel):
    id: str
    affiliate_id: str
    order_id: str
    order_amount: int
    commission_type: str
    commission_rate: int
    commission_amount: int
    status: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, referral: AffiliateReferral) -> "ReferralDTO":
        return cls(
            id=referral.id,
            affiliate_id=referral.affiliate_id,
            order_id=referral.order_id,
            order_amount=referral.order_amount,
            commission_type=referral.commission_type.value,
            commission_rate=referral.commission_rate,
            commission_amount=referral.commission_amount,
            status=referral.status.value,
            created_at=referral.created_at,
        )


class CommissionResult(BaseModel):
    created: bool
    referral: ReferralDTO


class AffiliateBalance(BaseModel):
    affiliate_id: str
    total_earnings: int
    pending_balance: int
    paid_balance: int
    approved_balance: int


class PayoutDTO(BaseModel):
    id: str
    affiliate_id: str
    amount: int
    status: str
    batch_id: Optional[str] = None
    transfer_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    referral_ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, payout: AffiliatePayout) -> "PayoutDTO":
        return cls(
            id=payout.id,
            affiliate_id=payout.affiliate_id,
            amount=payout.amount,
            status=payout.status.value,
            batch_id=payout.batch_id,
            transfer_reference=payout.transfer_reference,
            failure_reason=payout.failure_reason,
            referral_ids=list(payout.referral_ids),
        )


class PayoutItemResult(BaseModel):
    affiliate_id: str
    amount: int
    status: PayoutItemStatus
    payout_id: Optional[str] = None
    transfer_reference: Optional[str] = None
    referral_count: int = 0
    reason: Optional[str] = None


class PayoutBatchSummary(BaseModel):
    batch_id: str
    dry_run: bool
    total_payouts: int = 0
    total_amount: int = 0
    paid_amount: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    already_paid_count: int = 0
    results: list[PayoutItemResult] = Field(default_factory=list)


class PayoutBatchDetail(BaseModel):
    batch_id: str
    payouts: list[PayoutDTO]
    total_payouts: int
    total_amount: int
    paid_count: int
    failed_count: int
    pending_count: int
