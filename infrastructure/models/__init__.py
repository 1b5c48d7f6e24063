"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel, ProcessedWebhookEventModel, RefundModel
from .audit import AuditLogModel
from .affiliate import (
    AffiliateClickModel,
    AffiliateInviteModel,
    AffiliateInviteUsageModel,
    AffiliateModel,
    AffiliatePayoutAccountModel,
    AffiliatePayoutModel,
    AffiliatePayoutReferralModel,
    AffiliateReferralModel,
)

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "RefundModel",
    "ProcessedWebhookEventModel",
    "AuditLogModel",
    "AffiliateModel",
    "AffiliatePayoutAccountModel",
    "AffiliateClickModel",
    "AffiliateInviteModel",
    "AffiliateInviteUsageModel",
    "AffiliateReferralModel",
    "AffiliatePayoutModel",
    "AffiliatePayoutReferralModel",
]
