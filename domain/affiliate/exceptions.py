"""
联盟推广业务异常
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode


class AttributionError(BusinessException):
    """点击追踪失败：INVALID_CODE / NOT_ACTIVE"""

    def __init__(self, error_type: str, message: str, *, affiliate_code: Optional[str] = None):
        super().__init__(
            code=BusinessCode.AFFILIATE_NOT_FOUND if error_type == "INVALID_CODE" else BusinessCode.AFFILIATE_NOT_ACTIVE,
            message=message,
            error_type=error_type,
            details={"affiliate_code": affiliate_code} if affiliate_code else None,
            status_code=404 if error_type == "INVALID_CODE" else 403,
        )

    @classmethod
    def invalid_code(cls, code: str) -> "AttributionError":
        return cls("INVALID_CODE", "Invalid affiliate code", affiliate_code=code)

    @classmethod
    def not_active(cls, code: str) -> "AttributionError":
        return cls("NOT_ACTIVE", "Affiliate not active", affiliate_code=code)


class AffiliateNotFoundException(BusinessException):
    def __init__(self, affiliate_id: str):
        super().__init__(
            code=BusinessCode.AFFILIATE_NOT_FOUND,
            message="Affiliate not found",
            error_type="AFFILIATE_NOT_FOUND",
            details={"affiliate_id": affiliate_id},
            status_code=404,
        )


class InviteIdentityMismatchException(BusinessException):
    """邀请码锁定了目标身份，兑换方不匹配（不消耗次数）"""

    def __init__(self, invite_id: str, field: str):
        super().__init__(
            code=BusinessCode.INVITE_IDENTITY_MISMATCH,
            message="This invite is reserved for a different recipient",
            error_type="INVITE_IDENTITY_MISMATCH",
            details={"invite_id": invite_id},
            field=field,
            status_code=400,
        )


class DuplicateInviteCodeException(BusinessException):
    def __init__(self, invite_code: str):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message=f"Invite code {invite_code} already exists",
            error_type="DUPLICATE_INVITE_CODE",
            field="invite_code",
            status_code=409,
        )


class ReferralNotFoundException(BusinessException):
    def __init__(self, identifier: str):
        super().__init__(
            code=BusinessCode.REFERRAL_NOT_FOUND,
            message="Referral not found",
            error_type="REFERRAL_NOT_FOUND",
            details={"id": identifier},
            status_code=404,
        )


class ReferralStateException(BusinessException):
    def __init__(self, referral_id: str, status: str, action: str):
        super().__init__(
            code=BusinessCode.REFERRAL_STATE_ERROR,
            message=f"Cannot {action} referral in status {status}",
            error_type="REFERRAL_INVALID_STATE",
            details={"referral_id": referral_id, "status": status},
            status_code=409,
        )


class DuplicateReferralException(BusinessException):
    """订单已有佣金记录（唯一约束冲突）"""

    def __init__(self, order_id: str):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message=f"Referral already recorded for order {order_id}",
            error_type="DUPLICATE_REFERRAL",
            details={"order_id": order_id},
            status_code=409,
        )


class PayoutRequestException(BusinessException):
    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.PAYOUT_REQUEST_INVALID,
            message=message,
            error_type="PAYOUT_REQUEST_INVALID",
            details=details,
            field="amount",
            status_code=400,
        )


class DuplicatePayoutException(BusinessException):
    """同一批次同一推广者已存在打款记录"""

    def __init__(self, batch_id: str, affiliate_id: str):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message="Payout already recorded for this batch",
            error_type="DUPLICATE_PAYOUT",
            details={"batch_id": batch_id, "affiliate_id": affiliate_id},
            status_code=409,
        )
