"""
Shared business codes used across layers (Domain/Core/API).

This package exposes BusinessCode at `shared.codes` and keeps
payment-specific codes under `shared.codes.payment_codes`.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """Unified business status codes (single source of truth)."""

    # Success
    SUCCESS = 0

    # Parameter errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_MISSING = 10001
    PARAM_TYPE_ERROR = 10002
    PARAM_VALIDATION_ERROR = 10003

    # Business errors (2xxxx)
    BUSINESS_ERROR = 20000
    NOT_FOUND = 20006  # Generic resource not found
    CONFLICT = 20007

    # Refunds (201xx)
    REFUND_ERROR = 20100

    # Affiliate program (202xx)
    AFFILIATE_NOT_FOUND = 20200
    AFFILIATE_NOT_ACTIVE = 20201
    INVITE_IDENTITY_MISMATCH = 20210
    REFERRAL_NOT_FOUND = 20220
    REFERRAL_STATE_ERROR = 20221
    PAYOUT_REQUEST_INVALID = 20230
    ORDER_DELETE_FORBIDDEN = 20240

    # Authorization errors (3xxxx)
    PERMISSION_ERROR = 30000
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # System errors (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    NETWORK_ERROR = 40002
    SERVICE_UNAVAILABLE = 40003


__all__ = ["BusinessCode"]
