"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004
    NOT_CONFIGURED = 60005


# Provider refund status -> local refund status (pending/processed/failed).
# Anything not listed stays pending until a webhook settles it.
PROVIDER_REFUND_STATUS_TO_INTERNAL = {
    "stripe": {
        "succeeded": "processed",
        "pending": "pending",
        "requires_action": "pending",
        "failed": "failed",
        "canceled": "failed",
        "cancelled": "failed",
    },
}

# Transfers are synchronous on creation; reversed transfers count as failed.
PROVIDER_TRANSFER_STATUS_TO_INTERNAL = {
    "stripe": {
        "paid": "paid",
        "pending": "pending",
        "in_transit": "pending",
        "reversed": "failed",
        "failed": "failed",
        "canceled": "failed",
    },
}
