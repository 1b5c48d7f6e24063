"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from application.dtos.payments import (
    RefundRequest,
    RefundResult,
    TransferRequest,
    TransferResult,
    WebhookEvent,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the payment/refund and transfer provider.

    Calls must be bounded by a timeout. A timeout raises PaymentTimeoutError
    (outcome unknown); callers retry with the same idempotency key.
    """

    provider: str

    async def create_refund(self, req: RefundRequest) -> RefundResult: ...

    async def create_transfer(self, req: TransferRequest) -> TransferResult: ...

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent: ...

    def map_refund_status(self, raw_status: str | None) -> str: ...
