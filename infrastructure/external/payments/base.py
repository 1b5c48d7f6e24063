"""
Base payment client implementing shared concerns: timeouts, retry, logging, mapping.

Concrete providers should subclass and implement provider-specific logic.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from application.dtos.payments import (
    RefundRequest,
    RefundResult,
    TransferRequest,
    TransferResult,
    WebhookEvent,
)
from core.logging_config import get_logger
from infrastructure.external.payments.exceptions import PaymentRecoverableError, PaymentTimeoutError
from shared.codes.payment_codes import (
    PROVIDER_REFUND_STATUS_TO_INTERNAL,
    PROVIDER_TRANSFER_STATUS_TO_INTERNAL,
)

logger = get_logger(__name__)

T = TypeVar("T")


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "total": 10.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}

    @property
    def call_timeout(self) -> float:
        return float(self._timeouts_cfg["total"])

    async def _call(self, fn: Callable[[], T], *, operation: str) -> T:
        """Run a blocking SDK call in a worker thread under a hard timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn), timeout=self.call_timeout)
        except asyncio.TimeoutError as exc:
            self._log("payment_call_timeout", operation=operation, timeout=self.call_timeout)
            raise PaymentTimeoutError(
                f"{operation} timed out after {self.call_timeout}s; outcome unknown",
                provider=self.provider,
                details={"operation": operation},
            ) from exc

    async def _retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        # retried calls reuse the caller's idempotency key; a timed-out call may still be
        # running in its worker thread, so a timeout is surfaced instead of retried
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(PaymentRecoverableError) & retry_if_not_exception_type(PaymentTimeoutError),
            reraise=True,
        ):
            with attempt:
                return await fn()
        raise AssertionError("unreachable")  # pragma: no cover

    # Default implementations raise to force override where needed
    async def create_refund(self, req: RefundRequest) -> RefundResult:
        raise NotImplementedError

    async def create_transfer(self, req: TransferRequest) -> TransferResult:
        raise NotImplementedError

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        raise NotImplementedError

    # Helpers
    def map_refund_status(self, raw_status: Optional[str]) -> str:
        """succeeded->processed, pending/requires_action->pending, failed/canceled->failed; unknown->pending."""
        mapping = PROVIDER_REFUND_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get((raw_status or "").lower(), "pending")

    def map_transfer_status(self, raw_status: Optional[str]) -> str:
        # a created transfer without an explicit status has been accepted
        if not raw_status:
            return "paid"
        mapping = PROVIDER_TRANSFER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(raw_status.lower(), "pending")

    def _log(self, event: str, **kwargs) -> None:
        logger.info(event, provider=self.provider, **kwargs)
