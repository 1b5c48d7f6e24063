"""
Stripe refunds/transfers adapter using the official stripe-python SDK.

Notes on SDK usage:
- Credentials come from ProviderConfigResolver on every call and are passed as
  the per-request ``api_key``; no module-level key is set.
- Idempotency keys are supplied via the ``idempotency_key`` kwarg.
- Webhook verification uses ``stripe.Webhook.construct_event`` with the
  ``Stripe-Signature`` header.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import stripe

from application.dtos.payments import (
    RefundRequest,
    RefundResult,
    TransferRequest,
    TransferResult,
    WebhookEvent,
)
from core.logging_config import get_logger
from core.settings import payment_settings
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.config_resolver import ProviderConfigResolver
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
    PaymentTimeoutError,
)

logger = get_logger(__name__)

# Stripe only accepts these refund reasons; others travel in metadata
_STRIPE_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


class StripeClient(BasePaymentClient):
    provider = "stripe"

    def __init__(self, config_resolver: ProviderConfigResolver):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
        )
        self._config = config_resolver

    def _translate(self, exc: Exception) -> Exception:
        if isinstance(exc, stripe.IdempotencyError):
            # the key is still held by an in-flight request with the same parameters
            return PaymentTimeoutError(
                f"{exc}; outcome unknown",
                provider=self.provider,
                details={"reason": "idempotency_conflict"},
            )
        if isinstance(exc, (stripe.RateLimitError, stripe.APIConnectionError)):
            return PaymentRecoverableError(str(exc), provider=self.provider, provider_code=getattr(exc, "code", None))
        return PaymentProviderError(str(exc), provider=self.provider, provider_code=getattr(exc, "code", None))

    async def create_refund(self, req: RefundRequest) -> RefundResult:
        config = await self._config.require()
        params: dict[str, Any] = {
            "payment_intent": req.payment_reference,
            "amount": req.amount,
            "metadata": {**req.metadata, "reason_code": req.reason_code or ""},
            "idempotency_key": req.idempotency_key,
            "api_key": config.secret_key,
        }
        if req.reason_code in _STRIPE_REFUND_REASONS:
            params["reason"] = req.reason_code

        def _create():
            try:
                return stripe.Refund.create(**params)
            except stripe.StripeError as exc:
                raise self._translate(exc) from exc

        refund = await self._retry(lambda: self._call(_create, operation="refund.create"))
        raw_status = _field(refund, "status")
        self._log("stripe_refund_created", refund_id=_field(refund, "id"), raw_status=raw_status)
        return RefundResult(
            refund_id=str(_field(refund, "id")),
            status=self.map_refund_status(raw_status),
            raw_status=raw_status,
            provider=self.provider,
        )

    async def create_transfer(self, req: TransferRequest) -> TransferResult:
        config = await self._config.require()

        def _create():
            try:
                return stripe.Transfer.create(
                    amount=req.amount,
                    currency=req.currency,
                    destination=req.destination_account,
                    metadata=req.metadata,
                    idempotency_key=req.idempotency_key,
                    api_key=config.secret_key,
                )
            except stripe.StripeError as exc:
                raise self._translate(exc) from exc

        transfer = await self._retry(lambda: self._call(_create, operation="transfer.create"))
        raw_status = _field(transfer, "status")
        status = "failed" if _field(transfer, "reversed") else self.map_transfer_status(raw_status)
        self._log("stripe_transfer_created", transfer_id=_field(transfer, "id"), status=status)
        return TransferResult(
            transfer_id=str(_field(transfer, "id")),
            status=status,
            raw_status=raw_status,
            provider=self.provider,
        )

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        secret = self._webhook_secret()
        if not secret:
            raise PaymentSignatureError("Missing PAYMENT__STRIPE__WEBHOOK_SECRET", provider=self.provider)
        sig = headers.get("Stripe-Signature") or headers.get("stripe-signature")
        if not sig:
            raise PaymentSignatureError("Missing Stripe-Signature header", provider=self.provider)
        try:
            stripe.Webhook.construct_event(
                payload=body,
                sig_header=sig,
                secret=secret,
                tolerance=payment_settings.webhook.tolerance_seconds,
            )
        except (stripe.SignatureVerificationError, ValueError) as exc:
            raise PaymentSignatureError(str(exc), provider=self.provider) from exc
        # signature verified; read the payload as plain JSON
        event = json.loads(body)
        return WebhookEvent(
            id=str(event.get("id")),
            type=str(event.get("type")),
            provider=self.provider,
            data=event.get("data", {}) or {},
            raw_headers=headers,
            raw_body=body,
        )

    def _webhook_secret(self) -> Optional[str]:
        cached = self._config.peek()
        if cached is not None and cached.webhook_secret:
            return cached.webhook_secret
        return payment_settings.stripe.webhook_secret
