"""
Exceptions for payment providers mapped to unified BusinessException variants.
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


def _details(provider: str, provider_code: str | None, details: Optional[dict]) -> dict:
    full_details = {"provider": provider, "provider_code": provider_code}
    if details:
        full_details.update(details)
    return full_details


class PaymentProviderError(BusinessException):
    """Provider rejected the request; retrying the same request will not help."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="PaymentProviderError",
            details=_details(provider, provider_code, details),
            status_code=502,
        )


class PaymentRecoverableError(BusinessException):
    """Transient failure (rate limit, connection reset); safe to retry with the same idempotency key."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        details: Optional[dict] = None,
        code: int = PaymentCode.PROVIDER_RECOVERABLE,
        error_type: str = "PaymentRecoverableError",
    ):
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=_details(provider, provider_code, details),
            status_code=503,
        )


class PaymentTimeoutError(PaymentRecoverableError):
    """The call did not return in time. Outcome unknown: the provider may have applied it."""

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        super().__init__(
            message,
            provider=provider,
            details=details,
            code=PaymentCode.TIMEOUT,
            error_type="PaymentTimeoutError",
        )
        self.status_code = 504


class PaymentNotConfiguredError(BusinessException):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.NOT_CONFIGURED,
            message=message,
            error_type="PaymentNotConfiguredError",
            details=_details(provider, None, details),
            status_code=503,
        )


class PaymentSignatureError(BusinessException):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="PaymentSignatureError",
            details=_details(provider, None, details),
            status_code=400,
        )
