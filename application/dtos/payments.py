"""
Payment provider DTOs (Pydantic v2) used at the gateway boundary.
"""
from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RefundRequest(BaseModel):
    payment_reference: str
    amount: int = Field(gt=0)  # minor units
    reason_code: Optional[str] = None
    idempotency_key: str
    metadata: dict[str, str] = Field(default_factory=dict)


class RefundResult(BaseModel):
    refund_id: str
    status: Literal["pending", "processed", "failed"]
    raw_status: Optional[str] = None  # untranslated provider value, kept for audit
    provider: str


class TransferRequest(BaseModel):
    amount: int = Field(gt=0)
    currency: str = "usd"
    destination_account: str
    metadata: dict[str, str] = Field(default_factory=dict)
    idempotency_key: str

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, v: str) -> str:
        v = (v or "").lower()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        return v


class TransferResult(BaseModel):
    transfer_id: str
    status: Literal["pending", "paid", "failed"]
    raw_status: Optional[str] = None
    provider: str


class WebhookEvent(BaseModel):
    id: str
    type: str
    provider: str
    data: dict[str, Any]
    # raw fields for traceability (optional)
    raw_headers: Optional[dict[str, Any]] = None
    raw_body: Optional[bytes] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)
