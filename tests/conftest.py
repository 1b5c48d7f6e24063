"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("IP_HASH_SALT", "test-ip-salt")
os.environ.setdefault("ENVIRONMENT", "test")

import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional

import pytest
import pytest_asyncio

from application.dtos.payments import (
    RefundRequest,
    RefundResult,
    TransferRequest,
    TransferResult,
    WebhookEvent,
)
from domain.affiliate.entity import (
    Affiliate,
    AffiliateReferral,
    AffiliateStatus,
    CommissionType,
    PayoutAccount,
    ReferralStatus,
)
from domain.order.entity import Order, OrderStatus
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.unit_of_work import uow_factory


class StubGateway:
    """In-memory payment gateway recording every request it receives."""

    provider = "stub"

    def __init__(self) -> None:
        self.refund_requests: List[RefundRequest] = []
        self.transfer_requests: List[TransferRequest] = []
        self.refund_status = "processed"
        self.transfer_status = "paid"
        self.refund_error: Optional[Exception] = None
        self.transfer_error: Optional[Exception] = None
        self.events: List[WebhookEvent] = []

    async def create_refund(self, req: RefundRequest) -> RefundResult:
        self.refund_requests.append(req)
        if self.refund_error is not None:
            raise self.refund_error
        return RefundResult(
            refund_id=f"re_{len(self.refund_requests)}",
            status=self.refund_status,
            raw_status={"processed": "succeeded"}.get(self.refund_status, self.refund_status),
            provider=self.provider,
        )

    async def create_transfer(self, req: TransferRequest) -> TransferResult:
        self.transfer_requests.append(req)
        if self.transfer_error is not None:
            raise self.transfer_error
        return TransferResult(
            transfer_id=f"tr_{len(self.transfer_requests)}",
            status=self.transfer_status,
            raw_status=self.transfer_status,
            provider=self.provider,
        )

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        return self.events.pop(0)

    def map_refund_status(self, raw_status: Optional[str]) -> str:
        return {"succeeded": "processed", "failed": "failed", "canceled": "failed"}.get(raw_status or "", "pending")


class RecordingNotifier:
    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def notify_refund_processed(self, refund_id: str, order_id: str, amount: int) -> None:
        self.calls.append((refund_id, order_id, amount))


@pytest_asyncio.fixture
async def engine(tmp_path):
    # file database so concurrent units of work use separate connections
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def make_uow(engine):
    return uow_factory(build_session_factory(engine))


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


class Seeder:
    """Test data helpers writing straight through the repositories."""

    def __init__(self, make_uow) -> None:
        self._make_uow = make_uow

    async def order(
        self,
        total: int = 10000,
        *,
        status: OrderStatus = OrderStatus.PAID,
        payment_reference: Optional[str] = "pi_test",
        affiliate_code: Optional[str] = None,
    ) -> Order:
        async with self._make_uow() as uow:
            return await uow.orders.create(
                Order(
                    id=str(uuid.uuid4()),
                    total_amount=total,
                    status=status,
                    payment_reference=payment_reference,
                    affiliate_code=affiliate_code,
                )
            )

    async def affiliate(
        self,
        code: str = "ALICE",
        *,
        status: AffiliateStatus = AffiliateStatus.ACTIVE,
        commission_type: Optional[CommissionType] = None,
        commission_value: Optional[int] = None,
        total_earnings: int = 0,
        pending_balance: int = 0,
        paid_balance: int = 0,
    ) -> Affiliate:
        async with self._make_uow() as uow:
            return await uow.affiliates.create(
                Affiliate(
                    id=str(uuid.uuid4()),
                    affiliate_code=code,
                    status=status,
                    commission_type=commission_type,
                    commission_value=commission_value,
                    total_earnings=total_earnings,
                    pending_balance=pending_balance,
                    paid_balance=paid_balance,
                )
            )

    async def referral(
        self,
        affiliate_id: str,
        amount: int,
        *,
        status: ReferralStatus = ReferralStatus.APPROVED,
        created_at: Optional[datetime] = None,
    ) -> AffiliateReferral:
        order = await self.order(amount * 10)
        async with self._make_uow() as uow:
            return await uow.referrals.create(
                AffiliateReferral(
                    id=str(uuid.uuid4()),
                    affiliate_id=affiliate_id,
                    order_id=order.id,
                    order_amount=order.total_amount,
                    commission_type=CommissionType.PERCENT,
                    commission_rate=10,
                    commission_amount=amount,
                    status=status,
                    created_at=created_at or datetime.now(timezone.utc),
                )
            )

    async def payout_account(self, affiliate_id: str, **overrides) -> PayoutAccount:
        values = dict(
            affiliate_id=affiliate_id,
            external_account_id=f"acct_{affiliate_id[:8]}",
            payouts_enabled=True,
            details_submitted=True,
            country="US",
            currency="usd",
        )
        values.update(overrides)
        async with self._make_uow() as uow:
            return await uow.affiliates.save_payout_account(PayoutAccount(**values))

    async def get_affiliate(self, affiliate_id: str) -> Affiliate:
        async with self._make_uow(readonly=True) as uow:
            return await uow.affiliates.get_by_id(affiliate_id)

    async def get_order(self, order_id: str) -> Order:
        async with self._make_uow(readonly=True) as uow:
            return await uow.orders.get_by_id(order_id)


@pytest.fixture
def seed(make_uow):
    return Seeder(make_uow)
