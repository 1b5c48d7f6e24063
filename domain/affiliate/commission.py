"""
Commission arithmetic and balance-counter transitions.

The three affiliate counters (total_earnings, pending_balance, paid_balance) only
move through the ``BalanceDelta`` constructors below, one per lifecycle event.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Tuple

from domain.common.exceptions import DomainValidationException

from .entity import Affiliate, CommissionType, ReferralStatus


def compute_commission(order_amount: int, commission_type: CommissionType, value: int) -> int:
    """round(order_amount * rate / 100) for percentages, capped flat amount otherwise."""
    if order_amount < 0 or value < 0:
        raise DomainValidationException("佣金参数不能为负数", details={"order_amount": order_amount, "value": value})
    commission_type = CommissionType(commission_type)
    if commission_type is CommissionType.FIXED:
        return min(order_amount, value)
    raw = Decimal(order_amount) * Decimal(value) / Decimal(100)
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def resolve_rate(
    affiliate: Affiliate,
    *,
    default_type: str,
    default_value: int,
    friends_family: bool = False,
    ff_type: Optional[str] = None,
    ff_value: Optional[int] = None,
) -> Tuple[CommissionType, int]:
    """Friends-and-family rate first, then the affiliate's custom rate, then the program default."""
    if friends_family and ff_type is not None and ff_value is not None:
        return CommissionType(ff_type), ff_value
    if affiliate.commission_type is not None and affiliate.commission_value is not None:
        return affiliate.commission_type, affiliate.commission_value
    return CommissionType(default_type), default_value


@dataclass(frozen=True)
class BalanceDelta:
    total_earnings: int = 0
    pending_balance: int = 0
    paid_balance: int = 0

    @classmethod
    def for_creation(cls, amount: int) -> "BalanceDelta":
        return cls(total_earnings=amount, pending_balance=amount)

    @classmethod
    def for_approval(cls, amount: int) -> "BalanceDelta":
        # reclassifies pending as approved; earnings unchanged
        return cls(pending_balance=-amount)

    @classmethod
    def for_payout(cls, amount: int, *, still_pending: bool = False) -> "BalanceDelta":
        return cls(pending_balance=-amount if still_pending else 0, paid_balance=amount)

    @classmethod
    def for_reversal(cls, amount: int, status: ReferralStatus) -> "BalanceDelta":
        status = ReferralStatus(status)
        if status not in (ReferralStatus.PENDING, ReferralStatus.APPROVED):
            raise DomainValidationException(f"无法冲销状态为 {status.value} 的佣金", field="status")
        return cls(
            total_earnings=-amount,
            pending_balance=-amount if status is ReferralStatus.PENDING else 0,
        )

    @property
    def is_zero(self) -> bool:
        return not (self.total_earnings or self.pending_balance or self.paid_balance)

    def apply_to(self, affiliate: Affiliate) -> Affiliate:
        """In-memory application (the repository applies the same delta atomically in SQL)."""
        affiliate.total_earnings += self.total_earnings
        affiliate.pending_balance += self.pending_balance
        affiliate.paid_balance += self.paid_balance
        affiliate.check_balances()
        return affiliate
