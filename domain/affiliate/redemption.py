"""
邀请码兑换结果（标签联合类型）

耗尽与过期是并发下的常态结果，以返回值表达而不是抛异常。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional, Union

from .entity import AffiliateInvite

NO_LONGER_AVAILABLE = "Invite is no longer available (expired or usage limit reached)"


@dataclass(frozen=True)
class Redeemed:
    invite: AffiliateInvite
    success: ClassVar[bool] = True
    error: ClassVar[Optional[str]] = None
    outcome: ClassVar[str] = "redeemed"


@dataclass(frozen=True)
class NotFound:
    invite_id: str
    success: ClassVar[bool] = False
    error: ClassVar[str] = "Invite not found"
    outcome: ClassVar[str] = "not_found"


@dataclass(frozen=True)
class Exhausted:
    invite_id: str
    success: ClassVar[bool] = False
    error: ClassVar[str] = NO_LONGER_AVAILABLE
    outcome: ClassVar[str] = "exhausted"


@dataclass(frozen=True)
class Expired:
    invite_id: str
    success: ClassVar[bool] = False
    error: ClassVar[str] = NO_LONGER_AVAILABLE
    outcome: ClassVar[str] = "expired"


RedemptionOutcome = Union[Redeemed, NotFound, Exhausted, Expired]
