"""
Conversion-adjustment notification port.

Called after a refund settles so downstream ad/analytics conversions can be
reduced. Implementations must not block and must not raise into the caller.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ConversionNotifier(Protocol):

    def notify_refund_processed(self, refund_id: str, order_id: str, amount: int) -> None: ...
