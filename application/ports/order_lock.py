"""
Per-order mutual exclusion port.

Every mutation of an order's status or of its payment transactions runs while
holding the lock for that order id. Implementations live in
``infrastructure/locks.py``.
"""
from __future__ import annotations

from typing import AsyncContextManager, Protocol, runtime_checkable


@runtime_checkable
class OrderLock(Protocol):
    def hold(self, order_id: str) -> AsyncContextManager[None]: ...
