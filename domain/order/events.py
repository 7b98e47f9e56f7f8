"""
Order domain events.

Dataclass events record order lifecycle facts for downstream handling
(notifications, projections). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class OrderEvent:
    order_id: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OrderCreated(OrderEvent):
    customer_id: str = ""
    total_amount: int = 0


@dataclass
class OrderStatusChanged(OrderEvent):
    from_status: str = ""
    to_status: str = ""
    reason: Optional[str] = None


@dataclass
class OrderCancelled(OrderStatusChanged):
    pass
