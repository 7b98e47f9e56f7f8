"""
Payment domain events.

Dataclass events record payment transaction lifecycle facts for downstream
handling (e.g., notifications, projections). Domain remains free of
infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    order_id: str
    txn_ref: str
    provider: str = "vnpay"
    provider_txn_no: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentSucceeded(PaymentEvent):
    amount: int = 0


@dataclass
class PaymentFailed(PaymentEvent):
    response_code: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class PaymentRefunded(PaymentEvent):
    amount: int = 0
    request_id: str = ""


@dataclass
class PaymentCancelled(PaymentEvent):
    amount: int = 0
    reason: Optional[str] = None
