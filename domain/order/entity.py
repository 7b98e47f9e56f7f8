"""
订单领域实体 - 订单聚合根
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException, InvalidOrderLineError
from domain.pricing.delivery import DeliveryType
from domain.pricing.money import OrderTotals, compute_totals, line_total, total_weight


MAX_DELIVERY_FIELD_LENGTH = 100


class OrderStatus(str, Enum):
    """订单状态枚举（核心流程不使用 PROCESSING / RETURNED）"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class OrderItem:
    """订单行 - 商品标题与单价在下单时快照"""

    product_id: int
    product_title: str
    quantity: int
    unit_price: int
    unit_weight_kg: Decimal = field(default_factory=lambda: Decimal("0"))
    id: Optional[int] = None

    def __post_init__(self):
        if self.quantity is None or self.quantity <= 0:
            raise InvalidOrderLineError(f"Quantity must be positive for product {self.product_id}")
        if self.unit_price is None or self.unit_price < 0:
            raise InvalidOrderLineError(f"Unit price cannot be negative for product {self.product_id}")
        self.unit_weight_kg = Decimal(str(self.unit_weight_kg))

    @property
    def line_total(self) -> int:
        return line_total(self)

    @property
    def total_weight_kg(self) -> Decimal:
        return self.unit_weight_kg * self.quantity


@dataclass
class DeliveryInfo:
    """收货信息 - 订单离开 PENDING 后只允许记录实际送达时间"""

    name: str
    phone: str
    address: str
    province: str
    email: Optional[str] = None
    delivery_message: Optional[str] = None
    delivery_type: DeliveryType = DeliveryType.STANDARD
    delivery_fee: int = 0
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self):
        for name in ("name", "phone", "address", "province", "email", "delivery_message"):
            value = getattr(self, name)
            if value is not None and len(value) > MAX_DELIVERY_FIELD_LENGTH:
                raise DomainValidationException(
                    f"Delivery {name} cannot exceed {MAX_DELIVERY_FIELD_LENGTH} characters",
                    field=name,
                )
        self.estimated_delivery_date = _ensure_utc(self.estimated_delivery_date)
        self.actual_delivery_date = _ensure_utc(self.actual_delivery_date)

    @property
    def is_rush(self) -> bool:
        return self.delivery_type == DeliveryType.RUSH

    @property
    def is_delivered(self) -> bool:
        return self.actual_delivery_date is not None

    @property
    def full_address(self) -> str:
        return f"{self.address}, {self.province}"

    def mark_delivered(self, at: Optional[datetime] = None) -> None:
        self.actual_delivery_date = _ensure_utc(at) or datetime.now(timezone.utc)


@dataclass
class Order:
    """
    订单聚合根

    业务规则：
    1. 税后金额 = 小计 + 小计 × 税率 / 100，只能由订单行重新计算得出
    2. 订单行不能为空，且只能在 PENDING 状态下增删
    3. 状态转换必须经过 OrderStateMachine
    """

    id: Optional[int]
    customer_id: str
    items: list[OrderItem]
    payment_method: str
    status: OrderStatus = OrderStatus.PENDING
    vat_rate: int = 10
    is_rush_order: bool = False
    delivery_info: Optional[DeliveryInfo] = None

    subtotal: int = 0
    vat_amount: int = 0
    total_after_vat: int = 0

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self):
        if not self.customer_id or not self.customer_id.strip():
            raise DomainValidationException("Customer ID is required", field="customer_id")
        self.created_at = _ensure_utc(self.created_at) or datetime.now(timezone.utc)
        self.updated_at = _ensure_utc(self.updated_at) or self.created_at
        self.recalculate_totals()

    def recalculate_totals(self) -> OrderTotals:
        totals = compute_totals(self.items, self.vat_rate)
        self.subtotal = totals.subtotal
        self.vat_amount = totals.vat_amount
        self.total_after_vat = totals.total_before_fees
        return totals

    def _ensure_editable(self) -> None:
        if self.status != OrderStatus.PENDING:
            raise DomainValidationException(
                f"Items can only change while the order is pending (status={self.status.value})",
                field="status",
            )

    def add_item(
        self,
        product_id: int,
        product_title: str,
        quantity: int,
        unit_price: int,
        unit_weight_kg: Decimal = Decimal("0"),
    ) -> OrderItem:
        self._ensure_editable()
        item = OrderItem(
            product_id=product_id,
            product_title=product_title,
            quantity=quantity,
            unit_price=unit_price,
            unit_weight_kg=unit_weight_kg,
        )
        self.items.append(item)
        self.recalculate_totals()
        self.updated_at = datetime.now(timezone.utc)
        return item

    def remove_item(self, product_id: int) -> bool:
        self._ensure_editable()
        remaining = [item for item in self.items if item.product_id != product_id]
        if len(remaining) == len(self.items):
            return False
        if not remaining:
            raise InvalidOrderLineError("Order must contain at least one item")
        self.items = remaining
        self.recalculate_totals()
        self.updated_at = datetime.now(timezone.utc)
        return True

    @property
    def delivery_fee(self) -> int:
        return self.delivery_info.delivery_fee if self.delivery_info else 0

    @property
    def grand_total(self) -> int:
        """网关实际收取金额（含运费）"""
        return self.total_after_vat + self.delivery_fee

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def total_weight_kg(self) -> Decimal:
        return total_weight(self.items)

    @property
    def order_ref(self) -> str:
        """对外（支付网关）使用的订单标识"""
        return str(self.id) if self.id is not None else ""

    def is_cancelled(self) -> bool:
        return self.status == OrderStatus.CANCELLED

    def is_completed(self) -> bool:
        return self.status == OrderStatus.DELIVERED
