"""
订单领域服务 - 处理下单校验、计价与状态变更
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from domain.common.exceptions import (
    InvalidOrderLineError,
    OrderValidationException,
)
from domain.pricing.delivery import DeliveryFeePolicy, DeliveryType
from domain.pricing.money import OrderTotals, compute_totals
from domain.pricing.schedule import PricingSchedule, DEFAULT_SCHEDULE
from domain.product.repository import ProductRepository
from .entity import DeliveryInfo, Order, OrderItem, OrderStatus, MAX_DELIVERY_FIELD_LENGTH
from .events import OrderCreated, OrderStatusChanged
from .repository import OrderRepository
from .state_machine import OrderStateMachine, core_state_machine


@dataclass
class OrderLineRequest:
    product_id: int
    product_title: str
    quantity: int
    unit_price: int


@dataclass
class DeliveryRequest:
    name: str
    phone: str
    address: str
    province: str
    email: Optional[str] = None
    delivery_message: Optional[str] = None


@dataclass
class CreateOrderRequest:
    customer_id: str
    items: List[OrderLineRequest]
    delivery: Optional[DeliveryRequest]
    payment_method: str
    is_rush_order: bool = False
    delivery_type: Optional[DeliveryType] = None


@dataclass(frozen=True)
class OrderQuote:
    totals: OrderTotals
    delivery_fee: int
    total_weight_kg: Decimal
    currency: str = "VND"

    @property
    def grand_total(self) -> int:
        return self.totals.with_delivery(self.delivery_fee)


@dataclass
class _PricedLine:
    quantity: int
    unit_price: int
    unit_weight_kg: Decimal = field(default_factory=lambda: Decimal("0"))


class OrderDomainService:
    """
    订单领域服务

    职责：
    1. 下单请求校验（必填字段、订单行、收货省份、加急资格、最低金额）
    2. 计算订单小计、增值税、运费
    3. 通过状态机变更订单状态并记录领域事件
    """

    def __init__(
        self,
        order_repository: OrderRepository,
        product_repository: ProductRepository,
        schedule: PricingSchedule = DEFAULT_SCHEDULE,
        state_machine: OrderStateMachine = core_state_machine,
    ):
        self.order_repository = order_repository
        self.product_repository = product_repository
        self.schedule = schedule
        self.delivery_policy = DeliveryFeePolicy(schedule)
        self.state_machine = state_machine
        self.events: List = []  # 领域事件收集

    def _validate_fields(self, request: CreateOrderRequest) -> List[str]:
        errors: List[str] = []
        if not request.customer_id or not request.customer_id.strip():
            errors.append("Customer ID is required")

        if not request.items:
            errors.append("Order must contain at least one item")
        else:
            for index, item in enumerate(request.items):
                prefix = f"Item {index + 1}: "
                if item.product_id is None:
                    errors.append(prefix + "Product ID is required")
                if item.quantity is None or item.quantity <= 0:
                    errors.append(prefix + "Quantity must be positive")
                if item.unit_price is None or item.unit_price < 0:
                    errors.append(prefix + "Unit price cannot be negative")
                if not item.product_title or not item.product_title.strip():
                    errors.append(prefix + "Product title is required")

        delivery = request.delivery
        if delivery is None:
            errors.append("Delivery information is required")
        else:
            for name in ("name", "phone", "address", "province"):
                value = getattr(delivery, name)
                if not value or not value.strip():
                    errors.append(f"Delivery {name} is required")
            for name in ("name", "phone", "address", "province", "delivery_message"):
                value = getattr(delivery, name)
                if value is not None and len(value) > MAX_DELIVERY_FIELD_LENGTH:
                    errors.append(f"Delivery {name} cannot exceed {MAX_DELIVERY_FIELD_LENGTH} characters")

        if not request.payment_method or not request.payment_method.strip():
            errors.append("Payment method is required")
        return errors

    async def _priced_lines(self, request: CreateOrderRequest) -> List[_PricedLine]:
        lines: List[_PricedLine] = []
        for item in request.items:
            if not await self.product_repository.is_available(item.product_id, item.quantity):
                raise OrderValidationException([f"Product not available: {item.product_id}"])
            product = await self.product_repository.get_by_id(item.product_id)
            weight = product.shipping_weight() if product else Decimal("0")
            lines.append(_PricedLine(item.quantity, item.unit_price, weight))
        return lines

    async def calculate_order_total(self, request: CreateOrderRequest) -> OrderQuote:
        """计算订单总价（小计 + 增值税 + 运费）"""
        lines = await self._priced_lines(request)
        totals = compute_totals(lines, self.schedule.vat_rate)
        weight = sum((line.unit_weight_kg * line.quantity for line in lines), Decimal("0"))
        province = request.delivery.province if request.delivery else None
        fee = self.delivery_policy.compute_delivery_fee(
            province, weight, request.is_rush_order, totals.subtotal
        )
        return OrderQuote(totals=totals, delivery_fee=fee, total_weight_kg=weight)

    async def validate_order(self, request: CreateOrderRequest) -> List[str]:
        """返回全部校验错误；空列表表示请求合法"""
        errors = self._validate_fields(request)
        if errors:
            return errors

        province = request.delivery.province
        if not self.delivery_policy.is_supported_province(province):
            errors.append("Invalid delivery address or province")
        if request.is_rush_order and not self.delivery_policy.is_rush_eligible(province):
            errors.append("Rush order not available for selected province")

        try:
            quote = await self.calculate_order_total(request)
        except OrderValidationException as exc:
            return errors + exc.errors
        except InvalidOrderLineError as exc:
            return errors + [exc.message]
        if quote.totals.subtotal < self.schedule.minimum_order_amount:
            errors.append(f"Order amount must be at least {self.schedule.minimum_order_amount} VND")
        return errors

    async def create_order(self, request: CreateOrderRequest) -> Order:
        """
        创建订单

        业务规则：
        1. 请求必须通过全部校验
        2. 订单行的重量取自商品目录，用于计算运费
        3. 订单初始状态为 PENDING
        """
        errors = await self.validate_order(request)
        if errors:
            raise OrderValidationException(errors)

        items: List[OrderItem] = []
        for line in request.items:
            product = await self.product_repository.get_by_id(line.product_id)
            items.append(OrderItem(
                product_id=line.product_id,
                product_title=line.product_title,
                quantity=line.quantity,
                unit_price=line.unit_price,
                unit_weight_kg=product.shipping_weight() if product else Decimal("0"),
            ))

        now = datetime.now(timezone.utc)
        order = Order(
            id=None,
            customer_id=request.customer_id,
            items=items,
            payment_method=request.payment_method,
            status=OrderStatus.PENDING,
            vat_rate=self.schedule.vat_rate,
            is_rush_order=request.is_rush_order,
            created_at=now,
        )
        delivery_type = request.delivery_type or (
            DeliveryType.RUSH if request.is_rush_order else DeliveryType.STANDARD
        )
        d = request.delivery
        order.delivery_info = DeliveryInfo(
            name=d.name,
            phone=d.phone,
            address=d.address,
            province=d.province,
            email=d.email,
            delivery_message=d.delivery_message,
            delivery_type=delivery_type,
            delivery_fee=self.delivery_policy.compute_delivery_fee(
                d.province, order.total_weight_kg, request.is_rush_order, order.subtotal
            ),
            estimated_delivery_date=self.delivery_policy.estimated_delivery_date(
                delivery_type, d.province, now
            ),
        )

        created = await self.order_repository.create(order)
        self.events.append(OrderCreated(
            order_id=created.order_ref,
            customer_id=created.customer_id,
            total_amount=created.grand_total,
        ))
        return created

    def refresh_delivery_fee(self, order: Order) -> int:
        """订单行变化后按当前重量与小计重新计算运费"""
        if order.delivery_info is None:
            return 0
        fee = self.delivery_policy.compute_delivery_fee(
            order.delivery_info.province,
            order.total_weight_kg,
            order.is_rush_order,
            order.subtotal,
        )
        order.delivery_info.delivery_fee = fee
        return fee

    async def change_status(
        self,
        order: Order,
        target: OrderStatus,
        reason: Optional[str] = None,
    ) -> Order:
        """通过状态机变更状态；非法转换抛出 InvalidTransitionError 且不落库"""
        event: OrderStatusChanged = self.state_machine.transition(order, target, reason)
        updated = await self.order_repository.update(order)
        self.events.append(event)
        return updated

    def clear_events(self) -> List:
        """清空并返回领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events
