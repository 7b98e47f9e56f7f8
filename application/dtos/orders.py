"""
订单 DTO - 应用层与表现层之间的数据传输
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_serializer

from domain.order.entity import Order, OrderStatus
from domain.order.service import (
    CreateOrderRequest,
    DeliveryRequest,
    OrderLineRequest,
    OrderQuote,
)
from domain.pricing.delivery import DeliveryType


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class OrderLineInput(DTOBase):
    """订单行输入"""
    product_id: int
    product_title: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(..., gt=0, description="购买数量")
    unit_price: int = Field(..., ge=0, description="单价（越南盾）")


class DeliveryInput(DTOBase):
    """收货信息输入（长度上限由领域层统一校验）"""
    name: str
    phone: str
    address: str
    province: str
    email: Optional[str] = None
    delivery_message: Optional[str] = None


class PlaceOrder(DTOBase):
    """下单请求"""
    customer_id: str = Field(..., min_length=1, max_length=100)
    items: List[OrderLineInput] = Field(..., min_length=1)
    delivery: DeliveryInput
    payment_method: str = Field("vnpay", min_length=1)
    is_rush_order: bool = False
    delivery_type: Optional[DeliveryType] = None

    def to_domain(self) -> CreateOrderRequest:
        return CreateOrderRequest(
            customer_id=self.customer_id,
            items=[
                OrderLineRequest(
                    product_id=i.product_id,
                    product_title=i.product_title,
                    quantity=i.quantity,
                    unit_price=i.unit_price,
                )
                for i in self.items
            ],
            delivery=DeliveryRequest(**self.delivery.model_dump()),
            payment_method=self.payment_method,
            is_rush_order=self.is_rush_order,
            delivery_type=self.delivery_type,
        )


class AddOrderItem(OrderLineInput):
    """向 PENDING 订单追加订单行"""


class OrderStatusUpdate(DTOBase):
    status: OrderStatus
    reason: Optional[str] = Field(None, max_length=255)


class OrderCancel(DTOBase):
    reason: Optional[str] = Field(None, max_length=255)


class OrderItemResponse(DTOBase):
    product_id: int
    product_title: str
    quantity: int
    unit_price: int
    line_total: int

    model_config = ConfigDict(from_attributes=True)


class DeliveryInfoResponse(DTOBase):
    name: str
    phone: str
    email: Optional[str]
    address: str
    province: str
    delivery_message: Optional[str]
    delivery_type: DeliveryType
    delivery_fee: int
    estimated_delivery_date: Optional[datetime]
    actual_delivery_date: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(DTOBase):
    """订单响应DTO"""
    id: int
    customer_id: str
    status: OrderStatus
    payment_method: str
    is_rush_order: bool
    items: List[OrderItemResponse]
    delivery_info: Optional[DeliveryInfoResponse]
    subtotal: int
    vat_amount: int
    total_after_vat: int
    delivery_fee: int
    grand_total: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            customer_id=order.customer_id,
            status=order.status,
            payment_method=order.payment_method,
            is_rush_order=order.is_rush_order,
            items=[OrderItemResponse.model_validate(i) for i in order.items],
            delivery_info=(
                DeliveryInfoResponse.model_validate(order.delivery_info)
                if order.delivery_info else None
            ),
            subtotal=order.subtotal,
            vat_amount=order.vat_amount,
            total_after_vat=order.total_after_vat,
            delivery_fee=order.delivery_fee,
            grand_total=order.grand_total,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrderQuoteResponse(DTOBase):
    """订单报价（小计、增值税、运费、应付总额）"""
    subtotal: int
    vat_amount: int
    total_after_vat: int
    delivery_fee: int
    grand_total: int
    total_weight_kg: float
    currency: str = "VND"

    @classmethod
    def from_quote(cls, quote: OrderQuote) -> "OrderQuoteResponse":
        return cls(
            subtotal=quote.totals.subtotal,
            vat_amount=quote.totals.vat_amount,
            total_after_vat=quote.totals.total_before_fees,
            delivery_fee=quote.delivery_fee,
            grand_total=quote.grand_total,
            total_weight_kg=float(quote.total_weight_kg),
            currency=quote.currency,
        )


class ModifiableResponse(DTOBase):
    order_id: int
    modifiable: bool
