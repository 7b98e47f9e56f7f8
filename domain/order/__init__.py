"""Order aggregate, lifecycle and pricing service."""
from .entity import Order, OrderItem, DeliveryInfo, OrderStatus
from .events import OrderCreated, OrderStatusChanged, OrderCancelled
from .repository import OrderRepository
from .state_machine import (
    OrderStateMachine,
    CORE_TRANSITIONS,
    EXTENDED_TRANSITIONS,
    core_state_machine,
    extended_state_machine,
)
from .service import (
    OrderDomainService,
    CreateOrderRequest,
    OrderLineRequest,
    DeliveryRequest,
    OrderQuote,
)

__all__ = [
    "Order",
    "OrderItem",
    "DeliveryInfo",
    "OrderStatus",
    "OrderCreated",
    "OrderStatusChanged",
    "OrderCancelled",
    "OrderRepository",
    "OrderStateMachine",
    "CORE_TRANSITIONS",
    "EXTENDED_TRANSITIONS",
    "core_state_machine",
    "extended_state_machine",
    "OrderDomainService",
    "CreateOrderRequest",
    "OrderLineRequest",
    "DeliveryRequest",
    "OrderQuote",
]
