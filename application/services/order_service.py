"""
订单应用服务（application/services）- 编排订单领域服务、事务与订单锁

所有订单状态变更与支付对账共用同一把按订单ID的锁。
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional

from application.dtos.orders import (
    AddOrderItem,
    OrderQuoteResponse,
    OrderResponse,
    PlaceOrder,
)
from application.ports.order_lock import OrderLock
from core.logging_config import get_logger
from domain.common.exceptions import (
    OrderNotFoundException,
    OrderNotModifiableException,
    OrderValidationException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderStatus
from domain.order.service import OrderDomainService
from domain.order.state_machine import OrderStateMachine, core_state_machine
from domain.payment.service import PaymentDomainService
from domain.pricing.schedule import DEFAULT_SCHEDULE, PricingSchedule


logger = get_logger(__name__)


class OrderApplicationService:
    """订单应用服务 - 处理应用层逻辑"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        order_lock: OrderLock,
        *,
        schedule: PricingSchedule = DEFAULT_SCHEDULE,
        state_machine: OrderStateMachine = core_state_machine,
    ):
        self._uow_factory = uow_factory
        self._order_lock = order_lock
        self._schedule = schedule
        self._state_machine = state_machine

    def _domain_service(self, uow: AbstractUnitOfWork) -> OrderDomainService:
        return OrderDomainService(
            uow.order_repository,
            uow.product_repository,
            schedule=self._schedule,
            state_machine=self._state_machine,
        )

    @staticmethod
    async def _load(uow: AbstractUnitOfWork, order_id: int) -> Order:
        order = await uow.order_repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundException(str(order_id))
        return order

    @staticmethod
    async def _void_pending_payments(uow: AbstractUnitOfWork, order: Order, reason: str) -> list:
        """作废旧金额/已取消订单的支付尝试，返回领域事件"""
        payments = PaymentDomainService(uow.payment_repository)
        cancelled = await payments.cancel_pending_for_order(order.order_ref, reason)
        if cancelled:
            logger.info(
                "pending_payments_voided",
                order_id=order.order_ref,
                txn_refs=[t.txn_ref for t in cancelled],
                reason=reason,
            )
        return payments.clear_events()

    @staticmethod
    def _publish(events: list) -> None:
        for event in events:
            logger.info("domain_event", event_type=type(event).__name__, event_id=event.event_id)

    async def place_order(self, payload: PlaceOrder) -> OrderResponse:
        """校验并创建订单（初始状态 PENDING）"""
        async with self._uow_factory() as uow:
            service = self._domain_service(uow)
            order = await service.create_order(payload.to_domain())
            events = service.clear_events()

        self._publish(events)
        logger.info(
            "order_placed",
            order_id=order.id,
            customer_id=order.customer_id,
            grand_total=order.grand_total,
            is_rush_order=order.is_rush_order,
        )
        return OrderResponse.from_entity(order)

    async def calculate_order_total(self, payload: PlaceOrder) -> OrderQuoteResponse:
        """仅计价不落库；请求不合法时抛出 OrderValidationException"""
        request = payload.to_domain()
        async with self._uow_factory(readonly=True) as uow:
            service = self._domain_service(uow)
            errors = await service.validate_order(request)
            if errors:
                raise OrderValidationException(errors)
            quote = await service.calculate_order_total(request)
        return OrderQuoteResponse.from_quote(quote)

    async def get_order(self, order_id: int) -> OrderResponse:
        async with self._uow_factory(readonly=True) as uow:
            order = await self._load(uow, order_id)
        return OrderResponse.from_entity(order)

    async def list_customer_orders(
        self,
        customer_id: str,
        skip: int = 0,
        limit: int = 100,
    ) -> List[OrderResponse]:
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_by_customer(customer_id, skip=skip, limit=limit)
        return [OrderResponse.from_entity(o) for o in orders]

    async def update_status(
        self,
        order_id: int,
        status: OrderStatus,
        reason: Optional[str] = None,
    ) -> OrderResponse:
        """
        通过状态机变更订单状态

        Raises:
            OrderNotFoundException: 订单不存在
            InvalidTransitionError: 目标状态不可达，订单保持不变
        """
        async with self._order_lock.hold(str(order_id)):
            async with self._uow_factory() as uow:
                service = self._domain_service(uow)
                order = await self._load(uow, order_id)
                previous = order.status
                order = await service.change_status(order, status, reason)
                events = service.clear_events()
                if status == OrderStatus.CANCELLED:
                    events += await self._void_pending_payments(uow, order, "order cancelled")

        self._publish(events)
        logger.info(
            "order_status_changed",
            order_id=order_id,
            from_status=previous.value,
            to_status=order.status.value,
            reason=reason,
        )
        return OrderResponse.from_entity(order)

    async def cancel_order(self, order_id: int, reason: Optional[str] = None) -> OrderResponse:
        return await self.update_status(order_id, OrderStatus.CANCELLED, reason or "cancelled by customer")

    async def can_modify_order(self, order_id: int, now: Optional[datetime] = None) -> bool:
        async with self._uow_factory(readonly=True) as uow:
            order = await self._load(uow, order_id)
        return self._state_machine.can_modify(order, now)

    def _ensure_modifiable(self, order: Order) -> None:
        if not self._state_machine.can_modify(order):
            raise OrderNotModifiableException(order.order_ref, order.status.value)

    async def add_item(self, order_id: int, item: AddOrderItem) -> OrderResponse:
        """PENDING 且仍在修改窗口内的订单才可追加订单行；运费随之重算"""
        async with self._order_lock.hold(str(order_id)):
            async with self._uow_factory() as uow:
                service = self._domain_service(uow)
                order = await self._load(uow, order_id)
                self._ensure_modifiable(order)

                if not await uow.product_repository.is_available(item.product_id, item.quantity):
                    raise OrderValidationException([f"Product not available: {item.product_id}"])
                product = await uow.product_repository.get_by_id(item.product_id)
                order.add_item(
                    product_id=item.product_id,
                    product_title=item.product_title,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    unit_weight_kg=product.shipping_weight() if product else 0,
                )
                service.refresh_delivery_fee(order)
                order = await uow.order_repository.update(order)
                events = await self._void_pending_payments(uow, order, "order items changed")

        self._publish(events)
        logger.info("order_item_added", order_id=order_id, product_id=item.product_id, quantity=item.quantity)
        return OrderResponse.from_entity(order)

    async def remove_item(self, order_id: int, product_id: int) -> OrderResponse:
        """移除订单行；不存在的商品不做改动，最后一行不可移除"""
        async with self._order_lock.hold(str(order_id)):
            async with self._uow_factory() as uow:
                service = self._domain_service(uow)
                order = await self._load(uow, order_id)
                self._ensure_modifiable(order)

                events: list = []
                if order.remove_item(product_id):
                    service.refresh_delivery_fee(order)
                    order = await uow.order_repository.update(order)
                    events = await self._void_pending_payments(uow, order, "order items changed")
                    logger.info("order_item_removed", order_id=order_id, product_id=product_id)

        self._publish(events)
        return OrderResponse.from_entity(order)
