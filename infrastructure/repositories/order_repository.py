"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import ConcurrentModificationException, OrderNotFoundException
from domain.order.entity import DeliveryInfo, Order, OrderItem, OrderStatus
from domain.order.repository import OrderRepository
from domain.pricing.delivery import DeliveryType
from infrastructure.models.order import DeliveryInfoModel, OrderItemModel, OrderModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体（金额由订单行重新计算）"""
        items = [
            OrderItem(
                id=item.id,
                product_id=item.product_id,
                product_title=item.product_title,
                quantity=item.quantity,
                unit_price=item.unit_price,
                unit_weight_kg=Decimal(str(item.unit_weight_kg or 0)),
            )
            for item in model.items
        ]
        delivery = None
        if model.delivery_info is not None:
            d = model.delivery_info
            delivery = DeliveryInfo(
                id=d.id,
                name=d.name,
                phone=d.phone,
                email=d.email,
                address=d.address,
                province=d.province,
                delivery_message=d.delivery_message,
                delivery_type=DeliveryType(d.delivery_type),
                delivery_fee=d.delivery_fee,
                estimated_delivery_date=d.estimated_delivery_date,
                actual_delivery_date=d.actual_delivery_date,
            )
        return Order(
            id=model.id,
            customer_id=model.customer_id,
            items=items,
            payment_method=model.payment_method,
            status=OrderStatus(model.status),
            vat_rate=model.vat_rate,
            is_rush_order=model.is_rush_order,
            delivery_info=delivery,
            created_at=model.created_at,
            updated_at=model.updated_at,
            version=model.version,
        )

    @staticmethod
    def _item_model(item: OrderItem) -> OrderItemModel:
        return OrderItemModel(
            product_id=item.product_id,
            product_title=item.product_title,
            quantity=item.quantity,
            unit_price=item.unit_price,
            unit_weight_kg=item.unit_weight_kg,
        )

    @staticmethod
    def _delivery_model(d: DeliveryInfo) -> DeliveryInfoModel:
        return DeliveryInfoModel(
            name=d.name,
            phone=d.phone,
            email=d.email,
            address=d.address,
            province=d.province,
            delivery_message=d.delivery_message,
            delivery_type=d.delivery_type.value,
            delivery_fee=d.delivery_fee,
            estimated_delivery_date=d.estimated_delivery_date,
            actual_delivery_date=d.actual_delivery_date,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        model = OrderModel(
            id=entity.id,
            customer_id=entity.customer_id,
            payment_method=entity.payment_method,
            status=entity.status.value,
            is_rush_order=entity.is_rush_order,
            vat_rate=entity.vat_rate,
            subtotal=entity.subtotal,
            vat_amount=entity.vat_amount,
            total_after_vat=entity.total_after_vat,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )
        model.items = [self._item_model(item) for item in entity.items]
        if entity.delivery_info is not None:
            model.delivery_info = self._delivery_model(entity.delivery_info)
        return model

    async def _load(self, order_id: int) -> Optional[OrderModel]:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.id == order_id)
        )
        return result.scalar_one_or_none()

    async def create(self, order: Order) -> Order:
        db_order = self._to_model(order)
        self.session.add(db_order)
        await self.session.flush()
        await self.session.refresh(db_order, attribute_names=["items", "delivery_info", "version"])
        logger.info(
            "order_created",
            order_id=db_order.id,
            customer_id=db_order.customer_id,
            total_after_vat=db_order.total_after_vat,
        )
        return self._to_entity(db_order)

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        db_order = await self._load(order_id)
        return self._to_entity(db_order) if db_order else None

    async def list_by_customer(
        self,
        customer_id: str,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.customer_id == customer_id)
            .order_by(OrderModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_by_status(
        self,
        status: OrderStatus,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.status == status.value)
            .order_by(OrderModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def update(self, order: Order) -> Order:
        db_order = await self._load(order.id)
        if not db_order:
            raise OrderNotFoundException(order.order_ref)
        if db_order.version != order.version:
            logger.warning(
                "order_version_conflict",
                order_id=order.id,
                expected=order.version,
                actual=db_order.version,
            )
            raise ConcurrentModificationException("Order", order.order_ref)

        db_order.status = order.status.value
        db_order.subtotal = order.subtotal
        db_order.vat_amount = order.vat_amount
        db_order.total_after_vat = order.total_after_vat
        db_order.updated_at = order.updated_at

        # 订单行只会在 PENDING 状态下变化，整体替换
        current = {(i.product_id, i.quantity, i.unit_price) for i in db_order.items}
        wanted = {(i.product_id, i.quantity, i.unit_price) for i in order.items}
        if current != wanted:
            db_order.items = [self._item_model(item) for item in order.items]

        if order.delivery_info is not None and db_order.delivery_info is not None:
            d = order.delivery_info
            db_order.delivery_info.delivery_fee = d.delivery_fee
            db_order.delivery_info.estimated_delivery_date = d.estimated_delivery_date
            db_order.delivery_info.actual_delivery_date = d.actual_delivery_date

        await self.session.flush()
        await self.session.refresh(db_order, attribute_names=["items", "delivery_info", "version"])

        logger.info(
            "order_updated",
            order_id=db_order.id,
            status=db_order.status,
            version=db_order.version,
        )
        return self._to_entity(db_order)
